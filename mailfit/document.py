"""
Render Document Module

The page shell email content is rendered into: viewport directive,
theme stylesheet, the content root and the quoted-text control.
"""

import logging
from typing import Optional

from bs4 import BeautifulSoup, Tag

from .constants import (
    BODY_ID,
    CONTAINER_ID,
    DARK_BACKGROUND_DETAIL,
    DARK_BACKGROUND_PREVIEW,
    LIMIT_WIDTH_CLASS,
    TRANSFORM_CLASS,
)

logger = logging.getLogger(__name__)

VIEWPORT_CONTENT = "width=device-width, initial-scale=1.0"

BASE_STYLE = f"""
body.edo {{ margin: 0; padding: 0; }}
#container.padding {{ padding: 2ex; }}
.{TRANSFORM_CLASS} {{ transform-origin: 0 0; }}
.{LIMIT_WIDTH_CLASS} {{ max-width: 100% !important; height: auto !important; }}
.quoted-btn {{ display: inline-block; margin: 8px 0; }}
.hidden {{ display: none; }}
"""

QUOTED_CONTROL_SVG = (
    '<svg width="32" height="12" viewBox="0 0 32 12" xmlns="http://www.w3.org/2000/svg">'
    '<rect width="32" height="12" rx="6" fill="#ebebeb"></rect>'
    '<circle cx="2" cy="2" r="2" transform="translate(14 4)" fill="#666"></circle>'
    '<circle cx="2" cy="2" r="2" transform="translate(20 4)" fill="#666"></circle>'
    '<circle cx="2" cy="2" r="2" transform="translate(8 4)" fill="#666"></circle>'
    '</svg>'
)


def dark_mode_style(is_preview_mode: bool) -> str:
    background = DARK_BACKGROUND_PREVIEW if is_preview_mode else DARK_BACKGROUND_DETAIL
    return f"""
html, body.edo, #{CONTAINER_ID} {{ background-color: {background} !important; }}
body {{ color: #fff; }}
"""


def light_mode_style() -> str:
    return f"""
html, body.edo, #{CONTAINER_ID} {{ background-color: #fffffe !important; }}
"""


def preview_mode_style() -> str:
    return f"""
html #{CONTAINER_ID} {{ overflow-x: hidden; }}
"""


class RenderDocument:
    """
    Page shell holding the content root.

    Layout:
        <head> viewport meta, base style, <style class="global-style">
        <body class="edo">
          <div id="container">
            <div id="edo-container"><div id="edo-body">...</div></div>
            <div class="quoted-btn"><svg/></div>
          </div>
    """

    def __init__(self):
        self.soup = BeautifulSoup(self._shell(), 'html.parser')

    @staticmethod
    def _shell() -> str:
        return (
            '<!DOCTYPE html><html><head><meta charset="utf-8">'
            f'<meta name="viewport" content="{VIEWPORT_CONTENT}">'
            f'<style class="base-style">{BASE_STYLE}</style>'
            '<style class="global-style"></style>'
            '</head><body class="edo"><div id="container">'
            f'<div id="{CONTAINER_ID}"><div id="{BODY_ID}"></div></div>'
            f'<div class="quoted-btn hidden">{QUOTED_CONTROL_SVG}</div>'
            '</div></body></html>'
        )

    @property
    def container(self) -> Tag:
        return self.soup.find(id=CONTAINER_ID)

    @property
    def content_body(self) -> Tag:
        return self.soup.find(id=BODY_ID)

    @property
    def wrapper(self) -> Tag:
        return self.soup.find(id='container')

    @property
    def quoted_control(self) -> Optional[Tag]:
        return self.soup.select_one('.quoted-btn')

    @property
    def viewport(self) -> Optional[Tag]:
        return self.soup.find('meta', attrs={'name': 'viewport'})

    @staticmethod
    def _parse_fragment(html: str) -> BeautifulSoup:
        """Parse content; a full document is flattened to its styles and body."""
        fragment = BeautifulSoup(html or "", 'html.parser')
        for tag in fragment.find_all(['title', 'meta', 'link', 'base']):
            tag.decompose()
        for tag in fragment.find_all(['html', 'head', 'body']):
            tag.unwrap()
        return fragment

    def render(
        self,
        show_html: str,
        is_dark_mode: bool = False,
        is_preview_mode: bool = False,
        has_img_or_video: bool = False,
        show_quoted_control: bool = False
    ) -> Tag:
        """
        Rebuild the page for the given state.

        The content root is recreated from show_html, so styles applied by
        an earlier pass are discarded. The viewport directive and body
        sizing are reset as well.

        Returns:
            The new content root
        """
        global_style = self.soup.select_one('style.global-style')
        css = dark_mode_style(is_preview_mode) if is_dark_mode else light_mode_style()
        if is_preview_mode:
            css += preview_mode_style()
        global_style.string = css

        wrapper = self.wrapper
        classes = [c for c in (wrapper.get('class') or []) if c != 'padding']
        if is_preview_mode and not has_img_or_video:
            classes.append('padding')
        if classes:
            wrapper['class'] = classes
        elif wrapper.has_attr('class'):
            del wrapper['class']

        fragment = self._parse_fragment(show_html)
        new_body = self.soup.new_tag('div', id=BODY_ID)
        for node in list(fragment.contents):
            new_body.append(node.extract())

        container = self.soup.new_tag('div', id=CONTAINER_ID)
        container.append(new_body)
        self.container.replace_with(container)

        control = self.quoted_control
        control_classes = [c for c in (control.get('class') or []) if c != 'hidden']
        if not show_quoted_control:
            control_classes.append('hidden')
        control['class'] = control_classes
        svg = control.find('svg')
        if svg is not None:
            # Drop a counter-scale left by the previous pass
            for attr in ('style', 'class'):
                if svg.has_attr(attr):
                    del svg[attr]

        self.viewport['content'] = VIEWPORT_CONTENT
        if self.soup.body.has_attr('style'):
            del self.soup.body['style']

        logger.debug(
            f"Rendered content root ({len(show_html or '')} chars, "
            f"quoted control {'shown' if show_quoted_control else 'hidden'})"
        )

        return container

    def to_html(self) -> str:
        return str(self.soup)
