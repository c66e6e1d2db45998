"""
Transforms Module

Content transforms the pipeline runs around fitting: quoted-text
removal, dark-mode colour adjustment, autolinking and neutralizing a few
problematic elements. Each can be swapped through Collaborators.
"""

import re
import colorsys
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from bs4 import BeautifulSoup, Tag
from bs4.element import NavigableString

from .layout import is_text
from .utils.css import document_of, get_style, leading_int, set_style

logger = logging.getLogger(__name__)

RGB = Tuple[int, int, int]

# Quoted text markers of the common clients
QUOTED_SELECTORS = [
    '.gmail_quote',
    'blockquote[type="cite"]',
    '.yahoo_quoted',
]
OUTLOOK_REPLY_ID = "divRplyFwdMsg"

_URL_RE = re.compile(r'(?:https?://|www\.)[^\s<>"\']+', re.IGNORECASE)
_URL_TRAILING = '.,;:!?)]}\''
_NO_AUTOLINK_PARENTS = ('a', 'script', 'style', 'textarea', 'button')

_RGB_RE = re.compile(r'rgba?\(\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)', re.IGNORECASE)
_HEX_RE = re.compile(r'^#([0-9a-f]{3}|[0-9a-f]{6})$', re.IGNORECASE)
_NAMED_COLORS = {
    'white': (255, 255, 255),
    'black': (0, 0, 0),
    'red': (255, 0, 0),
    'green': (0, 128, 0),
    'blue': (0, 0, 255),
    'gray': (128, 128, 128),
    'grey': (128, 128, 128),
    'silver': (192, 192, 192),
    'navy': (0, 0, 128),
}

LIGHT_BACKGROUND_LUMINANCE = 0.6
DARK_TEXT_LUMINANCE = 0.4


# ---------------------------------------------------------------------------
# Quoted text
# ---------------------------------------------------------------------------

def _quoted_nodes(soup: BeautifulSoup) -> list:
    nodes = []
    for selector in QUOTED_SELECTORS:
        nodes.extend(soup.select(selector))
    reply = soup.find(id=OUTLOOK_REPLY_ID)
    if reply is not None:
        # Outlook puts the quoted message after the reply header, as siblings
        nodes.append(reply)
        nodes.extend(s for s in reply.find_next_siblings() if isinstance(s, Tag))
    return nodes


def has_quoted_html(html: str) -> bool:
    soup = BeautifulSoup(html or "", 'html.parser')
    return bool(_quoted_nodes(soup))


def remove_quoted_html(html: str) -> str:
    """Drop quoted replies/forwards from a fragment."""
    soup = BeautifulSoup(html or "", 'html.parser')
    nodes = _quoted_nodes(soup)
    for node in nodes:
        if node.parent is not None:
            node.decompose()
    if nodes:
        logger.debug(f"Removed {len(nodes)} quoted block(s)")
    return str(soup)


# ---------------------------------------------------------------------------
# Dark mode
# ---------------------------------------------------------------------------

def rgb_color(value: str) -> Optional[RGB]:
    """Parse rgb()/rgba(), #hex and a few named colours."""
    value = (value or '').strip().lower()
    if not value:
        return None
    match = _RGB_RE.match(value)
    if match:
        return tuple(min(int(c), 255) for c in match.groups())
    match = _HEX_RE.match(value)
    if match:
        digits = match.group(1)
        if len(digits) == 3:
            digits = ''.join(c * 2 for c in digits)
        return tuple(int(digits[i:i + 2], 16) for i in (0, 2, 4))
    return _NAMED_COLORS.get(value)


def luminance(color: RGB) -> float:
    r, g, b = (c / 255 for c in color)
    return 0.2126 * r + 0.7152 * g + 0.0722 * b


def _css_rgb(color: RGB) -> str:
    return f"rgb({color[0]},{color[1]},{color[2]})"


def _invert_lightness(color: RGB) -> RGB:
    h, l, s = colorsys.rgb_to_hls(*(c / 255 for c in color))
    r, g, b = colorsys.hls_to_rgb(h, 1 - l, s)
    return (round(r * 255), round(g * 255), round(b * 255))


def apply_dark_mode_for_node(node: Tag, base_background: RGB) -> bool:
    """
    Re-colour one element for a dark theme.

    Light backgrounds become the base background; dark text has its
    lightness inverted.

    Returns:
        True if the element was changed
    """
    changed = False

    for prop in ('background-color', 'background'):
        color = rgb_color(get_style(node, prop))
        if color is not None and luminance(color) > LIGHT_BACKGROUND_LUMINANCE:
            set_style(node, prop, _css_rgb(base_background))
            changed = True

    bgcolor = rgb_color(node.get('bgcolor'))
    if bgcolor is not None and luminance(bgcolor) > LIGHT_BACKGROUND_LUMINANCE:
        node['bgcolor'] = _css_rgb(base_background)
        changed = True

    color = rgb_color(get_style(node, 'color'))
    if color is not None and luminance(color) < DARK_TEXT_LUMINANCE:
        set_style(node, 'color', _css_rgb(_invert_lightness(color)))
        changed = True

    if node.name == 'font':
        color = rgb_color(node.get('color'))
        if color is not None and luminance(color) < DARK_TEXT_LUMINANCE:
            node['color'] = _css_rgb(_invert_lightness(color))
            changed = True

    return changed


# ---------------------------------------------------------------------------
# Autolink
# ---------------------------------------------------------------------------

def _inside(node, names) -> bool:
    return any(parent.name in names for parent in node.parents if isinstance(parent, Tag))


def autolink(root: Tag) -> int:
    """
    Turn bare http(s) and www URLs in text into anchors.

    Returns:
        Number of links created
    """
    soup = document_of(root) or BeautifulSoup("", 'html.parser')
    created = 0

    for node in list(root.descendants):
        if not is_text(node) or node.parent is None or _inside(node, _NO_AUTOLINK_PARENTS):
            continue
        text = str(node)
        if not _URL_RE.search(text):
            continue

        pieces = []
        last = 0
        for match in _URL_RE.finditer(text):
            url = match.group(0).rstrip(_URL_TRAILING)
            end = match.start() + len(url)
            if match.start() > last:
                pieces.append(NavigableString(text[last:match.start()]))
            link = soup.new_tag('a', href=url if '://' in url else f"http://{url}")
            link.string = url
            pieces.append(link)
            last = end
            created += 1
        if last < len(text):
            pieces.append(NavigableString(text[last:]))

        current = node
        for piece in pieces:
            current.insert_after(piece)
            current = piece
        node.extract()

    return created


# ---------------------------------------------------------------------------
# Special handling
# ---------------------------------------------------------------------------

def remove_facebook_hidden_text(node: Tag) -> bool:
    """
    Hide the invisible preheader text Facebook-style mails carry.

    Such text is made invisible with a tiny font or a zero max-height;
    after dark-mode recolouring it would show up, so it is hidden outright.
    """
    font_size = leading_int(get_style(node, 'font-size'))
    tiny_font = font_size is not None and font_size <= 1
    collapsed = get_style(node, 'max-height') in ('0', '0px') and get_style(node, 'overflow') == 'hidden'
    if (tiny_font or collapsed) and get_style(node, 'display') != 'none':
        set_style(node, 'display', 'none')
        return True
    return False


def disable_content_editable_elements(node: Tag) -> bool:
    if node.get('contenteditable', '').lower() in ('', 'true'):
        if node.has_attr('contenteditable'):
            node['contenteditable'] = 'false'
            return True
    return False


@dataclass
class Collaborators:
    """Pluggable content transforms used by the pipeline"""
    has_quoted_html: Callable[[str], bool] = has_quoted_html
    remove_quoted_html: Callable[[str], str] = remove_quoted_html
    apply_dark_mode_for_node: Callable[[Tag, RGB], bool] = apply_dark_mode_for_node
    autolink: Callable[[Tag], int] = autolink
    remove_facebook_hidden_text: Callable[[Tag], bool] = remove_facebook_hidden_text
    disable_content_editable_elements: Callable[[Tag], bool] = disable_content_editable_elements
