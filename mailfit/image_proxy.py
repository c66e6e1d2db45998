"""
Image Proxy Module

Rewrites remote image references through a proxy URL template before the
fragment is attached to the render document, so the original URL is never
fetched directly.
"""

import re
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

from bs4 import BeautifulSoup, Tag

logger = logging.getLogger(__name__)

PROXY_PLACEHOLDER = "$1"
ORIGINAL_SRC_ATTR = "data-src"

# Characters encodeURIComponent leaves alone besides [A-Za-z0-9_.-~]
_URI_COMPONENT_SAFE = "!*'()"

# Author viewport directives would fight ours
_VIEWPORT_META_RE = re.compile(r'<meta\s+name=([\'"\s]?)viewport\1\s+content=[^>]*>', re.IGNORECASE)
# Landscape-only media blocks would otherwise apply in a rotated webview
_LANDSCAPE_MEDIA_RE = re.compile(r'@media screen and [:()\s\w-]*\(orientation: landscape\)')


@dataclass
class ProxyResult:
    """Result of rewriting a fragment"""
    html: str
    has_img_or_video: bool
    rewritten: int = 0


def image_should_add_proxy(img: Tag) -> bool:
    src = (img.get('src') or '').strip().lower()
    return src.startswith('http://') or src.startswith('https://')


def is_already_proxied(img: Tag) -> bool:
    """An image carrying its original URL on data-src has been rewritten before."""
    original = img.get(ORIGINAL_SRC_ATTR)
    return bool(original) and original != img.get('src')


def calc_proxy_url(src: str, proxy_template: Optional[str]) -> Optional[str]:
    """
    Apply a proxy template to an image URL.

    Args:
        src: Original absolute image URL
        proxy_template: Template containing "$1", e.g. "https://proxy/?url=$1"

    Returns:
        The proxied URL, or None when no template is configured
    """
    if not proxy_template:
        return None
    return proxy_template.replace(PROXY_PLACEHOLDER, quote(src, safe=_URI_COMPONENT_SAFE), 1)


def add_proxy_for_image(html: str, proxy_template: Optional[str]) -> ProxyResult:
    """
    Rewrite every remote <img> src through the proxy template.

    The original URL is kept on data-src so handle_image_load_error can
    fall back to it. Videos are only detected. Without a template the
    markup is returned re-serialized but otherwise untouched.

    Args:
        html: Email HTML fragment
        proxy_template: Proxy URL template containing "$1" (optional)

    Returns:
        ProxyResult with the rewritten HTML and whether media is present
    """
    soup = BeautifulSoup(html or "", 'html.parser')
    images = soup.find_all('img')
    rewritten = 0

    for img in images:
        if not image_should_add_proxy(img) or is_already_proxied(img):
            continue
        src = img['src'].strip()
        proxy_src = calc_proxy_url(src, proxy_template)
        if proxy_src:
            img[ORIGINAL_SRC_ATTR] = src
            img['src'] = proxy_src
            rewritten += 1

    has_video = soup.find('video') is not None
    if rewritten:
        logger.debug(f"Proxied {rewritten} of {len(images)} image(s)")

    return ProxyResult(
        html=str(soup),
        has_img_or_video=bool(images) or has_video,
        rewritten=rewritten
    )


def handle_image_load_error(img: Tag) -> bool:
    """
    Fall back to the original URL after a proxied image failed to load.

    Returns:
        True if the src was restored
    """
    original_src = img.get(ORIGINAL_SRC_ATTR)
    if not original_src:
        return False
    img['src'] = original_src
    return True


def strip_viewport_meta(html: str) -> str:
    """Drop author viewport meta tags and landscape-only media prefixes."""
    html = _VIEWPORT_META_RE.sub('', html)
    return _LANDSCAPE_MEDIA_RE.sub('', html)


def prepare_html(html: str, proxy_template: Optional[str]) -> ProxyResult:
    """Normalize a received fragment and proxy its images."""
    return add_proxy_for_image(strip_viewport_meta(html), proxy_template)
