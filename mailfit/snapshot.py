"""
Snapshot Module

Exports a fitted render document to PDF with WeasyPrint.
"""

import logging
from pathlib import Path
from typing import Optional, Union

from .constants import DEFAULT_VIEWPORT_WIDTH
from .document import RenderDocument

# WeasyPrint needs native Pango/GLib libraries which may be missing
WEASYPRINT_AVAILABLE = False
WEASYPRINT_DEFAULT_URL_FETCHER = None
try:
    from weasyprint import HTML, CSS, default_url_fetcher
    WEASYPRINT_AVAILABLE = True
    WEASYPRINT_DEFAULT_URL_FETCHER = default_url_fetcher
except (ImportError, OSError):
    pass

logger = logging.getLogger(__name__)

# Blocked remote resources resolve to an empty image
_EMPTY_RESOURCE = {'string': b'', 'mime_type': 'image/png'}
DEFAULT_PAGE_HEIGHT_PX = 667


class SnapshotUnavailable(RuntimeError):
    """Raised when WeasyPrint cannot be loaded."""


def _url_fetcher(url: str):
    """
    URL fetcher that blocks remote URLs.

    Only data: URLs (embedded images) and local file: URLs are loaded.
    """
    if url.startswith(('data:', 'file://')):
        return WEASYPRINT_DEFAULT_URL_FETCHER(url)
    if url.startswith(('http://', 'https://')):
        logger.debug(f"Blocked remote resource: {url[:100]}")
        return _EMPTY_RESOURCE
    try:
        return WEASYPRINT_DEFAULT_URL_FETCHER(url)
    except (OSError, ValueError) as e:
        logger.debug(f"Could not fetch {url[:100]}: {e}")
        return _EMPTY_RESOURCE


def page_css(width_px: float, height_px: Optional[float] = None) -> str:
    """A page as wide as the viewport; tall enough for the content when height is known."""
    height_px = height_px or DEFAULT_PAGE_HEIGHT_PX
    return f"@page {{ size: {width_px:.0f}px {height_px:.0f}px; margin: 0; }}"


def export_pdf(
    document: Union[RenderDocument, str],
    output_path: Union[str, Path],
    width_px: float = DEFAULT_VIEWPORT_WIDTH,
    height_px: Optional[float] = None,
    load_remote_images: bool = False
) -> Path:
    """
    Render a document to PDF.

    Args:
        document: RenderDocument or serialized HTML
        output_path: Destination .pdf path
        width_px: Page width in CSS px
        height_px: Page height in CSS px (one page for the whole content)
        load_remote_images: Fetch http(s) resources (default: blocked)

    Returns:
        Path of the written PDF

    Raises:
        SnapshotUnavailable: if WeasyPrint is not importable
    """
    if not WEASYPRINT_AVAILABLE:
        raise SnapshotUnavailable("WeasyPrint is not available - install weasyprint and its native libraries")

    html_content = document.to_html() if isinstance(document, RenderDocument) else document
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    if load_remote_images:
        html = HTML(string=html_content)
    else:
        html = HTML(string=html_content, url_fetcher=_url_fetcher)
    html.write_pdf(str(output_path), stylesheets=[CSS(string=page_css(width_px, height_px))])

    logger.info(f"Created PDF snapshot: {output_path}")
    return output_path
