"""
Image Limit Module

Forces oversized or unconstrained images to responsive sizing while
leaving intentionally sized and positioned images alone.
"""

import logging
from typing import Optional

from bs4 import Tag

from .constants import LIMIT_WIDTH_CLASS, VIEWPORT_IMAGE_SLACK_PX
from .layout import LayoutEngine
from .utils.css import add_class, get_style, leading_int, set_style

logger = logging.getLogger(__name__)


def _number(value: Optional[str]) -> Optional[float]:
    """Number() of an attribute value, None when not numeric."""
    try:
        return float((value or '').strip())
    except ValueError:
        return None


def image_is_over_size(img: Tag, document_width: float, viewport_width: float) -> bool:
    """
    Decide whether an image is wider than it can be shown.

    Args:
        img: Image element
        document_width: Content width of the container
        viewport_width: Width of the viewport

    Returns:
        True if the width attribute exceeds the container, or (without a
        width attribute and inline width) the inline max-width exceeds
        the viewport less its slack
    """
    width_attr = img.get('width')
    if width_attr:
        width = _number(width_attr)
        # Number("50%") is NaN and never compares greater
        return width is not None and width > document_width

    inline_width = get_style(img, 'width')
    if inline_width in ('', 'none'):
        max_width = leading_int(get_style(img, 'max-width'))
        if max_width and max_width > viewport_width - VIEWPORT_IMAGE_SLACK_PX:
            return True
    return False


def _fit_to_container(img: Tag):
    set_style(img, 'height', 'auto')
    set_style(img, 'max-width', '100%')


def _has_size_signal(img: Tag, layout: LayoutEngine) -> bool:
    if leading_int(layout.computed_style(img, 'min-width')):
        return True
    if leading_int(layout.computed_style(img, 'max-width')):
        return True
    if get_style(img, 'width'):
        return True
    # Both explicit dimensions mean the author sized it on purpose
    return bool(img.get('width')) and bool(img.get('height'))


def limit_image_width(
    img: Tag,
    document_width: float,
    layout: LayoutEngine,
    viewport_width: Optional[float] = None
) -> bool:
    """
    Bound one image to its container.

    Args:
        img: Image element
        document_width: Content width of the container
        layout: Layout engine for computed styles
        viewport_width: Viewport width (defaults to the layout's)

    Returns:
        True if the image styles were changed
    """
    if viewport_width is None:
        viewport_width = layout.viewport_width

    if image_is_over_size(img, document_width, viewport_width):
        add_class(img, LIMIT_WIDTH_CLASS)
        _fit_to_container(img)
        return True

    if layout.computed_style(img, 'position') != 'static':
        return False

    if not _has_size_signal(img, layout):
        _fit_to_container(img)
        return True
    return False


def limit_all_images(root: Tag, layout: LayoutEngine) -> int:
    """
    Apply limit_image_width to every image under the content root.

    Returns:
        Number of images changed
    """
    document_width = layout.offset_width(root)
    changed = 0
    for img in root.find_all('img'):
        if limit_image_width(img, document_width, layout):
            changed += 1
    layout.invalidate()
    if changed:
        logger.debug(f"Limited {changed} image(s) to container width {document_width:.0f}px")
    return changed


def limit_loaded_image(img: Tag, container_width: float, layout: LayoutEngine) -> bool:
    """Flag an image that turned out wider than the container once loaded."""
    if layout.offset_width(img) > container_width:
        add_class(img, LIMIT_WIDTH_CLASS)
        return True
    return False

