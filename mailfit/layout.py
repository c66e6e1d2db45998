"""
Layout Module

Geometry and computed-style queries over the render tree.

The fitting steps only need a handful of measurements (scroll/offset
sizes, bounding boxes and a few computed properties). LayoutEngine is
the interface a host with a real rendering engine implements;
EstimatedLayout approximates CSS box geometry from the markup itself so
the pipeline can run without a browser.
"""

import io
import re
import base64
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from bs4 import BeautifulSoup, Tag
from bs4.element import NavigableString, PreformattedString
from PIL import Image, UnidentifiedImageError
from soupsieve import SelectorSyntaxError

from .constants import DEFAULT_VIEWPORT_WIDTH
from .utils.css import (
    Declarations,
    PX_PER_UNIT,
    absolute_px,
    document_of,
    format_number,
    iter_stylesheets,
    parse_declarations,
    parse_length,
    parse_transform_scale,
)

logger = logging.getLogger(__name__)


class LayoutEngine(ABC):
    """
    Measurement interface used by the fitting steps.

    Implementations may cache measurements. Code that mutates the tree or
    its stylesheets must call invalidate() before measuring again.
    """

    def __init__(self, viewport_width: float = DEFAULT_VIEWPORT_WIDTH):
        self.viewport_width = viewport_width

    @abstractmethod
    def computed_style(self, element: Tag, prop: str) -> str:
        """Computed value of a CSS property (lengths as px strings)."""

    @abstractmethod
    def offset_width(self, element: Tag) -> float:
        """Border-box width, ignoring transforms."""

    @abstractmethod
    def offset_height(self, element: Tag) -> float:
        """Border-box height, ignoring transforms."""

    @abstractmethod
    def scroll_width(self, element: Tag) -> float:
        """Width of the content including overflow."""

    @abstractmethod
    def scroll_height(self, element: Tag) -> float:
        """Height of the content including overflow."""

    def bounding_width(self, element: Tag) -> float:
        """Width after the element's own scale() transform."""
        scale_x, _ = parse_transform_scale(self.computed_style(element, 'transform'))
        return self.offset_width(element) * scale_x

    def bounding_height(self, element: Tag) -> float:
        """Height after the element's own scale() transform."""
        _, scale_y = parse_transform_scale(self.computed_style(element, 'transform'))
        return self.offset_height(element) * scale_y

    def register_image_size(self, src: str, width: float, height: float):
        """Record the natural size of a loaded image."""

    def invalidate(self):
        """Drop cached measurements."""


# Tag classification
BLOCK_TAGS = {
    'address', 'article', 'aside', 'blockquote', 'body', 'caption', 'center',
    'dd', 'details', 'dialog', 'div', 'dl', 'dt', 'fieldset', 'figcaption',
    'figure', 'footer', 'form', 'h1', 'h2', 'h3', 'h4', 'h5', 'h6', 'header',
    'hr', 'html', 'li', 'main', 'nav', 'ol', 'p', 'pre', 'section', 'summary',
    'table', 'tbody', 'td', 'tfoot', 'th', 'thead', 'tr', 'ul',
}
ATOMIC_TAGS = {
    'img', 'video', 'iframe', 'object', 'embed', 'svg', 'canvas', 'input',
    'button', 'select', 'textarea',
}
SKIP_TAGS = {'script', 'style', 'head', 'title', 'meta', 'link', 'template', 'noscript'}
CELL_TAGS = ('td', 'th')
ROW_GROUP_TAGS = ('thead', 'tbody', 'tfoot')
# HTML presentational size attributes
WIDTH_ATTR_TAGS = {'img', 'table', 'td', 'th', 'video', 'iframe', 'canvas', 'embed', 'object', 'col', 'hr'}
HEIGHT_ATTR_TAGS = {'img', 'table', 'td', 'th', 'tr', 'video', 'iframe', 'canvas', 'embed', 'object'}

DEFAULT_FONT_PX = 16.0
NORMAL_LINE_HEIGHT = 1.2
GLYPH_EM = 0.55  # average glyph advance for proportional email fonts
DEFAULT_REPLACED_SIZE = (300.0, 150.0)

# <font size="N">
FONT_SIZE_ATTR_PX = {1: 10.0, 2: 13.0, 3: 16.0, 4: 18.0, 5: 24.0, 6: 32.0, 7: 48.0}
FONT_SIZE_KEYWORDS = {
    'xx-small': 9.0, 'x-small': 10.0, 'small': 13.0, 'medium': 16.0,
    'large': 18.0, 'x-large': 24.0, 'xx-large': 32.0, 'xxx-large': 48.0,
}
HEADING_EM = {'h1': 2.0, 'h2': 1.5, 'h3': 1.17, 'h4': 1.0, 'h5': 0.83, 'h6': 0.67}

STYLE_DEFAULTS = {
    'position': 'static',
    'min-width': '0px',
    'max-width': 'none',
    'width': 'auto',
    'height': 'auto',
    'overflow': 'visible',
    'transform': 'none',
    'white-space': 'normal',
}
INHERITED_PROPERTIES = {'white-space', 'visibility', 'color', 'font-family'}

_MEDIA_MAX_RE = re.compile(r'max-width\s*:\s*([\d.]+)px', re.IGNORECASE)
_MEDIA_MIN_RE = re.compile(r'min-width\s*:\s*([\d.]+)px', re.IGNORECASE)
_PIECE_RE = re.compile(r'\s+|\S+')


def is_text(node) -> bool:
    """True for character data (not comments, doctypes or CDATA)."""
    return isinstance(node, NavigableString) and not isinstance(node, PreformattedString)


class EstimatedLayout(LayoutEngine):
    """
    Markup-driven approximation of CSS layout.

    Widths come from explicit sizes (inline style, matched <style> rules,
    HTML width attributes), table rows laid out side by side, and
    unbreakable text runs measured at an average glyph width. Heights
    come from greedy line filling at the resolved box width.
    """

    def __init__(
        self,
        viewport_width: float = DEFAULT_VIEWPORT_WIDTH,
        default_font_px: float = DEFAULT_FONT_PX,
        glyph_em: float = GLYPH_EM
    ):
        """
        Initialize the layout estimator.

        Args:
            viewport_width: Width of the layout viewport in CSS px
            default_font_px: Root font size
            glyph_em: Average glyph advance as a fraction of the font size
        """
        super().__init__(viewport_width)
        self.default_font_px = default_font_px
        self.glyph_em = glyph_em
        self._image_sizes: Dict[str, Tuple[float, float]] = {}
        self.invalidate()

    def invalidate(self):
        self._rule_index: Dict[int, Tuple[BeautifulSoup, Dict[int, List[Declarations]]]] = {}
        self._font_cache: Dict[int, float] = {}
        self._line_height_cache: Dict[int, Tuple[str, float]] = {}
        self._width_cache: Dict[int, float] = {}
        self._avail_cache: Dict[int, float] = {}
        self._min_cache: Dict[int, float] = {}
        self._height_cache: Dict[int, float] = {}

    def register_image_size(self, src: str, width: float, height: float):
        self._image_sizes[src] = (float(width), float(height))
        self.invalidate()

    # -----------------------------------------------------------------
    # Cascade
    # -----------------------------------------------------------------

    def _media_applies(self, prelude: Optional[str]) -> bool:
        if not prelude:
            return True
        lowered = prelude.lower()
        if 'print' in lowered and 'screen' not in lowered:
            return False
        max_match = _MEDIA_MAX_RE.search(prelude)
        if max_match and self.viewport_width > float(max_match.group(1)):
            return False
        min_match = _MEDIA_MIN_RE.search(prelude)
        if min_match and self.viewport_width < float(min_match.group(1)):
            return False
        return True

    def _rules_for(self, element: Tag) -> List[Declarations]:
        document = document_of(element)
        if document is None:
            return []
        cached = self._rule_index.get(id(document))
        if cached is None or cached[0] is not document:
            index: Dict[int, List[Declarations]] = {}
            for sheet in iter_stylesheets(document):
                for rule, prelude in sheet.style_rules():
                    if not self._media_applies(prelude):
                        continue
                    try:
                        matched = document.select(rule.selector)
                    except (SelectorSyntaxError, NotImplementedError, ValueError) as e:
                        logger.debug(f"Ignoring selector {rule.selector!r}: {e}")
                        continue
                    for tag in matched:
                        index.setdefault(id(tag), []).append(rule.declarations)
            cached = (document, index)
            self._rule_index[id(document)] = cached
        return cached[1].get(id(element), [])

    def _declared(self, element: Tag, prop: str) -> str:
        """Cascaded value: inline !important, sheet !important, inline, sheet."""
        inline = parse_declarations(element.get('style', '')).get(prop)
        if inline and inline[1]:
            return inline[0]
        sheet_value = ''
        sheet_important = False
        for declarations in self._rules_for(element):
            entry = declarations.get(prop)
            if not entry:
                continue
            if entry[1]:
                sheet_value, sheet_important = entry[0], True
            elif not sheet_important:
                sheet_value = entry[0]
        if sheet_important:
            return sheet_value
        if inline:
            return inline[0]
        return sheet_value

    # -----------------------------------------------------------------
    # Computed style
    # -----------------------------------------------------------------

    def computed_style(self, element: Tag, prop: str) -> str:
        if prop == 'font-size':
            return f"{format_number(self.font_px(element))}px"
        if prop == 'line-height':
            return f"{format_number(self.line_height_px(element))}px"
        if prop == 'display':
            return self._display(element)
        value = self._declared(element, prop)
        if value and value != 'inherit':
            return value
        if prop in INHERITED_PROPERTIES and isinstance(element.parent, Tag):
            return self.computed_style(element.parent, prop)
        return STYLE_DEFAULTS.get(prop, '')

    def _display(self, element: Tag) -> str:
        declared = self._declared(element, 'display').lower()
        if declared:
            return declared
        if element.name in SKIP_TAGS:
            return 'none'
        if element.name in BLOCK_TAGS:
            return 'block'
        if element.name in ATOMIC_TAGS:
            return 'inline-block'
        return 'inline'

    def _hidden(self, element: Tag) -> bool:
        return element.has_attr('hidden') or self._display(element) == 'none'

    def font_px(self, element) -> float:
        if not isinstance(element, Tag) or isinstance(element, BeautifulSoup):
            return self.default_font_px
        key = id(element)
        if key in self._font_cache:
            return self._font_cache[key]

        parent_px = self.font_px(element.parent)
        size = None
        declared = self._declared(element, 'font-size')
        if declared:
            size = self._resolve_font_size(declared, parent_px)
        if size is None and element.name == 'font' and element.get('size'):
            size = self._font_attr_px(element['size'])
        if size is None and element.name in HEADING_EM:
            size = parent_px * HEADING_EM[element.name]
        if size is None:
            size = parent_px

        self._font_cache[key] = size
        return size

    def _resolve_font_size(self, value: str, parent_px: float) -> Optional[float]:
        value = value.strip().lower()
        if value in FONT_SIZE_KEYWORDS:
            return FONT_SIZE_KEYWORDS[value]
        if value == 'smaller':
            return parent_px / 1.2
        if value == 'larger':
            return parent_px * 1.2
        try:
            number, unit = parse_length(value)
        except ValueError:
            return None
        if unit in PX_PER_UNIT:
            return number * PX_PER_UNIT[unit]
        if unit == 'em':
            return parent_px * number
        if unit == 'rem':
            return self.default_font_px * number
        if unit == '%':
            return parent_px * number / 100
        if unit == 'ex':
            return parent_px * number / 2
        return None

    @staticmethod
    def _font_attr_px(size_attr: str) -> Optional[float]:
        size_attr = size_attr.strip()
        try:
            if size_attr[:1] in '+-':
                level = 3 + int(size_attr)
            else:
                level = int(float(size_attr))
        except ValueError:
            return None
        return FONT_SIZE_ATTR_PX[min(7, max(1, level))]

    def _line_height_value(self, element) -> Tuple[str, float]:
        """('factor', n) for unitless/normal line heights, ('px', n) otherwise."""
        if not isinstance(element, Tag) or isinstance(element, BeautifulSoup):
            return 'factor', NORMAL_LINE_HEIGHT
        key = id(element)
        if key in self._line_height_cache:
            return self._line_height_cache[key]

        resolved = None
        declared = self._declared(element, 'line-height').strip().lower()
        if declared == 'normal':
            resolved = ('factor', NORMAL_LINE_HEIGHT)
        elif declared:
            try:
                number, unit = parse_length(declared)
            except ValueError:
                number, unit = None, None
            if number is not None:
                if unit == '':
                    resolved = ('factor', number)
                elif unit in PX_PER_UNIT:
                    resolved = ('px', number * PX_PER_UNIT[unit])
                elif unit == 'em':
                    resolved = ('px', number * self.font_px(element))
                elif unit == '%':
                    resolved = ('px', number * self.font_px(element) / 100)
        if resolved is None:
            resolved = self._line_height_value(element.parent)

        self._line_height_cache[key] = resolved
        return resolved

    def line_height_px(self, element) -> float:
        kind, value = self._line_height_value(element)
        if kind == 'factor':
            return value * self.font_px(element)
        return value

    # -----------------------------------------------------------------
    # Widths
    # -----------------------------------------------------------------

    def _resolve_length(self, value: str, element: Tag, reference: Optional[float]) -> Optional[float]:
        """Length in px; percentages need a reference, 'auto'/'none' give None."""
        value = (value or '').strip().lower()
        if not value or value in ('auto', 'none', 'initial', 'inherit', 'fit-content', 'max-content', 'min-content'):
            return None
        try:
            number, unit = parse_length(value)
        except ValueError:
            return None
        if unit == '':
            return number  # HTML attribute pixels
        if unit in PX_PER_UNIT:
            return number * PX_PER_UNIT[unit]
        if unit == '%':
            return None if reference is None else reference * number / 100
        if unit == 'em':
            return number * self.font_px(element)
        if unit == 'rem':
            return number * self.default_font_px
        if unit == 'vw':
            return number * self.viewport_width / 100
        return None

    def _specified_width(self, element: Tag, reference: Optional[float]) -> Optional[float]:
        value = self._declared(element, 'width')
        if not value and element.name in WIDTH_ATTR_TAGS and element.get('width'):
            value = element['width']
        width = self._resolve_length(value, element, reference)
        max_width = self._resolve_length(self._declared(element, 'max-width'), element, reference)
        if width is not None and max_width is not None:
            width = min(width, max_width)
        min_width = self._resolve_length(self._declared(element, 'min-width'), element, reference)
        if width is not None and min_width is not None:
            width = max(width, min_width)
        return width

    def _specified_height(self, element: Tag) -> Optional[float]:
        value = self._declared(element, 'height')
        if not value and element.name in HEIGHT_ATTR_TAGS and element.get('height'):
            value = element['height']
        return self._resolve_length(value, element, None)

    def _clips_overflow(self, element: Tag) -> bool:
        overflow = (self._declared(element, 'overflow') or self._declared(element, 'overflow-x')).lower()
        return overflow in ('hidden', 'auto', 'scroll', 'clip')

    def _table_of(self, element: Tag) -> Optional[Tag]:
        for parent in element.parents:
            if parent.name == 'table':
                return parent
        return None

    def _rows(self, table: Tag) -> List[Tag]:
        rows = []
        for child in table.find_all(True, recursive=False):
            if child.name == 'tr':
                rows.append(child)
            elif child.name in ROW_GROUP_TAGS:
                rows.extend(child.find_all('tr', recursive=False))
        return rows

    @staticmethod
    def _cells(row: Tag) -> List[Tag]:
        return row.find_all(list(CELL_TAGS), recursive=False)

    @staticmethod
    def _int_attr(element: Optional[Tag], name: str) -> float:
        if element is None:
            return 0.0
        px = absolute_px(str(element.get(name, '') or ''))
        return px or 0.0

    def _available_width(self, element: Tag) -> float:
        """Width of the containing block."""
        key = id(element)
        if key in self._avail_cache:
            return self._avail_cache[key]

        parent = element.parent
        if element.name in CELL_TAGS + ROW_GROUP_TAGS + ('tr',):
            table = self._table_of(element)
            width = self.offset_width(table) if table is not None else self.viewport_width
        elif not isinstance(parent, Tag) or isinstance(parent, BeautifulSoup) or parent.name in ('html', 'body'):
            width = self.viewport_width
        elif parent.name in CELL_TAGS:
            width = self._cell_width(parent) - 2 * self._int_attr(self._table_of(parent), 'cellpadding')
        else:
            width = self.offset_width(parent)

        self._avail_cache[key] = width
        return width

    def _cell_width(self, cell: Tag) -> float:
        table = self._table_of(cell)
        row = cell.parent
        if table is None or row is None:
            return self._min_content(cell)
        table_width = self.offset_width(table)
        cells = self._cells(row)
        mins = [self._cell_min(c) for c in cells]
        total = sum(mins) + self._int_attr(table, 'cellspacing') * (len(cells) + 1)
        mine = self._cell_min(cell)
        if total >= table_width or not cells:
            return mine
        share = (mine / sum(mins)) if sum(mins) else 1.0 / len(cells)
        return mine + (table_width - total) * share

    def _cell_min(self, cell: Tag) -> float:
        table = self._table_of(cell)
        padding = 2 * self._int_attr(table, 'cellpadding')
        return self._min_content(cell) + padding

    def _table_min(self, table: Tag) -> float:
        spacing = self._int_attr(table, 'cellspacing')
        widest = 0.0
        for row in self._rows(table):
            cells = self._cells(row)
            width = sum(self._cell_min(cell) for cell in cells) + spacing * (len(cells) + 1)
            widest = max(widest, width)
        return widest

    def offset_width(self, element: Tag) -> float:
        key = id(element)
        if key in self._width_cache:
            return self._width_cache[key]

        if self._hidden(element):
            width = 0.0
        elif element.name in ATOMIC_TAGS:
            width = self._atomic_size(element)[0]
        elif element.name in CELL_TAGS:
            width = self._cell_width(element)
        else:
            available = self._available_width(element)
            specified = self._specified_width(element, available)
            if element.name == 'table':
                width = max(specified if specified is not None else available, self._table_min(element))
            elif element.name == 'tr' or element.name in ROW_GROUP_TAGS:
                width = available
            elif specified is not None:
                width = specified
            elif self._display(element) == 'inline-block':
                width = self._min_content(element)
            else:
                width = available

        self._width_cache[key] = width
        return width

    def _content_min(self, element: Tag) -> float:
        """Narrowest width the content can take without overflowing."""
        if element.name == 'table':
            return self._table_min(element)
        return self._flow_min(element)

    def _min_content(self, element: Tag) -> float:
        key = id(element)
        if key in self._min_cache:
            return self._min_cache[key]

        if self._hidden(element):
            width = 0.0
        elif element.name in ATOMIC_TAGS:
            width = self._atomic_min_width(element)
        else:
            # Percentages act as auto for min-content contributions
            specified = self._specified_width(element, None)
            content = self._content_min(element)
            if specified is None:
                width = content
            elif self._clips_overflow(element):
                width = specified
            else:
                width = max(specified, content)

        self._min_cache[key] = width
        return width

    def scroll_width(self, element: Tag) -> float:
        if self._hidden(element):
            return 0.0
        if element.name in ATOMIC_TAGS:
            return self.offset_width(element)
        return max(self.offset_width(element), self._content_min(element))

    # -----------------------------------------------------------------
    # Replaced elements
    # -----------------------------------------------------------------

    def _intrinsic_size(self, element: Tag) -> Tuple[float, float]:
        src = element.get('src') or ''
        if src in self._image_sizes:
            return self._image_sizes[src]
        size = (0.0, 0.0)
        if element.name != 'img':
            size = DEFAULT_REPLACED_SIZE
        elif src.startswith('data:image') and ';base64,' in src:
            try:
                payload = base64.b64decode(src.split(',', 1)[1])
                with Image.open(io.BytesIO(payload)) as image:
                    size = (float(image.width), float(image.height))
            except (ValueError, UnidentifiedImageError, OSError) as e:
                logger.debug(f"Could not read inline image size: {e}")
        self._image_sizes[src] = size
        return size

    def _atomic_dimensions(self, element: Tag, reference: Optional[float]) -> Tuple[float, float, bool]:
        """(width, height, height_is_auto) before max-width is applied."""
        width = self._resolve_length(
            self._declared(element, 'width') or (element.get('width') if element.name in WIDTH_ATTR_TAGS else ''),
            element, reference
        )
        height = self._specified_height(element)
        natural_w, natural_h = self._intrinsic_size(element)
        height_auto = height is None
        if width is None and height is None:
            width, height = natural_w, natural_h
        elif width is None:
            width = natural_w * height / natural_h if natural_h else natural_w
        elif height is None:
            height = natural_h * width / natural_w if natural_w else 0.0
        return width, height, height_auto

    def _atomic_size(self, element: Tag) -> Tuple[float, float]:
        available = self._available_width(element)
        width, height, height_auto = self._atomic_dimensions(element, available)
        max_width = self._resolve_length(self._declared(element, 'max-width'), element, available)
        if max_width is not None and width > max_width:
            if height_auto and width:
                height = height * max_width / width
            width = max_width
        return width, height

    def _atomic_min_width(self, element: Tag) -> float:
        max_width = self._declared(element, 'max-width').strip()
        if max_width.endswith('%'):
            # Shrinks with its container
            return 0.0
        width, _, _ = self._atomic_dimensions(element, None)
        limit = self._resolve_length(max_width, element, None)
        if limit is not None:
            width = min(width, limit)
        return width

    # -----------------------------------------------------------------
    # Inline flow
    # -----------------------------------------------------------------

    def _nowrap(self, element: Tag) -> bool:
        return self.computed_style(element, 'white-space').lower() in ('nowrap', 'pre')

    def _flow_items(self, element: Tag, measure_min: bool = False) -> list:
        """
        Flatten the inline content of a block into layout items.

        Items: ('word', width, height), ('space', width), ('break',),
        ('newline',), ('box', width, height), ('block', tag). Consecutive
        words are glued into one unbreakable run. With measure_min the
        boxes carry their min-content width only, which keeps min-content
        measurement independent of the containing block.
        """
        items: list = []
        self._collect(element, items, self._nowrap(element), measure_min)
        glued: list = []
        for item in items:
            if item[0] == 'word' and glued and glued[-1][0] == 'word':
                previous = glued[-1]
                glued[-1] = ('word', previous[1] + item[1], max(previous[2], item[2]))
            else:
                glued.append(item)
        return glued

    def _collect(self, element: Tag, items: list, nowrap: bool, measure_min: bool):
        for child in element.children:
            if is_text(child):
                self._collect_text(str(child), element, items, nowrap)
                continue
            if not isinstance(child, Tag) or self._hidden(child):
                continue
            display = self._display(child)
            if child.name == 'wbr':
                items.append(('break',))
            elif child.name == 'br':
                items.append(('newline',))
            elif child.name in ATOMIC_TAGS and measure_min:
                items.append(('box', self._atomic_min_width(child), 0.0))
            elif child.name in ATOMIC_TAGS:
                width, height = self._atomic_size(child)
                items.append(('box', width, height))
            elif display == 'inline-block':
                height = 0.0 if measure_min else self.offset_height(child)
                items.append(('box', self._min_content(child), height))
            elif display != 'inline' or child.name in BLOCK_TAGS:
                items.append(('block', child))
            else:
                self._collect(child, items, nowrap or self._nowrap(child), measure_min)

    def _collect_text(self, text: str, parent: Tag, items: list, nowrap: bool):
        glyph = self.font_px(parent) * self.glyph_em
        line_height = self.line_height_px(parent)
        for piece in _PIECE_RE.findall(text):
            if piece.isspace():
                if nowrap:
                    items.append(('word', glyph, line_height))
                else:
                    items.append(('space', glyph))
            else:
                items.append(('word', len(piece) * glyph, line_height))

    def _flow_min(self, element: Tag) -> float:
        widest = 0.0
        for item in self._flow_items(element, measure_min=True):
            kind = item[0]
            if kind in ('word', 'box'):
                widest = max(widest, item[1])
            elif kind == 'block':
                widest = max(widest, self._min_content(item[1]))
        return widest

    def _flow_height(self, element: Tag, width: float) -> float:
        total = 0.0
        line_width = 0.0
        line_height = 0.0
        default_line = self.line_height_px(element)
        for item in self._flow_items(element):
            kind = item[0]
            if kind in ('word', 'box'):
                if line_width > 0 and line_width + item[1] > width:
                    total += line_height
                    line_width, line_height = 0.0, 0.0
                line_width += item[1]
                line_height = max(line_height, item[2])
            elif kind == 'space':
                if line_width > 0:
                    line_width += item[1]
            elif kind == 'newline':
                total += line_height or default_line
                line_width, line_height = 0.0, 0.0
            elif kind == 'block':
                if line_width > 0:
                    total += line_height
                    line_width, line_height = 0.0, 0.0
                total += self.offset_height(item[1])
        if line_width > 0 or line_height > 0:
            total += line_height
        return total

    # -----------------------------------------------------------------
    # Heights
    # -----------------------------------------------------------------

    def _content_height(self, element: Tag) -> float:
        if element.name == 'tr':
            return max((self.offset_height(cell) for cell in self._cells(element)), default=0.0)
        if element.name in ROW_GROUP_TAGS:
            return sum(self.offset_height(row) for row in element.find_all('tr', recursive=False))
        if element.name == 'table':
            spacing = self._int_attr(element, 'cellspacing')
            rows = self._rows(element)
            total = spacing * (len(rows) + 1)
            for row in rows:
                cells = self._cells(row)
                row_height = max((self.offset_height(cell) for cell in cells), default=0.0)
                total += max(row_height, self._specified_height(row) or 0.0)
            return total
        padding = 0.0
        if element.name in CELL_TAGS:
            padding = 2 * self._int_attr(self._table_of(element), 'cellpadding')
        return self._flow_height(element, self.offset_width(element) - padding) + padding

    def offset_height(self, element: Tag) -> float:
        key = id(element)
        if key in self._height_cache:
            return self._height_cache[key]

        if self._hidden(element):
            height = 0.0
        elif element.name in ATOMIC_TAGS:
            height = self._atomic_size(element)[1]
        else:
            specified = self._specified_height(element)
            content = self._content_height(element)
            if specified is None:
                height = content
            elif element.name in CELL_TAGS + ('table',):
                height = max(specified, content)
            else:
                height = specified

        self._height_cache[key] = height
        return height

    def scroll_height(self, element: Tag) -> float:
        if self._hidden(element):
            return 0.0
        if element.name in ATOMIC_TAGS:
            return self.offset_height(element)
        return max(self.offset_height(element), self._content_height(element))
