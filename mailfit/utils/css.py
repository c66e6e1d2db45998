"""
CSS Utilities Module

Inline style access, CSS length parsing and a mutable view over
document <style> sheets.

Inline styles and stylesheet text are parsed with tinycss2, the CSS
parser WeasyPrint is built on.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple, Union

import tinycss2
from bs4 import BeautifulSoup, Tag

logger = logging.getLogger(__name__)

# Leading number the way parseFloat/parseInt read it: "12.5px" -> 12.5
_NUMBER_RE = re.compile(r'^\s*([+-]?(?:\d+\.?\d*|\.\d+))\s*([a-zA-Z%]*)')
_SCALE_RE = re.compile(r'scale\(\s*([+-]?[\d.]+)\s*(?:,\s*([+-]?[\d.]+)\s*)?\)', re.IGNORECASE)

# Absolute lengths in CSS px
PX_PER_UNIT = {
    'px': 1.0,
    'pt': 96 / 72,
    'pc': 16.0,
    'in': 96.0,
    'cm': 37.8,
    'mm': 3.78,
}

# Declarations are kept as {lower_name: (value, important)} in source order
Declarations = Dict[str, Tuple[str, bool]]


def format_number(value: float) -> str:
    """Format a float the way it reads in CSS ("12", "22.5")."""
    value = round(value, 4)
    if value == int(value):
        return str(int(value))
    return f"{value:.4f}".rstrip('0').rstrip('.')


def parse_length(value: str) -> Tuple[float, str]:
    """
    Split a CSS length into number and unit.

    Args:
        value: CSS value such as "14px", "1.2em", "150%" or "3"

    Returns:
        (number, unit) with the unit lower-cased ('' for unitless)

    Raises:
        ValueError: if the value does not start with a number
    """
    match = _NUMBER_RE.match(value or '')
    if not match:
        raise ValueError(f"Not a CSS length: {value!r}")
    return float(match.group(1)), match.group(2).lower()


def leading_int(value: str) -> Optional[int]:
    """parseInt semantics: leading integer or None."""
    try:
        number, _ = parse_length(value)
    except ValueError:
        return None
    return int(number)


def absolute_px(value: str) -> Optional[float]:
    """Convert an absolute CSS length to px, None for relative/unknown units."""
    try:
        number, unit = parse_length(value)
    except ValueError:
        return None
    if unit == '' and number == 0:
        return 0.0
    factor = PX_PER_UNIT.get(unit)
    if factor is None:
        return None
    return number * factor


def parse_transform_scale(transform: str) -> Tuple[float, float]:
    """
    Read the (x, y) factors of a scale() transform.

    Returns (1.0, 1.0) for an empty or "none" transform.

    Raises:
        ValueError: if a non-empty transform has no readable scale()
    """
    transform = (transform or '').strip()
    if not transform or transform.lower() == 'none':
        return 1.0, 1.0
    match = _SCALE_RE.search(transform)
    if not match:
        raise ValueError(f"Unparsable transform: {transform!r}")
    x = float(match.group(1))
    y = float(match.group(2)) if match.group(2) else x
    return x, y


# ---------------------------------------------------------------------------
# Declarations
# ---------------------------------------------------------------------------

def parse_declarations(text: str) -> Declarations:
    """Parse a declaration block ("color: red; font-size: 12px")."""
    declarations: Declarations = {}
    if not text:
        return declarations
    nodes = tinycss2.parse_declaration_list(text, skip_comments=True, skip_whitespace=True)
    for node in nodes:
        if node.type != 'declaration':
            continue
        value = tinycss2.serialize(node.value).strip()
        # A later declaration wins, unless the earlier one is !important
        previous = declarations.get(node.lower_name)
        if previous and previous[1] and not node.important:
            continue
        declarations.pop(node.lower_name, None)
        declarations[node.lower_name] = (value, node.important)
    return declarations


def serialize_declarations(declarations: Declarations) -> str:
    parts = []
    for name, (value, important) in declarations.items():
        suffix = " !important" if important else ""
        parts.append(f"{name}: {value}{suffix}")
    return "; ".join(parts) + (";" if parts else "")


def get_style(tag: Tag, prop: str) -> str:
    """Inline style value of a property, '' when not set."""
    style = tag.get('style')
    if not style:
        return ''
    return parse_declarations(style).get(prop, ('', False))[0]


def get_style_priority(tag: Tag, prop: str) -> str:
    style = tag.get('style')
    if not style:
        return ''
    return 'important' if parse_declarations(style).get(prop, ('', False))[1] else ''


def set_style(tag: Tag, prop: str, value: str, priority: Optional[str] = None):
    """
    Set (or remove, when value is empty) an inline style property.

    Args:
        tag: Element to modify
        prop: CSS property name
        value: New value, '' removes the property
        priority: 'important', '' or None to keep the current priority
    """
    declarations = parse_declarations(tag.get('style', ''))
    if priority is None:
        priority = 'important' if declarations.get(prop, ('', False))[1] else ''
    if value:
        declarations[prop] = (value, priority == 'important')
    else:
        declarations.pop(prop, None)
    serialized = serialize_declarations(declarations)
    if serialized:
        tag['style'] = serialized
    elif tag.has_attr('style'):
        del tag['style']


def has_class(tag: Tag, name: str) -> bool:
    return name in (tag.get('class') or [])


def add_class(tag: Tag, name: str):
    classes = list(tag.get('class') or [])
    if name not in classes:
        classes.append(name)
    tag['class'] = classes


# ---------------------------------------------------------------------------
# Stylesheets
# ---------------------------------------------------------------------------

@dataclass
class CssRule:
    """A style rule whose declarations can be edited in place"""
    selector: str
    declarations: Declarations = field(default_factory=dict)

    def get(self, prop: str) -> str:
        return self.declarations.get(prop, ('', False))[0]

    def priority(self, prop: str) -> str:
        return 'important' if self.declarations.get(prop, ('', False))[1] else ''

    def set(self, prop: str, value: str, priority: Optional[str] = None):
        if priority is None:
            priority = self.priority(prop)
        if value:
            self.declarations[prop] = (value, priority == 'important')
        else:
            self.declarations.pop(prop, None)

    def serialize(self) -> str:
        return f"{self.selector} {{ {serialize_declarations(self.declarations)} }}"


@dataclass
class _GroupBlock:
    """@media / @supports block; children are rules, nested groups or verbatim at-rules"""
    prelude: str
    children: List[Union[CssRule, '_GroupBlock', str]]

    def serialize(self) -> str:
        inner = "\n".join(child if isinstance(child, str) else child.serialize() for child in self.children)
        return f"{self.prelude} {{\n{inner}\n}}"


class StyleSheet:
    """
    Mutable view over one <style> element.

    Style rules, including the ones nested inside grouping at-rules such
    as @media, are exposed as CssRule objects. Other at-rules are kept
    verbatim. commit() writes the sheet back to the element.

    A sheet with parse errors cannot be written back without losing the
    unparsable part; lossless is False for such sheets.
    """

    GROUPING_AT_RULES = ('media', 'supports', 'document')

    def __init__(self, element: Tag):
        self.element = element
        self.lossless = True
        self._blocks: List[Union[CssRule, _GroupBlock, str]] = self._parse_blocks(
            tinycss2.parse_stylesheet(self.text, skip_comments=True, skip_whitespace=True)
        )

    @property
    def text(self) -> str:
        return str(self.element.string or self.element.get_text() or '')

    def _parse_blocks(self, nodes) -> List[Union[CssRule, _GroupBlock, str]]:
        blocks: List[Union[CssRule, _GroupBlock, str]] = []
        for node in nodes:
            if node.type == 'qualified-rule':
                blocks.append(self._to_rule(node))
            elif node.type == 'at-rule' and node.lower_at_keyword in self.GROUPING_AT_RULES and node.content is not None:
                nested = tinycss2.parse_rule_list(node.content, skip_comments=True, skip_whitespace=True)
                prelude = f"@{node.at_keyword} {tinycss2.serialize(node.prelude).strip()}"
                blocks.append(_GroupBlock(prelude=prelude, children=self._parse_blocks(nested)))
            elif node.type == 'at-rule':
                blocks.append(node.serialize())
            elif node.type == 'error':
                self.lossless = False
                logger.debug(f"Unparsable CSS in stylesheet: {node.message}")
        return blocks

    def _to_rule(self, node) -> CssRule:
        selector = tinycss2.serialize(node.prelude).strip()
        content = tinycss2.serialize(node.content)
        for item in tinycss2.parse_declaration_list(content, skip_comments=True, skip_whitespace=True):
            if item.type != 'declaration':
                self.lossless = False
        return CssRule(selector=selector, declarations=parse_declarations(content))

    @staticmethod
    def _walk(blocks, prelude: Optional[str]) -> Iterator[Tuple[CssRule, Optional[str]]]:
        for block in blocks:
            if isinstance(block, CssRule):
                yield block, prelude
            elif isinstance(block, _GroupBlock):
                inner = block.prelude if prelude is None else f"{prelude} and {block.prelude}"
                yield from StyleSheet._walk(block.children, inner)

    @property
    def rules(self) -> List[CssRule]:
        return [rule for rule, _ in self._walk(self._blocks, None)]

    def style_rules(self) -> List[Tuple[CssRule, Optional[str]]]:
        """Rules paired with the preludes of their grouping at-rules, if any."""
        return list(self._walk(self._blocks, None))

    def serialize(self) -> str:
        parts = []
        for block in self._blocks:
            parts.append(block if isinstance(block, str) else block.serialize())
        return "\n".join(parts)

    def commit(self):
        self.element.string = self.serialize()


def document_of(node) -> Optional[BeautifulSoup]:
    """Walk up to the BeautifulSoup object owning a node."""
    while node is not None and not isinstance(node, BeautifulSoup):
        node = node.parent
    return node


def iter_stylesheets(document: BeautifulSoup) -> List[StyleSheet]:
    """All <style> sheets of a document, in document order."""
    sheets = []
    for element in document.find_all('style'):
        try:
            sheets.append(StyleSheet(element))
        except (ValueError, TypeError) as e:
            # Stylesheet access denied / unreadable: skip that sheet only
            logger.warning(f"Could not read stylesheet: {e}")
    return sheets
