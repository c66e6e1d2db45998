"""
Text Wrap Module

Inserts soft-wrap points (<wbr>) into long unbroken link text and text
runs so URLs and tokens wider than the viewport can break.
"""

import re
import logging
from typing import List, Optional

from bs4 import BeautifulSoup, Tag
from bs4.element import NavigableString

from .constants import MAX_UNBROKEN_CHARS
from .layout import is_text
from .utils.css import document_of

logger = logging.getLogger(__name__)

SOFT_BREAK_TAG = "wbr"
_RAW_TEXT_PARENTS = ('script', 'style')


def _long_word_re(max_length: int):
    return re.compile(r'\s*\S{%d,}\s*' % max_length)


def split_chunks(text: str, max_length: int = MAX_UNBROKEN_CHARS) -> List[str]:
    """Cut text into consecutive pieces of at most max_length characters."""
    return [text[i:i + max_length] for i in range(0, len(text), max_length)]


def _new_break(soup: Optional[BeautifulSoup]) -> Tag:
    if soup is None:
        soup = BeautifulSoup("", 'html.parser')
    return soup.new_tag(SOFT_BREAK_TAG)


def is_link_node(node) -> bool:
    return isinstance(node, Tag) and node.name == 'a'


def is_wrappable_text(node) -> bool:
    """Character data outside script/style."""
    if not is_text(node):
        return False
    parent = node.parent
    return parent is not None and parent.name not in _RAW_TEXT_PARENTS


def text_node_over_length(node, max_length: int = MAX_UNBROKEN_CHARS) -> bool:
    value = str(node)
    if len(value) <= max_length:
        return False
    return _long_word_re(max_length).search(value) is not None


def link_is_plain_text(link: Tag) -> bool:
    """The link's rendered text equals its markup (a single text child)."""
    contents = link.contents
    if len(contents) != 1 or not is_text(contents[0]):
        return False
    return link.decode_contents() == link.get_text()


def wrap_link(link: Tag, soup: Optional[BeautifulSoup], max_length: int = MAX_UNBROKEN_CHARS) -> bool:
    text = link.get_text()
    if len(text) <= max_length or not link_is_plain_text(link):
        return False
    link.clear()
    for chunk in split_chunks(text, max_length):
        link.append(NavigableString(chunk))
        link.append(_new_break(soup))
    return True


def wrap_text_node(node: NavigableString, soup: Optional[BeautifulSoup], max_length: int = MAX_UNBROKEN_CHARS) -> int:
    """
    Replace a text node with <=max_length chunks separated by <wbr>.

    The chunks take the node's place in the tree. Leading and trailing
    whitespace is trimmed.

    Returns:
        Number of chunks emitted
    """
    text = str(node).strip()
    current = node
    chunks = split_chunks(text, max_length)
    for chunk in chunks:
        piece = NavigableString(chunk)
        current.insert_after(piece)
        marker = _new_break(soup)
        piece.insert_after(marker)
        current = marker
    node.extract()
    return len(chunks)


def fix_long_url_and_text(root: Tag, max_length: int = MAX_UNBROKEN_CHARS) -> int:
    """
    Make long unbroken link text and text runs breakable.

    Traversal order is snapshotted before any insertion, so nodes created
    here are never revisited and nodes removed here are skipped.

    Args:
        root: Content root
        max_length: Longest run left without a break opportunity

    Returns:
        Number of links and text nodes that were re-segmented
    """
    soup = document_of(root)
    nodes = list(root.descendants)
    changed = 0

    for node in nodes:
        if node.parent is None:
            # Dropped by an earlier link rebuild
            continue
        if is_link_node(node):
            if wrap_link(node, soup, max_length):
                changed += 1
        elif is_wrappable_text(node) and text_node_over_length(node, max_length):
            wrap_text_node(node, soup, max_length)
            changed += 1

    if changed:
        logger.debug(f"Inserted soft wraps into {changed} node(s)")
    return changed


def dewrap(element: Tag) -> str:
    """Text of an element with the soft-wrap markers ignored."""
    return "".join(str(node) for node in element.descendants if is_text(node))
