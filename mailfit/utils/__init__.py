"""
Utilities Package
"""

from .css import (
    StyleSheet,
    CssRule,
    get_style,
    set_style,
    parse_length,
    iter_stylesheets,
)
from .debounce import Debouncer

__all__ = [
    'StyleSheet',
    'CssRule',
    'get_style',
    'set_style',
    'parse_length',
    'iter_stylesheets',
    'Debouncer',
]
