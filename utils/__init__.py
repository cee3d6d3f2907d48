"""Utility modules"""

from .columns import column_letter, column_index
from .fuzzy import fuzzy_match_label
from .synonyms import match_row_label, match_menu_label, normalize_feature, normalize_text

__all__ = [
    "column_letter",
    "column_index",
    "fuzzy_match_label",
    "match_row_label",
    "match_menu_label",
    "normalize_feature",
    "normalize_text",
]
