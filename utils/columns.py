"""Column letter helpers"""

from openpyxl.utils import get_column_letter, column_index_from_string


def column_letter(index: int) -> str:
    """1-based column index to letters (1 -> A, 27 -> AA)"""
    return get_column_letter(index)


def column_index(letter: str) -> int:
    """Column letters to 1-based index (A -> 1, AA -> 27)"""
    return column_index_from_string(letter.upper())
