"""Stage 1: Structure Analysis"""

from .analyzer import StructureAnalyzer
from .controls import DirectiveParser, is_row_selected, select_answer_columns

__all__ = ["StructureAnalyzer", "DirectiveParser", "is_row_selected", "select_answer_columns"]
