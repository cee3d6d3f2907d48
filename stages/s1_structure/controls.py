"""Row and column control directives parsed from sentinel text"""

import logging
import re
from typing import List, Optional, Pattern, Tuple

from core.enums import ControlKind, ControlScope
from core.models import AnswerColumn, ColumnGroup, ControlDirective, ControlSet, SheetGrid, SpecialRows
from utils.columns import column_index, column_letter
from config import settings


logger = logging.getLogger(__name__)


# Phrases that refer to the cell's own row or column
ROW_PHRASES: List[Tuple[ControlKind, List[str]]] = [
    (ControlKind.ONLY, ["only this row", "この行のみ処理", "この行だけ処理"]),
    (ControlKind.FROM, ["from this row", "この行から処理"]),
    (ControlKind.UNTIL, ["stop after this row", "この行の処理後に停止"]),
]

COLUMN_PHRASES: List[Tuple[ControlKind, List[str]]] = [
    (ControlKind.ONLY, ["only this column", "この列のみ処理", "この列だけ処理"]),
    (ControlKind.FROM, ["from this column", "この列から処理"]),
    (ControlKind.UNTIL, ["stop after this column", "この列の処理後に停止"]),
]

# Phrases naming an explicit target (5行のみ処理, only column P, ...)
ROW_TARGET_PATTERNS: List[Tuple[ControlKind, Pattern]] = [
    (ControlKind.ONLY, re.compile(r"(\d+)行(?:のみ|だけ)処理")),
    (ControlKind.ONLY, re.compile(r"only row (\d+)", re.IGNORECASE)),
    (ControlKind.FROM, re.compile(r"(\d+)行から処理")),
    (ControlKind.FROM, re.compile(r"from row (\d+)", re.IGNORECASE)),
    (ControlKind.UNTIL, re.compile(r"(\d+)行の処理後に停止")),
    (ControlKind.UNTIL, re.compile(r"stop after row (\d+)", re.IGNORECASE)),
]

COLUMN_TARGET_PATTERNS: List[Tuple[ControlKind, Pattern]] = [
    (ControlKind.ONLY, re.compile(r"([A-Z]{1,3})列(?:のみ|だけ)処理")),
    (ControlKind.ONLY, re.compile(r"only column ([A-Za-z]{1,3})\b", re.IGNORECASE)),
    (ControlKind.FROM, re.compile(r"([A-Z]{1,3})列から処理")),
    (ControlKind.FROM, re.compile(r"from column ([A-Za-z]{1,3})\b", re.IGNORECASE)),
    (ControlKind.UNTIL, re.compile(r"([A-Z]{1,3})列の処理後に停止")),
    (ControlKind.UNTIL, re.compile(r"stop after column ([A-Za-z]{1,3})\b", re.IGNORECASE)),
]

# Whole-cell ranges: "5-10", "5〜10行", "P-R", "P～R列"
ROW_RANGE_RE = re.compile(r"^(\d+)\s*[-〜～~]\s*(\d+)\s*行?$")
COLUMN_RANGE_RE = re.compile(r"^([A-Z]{1,3})\s*[-〜～~]\s*([A-Z]{1,3})\s*列?$")


class DirectiveParser:
    """Turns sentinel strings into typed ControlDirectives"""

    def __init__(self, header_scan_rows: Optional[int] = None):
        self.header_scan_rows = header_scan_rows or settings.HEADER_SCAN_ROWS

    def parse_row_text(self, text: str, row: int, source: Optional[str] = None) -> List[ControlDirective]:
        """Row directives in one cell; `row` is the cell's own row"""
        return self._parse(
            text, ControlScope.ROW, row, source,
            ROW_PHRASES, ROW_TARGET_PATTERNS, ROW_RANGE_RE, int,
        )

    def parse_column_text(self, text: str, column: int, source: Optional[str] = None) -> List[ControlDirective]:
        """Column directives in one cell; `column` is the cell's own 1-based column"""
        return self._parse(
            text, ControlScope.COLUMN, column, source,
            COLUMN_PHRASES, COLUMN_TARGET_PATTERNS, COLUMN_RANGE_RE, column_index,
        )

    def _parse(self, text, scope, own_index, source, phrases, patterns, range_re, to_index):
        if not text:
            return []
        value = str(text).strip()
        lowered = value.lower()

        for kind, candidates in phrases:
            if any(phrase in lowered for phrase in candidates):
                return [ControlDirective(scope=scope, kind=kind, index=own_index, source=source)]

        for kind, pattern in patterns:
            match = pattern.search(value)
            if match:
                return [ControlDirective(scope=scope, kind=kind, index=to_index(match.group(1)), source=source)]

        match = range_re.match(value)
        if match:
            start, end = sorted((to_index(match.group(1)), to_index(match.group(2))))
            return [
                ControlDirective(scope=scope, kind=ControlKind.FROM, index=start, source=source),
                ControlDirective(scope=scope, kind=ControlKind.UNTIL, index=end, source=source),
            ]

        return []

    def collect(self, grid: SheetGrid, special_rows: SpecialRows) -> ControlSet:
        """
        Scan a grid for directives.

        Column directives come from every cell of the top control rows.
        Row directives come from columns A and B: in work rows any form is
        accepted, in the control rows only explicit targets and ranges,
        since "this row" there would point at a header.
        """
        rows: List[ControlDirective] = []
        columns: List[ControlDirective] = []
        scan_rows = min(self.header_scan_rows, grid.row_count)

        for row in range(1, scan_rows + 1):
            if grid.cell("A", row).strip().isdigit():
                # Numbered rows are work rows even inside the scan window
                continue
            for offset, value in enumerate(grid.row(row)):
                if not value:
                    continue
                index = offset + 1
                source = f"{column_letter(index)}{row}"
                found = self.parse_column_text(value, index, source)
                if found:
                    logger.info(f"Column control at {source}: {[d.kind.value for d in found]}")
                    columns.extend(found)
                elif index <= 2 and not _is_self_phrase(value, ROW_PHRASES):
                    explicit = self.parse_row_text(value, row, source)
                    if explicit:
                        logger.info(f"Row control at {source}: {[d.kind.value for d in explicit]}")
                        rows.extend(explicit)

        for row in range(special_rows.last_row + 1, grid.row_count + 1):
            for index in (1, 2):
                value = grid.cell(column_letter(index), row)
                if not value:
                    continue
                source = f"{column_letter(index)}{row}"
                found = self.parse_row_text(value, row, source)
                if found:
                    logger.info(f"Row control at {source}: {[d.kind.value for d in found]}")
                    rows.extend(found)

        return ControlSet(rows=_dedupe(rows), columns=_dedupe(columns))


def _is_self_phrase(text: str, phrases) -> bool:
    lowered = str(text).lower()
    return any(phrase in lowered for _, candidates in phrases for phrase in candidates)


def _dedupe(directives: List[ControlDirective]) -> List[ControlDirective]:
    seen = set()
    unique = []
    for directive in directives:
        key = (directive.scope, directive.kind, directive.index)
        if key not in seen:
            seen.add(key)
            unique.append(directive)
    return unique


def _by_kind(directives: List[ControlDirective], kind: ControlKind) -> List[int]:
    return [directive.index for directive in directives if directive.kind == kind]


def is_row_selected(controls: ControlSet, row: int) -> bool:
    """Only directives win outright; otherwise the row must sit inside [From, Until]"""
    only = _by_kind(controls.rows, ControlKind.ONLY)
    if only:
        return row in only

    froms = _by_kind(controls.rows, ControlKind.FROM)
    untils = _by_kind(controls.rows, ControlKind.UNTIL)
    if froms and row < max(froms):
        return False
    if untils and row > min(untils):
        return False
    return True


def select_answer_columns(controls: ControlSet, group: ColumnGroup) -> List[AnswerColumn]:
    """
    Answer columns of a group that column directives leave in play.

    An empty list means the whole group is skipped. Until is global: every
    group starting right of the stop column is dropped.
    """
    answers = list(group.answer_columns)
    first, last = group.first_index, group.last_index

    only = _by_kind(controls.columns, ControlKind.ONLY)
    if only:
        hits = [index for index in only if first <= index <= last]
        if not hits:
            return []
        targeted = [answer for answer in answers if column_index(answer.column) in hits]
        return targeted or answers

    froms = _by_kind(controls.columns, ControlKind.FROM)
    if froms and last < max(froms):
        return []

    untils = _by_kind(controls.columns, ControlKind.UNTIL)
    if untils:
        stop = min(untils)
        if first > stop:
            return []
        if stop <= last:
            answers = [answer for answer in answers if column_index(answer.column) <= stop] or answers
    return answers
