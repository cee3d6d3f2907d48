"""Stage 1: Structure Analysis - header rows, column groups and controls"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from core.interfaces import Stage
from core.models import SheetGrid, SpecialRows, AnswerColumn, ColumnGroup, StructureResult
from core.enums import AIType, GroupKind, THREE_TYPE_ORDER
from core.exceptions import StructureParseWarning
from utils.columns import column_letter
from utils.synonyms import (
    match_row_label, match_menu_label, is_three_type_label, parse_ai_type, ANSWER_LABEL_AI,
)
from config import settings
from .controls import DirectiveParser


logger = logging.getLogger(__name__)

DEFAULT_SPECIAL_ROWS = {"menu": 1, "ai": 2, "model": 3, "function": 4}


@dataclass
class _PendingGroup:
    """Group under construction while walking the menu row"""
    prompts: List[str]
    log: Optional[str] = None
    answers: List[Tuple[str, str]] = field(default_factory=list)  # (column, menu label)
    report: Optional[str] = None


class StructureAnalyzer(Stage[SheetGrid, StructureResult]):
    """Stage 1: Structure Analysis - Parse header rows into column groups"""

    @property
    def name(self) -> str:
        return "Structure Analysis"

    @property
    def stage_number(self) -> int:
        return 1

    def __init__(
        self,
        header_scan_rows: Optional[int] = None,
        max_prompt_columns: Optional[int] = None,
    ):
        self.header_scan_rows = header_scan_rows or settings.HEADER_SCAN_ROWS
        self.max_prompt_columns = max_prompt_columns or settings.MAX_PROMPT_COLUMNS
        self.directives = DirectiveParser(self.header_scan_rows)

    def validate_input(self, input_data: SheetGrid) -> bool:
        return isinstance(input_data, SheetGrid) and input_data.row_count > 0

    async def execute(self, input_data: SheetGrid) -> StructureResult:
        return self.analyze(input_data)

    def analyze(self, grid: SheetGrid) -> StructureResult:
        """Header rows, column groups and directives of a grid; never raises on bad layout"""
        warnings: List[StructureParseWarning] = []

        special_rows = self._find_special_rows(grid, warnings)
        groups = self._find_column_groups(grid, special_rows, warnings)
        controls = self.directives.collect(grid, special_rows)

        for warning in warnings:
            logger.warning(str(warning))

        logger.info(
            f"Structure: menu row {special_rows.menu_row}, "
            f"{len(groups)} column group(s), "
            f"{len(controls.rows)} row / {len(controls.columns)} column control(s)"
        )

        return StructureResult(
            special_rows=special_rows,
            column_groups=groups,
            controls=controls,
            warnings=[str(warning) for warning in warnings],
        )

    # ─────────────────────────────────────────────────────────
    # Header rows
    # ─────────────────────────────────────────────────────────

    def _find_special_rows(self, grid: SheetGrid, warnings: List[StructureParseWarning]) -> SpecialRows:
        found: Dict[str, int] = {}
        for row in range(1, min(self.header_scan_rows, grid.row_count) + 1):
            label = match_row_label(grid.cell("A", row))
            if label and label not in found:
                found[label] = row

        missing = [label for label in DEFAULT_SPECIAL_ROWS if label not in found]
        for label in missing:
            warnings.append(StructureParseWarning(
                f"'{label}' row not found in column A, using row {DEFAULT_SPECIAL_ROWS[label]}",
                row=DEFAULT_SPECIAL_ROWS[label],
                column="A",
            ))

        rows = {**DEFAULT_SPECIAL_ROWS, **found}
        return SpecialRows(
            menu_row=rows["menu"],
            ai_row=rows["ai"],
            model_row=rows["model"],
            function_row=rows["function"],
            missing=missing,
        )

    # ─────────────────────────────────────────────────────────
    # Column groups
    # ─────────────────────────────────────────────────────────

    def _find_column_groups(
        self,
        grid: SheetGrid,
        special_rows: SpecialRows,
        warnings: List[StructureParseWarning],
    ) -> List[ColumnGroup]:
        menu = grid.row(special_rows.menu_row)
        groups: List[ColumnGroup] = []
        pending: Optional[_PendingGroup] = None
        pending_log: Optional[str] = None

        def close():
            nonlocal pending
            if pending and pending.answers:
                groups.append(self._build_group(grid, special_rows, pending, warnings))
            elif pending:
                logger.debug(f"Prompt column {pending.prompts[0]} has no answer column, ignored")
            pending = None

        for index in range(1, len(menu) + 1):
            letter = column_letter(index)
            label = match_menu_label(menu[index - 1])

            if label == "log":
                close()
                pending_log = letter
            elif label and label.startswith("prompt"):
                if pending and not pending.answers and len(pending.prompts) < self.max_prompt_columns:
                    pending.prompts.append(letter)
                else:
                    close()
                    pending = _PendingGroup(prompts=[letter], log=pending_log)
                    pending_log = None
            elif label == "answer" or label in ANSWER_LABEL_AI:
                if pending:
                    pending.answers.append((letter, label))
                else:
                    warnings.append(StructureParseWarning(
                        f"Answer column {letter} has no prompt column", row=special_rows.menu_row, column=letter,
                    ))
            elif label == "reportify":
                if pending and pending.answers:
                    pending.report = letter
                    close()
                elif groups and groups[-1].report_column is None:
                    groups[-1].report_column = letter
                else:
                    warnings.append(StructureParseWarning(
                        f"Report column {letter} has no answer column", row=special_rows.menu_row, column=letter,
                    ))
            else:
                close()
                pending_log = None

        close()
        return groups

    def _build_group(
        self,
        grid: SheetGrid,
        special_rows: SpecialRows,
        pending: _PendingGroup,
        warnings: List[StructureParseWarning],
    ) -> ColumnGroup:
        prompt = pending.prompts[0]
        ai_cell = grid.cell(prompt, special_rows.ai_row)

        if is_three_type_label(ai_cell):
            if len(pending.answers) >= 3:
                kind = GroupKind.THREE_TYPE
                answers = self._three_type_answers(grid, special_rows, pending, warnings)
            else:
                warnings.append(StructureParseWarning(
                    f"3-type group at {prompt} has {len(pending.answers)} answer column(s), treated as single",
                    row=special_rows.ai_row, column=prompt,
                ))
                kind = GroupKind.SINGLE
                answers = self._single_answers(grid, special_rows, pending)
        else:
            kind = GroupKind.SINGLE
            answers = self._single_answers(grid, special_rows, pending)

        return ColumnGroup(
            group_id=f"{kind.value}_{prompt}",
            kind=kind,
            prompt_columns=list(pending.prompts),
            answer_columns=answers,
            report_column=pending.report,
            log_column=pending.log,
        )

    def _single_answers(
        self, grid: SheetGrid, special_rows: SpecialRows, pending: _PendingGroup
    ) -> List[AnswerColumn]:
        prompt = pending.prompts[0]
        group_ai = parse_ai_type(grid.cell(prompt, special_rows.ai_row)) or AIType.CHATGPT
        answers = []
        for column, label in pending.answers:
            ai_type = (
                ANSWER_LABEL_AI.get(label)
                or parse_ai_type(grid.cell(column, special_rows.ai_row))
                or group_ai
            )
            answers.append(AnswerColumn(
                column=column,
                ai_type=ai_type,
                model=grid.cell(prompt, special_rows.model_row) or grid.cell(column, special_rows.model_row),
                function=grid.cell(prompt, special_rows.function_row) or grid.cell(column, special_rows.function_row),
            ))
        return answers

    def _three_type_answers(
        self,
        grid: SheetGrid,
        special_rows: SpecialRows,
        pending: _PendingGroup,
        warnings: List[StructureParseWarning],
    ) -> List[AnswerColumn]:
        """
        Bind the three answer columns to ChatGPT, Claude and Gemini.

        Labels are read from the menu and AI rows. A label found elsewhere in
        the three-column window is accepted with a warning; a missing label
        falls back to the column's position.
        """
        prompt = pending.prompts[0]
        window = [column for column, _ in pending.answers[:3]]
        if len(pending.answers) > 3:
            warnings.append(StructureParseWarning(
                f"3-type group at {prompt} has extra answer columns, only {', '.join(window)} used",
                row=special_rows.menu_row, column=prompt,
            ))

        identified: Dict[AIType, str] = {}
        for column, label in pending.answers[:3]:
            ai_type = ANSWER_LABEL_AI.get(label) or parse_ai_type(grid.cell(column, special_rows.ai_row))
            if ai_type in THREE_TYPE_ORDER and ai_type not in identified:
                identified[ai_type] = column

        assigned: Dict[AIType, str] = {}
        for position, ai_type in enumerate(THREE_TYPE_ORDER):
            if ai_type in identified:
                assigned[ai_type] = identified[ai_type]
                if identified[ai_type] != window[position]:
                    warnings.append(StructureParseWarning(
                        f"{ai_type.display_name} answer of 3-type group at {prompt} "
                        f"found in {identified[ai_type]}, expected {window[position]}",
                        row=special_rows.ai_row, column=identified[ai_type],
                    ))

        unused = [column for column in window if column not in assigned.values()]
        for ai_type in THREE_TYPE_ORDER:
            if ai_type not in assigned:
                column = unused.pop(0)
                assigned[ai_type] = column
                warnings.append(StructureParseWarning(
                    f"{ai_type.display_name} label missing in 3-type group at {prompt}, using {column}",
                    row=special_rows.ai_row, column=column,
                ))

        answers = []
        for ai_type in THREE_TYPE_ORDER:
            column = assigned[ai_type]
            answers.append(AnswerColumn(
                column=column,
                ai_type=ai_type,
                model=grid.cell(column, special_rows.model_row) or grid.cell(prompt, special_rows.model_row),
                function=grid.cell(column, special_rows.function_row) or grid.cell(prompt, special_rows.function_row),
            ))
        return answers
