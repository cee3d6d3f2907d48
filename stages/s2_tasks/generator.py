"""Stage 2: Task Generation - derive the work list from grid and structure"""

import hashlib
import logging
from typing import List, Optional

from core.interfaces import Stage
from core.models import (
    GenerationInput, TaskList, SheetGrid, StructureResult, ColumnGroup, AiTask, ReportTask,
)
from core.enums import GroupKind
from stages.s1_structure.controls import is_row_selected, select_answer_columns
from utils.synonyms import special_model, special_operation
from config import settings
from .answer_filter import AnswerFilter


logger = logging.getLogger(__name__)


def task_id(cell: str, prompt_columns: List[str], prompt: str) -> str:
    """Stable id: regenerating from the same grid yields the same id"""
    digest = hashlib.sha1(
        "|".join([cell, ",".join(prompt_columns), prompt]).encode("utf-8")
    ).hexdigest()
    return f"{cell}_{digest[:8]}"


class TaskGenerator(Stage[GenerationInput, TaskList]):
    """Stage 2: Task Generation - One task per unanswered (answer column, row)"""

    @property
    def name(self) -> str:
        return "Task Generation"

    @property
    def stage_number(self) -> int:
        return 2

    def __init__(
        self,
        answer_filter: Optional[AnswerFilter] = None,
        require_row_number: Optional[bool] = None,
    ):
        self.answer_filter = answer_filter or AnswerFilter()
        self.require_row_number = (
            settings.WORK_ROW_REQUIRE_NUMBER if require_row_number is None else require_row_number
        )

    def validate_input(self, input_data: GenerationInput) -> bool:
        return isinstance(input_data, GenerationInput)

    async def execute(self, input_data: GenerationInput) -> TaskList:
        return self.generate(input_data.grid, input_data.structure)

    def work_rows(self, grid: SheetGrid, structure: StructureResult) -> List[int]:
        """Rows below the header rows that carry work"""
        rows = []
        for row in range(structure.special_rows.last_row + 1, grid.row_count + 1):
            if self.require_row_number:
                marker = grid.cell("A", row).strip()
                if marker.isdigit() and int(marker) > 0:
                    rows.append(row)
            elif any(str(value).strip() for value in grid.row(row) if value is not None):
                rows.append(row)
        return rows

    def generate(self, grid: SheetGrid, structure: StructureResult) -> TaskList:
        """Columns in ascending order, rows ascending within each column group"""
        controls = structure.controls
        rows = self.work_rows(grid, structure)
        selected_rows = [row for row in rows if is_row_selected(controls, row)]
        skipped_rows = [row for row in rows if row not in selected_rows]
        if skipped_rows:
            logger.debug(f"Rows excluded by row controls: {skipped_rows}")

        tasks = []
        groups = sorted(structure.column_groups, key=lambda group: group.first_index)
        for group in groups:
            answers = select_answer_columns(controls, group)
            if not answers:
                logger.debug(f"Column group {group.group_id} excluded by column controls")
                continue
            for row in selected_rows:
                tasks.extend(self._row_tasks(grid, group, answers, row))

        task_list = TaskList(tasks=tasks, controls=controls, skipped_rows=skipped_rows)
        stats = task_list.statistics()
        logger.info(
            f"Generated {stats['total']} task(s): "
            + ", ".join(f"{name}={count}" for name, count in stats["by_ai"].items() if count)
            + f" (report={stats['by_type']['report']})"
        )
        return task_list

    def _row_tasks(self, grid: SheetGrid, group: ColumnGroup, answers, row: int) -> list:
        fragments = [grid.cell(column, row).strip() for column in group.prompt_columns]
        prompt = "\n".join(fragment for fragment in fragments if fragment)
        if not prompt:
            return []

        model_override = special_model(grid.cell("A", row)) or special_model(grid.cell("B", row))
        function_override = special_operation(grid.cell("A", row)) or special_operation(grid.cell("B", row))

        tasks = []
        for answer in answers:
            function = function_override or answer.function or None
            value = grid.cell(answer.column, row)
            if self.answer_filter.is_answered(value, function):
                logger.debug(f"{answer.column}{row} already answered, skipped")
                continue
            cell = f"{answer.column}{row}"
            tasks.append(AiTask(
                id=task_id(cell, group.prompt_columns, prompt),
                column=answer.column,
                row=row,
                ai_type=answer.ai_type,
                prompt_columns=list(group.prompt_columns),
                group_id=f"group_row{row}_{group.kind.value}_{group.prompt_columns[0]}",
                column_group=group.group_id,
                prompt=prompt,
                multi_ai=group.kind == GroupKind.THREE_TYPE,
                model=model_override or answer.model or None,
                function=function,
                log_column=group.log_column,
            ))

        report = self._report_task(grid, group, row, prompt)
        if report:
            tasks.append(report)
        return tasks

    def _report_task(self, grid: SheetGrid, group: ColumnGroup, row: int, prompt: str) -> Optional[ReportTask]:
        """Report from the first answer column, once it holds an answer and the report cell is empty"""
        if not group.report_column or not group.answer_columns:
            return None
        source = group.answer_columns[0]
        if not self.answer_filter.has_real_answer(grid.cell(source.column, row)):
            return None
        if grid.cell(group.report_column, row).strip():
            return None

        cell = f"{group.report_column}{row}"
        return ReportTask(
            id=task_id(cell, group.prompt_columns, prompt),
            column=group.report_column,
            row=row,
            ai_type=source.ai_type,
            prompt_columns=list(group.prompt_columns),
            group_id=f"group_row{row}_{GroupKind.REPORT.value}_{group.report_column}",
            column_group=group.group_id,
            source_column=source.column,
        )
