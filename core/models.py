"""Core data models for AutoAI"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Literal, Union, Annotated
from datetime import datetime, timezone
from openpyxl.utils import column_index_from_string
from .enums import (
    AIType, GroupKind, TaskType, ControlScope, ControlKind,
    ColumnState, OutcomeStatus
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─────────────────────────────────────────────────────────────
# Stage 0: Grid Reception
# ─────────────────────────────────────────────────────────────

class SpreadsheetContext(BaseModel):
    """Which sheet the run reads from and writes to"""
    spreadsheet_id: str
    sheet_gid: Optional[str] = None
    sheet_name: Optional[str] = None


class SheetGrid(BaseModel):
    """Raw 2D cell values, row 1 is values[0]"""
    values: list[list[str]] = []

    @property
    def row_count(self) -> int:
        return len(self.values)

    def row(self, row: int) -> list[str]:
        if row < 1 or row > len(self.values):
            return []
        return self.values[row - 1]

    def cell(self, column: str, row: int) -> str:
        """Cell text at a column letter and 1-based row, '' when out of range"""
        cells = self.row(row)
        index = column_index_from_string(column) - 1
        if index >= len(cells):
            return ""
        value = cells[index]
        return "" if value is None else str(value)


# ─────────────────────────────────────────────────────────────
# Stage 1: Structure Analysis
# ─────────────────────────────────────────────────────────────

class SpecialRows(BaseModel):
    """1-based row numbers of the header rows"""
    menu_row: int = 1
    ai_row: int = 2
    model_row: int = 3
    function_row: int = 4
    missing: list[str] = []  # Labels that fell back to defaults

    @property
    def last_row(self) -> int:
        return max(self.menu_row, self.ai_row, self.model_row, self.function_row)


class AnswerColumn(BaseModel):
    """Answer column bound to one AI"""
    column: str
    ai_type: AIType
    model: str = ""
    function: str = ""


class ColumnGroup(BaseModel):
    """Prompt column(s) plus their answer, log and report columns"""
    group_id: str
    kind: GroupKind
    prompt_columns: list[str]
    answer_columns: list[AnswerColumn] = []
    report_column: Optional[str] = None
    log_column: Optional[str] = None

    @property
    def answer_map(self) -> dict[AIType, str]:
        return {answer.ai_type: answer.column for answer in self.answer_columns}

    @property
    def columns(self) -> list[str]:
        """Every column owned by the group, left to right"""
        cols = []
        if self.log_column:
            cols.append(self.log_column)
        cols.extend(self.prompt_columns)
        cols.extend(answer.column for answer in self.answer_columns)
        if self.report_column:
            cols.append(self.report_column)
        return sorted(cols, key=column_index_from_string)

    @property
    def first_index(self) -> int:
        return column_index_from_string(self.columns[0])

    @property
    def last_index(self) -> int:
        return column_index_from_string(self.columns[-1])


class ControlDirective(BaseModel):
    """Typed row/column restriction parsed from sentinel text"""
    model_config = ConfigDict(frozen=True)

    scope: ControlScope
    kind: ControlKind
    index: int  # Row number, or 1-based column index
    source: Optional[str] = None  # A1 cell the directive was read from


class ControlSet(BaseModel):
    """All directives found in a sheet"""
    rows: list[ControlDirective] = []
    columns: list[ControlDirective] = []


class StructureResult(BaseModel):
    """Complete Stage 1 output"""
    special_rows: SpecialRows = SpecialRows()
    column_groups: list[ColumnGroup] = []
    controls: ControlSet = ControlSet()
    warnings: list[str] = []


# ─────────────────────────────────────────────────────────────
# Stage 2: Task Generation
# ─────────────────────────────────────────────────────────────

class GenerationInput(BaseModel):
    """Stage 2 input"""
    grid: SheetGrid
    structure: StructureResult


class TaskBase(BaseModel):
    """Fields shared by every task variant; tasks never change once built"""
    model_config = ConfigDict(frozen=True)

    id: str
    column: str
    row: int
    ai_type: AIType
    prompt_columns: list[str]
    group_id: str  # Fan-out unit: row + group kind + prompt column
    column_group: str  # ColumnGroup.group_id, the scheduling lane

    @property
    def cell(self) -> str:
        return f"{self.column}{self.row}"

    @property
    def lane_order(self) -> int:
        return column_index_from_string(self.prompt_columns[0])


class AiTask(TaskBase):
    """Send a prompt to one AI and write its answer"""
    task_type: Literal[TaskType.AI] = TaskType.AI
    prompt: str
    multi_ai: bool = False
    model: Optional[str] = None
    function: Optional[str] = None
    log_column: Optional[str] = None


class ReportTask(TaskBase):
    """Turn an already-written answer into a report link"""
    task_type: Literal[TaskType.REPORT] = TaskType.REPORT
    source_column: str


Task = Annotated[Union[AiTask, ReportTask], Field(discriminator="task_type")]


class TaskList(BaseModel):
    """Complete Stage 2 output"""
    tasks: list[Task] = []
    controls: ControlSet = ControlSet()
    skipped_rows: list[int] = []

    def statistics(self) -> dict:
        """Task counts by AI type and task type"""
        by_ai = {ai.value: 0 for ai in AIType}
        by_type = {task_type.value: 0 for task_type in TaskType}
        for task in self.tasks:
            by_ai[task.ai_type.value] += 1
            by_type[task.task_type.value] += 1
        return {"total": len(self.tasks), "by_ai": by_ai, "by_type": by_type}


# ─────────────────────────────────────────────────────────────
# Stage 3: Stream Processing
# ─────────────────────────────────────────────────────────────

class StreamOptions(BaseModel):
    """Per-run scheduler options"""
    test_mode: bool = False
    tab_id: Optional[int] = None  # Reuse an existing tab instead of opening windows


class ScreenBounds(BaseModel):
    """Primary display work area"""
    width: int
    height: int
    left: int = 0
    top: int = 0


class WindowBounds(BaseModel):
    """Placement of one window"""
    left: int
    top: int
    width: int
    height: int


class WindowHandle(BaseModel):
    """Opened browser window and its first tab"""
    window_id: int
    tab_id: int


class WindowSlot(BaseModel):
    """One of the fixed concurrent window positions"""
    position: int
    bound_column: str
    ai_type: AIType
    task_id: Optional[str] = None
    window_id: Optional[int] = None  # None while only reserved
    tab_id: Optional[int] = None
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def reserved(self) -> bool:
        return self.window_id is None


class PromptResponse(BaseModel):
    """Result of one prompt round trip in a tab"""
    success: bool
    response_text: str = ""
    error: Optional[str] = None
    url: Optional[str] = None
    model: Optional[str] = None


class TaskOutcome(BaseModel):
    """Completion event for one task"""
    task_id: str
    cell: str
    column_group: str
    status: OutcomeStatus
    response_text: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0
    persisted: bool = False
    started_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    written_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return self.status == OutcomeStatus.SUCCEEDED


class ColumnProgress(BaseModel):
    """Progress of one column group lane"""
    completed: int = 0
    total: int = 0
    percentage: int = 0
    current_row: Optional[int] = None
    state: ColumnState = ColumnState.IDLE


class StreamStatus(BaseModel):
    """Snapshot exposed to the host"""
    is_processing: bool = False
    active_windows: int = 0
    queue_length: int = 0
    per_column_progress: dict[str, ColumnProgress] = {}
    processed_cells: int = 0
    pending_cells: int = 0
    errored_cells: int = 0
    persistence_errors: int = 0
    written_cells: list[str] = []


class StreamResult(BaseModel):
    """Complete Stage 3 output"""
    success: bool
    processed_columns: list[str] = []
    total_windows: int = 0
    stopped: bool = False
    outcomes: list[TaskOutcome] = []


# ─────────────────────────────────────────────────────────────
# Exclusive control, logs and reports
# ─────────────────────────────────────────────────────────────

class ExclusiveMarker(BaseModel):
    """Parsed in-cell claim"""
    raw: str
    prefix: str
    timestamp: Optional[datetime] = None  # Aware datetime
    worker_id: Optional[str] = None
    feature_name: Optional[str] = None
    legacy: bool = False

    @property
    def valid(self) -> bool:
        return self.timestamp is not None and not self.legacy


class LogEntry(BaseModel):
    """One AI section of a log cell"""
    ai_type: AIType
    model: str = ""
    function: str = ""
    url: str = ""
    sent_at: datetime
    written_at: datetime


class ReportRequest(BaseModel):
    """Material handed to a ReportBuilder"""
    cell: str
    row: int
    ai_type: AIType
    source_column: str
    prompt: str = ""
    answer: str
