import asyncio
from typing import Dict, List, Optional, Set, Tuple

import pytest
from openpyxl.utils import range_boundaries

from core.interfaces import SheetsGateway, WindowGateway, TabMessenger, AutomationContext
from core.models import (
    SpreadsheetContext, SheetGrid, WindowBounds, WindowHandle, ScreenBounds, PromptResponse,
)
from core.exceptions import PersistenceError, WindowCreationError
from config import settings


HEADER = [
    ["メニュー", "", "プロンプト", "回答"],
    ["AI", "", "ChatGPT", ""],
    ["モデル", "", "", ""],
    ["機能", "", "", ""],
]


def sheet_rows(header: List[List[str]], work_rows: List[List[str]]) -> List[List[str]]:
    return [list(row) for row in header] + [list(row) for row in work_rows]


class FakeSheets(SheetsGateway):
    """In-memory sheet that records every write"""

    def __init__(self, rows: List[List[str]], fail_cells: Optional[Set[str]] = None):
        self.cells: Dict[Tuple[int, int], str] = {}
        for row_index, row in enumerate(rows, start=1):
            for column_index, value in enumerate(row, start=1):
                if value != "":
                    self.cells[(column_index, row_index)] = value
        self.fail_cells = fail_cells or set()
        self.writes: List[Tuple[str, str]] = []

    def value(self, a1_cell: str) -> str:
        column, row, _, _ = range_boundaries(a1_cell)
        return self.cells.get((column, row), "")

    def grid(self) -> SheetGrid:
        max_row = max(row for _, row in self.cells)
        max_column = max(column for column, _ in self.cells)
        return SheetGrid(values=[
            [self.cells.get((column, row), "") for column in range(1, max_column + 1)]
            for row in range(1, max_row + 1)
        ])

    def answer_writes(self, prefix: str = "") -> List[str]:
        """Cells written with something other than a claim marker, in order"""
        return [
            cell for cell, value in self.writes
            if not value.startswith(settings.MARKER_PREFIX) and value.startswith(prefix)
        ]

    async def read_range(self, spreadsheet_id, a1_range, sheet_gid=None):
        min_col, min_row, max_col, max_row = range_boundaries(a1_range)
        max_row = min(max_row, max((row for _, row in self.cells), default=0))
        max_col = min(max_col, max((column for column, _ in self.cells), default=0))
        return [
            [self.cells.get((column, row), "") for column in range(min_col, max_col + 1)]
            for row in range(min_row, max_row + 1)
        ]

    async def write_cell(self, spreadsheet_id, a1_cell, value, sheet_gid=None):
        if a1_cell in self.fail_cells:
            raise PersistenceError(f"quota exceeded for {a1_cell}", a1_cell)
        column, row, _, _ = range_boundaries(a1_cell)
        self.cells[(column, row)] = value
        self.writes.append((a1_cell, value))


class FakeBrowser(WindowGateway, TabMessenger):
    """Windows and tabs without a browser; answers every prompt after `delay` seconds"""

    def __init__(
        self,
        delay: float = 0.01,
        fail_prompts: Optional[Set[str]] = None,
        fail_open: bool = False,
    ):
        self.delay = delay
        self.fail_prompts = fail_prompts or set()
        self.fail_open = fail_open
        self.open: Dict[int, str] = {}
        self.opened: List[str] = []
        self.closed: List[int] = []
        self.sent: List[Tuple[int, str]] = []
        self.max_open = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self._next_id = 100

    async def open_window(self, url: str, bounds: WindowBounds) -> WindowHandle:
        await asyncio.sleep(0)
        if self.fail_open:
            raise WindowCreationError(f"popup blocked for {url}")
        self._next_id += 1
        self.open[self._next_id] = url
        self.opened.append(url)
        self.max_open = max(self.max_open, len(self.open))
        return WindowHandle(window_id=self._next_id, tab_id=self._next_id)

    async def close_window(self, window_id: int) -> None:
        self.open.pop(window_id, None)
        self.closed.append(window_id)

    async def query_screen_bounds(self) -> ScreenBounds:
        return ScreenBounds(width=1920, height=1080)

    async def is_ready(self, tab_id: int) -> bool:
        return True

    async def send_prompt(self, tab_id, prompt, timeout, model=None, function=None) -> PromptResponse:
        self.sent.append((tab_id, prompt))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        if prompt in self.fail_prompts:
            return PromptResponse(success=False, error="response element not found")
        return PromptResponse(
            success=True,
            response_text=f"answer: {prompt}",
            url=self.open.get(tab_id, ""),
            model=model,
        )


@pytest.fixture
def spreadsheet() -> SpreadsheetContext:
    return SpreadsheetContext(spreadsheet_id="sheet-1", sheet_gid="0")


@pytest.fixture
def make_context():
    def _make(sheets: FakeSheets, browser: Optional[FakeBrowser] = None) -> AutomationContext:
        return AutomationContext(sheets=sheets, windows=browser, tabs=browser)
    return _make
