"""Stage 0: Grid Reception - read the sheet through the SheetsGateway"""

import logging
from typing import Optional

from core.interfaces import Stage, SheetsGateway
from core.models import SpreadsheetContext, SheetGrid
from core.exceptions import StageError
from config import settings


logger = logging.getLogger(__name__)


class GridReceiver(Stage[SpreadsheetContext, SheetGrid]):
    """Stage 0: Grid Reception - Load the cell grid of one sheet"""

    @property
    def name(self) -> str:
        return "Grid Reception"

    @property
    def stage_number(self) -> int:
        return 0

    def __init__(self, sheets: SheetsGateway, read_range: Optional[str] = None):
        self.sheets = sheets
        self.read_range = read_range or settings.READ_RANGE

    def validate_input(self, input_data: SpreadsheetContext) -> bool:
        return isinstance(input_data, SpreadsheetContext) and bool(input_data.spreadsheet_id)

    async def execute(self, input_data: SpreadsheetContext) -> SheetGrid:
        try:
            values = await self.sheets.read_range(
                input_data.spreadsheet_id, self.read_range, input_data.sheet_gid
            )
        except Exception as e:
            raise StageError(self.stage_number, f"Reading {self.read_range} failed: {e}") from e

        grid = SheetGrid(values=[
            ["" if value is None else str(value) for value in row] for row in (values or [])
        ])
        if grid.row_count == 0:
            raise StageError(self.stage_number, "Sheet is empty")

        logger.info(f"Read {grid.row_count} row(s) from {input_data.spreadsheet_id}")
        return grid
