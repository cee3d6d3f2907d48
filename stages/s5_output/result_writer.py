"""Result writer - answers, logs, report links and claim markers"""

import asyncio
import logging
from typing import Optional

from core.interfaces import SheetsGateway
from core.models import SpreadsheetContext, AiTask, ReportTask, LogEntry
from core.exceptions import PersistenceError
from .log_format import merge_log


logger = logging.getLogger(__name__)

# Prefix of the text written to an answer cell whose task failed
FAILURE_PREFIX = "ERROR: "


class ResultWriter:
    """
    Persists task output through the SheetsGateway.

    Every failure surfaces as PersistenceError. Log cells are shared by
    the AIs of a 3-type group, so log cells are read, merged and
    written one at a time.
    """

    def __init__(self, sheets: SheetsGateway, utc_offset_hours: Optional[int] = None):
        self.sheets = sheets
        self.utc_offset_hours = utc_offset_hours
        self._log_lock = asyncio.Lock()

    async def read_cell(self, spreadsheet: SpreadsheetContext, cell: str) -> str:
        values = await self.sheets.read_range(spreadsheet.spreadsheet_id, cell, spreadsheet.sheet_gid)
        if values and values[0]:
            value = values[0][0]
            return "" if value is None else str(value)
        return ""

    async def write_cell(self, spreadsheet: SpreadsheetContext, cell: str, value: str) -> None:
        try:
            await self.sheets.write_cell(spreadsheet.spreadsheet_id, cell, value, spreadsheet.sheet_gid)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Write to {cell} failed: {e}", cell) from e

    async def write_answer(self, spreadsheet: SpreadsheetContext, task: AiTask, text: str) -> None:
        await self.write_cell(spreadsheet, task.cell, text)
        logger.info(f"Answer written to {task.cell} ({len(text)} chars)")

    async def write_log(self, spreadsheet: SpreadsheetContext, task: AiTask, entry: LogEntry) -> Optional[str]:
        """Merge this AI's section into the row's log cell; returns the cell, None without a log column"""
        if not task.log_column:
            return None
        cell = f"{task.log_column}{task.row}"
        async with self._log_lock:
            try:
                existing = await self.read_cell(spreadsheet, cell)
            except Exception as e:
                raise PersistenceError(f"Read of {cell} failed: {e}", cell) from e
            await self.write_cell(spreadsheet, cell, merge_log(existing, entry, self.utc_offset_hours))
        logger.debug(f"Log section {entry.ai_type.display_name} merged into {cell}")
        return cell

    async def write_report_link(self, spreadsheet: SpreadsheetContext, task: ReportTask, url: str) -> None:
        await self.write_cell(spreadsheet, task.cell, url)
        logger.info(f"Report link written to {task.cell}")

    async def write_failure(self, spreadsheet: SpreadsheetContext, task, error: str) -> None:
        """Error text the answer filter treats as not answered, so a re-run retries the cell"""
        await self.write_cell(spreadsheet, task.cell, f"{FAILURE_PREFIX}{error}")

    async def write_marker(self, spreadsheet: SpreadsheetContext, task, marker: str) -> None:
        await self.write_cell(spreadsheet, task.cell, marker)
