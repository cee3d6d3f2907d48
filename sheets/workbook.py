"""Local workbook adapter for the SheetsGateway port"""

import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Union

import openpyxl
import pandas as pd
from openpyxl.utils import range_boundaries

from core.interfaces import SheetsGateway
from core.exceptions import PersistenceError
from utils.encoding import detect_encoding


logger = logging.getLogger(__name__)


def _to_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _trim(rows: List[List[str]]) -> List[List[str]]:
    """Drop trailing empty cells and rows, the way the Sheets API returns ranges"""
    trimmed = []
    for row in rows:
        end = len(row)
        while end and row[end - 1] == "":
            end -= 1
        trimmed.append(row[:end])
    while trimmed and not trimmed[-1]:
        trimmed.pop()
    return trimmed


class WorkbookSheets(SheetsGateway):
    """
    A local .xlsx or .csv file served as a spreadsheet.

    The file path is the spreadsheet id. For workbooks the sheet gid is a
    zero-based sheet index or a sheet title; CSV files have a single sheet.
    Reads and writes are serialized and run off the event loop, and every
    write is saved to disk immediately.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.is_csv = self.path.suffix.lower() == ".csv"
        self._lock = asyncio.Lock()
        self._workbook = None
        self._csv_rows: Optional[List[List[str]]] = None
        self._csv_encoding = "utf-8"

    @property
    def spreadsheet_id(self) -> str:
        return str(self.path)

    # ─────────────────────────────────────────────────────────
    # Loading
    # ─────────────────────────────────────────────────────────

    def _load(self):
        if self.is_csv:
            if self._csv_rows is None:
                self._csv_encoding = detect_encoding(self.path)
                frame = pd.read_csv(
                    self.path,
                    encoding=self._csv_encoding,
                    header=None,
                    dtype=str,
                    keep_default_na=False,
                )
                self._csv_rows = frame.values.tolist()
                logger.debug(f"Loaded {len(self._csv_rows)} CSV row(s) from {self.path} ({self._csv_encoding})")
        elif self._workbook is None:
            self._workbook = openpyxl.load_workbook(self.path)
            logger.debug(f"Loaded workbook {self.path}: {self._workbook.sheetnames}")

    def _sheet(self, sheet_gid: Optional[str]):
        workbook = self._workbook
        if sheet_gid is None or str(sheet_gid) == "":
            return workbook.worksheets[0]
        gid = str(sheet_gid)
        if gid.isdigit() and int(gid) < len(workbook.worksheets):
            return workbook.worksheets[int(gid)]
        if gid in workbook.sheetnames:
            return workbook[gid]
        raise KeyError(f"Sheet {gid} not found in {self.path.name}")

    # ─────────────────────────────────────────────────────────
    # SheetsGateway
    # ─────────────────────────────────────────────────────────

    async def read_range(
        self, spreadsheet_id: str, a1_range: str, sheet_gid: Optional[str] = None
    ) -> list[list[str]]:
        async with self._lock:
            return await asyncio.to_thread(self._read_sync, a1_range, sheet_gid)

    async def write_cell(
        self, spreadsheet_id: str, a1_cell: str, value: str, sheet_gid: Optional[str] = None
    ) -> None:
        async with self._lock:
            try:
                await asyncio.to_thread(self._write_sync, a1_cell, value, sheet_gid)
            except Exception as e:
                raise PersistenceError(f"Saving {a1_cell} to {self.path.name} failed: {e}", a1_cell) from e

    def _read_sync(self, a1_range: str, sheet_gid: Optional[str]) -> List[List[str]]:
        self._load()
        min_col, min_row, max_col, max_row = range_boundaries(a1_range)

        if self.is_csv:
            rows = []
            for row in self._csv_rows[min_row - 1:max_row]:
                rows.append([_to_text(value) for value in row[min_col - 1:max_col]])
            return _trim(rows)

        sheet = self._sheet(sheet_gid)
        max_row = min(max_row, sheet.max_row or 0)
        max_col = min(max_col, sheet.max_column or 0)
        if max_row < min_row or max_col < min_col:
            return []
        rows = [
            [_to_text(value) for value in row]
            for row in sheet.iter_rows(
                min_row=min_row, max_row=max_row, min_col=min_col, max_col=max_col, values_only=True
            )
        ]
        return _trim(rows)

    def _write_sync(self, a1_cell: str, value: str, sheet_gid: Optional[str]):
        self._load()
        column, row, _, _ = range_boundaries(a1_cell)

        if self.is_csv:
            rows = self._csv_rows
            while len(rows) < row:
                rows.append([])
            cells = rows[row - 1]
            while len(cells) < column:
                cells.append("")
            cells[column - 1] = value
            width = max(len(cells) for cells in rows)
            padded = [cells + [""] * (width - len(cells)) for cells in rows]
            pd.DataFrame(padded).to_csv(self.path, header=False, index=False, encoding=self._csv_encoding)
            return

        sheet = self._sheet(sheet_gid)
        sheet.cell(row=row, column=column, value=value)
        self._workbook.save(self.path)
