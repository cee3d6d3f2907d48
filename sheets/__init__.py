"""Spreadsheet adapters"""

from .workbook import WorkbookSheets

__all__ = ["WorkbookSheets"]
