import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from stages.s5_output import ResultWriter, merge_log, parse_sections, format_section
from core.interfaces import SheetsGateway
from core.models import AiTask, LogEntry
from core.enums import AIType
from core.exceptions import PersistenceError

from conftest import FakeSheets


SENT = datetime(2025, 1, 15, 3, 0, 0, tzinfo=timezone.utc)


def entry(ai_type: AIType, seconds: int = 42) -> LogEntry:
    return LogEntry(
        ai_type=ai_type,
        model="gpt-4o" if ai_type == AIType.CHATGPT else "",
        function="",
        url="https://example.test/chat/1",
        sent_at=SENT,
        written_at=SENT + timedelta(seconds=seconds),
    )


def task(column: str, ai_type: AIType) -> AiTask:
    return AiTask(
        id=f"{column}5_test",
        column=column,
        row=5,
        ai_type=ai_type,
        prompt_columns=["D"],
        group_id="group_row5_3type_D",
        column_group="3type_D",
        prompt="q",
        multi_ai=True,
        log_column="C",
    )


def test_section_format_uses_fixed_offset():
    section = format_section(entry(AIType.CHATGPT), offset_hours=9)

    assert section.splitlines() == [
        "---------- ChatGPT ----------",
        "Model: gpt-4o",
        "Function: ",
        "URL: https://example.test/chat/1",
        "Sent: 2025-01-15 12:00:00",
        "Written: 2025-01-15 12:00:42 (42 sec later)",
    ]


def test_merge_orders_sections_and_replaces_same_ai():
    text = merge_log(None, entry(AIType.GEMINI), 9)
    text = merge_log(text, entry(AIType.CHATGPT), 9)
    text = merge_log(text, entry(AIType.CHATGPT, seconds=99), 9)

    assert list(parse_sections(text)) == ["ChatGPT", "Gemini"]
    assert "(99 sec later)" in text
    assert "(42 sec later)" in parse_sections(text)["Gemini"]


def test_merge_drops_free_text_outside_sections():
    text = merge_log("old free-form note", entry(AIType.CLAUDE), 9)

    assert text.startswith("---------- Claude ----------")
    assert "old free-form note" not in text


@pytest.mark.asyncio
async def test_concurrent_log_writes_keep_every_section(spreadsheet):
    sheets = FakeSheets([["", "", ""]])
    writer = ResultWriter(sheets, utc_offset_hours=9)

    await asyncio.gather(*(
        writer.write_log(spreadsheet, task(column, ai_type), entry(ai_type))
        for column, ai_type in (("G", AIType.GEMINI), ("E", AIType.CHATGPT), ("F", AIType.CLAUDE))
    ))

    assert list(parse_sections(sheets.value("C5"))) == ["ChatGPT", "Claude", "Gemini"]


@pytest.mark.asyncio
async def test_answer_failure_and_marker_writes(spreadsheet):
    sheets = FakeSheets([["", "", ""]])
    writer = ResultWriter(sheets)
    target = task("E", AIType.CHATGPT)

    await writer.write_marker(spreadsheet, target, "現在操作中です_2025-01-15_12:00:00_pc")
    await writer.write_failure(spreadsheet, target, "No response within 300s")
    assert await writer.read_cell(spreadsheet, "E5") == "ERROR: No response within 300s"

    await writer.write_answer(spreadsheet, target, "final answer")
    assert sheets.writes[-1] == ("E5", "final answer")


class BrokenSheets(SheetsGateway):
    async def read_range(self, spreadsheet_id, a1_range, sheet_gid=None):
        return []

    async def write_cell(self, spreadsheet_id, a1_cell, value, sheet_gid=None):
        raise RuntimeError("503 backend unavailable")


@pytest.mark.asyncio
async def test_gateway_errors_become_persistence_errors(spreadsheet):
    writer = ResultWriter(BrokenSheets())

    with pytest.raises(PersistenceError) as excinfo:
        await writer.write_answer(spreadsheet, task("E", AIType.CHATGPT), "text")

    assert excinfo.value.cell == "E5"
    assert "503" in str(excinfo.value)
