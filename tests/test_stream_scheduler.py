import asyncio
from pathlib import Path

import pytest

from stages import StructureAnalyzer, TaskGenerator, StreamScheduler
from stages.s4_exclusive import ExclusiveControl
from stages.s5_output import MarkdownReportBuilder
from core.interfaces import AutomationContext
from core.models import StreamOptions, PromptResponse
from core.enums import OutcomeStatus
from core.exceptions import StageError
from config import settings

from conftest import HEADER, FakeSheets, FakeBrowser, sheet_rows


TWO_GROUP_HEADER = [
    ["メニュー", "", "プロンプト", "回答", "プロンプト", "回答"],
    ["AI", "", "ChatGPT", "", "Claude", ""],
    ["モデル", "", "", "", "", ""],
    ["機能", "", "", "", "", ""],
]

THREE_TYPE_HEADER = [
    ["メニュー", "", "ログ", "プロンプト", "ChatGPT回答", "Claude回答", "Gemini回答"],
    ["AI", "", "", "3種類", "", "", ""],
    ["モデル", "", "", "", "", "", ""],
    ["機能", "", "", "", "", "", ""],
]

SINGLE_THEN_THREE_TYPE_HEADER = [
    ["メニュー", "", "プロンプト", "回答", "プロンプト", "ChatGPT回答", "Claude回答", "Gemini回答"],
    ["AI", "", "ChatGPT", "", "3種類", "", "", ""],
    ["モデル", "", "", "", "", "", "", ""],
    ["機能", "", "", "", "", "", "", ""],
]


def plan(sheets: FakeSheets) -> list:
    grid = sheets.grid()
    structure = StructureAnalyzer().analyze(grid)
    return TaskGenerator().generate(grid, structure).tasks


def scheduler_for(sheets, browser=None, **kwargs) -> StreamScheduler:
    context = AutomationContext(sheets=sheets, windows=browser, tabs=browser)
    kwargs.setdefault("exclusive_control", False)
    kwargs.setdefault("ready_poll_interval", 0)
    kwargs.setdefault("max_task_errors", 3)
    return StreamScheduler(context, **kwargs)


def position(sheets: FakeSheets, cell: str) -> int:
    """Index of the answer write to a cell"""
    return [written for written, value in sheets.writes if not value.startswith(settings.MARKER_PREFIX)].index(cell)


class ClaudeDownBrowser(FakeBrowser):
    """Claude windows always fail, prompts starting with "a" are slow, windows close slowly"""

    async def close_window(self, window_id: int) -> None:
        await asyncio.sleep(0.05)
        await super().close_window(window_id)

    async def send_prompt(self, tab_id, prompt, timeout, model=None, function=None) -> PromptResponse:
        self.sent.append((tab_id, prompt))
        url = self.open.get(tab_id, "")
        if url.startswith("https://claude.ai"):
            return PromptResponse(success=False, error="Claude is unavailable")
        await asyncio.sleep(0.3 if prompt.startswith("a") else 0.01)
        return PromptResponse(success=True, response_text=f"answer: {prompt}", url=url, model=model)


@pytest.mark.asyncio
async def test_single_column_reuses_one_window(spreadsheet):
    sheets = FakeSheets(sheet_rows(HEADER, [
        ["1", "", "q1", ""],
        ["2", "", "q2", ""],
        ["3", "", "q3", ""],
    ]))
    browser = FakeBrowser()
    scheduler = scheduler_for(sheets, browser)

    result = await scheduler.process_task_stream(plan(sheets), spreadsheet)

    assert result.success and not result.stopped
    assert [sheets.value(cell) for cell in ("D5", "D6", "D7")] == ["answer: q1", "answer: q2", "answer: q3"]
    assert [outcome.status for outcome in result.outcomes] == [OutcomeStatus.SUCCEEDED] * 3
    assert result.total_windows == 1
    assert browser.opened == ["https://chatgpt.com/?model=gpt-4o"]
    assert browser.open == {}
    assert result.processed_columns == ["D"]


@pytest.mark.asyncio
async def test_later_column_group_trails_the_earlier_one(spreadsheet):
    sheets = FakeSheets(sheet_rows(TWO_GROUP_HEADER, [
        ["1", "", "a1", "", "b1", ""],
        ["2", "", "a2", "", "b2", ""],
        ["3", "", "a3", "", "b3", ""],
    ]))
    browser = FakeBrowser()
    scheduler = scheduler_for(sheets, browser)

    result = await scheduler.process_task_stream(plan(sheets), spreadsheet)

    assert result.success
    for row in (5, 6, 7):
        assert position(sheets, f"D{row}") < position(sheets, f"F{row}")
    assert sheets.value("F7") == "answer: b3"
    assert browser.max_open <= 2
    # Both groups were busy at the same time
    assert browser.max_in_flight == 2


@pytest.mark.asyncio
async def test_three_type_row_completes_before_the_next_row(spreadsheet):
    sheets = FakeSheets(sheet_rows(THREE_TYPE_HEADER, [
        ["1", "", "", "q1", "", "", ""],
        ["2", "", "", "q2", "", "", ""],
    ]))
    browser = FakeBrowser()
    scheduler = scheduler_for(sheets, browser, max_concurrent_windows=4)

    result = await scheduler.process_task_stream(plan(sheets), spreadsheet)

    assert result.success
    first_row = [position(sheets, cell) for cell in ("E5", "F5", "G5")]
    second_row = [position(sheets, cell) for cell in ("E6", "F6", "G6")]
    assert max(first_row) < min(second_row)
    assert browser.max_in_flight == 3
    assert result.total_windows == 3

    log = sheets.value("C5")
    assert log.index("---------- ChatGPT") < log.index("---------- Claude") < log.index("---------- Gemini")
    assert "URL: https://claude.ai/new" in log


@pytest.mark.asyncio
async def test_window_cap_is_never_exceeded(spreadsheet):
    sheets = FakeSheets(sheet_rows(THREE_TYPE_HEADER, [
        ["1", "", "", "q1", "", "", ""],
        ["2", "", "", "q2", "", "", ""],
        ["3", "", "", "q3", "", "", ""],
    ]))
    browser = FakeBrowser()
    scheduler = scheduler_for(sheets, browser, max_concurrent_windows=2)

    result = await scheduler.process_task_stream(plan(sheets), spreadsheet)

    assert result.success
    assert len(result.outcomes) == 9
    assert all(outcome.success for outcome in result.outcomes)
    assert browser.max_open <= 2
    assert browser.max_in_flight <= 2
    assert sheets.value("G7") == "answer: q3"


@pytest.mark.asyncio
async def test_trailing_three_type_group_with_a_failing_ai_runs_every_row(spreadsheet):
    sheets = FakeSheets(sheet_rows(SINGLE_THEN_THREE_TYPE_HEADER, [
        ["1", "", "a1", "", "b1", "", "", ""],
        ["2", "", "a2", "", "b2", "", "", ""],
        ["3", "", "a3", "", "b3", "", "", ""],
    ]))
    browser = ClaudeDownBrowser()
    scheduler = scheduler_for(sheets, browser, max_concurrent_windows=4, max_task_errors=1)

    result = await scheduler.process_task_stream(plan(sheets), spreadsheet)

    assert result.success
    assert len(result.outcomes) == 12
    for row in (5, 6, 7):
        assert sheets.value(f"D{row}") == f"answer: a{row - 4}"
        assert sheets.value(f"F{row}") == f"answer: b{row - 4}"
        assert sheets.value(f"H{row}") == f"answer: b{row - 4}"
        assert sheets.value(f"G{row}") == "ERROR: Claude is unavailable"
        row_writes = [position(sheets, f"{column}{row}") for column in "FGH"]
        assert position(sheets, f"D{row}") < min(row_writes)
    for row in (5, 6):
        this_row = [position(sheets, f"{column}{row}") for column in "FGH"]
        next_row = [position(sheets, f"{column}{row + 1}") for column in "FGH"]
        assert max(this_row) < min(next_row)

    statuses = {outcome.cell: outcome.status for outcome in result.outcomes}
    assert [statuses[f"G{row}"] for row in (5, 6, 7)] == [OutcomeStatus.ABANDONED] * 3
    status = scheduler.get_status()
    assert status.pending_cells == 0
    assert status.processed_cells == 12
    assert browser.open == {}


@pytest.mark.asyncio
async def test_repeated_errors_abandon_the_cell_and_move_on(spreadsheet):
    sheets = FakeSheets(sheet_rows(HEADER, [
        ["1", "", "q1", ""],
        ["2", "", "q2", ""],
        ["3", "", "q3", ""],
    ]))
    browser = FakeBrowser(fail_prompts={"q2"})
    scheduler = scheduler_for(sheets, browser)

    result = await scheduler.process_task_stream(plan(sheets), spreadsheet)

    statuses = {outcome.cell: outcome for outcome in result.outcomes}
    assert statuses["D6"].status == OutcomeStatus.ABANDONED
    assert statuses["D6"].attempts == 3
    assert [prompt for _, prompt in browser.sent].count("q2") == 3
    assert sheets.value("D6") == "ERROR: response element not found"
    assert sheets.value("D7") == "answer: q3"
    assert len(browser.opened) == 2
    assert scheduler.get_status().errored_cells == 1


@pytest.mark.asyncio
async def test_window_creation_failure_is_not_retried(spreadsheet):
    sheets = FakeSheets(sheet_rows(HEADER, [["1", "", "q1", ""]]))
    browser = FakeBrowser(fail_open=True)
    scheduler = scheduler_for(sheets, browser)

    result = await scheduler.process_task_stream(plan(sheets), spreadsheet)

    outcome = result.outcomes[0]
    assert outcome.status == OutcomeStatus.FAILED
    assert outcome.attempts == 1
    assert browser.sent == []
    assert sheets.value("D5").startswith("ERROR: popup blocked")


@pytest.mark.asyncio
async def test_persistence_error_does_not_stop_the_stream(spreadsheet):
    sheets = FakeSheets(
        sheet_rows(HEADER, [["1", "", "q1", ""], ["2", "", "q2", ""]]),
        fail_cells={"D5"},
    )
    scheduler = scheduler_for(sheets, FakeBrowser())

    result = await scheduler.process_task_stream(plan(sheets), spreadsheet)

    first, second = result.outcomes
    assert first.status == OutcomeStatus.SUCCEEDED and first.persisted is False
    assert second.persisted is True
    assert sheets.value("D6") == "answer: q2"
    status = scheduler.get_status()
    assert status.persistence_errors == 1
    assert status.written_cells == ["D6"]


@pytest.mark.asyncio
async def test_claim_skips_cells_taken_by_another_worker(spreadsheet):
    sheets = FakeSheets(sheet_rows(HEADER, [["1", "", "q1", ""], ["2", "", "q2", ""]]))
    tasks = plan(sheets)
    foreign = ExclusiveControl(worker_id="other-pc").create_marker()
    await sheets.write_cell("sheet-1", "D5", foreign)
    scheduler = scheduler_for(sheets, FakeBrowser(), exclusive_control=True)

    result = await scheduler.process_task_stream(tasks, spreadsheet)

    outcomes = {outcome.cell: outcome for outcome in result.outcomes}
    assert outcomes["D5"].status == OutcomeStatus.SKIPPED
    assert outcomes["D5"].error == "claimed_elsewhere"
    assert sheets.value("D5") == foreign
    d6_values = [value for cell, value in sheets.writes if cell == "D6"]
    assert d6_values[0].startswith(settings.MARKER_PREFIX)
    assert d6_values[-1] == "answer: q2"


@pytest.mark.asyncio
async def test_test_mode_simulates_answers(spreadsheet, monkeypatch):
    monkeypatch.setattr(settings, "TEST_MODE_DELAY_MIN", 0.0)
    monkeypatch.setattr(settings, "TEST_MODE_DELAY_MAX", 0.0)
    sheets = FakeSheets(sheet_rows(HEADER, [["1", "", "q1", ""], ["2", "", "q2", ""]]))
    scheduler = scheduler_for(sheets)

    result = await scheduler.process_task_stream(plan(sheets), spreadsheet, StreamOptions(test_mode=True))

    assert result.success
    assert result.total_windows == 0
    assert sheets.value("D6") == "Test response from ChatGPT for D6"


@pytest.mark.asyncio
async def test_report_task_writes_a_link(spreadsheet, tmp_path: Path):
    sheets = FakeSheets([
        ["メニュー", "", "プロンプト", "回答", "レポート化"],
        ["AI", "", "ChatGPT", "", ""],
        ["モデル", "", "", "", ""],
        ["機能", "", "", "", ""],
        ["1", "", "q1", "an existing answer", ""],
    ])
    context = AutomationContext(sheets=sheets, reports=MarkdownReportBuilder(tmp_path))
    scheduler = StreamScheduler(context, exclusive_control=False)

    result = await scheduler.process_task_stream(plan(sheets), spreadsheet)

    assert result.outcomes[0].status == OutcomeStatus.SUCCEEDED
    link = sheets.value("E5")
    assert link.startswith("file://")
    report = next(tmp_path.glob("report_E5_*.md")).read_text(encoding="utf-8")
    assert "an existing answer" in report
    assert "q1" in report


@pytest.mark.asyncio
async def test_status_after_completion(spreadsheet):
    sheets = FakeSheets(sheet_rows(HEADER, [["1", "", "q1", ""], ["2", "", "q2", ""]]))
    scheduler = scheduler_for(sheets, FakeBrowser())

    await scheduler.process_task_stream(plan(sheets), spreadsheet)
    status = scheduler.get_status()

    assert status.is_processing is False
    assert status.processed_cells == 2
    assert status.pending_cells == 0
    assert status.active_windows == 0
    progress = status.per_column_progress["single_C"]
    assert (progress.completed, progress.total, progress.percentage) == (2, 2, 100)
    assert progress.current_row is None


@pytest.mark.asyncio
async def test_stop_cancels_and_closes_everything(spreadsheet):
    sheets = FakeSheets(sheet_rows(TWO_GROUP_HEADER, [
        ["1", "", "a1", "", "b1", ""],
        ["2", "", "a2", "", "b2", ""],
    ]))
    browser = FakeBrowser(delay=30)
    scheduler = scheduler_for(sheets, browser)

    run = asyncio.create_task(scheduler.process_task_stream(plan(sheets), spreadsheet))
    for _ in range(200):
        if browser.sent:
            break
        await asyncio.sleep(0.01)
    assert scheduler.is_processing

    with pytest.raises(StageError):
        await scheduler.process_task_stream(plan(sheets), spreadsheet)

    await scheduler.stop_streaming()
    result = await asyncio.wait_for(run, timeout=5)

    assert result.stopped and not result.success
    assert browser.open == {}
    assert sheets.value("D5") == ""
    status = scheduler.get_status()
    assert status.is_processing is False
    assert status.per_column_progress == {}


@pytest.mark.asyncio
async def test_empty_stream_finishes_immediately(spreadsheet):
    scheduler = scheduler_for(FakeSheets([["メニュー"]]))

    result = await scheduler.process_task_stream([], spreadsheet)

    assert result.success
    assert result.outcomes == []


@pytest.mark.asyncio
async def test_cells_claimed_by_a_stopped_run_are_planned_again(spreadsheet):
    sheets = FakeSheets(sheet_rows(HEADER, [["1", "", "q1", ""], ["2", "", "q2", ""]]))
    browser = FakeBrowser(delay=30)
    scheduler = scheduler_for(sheets, browser, exclusive_control=True)

    run = asyncio.create_task(scheduler.process_task_stream(plan(sheets), spreadsheet))
    for _ in range(200):
        if browser.sent:
            break
        await asyncio.sleep(0.01)
    await scheduler.stop_streaming()
    await asyncio.wait_for(run, timeout=5)

    assert sheets.value("D5").startswith(settings.MARKER_PREFIX)
    assert [task.cell for task in plan(sheets)] == ["D5", "D6"]
