"""Pipeline orchestrator"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from core.models import (
    SpreadsheetContext, SheetGrid, StructureResult, TaskList, StreamOptions, StreamResult,
    GenerationInput,
)
from core.interfaces import AutomationContext
from core.exceptions import PipelineError, StageError
from stages import GridReceiver, StructureAnalyzer, TaskGenerator, StreamScheduler
from stages.s5_output import MarkdownReportBuilder
from sheets import WorkbookSheets
from browser import BrowserBridge, StaticTokenProvider
from ui.progress import ProgressTracker


logger = logging.getLogger(__name__)

STREAM_STAGE = 3


@dataclass
class PipelineContext:
    """Shared context passed through pipeline"""
    spreadsheet: SpreadsheetContext
    options: StreamOptions
    grid: Optional[SheetGrid] = None
    structure: Optional[StructureResult] = None
    tasks: Optional[TaskList] = None
    stream: Optional[StreamResult] = None


def build_automation_context(
    workbook: Path,
    options: StreamOptions,
    bridge_url: Optional[str] = None,
) -> AutomationContext:
    """Wire the adapters for a local workbook; no browser bridge in pure test mode"""
    context = AutomationContext(
        sheets=WorkbookSheets(workbook),
        reports=MarkdownReportBuilder(),
    )
    if options.test_mode and options.tab_id is None:
        return context

    auth = StaticTokenProvider()
    bridge = BrowserBridge(base_url=bridge_url, auth=auth)
    context.windows = bridge
    context.tabs = bridge
    context.auth = auth
    return context


class Orchestrator:
    """Pipeline coordinator"""

    def __init__(
        self,
        progress: ProgressTracker,
        context: AutomationContext,
        scheduler: Optional[StreamScheduler] = None,
        status_interval: float = 10.0,
    ):
        self.progress = progress
        self.context = context
        self.scheduler = scheduler or StreamScheduler(context)
        self.status_interval = status_interval

        # Initialize stages
        self.stages = {
            0: GridReceiver(context.sheets),
            1: StructureAnalyzer(),
            2: TaskGenerator(self.scheduler.answer_filter),
        }

    async def run(
        self,
        spreadsheet: SpreadsheetContext,
        options: Optional[StreamOptions] = None,
    ) -> PipelineContext:
        """Execute full pipeline"""
        ctx = await self.plan(spreadsheet, options, finish=False)

        try:
            ctx.stream = await self._stream(ctx)
        except StageError as e:
            await self._notify(self.progress.fail(e.stage, str(e)))
            raise PipelineError(f"Pipeline failed at stage {e.stage}: {e}", stage=e.stage)

        await self._notify(self.progress.complete())
        return ctx

    async def plan(
        self,
        spreadsheet: SpreadsheetContext,
        options: Optional[StreamOptions] = None,
        finish: bool = True,
    ) -> PipelineContext:
        """Stages 0-2 only: read, analyze and list the work without running it"""
        ctx = PipelineContext(spreadsheet=spreadsheet, options=options or StreamOptions())

        try:
            # Stage 0: Grid Reception
            ctx.grid = await self._execute_stage(0, spreadsheet)

            # Stage 1: Structure Analysis
            ctx.structure = await self._execute_stage(1, ctx.grid)

            # Stage 2: Task Generation
            ctx.tasks = await self._execute_stage(2, GenerationInput(grid=ctx.grid, structure=ctx.structure))
        except StageError as e:
            await self._notify(self.progress.fail(e.stage, str(e)))
            raise PipelineError(f"Pipeline failed at stage {e.stage}: {e}", stage=e.stage)

        if finish:
            await self._notify(self.progress.complete())
        return ctx

    async def stop(self):
        await self.scheduler.stop_streaming()

    async def _stream(self, ctx: PipelineContext) -> StreamResult:
        """Stage 3 runs on the long-lived scheduler rather than a Stage object"""
        await self._notify(self.progress.start_stage(STREAM_STAGE, "Stream Processing"))

        reporter = None
        if self.status_interval > 0:
            reporter = asyncio.create_task(self._report_status())
        try:
            result = await self.scheduler.process_task_stream(ctx.tasks.tasks, ctx.spreadsheet, ctx.options)
        finally:
            if reporter:
                reporter.cancel()

        await self._notify(self.progress.report_status(self.scheduler.get_status()))
        await self._notify(self.progress.complete_stage(STREAM_STAGE))
        return result

    async def _report_status(self):
        while True:
            await asyncio.sleep(self.status_interval)
            await self._notify(self.progress.report_status(self.scheduler.get_status()))

    async def _notify(self, result):
        # Handle both sync and async progress trackers
        if hasattr(result, '__await__'):
            await result

    async def _execute_stage(self, stage_num: int, input_data):
        """Execute a single stage with progress tracking"""
        stage = self.stages[stage_num]

        await self._notify(self.progress.start_stage(stage_num, stage.name))

        if not stage.validate_input(input_data):
            raise StageError(stage_num, "Invalid input")

        result = await stage.execute(input_data)

        await self._notify(self.progress.complete_stage(stage_num))

        return result
