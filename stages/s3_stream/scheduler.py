"""Stage 3: Stream Processing - bounded window pool with a diagonal wavefront"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from core.interfaces import AutomationContext
from core.models import (
    AiTask, ReportTask, SpreadsheetContext, StreamOptions, StreamResult, StreamStatus,
    ColumnProgress, TaskOutcome, PromptResponse, ScreenBounds, LogEntry, ReportRequest,
)
from core.enums import ColumnState, OutcomeStatus, TaskType
from core.exceptions import (
    ExecutionError, ExecutionTimeout, WindowCreationError, PersistenceError, StageError,
)
from stages.s2_tasks.answer_filter import AnswerFilter
from stages.s4_exclusive import ExclusiveControl
from stages.s5_output import ResultWriter
from utils.clock import utcnow
from config import settings
from .slots import SlotTable
from .windows import determine_ai_url, quadrant_bounds


logger = logging.getLogger(__name__)


@dataclass
class _Batch:
    """Tasks of one lane that start together: a row's AI tasks, or its report"""
    row: int
    task_type: TaskType
    tasks: list


@dataclass
class _Lane:
    """Scheduling state of one column group"""
    column_group: str
    order: int
    batches: List[_Batch]
    total: int
    cursor: int = 0
    completed: int = 0
    state: ColumnState = ColumnState.IDLE
    running: Set[str] = field(default_factory=set)
    pending: list = field(default_factory=list)  # Tasks of the current batch waiting for a slot
    held: Dict[str, int] = field(default_factory=dict)  # AI type -> slot kept open for the next row
    closing: List[int] = field(default_factory=list)  # Slots of failed tasks, closed when the row is done

    def current(self) -> Optional[_Batch]:
        return self.batches[self.cursor] if self.cursor < len(self.batches) else None

    @property
    def busy(self) -> bool:
        return bool(self.running or self.pending)


class StreamScheduler:
    """
    Walks every column group top to bottom within a fixed pool of windows.

    Only the leftmost column group is started up front. A column group may
    start row r once every column group to its left has no unfinished task
    at or above row r; finishing a row is what triggers the groups to the
    right, which produces the diagonal wavefront. The rows of a 3-type group
    fan out to three windows and the group only moves on when all three
    answers are done.
    """

    def __init__(
        self,
        context: AutomationContext,
        writer: Optional[ResultWriter] = None,
        guard: Optional[ExclusiveControl] = None,
        answer_filter: Optional[AnswerFilter] = None,
        max_concurrent_windows: Optional[int] = None,
        max_task_errors: Optional[int] = None,
        ready_poll_interval: Optional[float] = None,
        ready_max_retries: Optional[int] = None,
        exclusive_control: Optional[bool] = None,
        write_failure_marker: Optional[bool] = None,
    ):
        self.context = context
        self.writer = writer or ResultWriter(context.sheets)
        self.guard = guard or ExclusiveControl()
        self.answer_filter = answer_filter or AnswerFilter(self.guard)
        self.slots = SlotTable(max_concurrent_windows or settings.MAX_CONCURRENT_WINDOWS)
        self.max_task_errors = max_task_errors or settings.MAX_TASK_ERRORS
        self.ready_poll_interval = (
            settings.WINDOW_READY_POLL_INTERVAL if ready_poll_interval is None else ready_poll_interval
        )
        self.ready_max_retries = ready_max_retries or settings.WINDOW_READY_MAX_RETRIES
        self.exclusive_control = (
            settings.EXCLUSIVE_CONTROL_ENABLED if exclusive_control is None else exclusive_control
        )
        self.write_failure_marker = (
            settings.WRITE_FAILURE_MARKER if write_failure_marker is None else write_failure_marker
        )

        self._reset()
        self._outcomes: List[TaskOutcome] = []
        self._processing = False

    def _reset(self):
        """Drop every piece of scheduling state"""
        self._lanes: List[_Lane] = []
        self._waiting: List[_Lane] = []
        self._completed: Set[str] = set()
        self._written: List[str] = []
        self._error_counts: Dict[str, int] = {}
        self._persistence_errors = 0
        self._inflight: Set[asyncio.Task] = set()
        self._active = 0
        self._total_windows = 0
        self._screen: Optional[ScreenBounds] = None
        self._stopped = False
        self._done: Optional[asyncio.Event] = None
        self._spreadsheet: Optional[SpreadsheetContext] = None
        self._options = StreamOptions()

    # ─────────────────────────────────────────────────────────
    # Host API
    # ─────────────────────────────────────────────────────────

    async def process_task_stream(
        self,
        tasks: list,
        spreadsheet: SpreadsheetContext,
        options: Optional[StreamOptions] = None,
    ) -> StreamResult:
        """Run every task to completion, or until stop_streaming()"""
        if self._processing:
            raise StageError(3, "A task stream is already being processed")

        self._reset()
        self._outcomes = []
        self._spreadsheet = spreadsheet
        self._options = options or StreamOptions()
        self._lanes = self._build_lanes(tasks)
        if not self._lanes:
            logger.info("No tasks to process")
            return StreamResult(success=True)

        self._processing = True
        self._done = asyncio.Event()
        logger.info(
            f"Streaming {len(tasks)} task(s) across {len(self._lanes)} column group(s), "
            f"{self.slots.capacity} window slot(s)"
            + (" [test mode]" if self._options.test_mode else "")
        )

        try:
            self._try_start(self._lanes[0])
            self._check_idle()
            await self._done.wait()
        finally:
            self._processing = False

        stopped = self._stopped
        if not stopped:
            await self._close_all_windows()

        columns = sorted(
            {outcome.cell.rstrip("0123456789") for outcome in self._outcomes},
            key=lambda column: (len(column), column),
        )
        result = StreamResult(
            success=not stopped,
            processed_columns=columns,
            total_windows=self._total_windows,
            stopped=stopped,
            outcomes=list(self._outcomes),
        )
        logger.info(
            f"Stream {'stopped' if stopped else 'finished'}: {len(self._outcomes)} outcome(s), "
            f"{self._total_windows} window(s) opened"
        )
        return result

    async def stop_streaming(self):
        """Hard reset: cancel in-flight work, close every window, forget all state"""
        logger.info("Stop requested")
        self._stopped = True
        inflight = list(self._inflight)
        for task in inflight:
            task.cancel()
        if inflight:
            await asyncio.wait(inflight)

        await self._close_all_windows()
        # Outcomes, written cells and counters stay readable for the result
        self._lanes = []
        self._waiting = []
        self._completed = set()
        self._error_counts = {}
        self._inflight = set()
        self._active = 0
        if self._done:
            self._done.set()

    def get_status(self) -> StreamStatus:
        per_column = {}
        for lane in self._lanes:
            batch = lane.current()
            per_column[lane.column_group] = ColumnProgress(
                completed=lane.completed,
                total=lane.total,
                percentage=int(lane.completed * 100 / lane.total) if lane.total else 100,
                current_row=batch.row if batch else None,
                state=lane.state,
            )

        total = sum(lane.total for lane in self._lanes)
        running = sum(len(lane.running) for lane in self._lanes)
        errored = sum(
            1 for outcome in self._outcomes
            if outcome.status in (OutcomeStatus.FAILED, OutcomeStatus.ABANDONED)
        )
        return StreamStatus(
            is_processing=self._processing,
            active_windows=len(self.slots.active_windows()),
            queue_length=max(0, total - len(self._completed) - running),
            per_column_progress=per_column,
            processed_cells=len(self._completed),
            pending_cells=max(0, total - len(self._completed)),
            errored_cells=errored,
            persistence_errors=self._persistence_errors,
            written_cells=list(self._written),
        )

    @property
    def is_processing(self) -> bool:
        return self._processing

    # ─────────────────────────────────────────────────────────
    # Lanes and the wavefront
    # ─────────────────────────────────────────────────────────

    def _build_lanes(self, tasks: list) -> List[_Lane]:
        by_group: Dict[str, list] = {}
        for task in tasks:
            by_group.setdefault(task.column_group, []).append(task)

        lanes = []
        for column_group, group_tasks in by_group.items():
            batches: Dict[Tuple[int, int], _Batch] = {}
            for task in group_tasks:
                key = (task.row, 0 if task.task_type == TaskType.AI else 1)
                batches.setdefault(key, _Batch(row=task.row, task_type=task.task_type, tasks=[])).tasks.append(task)
            lanes.append(_Lane(
                column_group=column_group,
                order=min(task.lane_order for task in group_tasks),
                batches=[batches[key] for key in sorted(batches)],
                total=len(group_tasks),
            ))
        return sorted(lanes, key=lambda lane: lane.order)

    def _gate_open(self, lane: _Lane, row: int) -> bool:
        """Every column group to the left is past row, or out of work"""
        for earlier in self._lanes:
            if earlier is lane:
                return True
            batch = earlier.current()
            if batch is not None and batch.row <= row:
                return False
        return True

    def _try_start(self, lane: _Lane) -> bool:
        """Dispatch the lane's cursor batch if it is idle and the wavefront allows it"""
        if self._stopped or lane.busy:
            return False

        batch = lane.current()
        if batch is None:
            lane.state = ColumnState.CLOSED
            return False
        if not self._gate_open(lane, batch.row):
            return False

        lane.state = ColumnState.CLAIMING
        logger.info(f"{lane.column_group}: starting row {batch.row} ({len(batch.tasks)} task(s))")
        for task in batch.tasks:
            if isinstance(task, ReportTask):
                self._spawn(lane, task, None)
                continue

            position = lane.held.pop(task.ai_type.value, None)
            if position is not None:
                self.slots.rebind(position, task.column, task.id)
            else:
                position = self.slots.try_reserve(task.column, task.ai_type, task.id)

            if position is None:
                lane.pending.append(task)
                logger.info(f"{task.cell}: no free window slot, deferred")
            else:
                self._spawn(lane, task, position)

        if lane.pending and lane not in self._waiting:
            self._waiting.append(lane)
        return True

    def _drain_waiting(self):
        """Hand freed slots to deferred tasks, leftmost column group first"""
        if self._stopped:
            return
        for lane in sorted(self._waiting, key=lambda waiting: waiting.order):
            while lane.pending:
                task = lane.pending[0]
                position = self.slots.try_reserve(task.column, task.ai_type, task.id)
                if position is None:
                    return
                lane.pending.pop(0)
                logger.info(f"{task.cell}: deferred task resumed in slot {position}")
                self._spawn(lane, task, position)
            self._waiting.remove(lane)

    def _spawn(self, lane: _Lane, task, position: Optional[int]):
        lane.running.add(task.id)
        self._active += 1
        runner = asyncio.create_task(self._run_task(lane, task, position), name=f"task-{task.cell}")
        self._inflight.add(runner)
        runner.add_done_callback(self._on_runner_done)

    def _on_runner_done(self, runner: asyncio.Task):
        self._inflight.discard(runner)
        if not runner.cancelled() and runner.exception() is not None:
            logger.error(f"Task runner {runner.get_name()} crashed: {runner.exception()!r}")

    def _check_idle(self):
        """Resolve the stream once nothing runs and no lane can start"""
        if self._active or self._stopped or self._done is None:
            return
        self._drain_waiting()
        for lane in self._lanes:
            self._try_start(lane)
        if self._active == 0:
            self._done.set()

    async def _run_task(self, lane: _Lane, task, position: Optional[int]):
        try:
            try:
                if isinstance(task, ReportTask):
                    outcome = await self._execute_report(task)
                else:
                    outcome = await self._execute_ai(lane, task, position)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"{task.cell}: unexpected error")
                outcome = TaskOutcome(
                    task_id=task.id, cell=task.cell, column_group=task.column_group,
                    status=OutcomeStatus.FAILED, error=str(e), finished_at=utcnow(),
                )
            await self._complete(lane, task, position, outcome)
        finally:
            self._active -= 1
            self._check_idle()

    async def _complete(self, lane: _Lane, task, position: Optional[int], outcome: TaskOutcome):
        """
        Record the outcome, then free or keep the window and maybe advance the lane.

        While no sibling waits for a slot, windows stay open until the whole
        row is done: successful ones for reuse by the next row, failed ones
        to be closed by _finish_batch. A sibling waiting for a slot gets this
        one at once. Only the task that finds the row still current and idle
        finishes it, so a row is never finished twice.
        """
        if outcome.finished_at is None:
            outcome.finished_at = utcnow()
        self._outcomes.append(outcome)
        self._completed.add(task.id)
        lane.completed += 1
        lane.running.discard(task.id)
        logger.info(f"{task.cell}: {outcome.status.value}")
        batch = lane.current()

        if position is not None:
            slot = self.slots.get(position)
            if slot is None or lane.pending:
                await self._release(position)
            elif outcome.status == OutcomeStatus.SUCCEEDED and slot.window_id is not None:
                lane.held[task.ai_type.value] = position
            else:
                lane.closing.append(position)

        if not lane.busy and not self._stopped and lane.current() is batch:
            await self._finish_batch(lane)

    async def _finish_batch(self, lane: _Lane):
        batch = lane.current()
        lane.cursor += 1
        lane.state = ColumnState.IDLE
        logger.debug(f"{lane.column_group}: row {batch.row if batch else '?'} done")

        closing, lane.closing = lane.closing, []
        for position in closing:
            await self._release(position)

        # Next row of the same group first, so it can reuse the windows just kept
        self._try_start(lane)
        held = list(lane.held.values())
        lane.held.clear()
        for position in held:
            await self._release(position)

        if lane.current() is None and not lane.busy:
            lane.state = ColumnState.CLOSED
        index = self._lanes.index(lane) if lane in self._lanes else -1
        for later in self._lanes[index + 1:]:
            self._try_start(later)

    # ─────────────────────────────────────────────────────────
    # Windows
    # ─────────────────────────────────────────────────────────

    async def _release(self, position: int):
        slot = self.slots.get(position)
        if slot is not None and slot.window_id is not None:
            await self._close_window(slot.window_id)
        self.slots.release(position)
        self._drain_waiting()

    async def _close_window(self, window_id: int):
        if self.context.windows is None:
            return
        try:
            await self.context.windows.close_window(window_id)
            logger.info(f"Window {window_id} closed")
        except Exception as e:
            logger.warning(f"Closing window {window_id} failed: {e}")

    async def _close_all_windows(self):
        for slot in self.slots.clear():
            if slot.window_id is not None:
                await self._close_window(slot.window_id)

    async def _screen_bounds(self) -> ScreenBounds:
        if self._screen is None:
            fallback = ScreenBounds(width=settings.DEFAULT_SCREEN_WIDTH, height=settings.DEFAULT_SCREEN_HEIGHT)
            try:
                self._screen = await self.context.windows.query_screen_bounds()
            except Exception as e:
                logger.warning(f"Screen bounds unavailable, using {fallback.width}x{fallback.height}: {e}")
                self._screen = fallback
        return self._screen

    async def _ensure_window(self, task: AiTask, position: int) -> int:
        """Tab id of the slot's window, opening and waiting for it when needed"""
        slot = self.slots.get(position)
        if slot is None:
            raise WindowCreationError("Window slot vanished", task.cell)

        if slot.window_id is None:
            if self.context.windows is None:
                raise WindowCreationError("No window gateway configured", task.cell)
            url = determine_ai_url(task.ai_type, task.model)
            bounds = quadrant_bounds(position, await self._screen_bounds())
            try:
                handle = await self.context.windows.open_window(url, bounds)
            except WindowCreationError:
                raise
            except Exception as e:
                raise WindowCreationError(f"Opening {url} failed: {e}", task.cell) from e
            self.slots.bind(position, handle)
            self._total_windows += 1
            logger.info(f"{task.cell}: window {handle.window_id} opened in slot {position} ({url})")

        await self._wait_ready(slot.tab_id, task.cell)
        return slot.tab_id

    async def _wait_ready(self, tab_id: int, cell: str):
        for attempt in range(self.ready_max_retries):
            try:
                if await self.context.tabs.is_ready(tab_id):
                    return
            except Exception as e:
                logger.debug(f"{cell}: readiness check {attempt + 1} failed: {e}")
            await asyncio.sleep(self.ready_poll_interval)
        raise WindowCreationError(
            f"Tab {tab_id} not ready after {self.ready_max_retries} checks", cell
        )

    # ─────────────────────────────────────────────────────────
    # Task execution
    # ─────────────────────────────────────────────────────────

    async def _claim(self, task: AiTask) -> Optional[str]:
        """Write our marker; returns a skip reason when the cell is taken or answered"""
        try:
            current = await self.writer.read_cell(self._spreadsheet, task.cell)
        except Exception as e:
            logger.warning(f"{task.cell}: could not re-read before claiming, proceeding: {e}")
            current = ""

        if self.guard.is_marker(current):
            if self.guard.is_live_foreign_marker(current, task.function):
                wait = self.guard.get_recommended_wait_time(current, task.function)
                logger.info(f"{task.cell}: claimed by another worker, stale in {int(wait)}s, skipped")
                return "claimed_elsewhere"
        elif self.answer_filter.has_real_answer(current):
            logger.debug(f"{task.cell}: answered since generation, skipped")
            return "already_answered"

        marker = self.guard.create_marker(feature_name=task.function)
        try:
            await self.writer.write_marker(self._spreadsheet, task, marker)
        except PersistenceError as e:
            logger.warning(f"{task.cell}: marker write failed, proceeding: {e}")
        return None

    async def _send(self, task: AiTask, position: int) -> Tuple[PromptResponse, str]:
        """One prompt round trip; raises ExecutionError, ExecutionTimeout or WindowCreationError"""
        url = determine_ai_url(task.ai_type, task.model)
        options = self._options

        if options.test_mode and options.tab_id is None:
            await asyncio.sleep(random.uniform(settings.TEST_MODE_DELAY_MIN, settings.TEST_MODE_DELAY_MAX))
            text = f"Test response from {task.ai_type.display_name} for {task.cell}"
            return PromptResponse(success=True, response_text=text, url=url, model=task.model), url

        if self.context.tabs is None:
            raise WindowCreationError("No tab messenger configured", task.cell)

        if options.tab_id is not None:
            tab_id = options.tab_id
            await self._wait_ready(tab_id, task.cell)
        else:
            tab_id = await self._ensure_window(task, position)

        timeout = self.guard.timeout_for(task.function)
        try:
            response = await asyncio.wait_for(
                self.context.tabs.send_prompt(
                    tab_id, task.prompt, timeout, model=task.model, function=task.function
                ),
                timeout,
            )
        except asyncio.TimeoutError as e:
            raise ExecutionTimeout(f"No response within {int(timeout)}s", task.cell, timeout) from e
        except (ExecutionError, WindowCreationError):
            raise
        except Exception as e:
            raise ExecutionError(f"Prompt automation failed: {e}", task.cell) from e

        if not response.success:
            raise ExecutionError(response.error or "Prompt automation reported failure", task.cell)
        return response, response.url or url

    async def _execute_ai(self, lane: _Lane, task: AiTask, position: int) -> TaskOutcome:
        outcome = TaskOutcome(
            task_id=task.id, cell=task.cell, column_group=task.column_group,
            status=OutcomeStatus.SUCCEEDED, started_at=utcnow(),
        )

        if self.exclusive_control:
            reason = await self._claim(task)
            if reason:
                outcome.status = OutcomeStatus.SKIPPED
                outcome.error = reason
                return outcome

        lane.state = ColumnState.RUNNING
        while True:
            outcome.attempts += 1
            outcome.sent_at = utcnow()
            try:
                response, url = await self._send(task, position)
                self._error_counts.pop(task.cell, None)
                break
            except WindowCreationError as e:
                logger.error(f"{task.cell}: {e}")
                outcome.status = OutcomeStatus.FAILED
                outcome.error = str(e)
                await self._mark_failed(task, str(e))
                return outcome
            except ExecutionError as e:
                errors = self._error_counts.get(task.cell, 0) + 1
                self._error_counts[task.cell] = errors
                if errors >= self.max_task_errors:
                    logger.error(f"{task.cell}: abandoned after {errors} consecutive errors: {e}")
                    outcome.status = OutcomeStatus.ABANDONED
                    outcome.error = str(e)
                    await self._mark_failed(task, str(e))
                    return outcome
                logger.warning(f"{task.cell}: attempt {errors}/{self.max_task_errors} failed: {e}")

        lane.state = ColumnState.AWAITING_WRITE
        outcome.response_text = response.response_text
        outcome.written_at = utcnow()
        try:
            await self.writer.write_answer(self._spreadsheet, task, response.response_text)
            outcome.persisted = True
            self._written.append(task.cell)
        except PersistenceError as e:
            self._persistence_errors += 1
            outcome.error = str(e)
            logger.error(f"{task.cell}: answer not persisted: {e}")

        if task.log_column:
            entry = LogEntry(
                ai_type=task.ai_type,
                model=response.model or task.model or "",
                function=task.function or "",
                url=url,
                sent_at=outcome.sent_at,
                written_at=outcome.written_at,
            )
            try:
                await self.writer.write_log(self._spreadsheet, task, entry)
            except PersistenceError as e:
                self._persistence_errors += 1
                logger.error(f"{task.cell}: log not persisted: {e}")

        return outcome

    async def _mark_failed(self, task, error: str):
        if not self.write_failure_marker:
            return
        try:
            await self.writer.write_failure(self._spreadsheet, task, error)
        except PersistenceError as e:
            self._persistence_errors += 1
            logger.error(f"{task.cell}: failure marker not persisted: {e}")

    async def _execute_report(self, task: ReportTask) -> TaskOutcome:
        outcome = TaskOutcome(
            task_id=task.id, cell=task.cell, column_group=task.column_group,
            status=OutcomeStatus.SUCCEEDED, started_at=utcnow(), attempts=1,
        )
        spreadsheet = self._spreadsheet
        answer = await self.writer.read_cell(spreadsheet, f"{task.source_column}{task.row}")
        if not self.answer_filter.has_real_answer(answer):
            outcome.status = OutcomeStatus.SKIPPED
            outcome.error = "no_answer"
            return outcome

        if self.context.reports is None:
            outcome.status = OutcomeStatus.FAILED
            outcome.error = "No report builder configured"
            return outcome

        fragments = []
        for column in task.prompt_columns:
            text = (await self.writer.read_cell(spreadsheet, f"{column}{task.row}")).strip()
            if text:
                fragments.append(text)

        url = await self.context.reports.build_report(ReportRequest(
            cell=task.cell,
            row=task.row,
            ai_type=task.ai_type,
            source_column=task.source_column,
            prompt="\n".join(fragments),
            answer=answer,
        ))
        outcome.response_text = url
        outcome.written_at = utcnow()
        try:
            await self.writer.write_report_link(spreadsheet, task, url)
            outcome.persisted = True
            self._written.append(task.cell)
        except PersistenceError as e:
            self._persistence_errors += 1
            outcome.error = str(e)
            logger.error(f"{task.cell}: report link not persisted: {e}")
        return outcome
