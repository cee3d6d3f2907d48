"""Progress tracking"""

import time
from abc import ABC, abstractmethod

from core.models import StreamStatus


class ProgressTracker(ABC):
    """Abstract progress tracker"""

    @abstractmethod
    def start_stage(self, stage_num: int, stage_name: str):
        """Start a stage"""
        pass

    @abstractmethod
    def complete_stage(self, stage_num: int):
        """Complete a stage"""
        pass

    @abstractmethod
    def fail(self, stage_num: int, message: str):
        """Mark stage as failed"""
        pass

    @abstractmethod
    def complete(self):
        """Mark pipeline as complete"""
        pass

    @abstractmethod
    def report_status(self, status: StreamStatus):
        """Show a scheduler status snapshot"""
        pass


class ConsoleProgress(ProgressTracker):
    """Console-based progress tracker"""

    def __init__(self):
        self.stages = {
            0: "Grid Reception",
            1: "Structure Analysis",
            2: "Task Generation",
            3: "Stream Processing",
        }
        self.started = {}

    def _elapsed(self, stage_num: int) -> str:
        started = self.started.pop(stage_num, None)
        return f" ({time.monotonic() - started:.1f}s)" if started is not None else ""

    def start_stage(self, stage_num: int, stage_name: str):
        self.started[stage_num] = time.monotonic()
        print(f"[◉] Stage {stage_num}: {stage_name}...")

    def complete_stage(self, stage_num: int):
        print(f"[✓] Stage {stage_num}: {self.stages.get(stage_num, 'Unknown')} complete{self._elapsed(stage_num)}")

    def fail(self, stage_num: int, message: str):
        print(f"[✗] Stage {stage_num}: {self.stages.get(stage_num, 'Unknown')} failed{self._elapsed(stage_num)} - {message}")

    def complete(self):
        """Mark pipeline as complete"""
        print("\n[✓] Pipeline complete!")

    def report_status(self, status: StreamStatus):
        """Show a scheduler status snapshot"""
        print(
            f"    processed {status.processed_cells} | pending {status.pending_cells} | "
            f"errored {status.errored_cells} | write errors {status.persistence_errors} | "
            f"windows {status.active_windows}"
        )
        for group, progress in status.per_column_progress.items():
            row = f" row {progress.current_row}" if progress.current_row else ""
            print(f"    {group}: {progress.completed}/{progress.total} ({progress.percentage}%){row} [{progress.state.value}]")
