"""Fixed-size window slot table"""

import logging
from typing import Dict, List, Optional

from core.models import WindowSlot, WindowHandle
from core.enums import AIType
from core.exceptions import SlotUnavailableError
from config import settings


logger = logging.getLogger(__name__)


class SlotTable:
    """
    Positions 0..capacity-1, each holding at most one WindowSlot.

    Reservation is a single insert-if-absent on the position map with no
    await in between, so two claims in the same event loop can never pick
    the same position.
    """

    def __init__(self, capacity: Optional[int] = None):
        self.capacity = capacity or settings.MAX_CONCURRENT_WINDOWS
        self._slots: Dict[int, WindowSlot] = {}

    def try_reserve(self, column: str, ai_type: AIType, task_id: str) -> Optional[int]:
        """First free position, reserved for task_id; None when every position is taken"""
        for position in range(self.capacity):
            candidate = WindowSlot(position=position, bound_column=column, ai_type=ai_type, task_id=task_id)
            if self._slots.setdefault(position, candidate) is candidate:
                logger.debug(f"Slot {position} reserved for {task_id}")
                return position
        return None

    def reserve_or_raise(self, column: str, ai_type: AIType, task_id: str) -> int:
        position = self.try_reserve(column, ai_type, task_id)
        if position is None:
            raise SlotUnavailableError(f"All {self.capacity} window slots are in use")
        return position

    def rebind(self, position: int, column: str, task_id: str) -> WindowSlot:
        """Hand an occupied slot, window included, to the next task of the same column"""
        slot = self._slots[position]
        slot.bound_column = column
        slot.task_id = task_id
        return slot

    def bind(self, position: int, handle: WindowHandle) -> WindowSlot:
        slot = self._slots[position]
        slot.window_id = handle.window_id
        slot.tab_id = handle.tab_id
        return slot

    def get(self, position: int) -> Optional[WindowSlot]:
        return self._slots.get(position)

    def release(self, position: int) -> Optional[WindowSlot]:
        slot = self._slots.pop(position, None)
        if slot:
            logger.debug(f"Slot {position} released ({slot.bound_column})")
        return slot

    @property
    def occupied(self) -> int:
        return len(self._slots)

    @property
    def free(self) -> int:
        return self.capacity - len(self._slots)

    def active_windows(self) -> List[WindowSlot]:
        """Slots that hold an opened window"""
        return [slot for slot in self._slots.values() if slot.window_id is not None]

    def clear(self) -> List[WindowSlot]:
        slots = list(self._slots.values())
        self._slots.clear()
        return slots
