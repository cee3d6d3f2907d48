"""Stage 3: Stream Processing"""

from .scheduler import StreamScheduler
from .slots import SlotTable
from .windows import determine_ai_url, quadrant_bounds

__all__ = ["StreamScheduler", "SlotTable", "determine_ai_url", "quadrant_bounds"]
