"""Pipeline stages"""

from .s0_reception import GridReceiver
from .s1_structure import StructureAnalyzer
from .s2_tasks import TaskGenerator
from .s3_stream import StreamScheduler

__all__ = [
    "GridReceiver",
    "StructureAnalyzer",
    "TaskGenerator",
    "StreamScheduler",
]
