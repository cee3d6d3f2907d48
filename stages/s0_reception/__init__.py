"""Stage 0: Grid Reception"""

from .grid_reader import GridReceiver

__all__ = ["GridReceiver"]
