"""Exclusive control markers"""

from .guard import ExclusiveControl

__all__ = ["ExclusiveControl"]
