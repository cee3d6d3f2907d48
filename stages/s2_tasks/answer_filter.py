"""Existing-answer filter"""

import re
from datetime import datetime
from typing import Optional

from stages.s4_exclusive import ExclusiveControl
from stages.s5_output.result_writer import FAILURE_PREFIX


# Cell values that mean "nothing written yet"
EMPTY_MARKERS = [
    "TODO",
    "PENDING",
    "-",
    "N/A",
    "未回答",
    "未処理",
    "処理中",
    "処理完了",
    "エラー",
    "ERROR",
]

# Substrings that flag a failed earlier attempt, eligible for retry
ERROR_SUBSTRINGS = ["error", "failed", "×", "エラー"]

_BRACKETED_RE = re.compile(r"^[\[{<【].*[\]}>】]$", re.DOTALL)


class AnswerFilter:
    """Decides whether an answer cell already holds a usable answer"""

    def __init__(self, guard: Optional[ExclusiveControl] = None):
        self.guard = guard or ExclusiveControl()

    def is_placeholder(self, value: Optional[str]) -> bool:
        trimmed = (value or "").strip()
        if not trimmed:
            return True

        upper = trimmed.upper()
        if any(upper == marker.upper() for marker in EMPTY_MARKERS):
            return True

        if _BRACKETED_RE.match(trimmed):
            inner = trimmed[1:-1].strip().upper()
            if any(marker.upper() in inner for marker in EMPTY_MARKERS):
                return True

        return False

    def is_error(self, value: Optional[str]) -> bool:
        """
        Error text from an earlier attempt.

        Error words count on the first line only, so an answer that merely
        discusses errors further down is kept. A line carrying the failure
        prefix counts wherever it appears.
        """
        lines = (value or "").strip().split("\n")
        if any(line.strip().startswith(FAILURE_PREFIX) for line in lines):
            return True
        first_line = lines[0].lower()
        return any(token in first_line for token in ERROR_SUBSTRINGS)

    def has_real_answer(self, value: Optional[str]) -> bool:
        """Non-empty, non-placeholder, non-error text that is not a claim marker"""
        if self.is_placeholder(value) or self.is_error(value):
            return False
        return not self.guard.is_marker(value)

    def is_answered(
        self,
        value: Optional[str],
        feature_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Whether a cell should be left alone.

        A claim marker counts as answered while it is live and as not
        answered once it has timed out. This worker's own markers never
        count, so cells left claimed by a stopped run are planned again.
        """
        if self.guard.is_marker(value):
            if self.guard.is_own_marker(value):
                return False
            return not self.guard.is_timeout(value, feature_name, now)
        return self.has_real_answer(value)

    def needs_answer(
        self,
        value: Optional[str],
        feature_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        return not self.is_answered(value, feature_name, now)
