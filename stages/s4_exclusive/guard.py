"""Exclusive control - in-cell claim markers and staleness rules"""

import logging
import re
from datetime import datetime, timedelta
from typing import Dict, Optional

from core.models import ExclusiveMarker
from utils.clock import utcnow, fixed_zone
from utils.synonyms import normalize_feature
from config import settings


logger = logging.getLogger(__name__)

SEPARATOR = "_"
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^\d{2}:\d{2}:\d{2}$")


class ExclusiveControl:
    """
    Creates and adjudicates `prefix_YYYY-MM-DD_HH:MM:SS_workerId[_feature]` markers.

    Timestamps are written in a fixed UTC offset regardless of the host
    timezone. A marker without a parseable timestamp is treated as timed
    out, so a crashed worker never locks a cell forever.
    """

    def __init__(
        self,
        worker_id: Optional[str] = None,
        prefix: Optional[str] = None,
        timeouts: Optional[Dict[str, float]] = None,
        utc_offset_hours: Optional[int] = None,
    ):
        self.worker_id = self._sanitize(worker_id or settings.WORKER_ID or "worker")
        self.prefix = prefix or settings.MARKER_PREFIX
        # Seconds, keyed by normalized feature name
        self.timeouts = dict(timeouts) if timeouts is not None else settings.get_feature_timeouts()
        self.zone = fixed_zone(utc_offset_hours)

    @staticmethod
    def _sanitize(value: str) -> str:
        return str(value).strip().replace(SEPARATOR, "-")

    def create_marker(
        self,
        worker_id: Optional[str] = None,
        feature_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """Marker string claiming a cell for worker_id"""
        moment = (now or utcnow()).astimezone(self.zone)
        parts = [
            self.prefix,
            moment.strftime("%Y-%m-%d"),
            moment.strftime("%H:%M:%S"),
            self._sanitize(worker_id) if worker_id else self.worker_id,
        ]
        if feature_name:
            parts.append(feature_name)
        return SEPARATOR.join(parts)

    def is_marker(self, value: Optional[str]) -> bool:
        """Whether a cell value is a claim marker of any format"""
        return bool(value) and str(value).strip().startswith(self.prefix)

    def parse_marker(self, value: Optional[str]) -> Optional[ExclusiveMarker]:
        """Parse a cell value; None when it is not a marker at all"""
        if not self.is_marker(value):
            return None

        raw = str(value).strip()
        rest = raw[len(self.prefix):]
        if not rest.startswith(SEPARATOR):
            # Bare prefix or foreign text after it
            return ExclusiveMarker(raw=raw, prefix=self.prefix, legacy=True)

        parts = rest[1:].split(SEPARATOR)
        if len(parts) < 3 or not _DATE_RE.match(parts[0]) or not _TIME_RE.match(parts[1]):
            return ExclusiveMarker(raw=raw, prefix=self.prefix, legacy=True)

        try:
            naive = datetime.strptime(f"{parts[0]} {parts[1]}", "%Y-%m-%d %H:%M:%S")
        except ValueError:
            return ExclusiveMarker(raw=raw, prefix=self.prefix, legacy=True)

        feature = SEPARATOR.join(parts[3:]) or None
        return ExclusiveMarker(
            raw=raw,
            prefix=self.prefix,
            timestamp=naive.replace(tzinfo=self.zone),
            worker_id=parts[2] or None,
            feature_name=feature,
        )

    def is_valid_marker(self, value: Optional[str]) -> bool:
        marker = self.parse_marker(value)
        return marker is not None and marker.valid

    def timeout_for(self, feature_name: Optional[str] = None) -> float:
        """Timeout in seconds for a feature; unknown features get the default"""
        key = normalize_feature(feature_name)
        if key and key in self.timeouts:
            return self.timeouts[key]
        return self.timeouts.get("default", 300.0)

    def age(self, value: Optional[str], now: Optional[datetime] = None) -> Optional[timedelta]:
        marker = self.parse_marker(value)
        if marker is None or not marker.valid:
            return None
        return (now or utcnow()) - marker.timestamp

    def is_timeout(
        self,
        value: Optional[str],
        feature_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Whether a marker is stale.

        The caller's feature wins over the feature recorded in the marker.
        Legacy and unparseable markers are always stale.
        """
        marker = self.parse_marker(value)
        if marker is None or not marker.valid:
            logger.debug(f"Legacy or unparseable marker treated as timed out: {value!r}")
            return True

        feature = feature_name or marker.feature_name
        timeout = self.timeout_for(feature)
        age = self.age(value, now).total_seconds()
        timed_out = age > timeout
        if timed_out:
            logger.info(
                f"Marker timed out: worker={marker.worker_id} feature={feature or 'default'} "
                f"age={int(age // 60)}min timeout={int(timeout // 60)}min"
            )
        return timed_out

    def get_recommended_wait_time(
        self,
        value: Optional[str],
        feature_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> float:
        """Seconds until the marker goes stale, 0 when it already is"""
        marker = self.parse_marker(value)
        if marker is None or not marker.valid:
            return 0.0
        timeout = self.timeout_for(feature_name or marker.feature_name)
        return max(0.0, timeout - self.age(value, now).total_seconds())

    def is_own_marker(self, value: Optional[str], worker_id: Optional[str] = None) -> bool:
        marker = self.parse_marker(value)
        if marker is None or not marker.valid:
            return False
        expected = self._sanitize(worker_id) if worker_id else self.worker_id
        return marker.worker_id == expected

    def is_live_foreign_marker(
        self,
        value: Optional[str],
        feature_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """A fresh claim by another worker, the only case that blocks a task"""
        if not self.is_marker(value):
            return False
        if self.is_own_marker(value):
            return False
        return not self.is_timeout(value, feature_name, now)
