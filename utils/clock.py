"""Clock helpers for markers and log sections"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from config import settings


LOG_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def fixed_zone(offset_hours: Optional[int] = None) -> timezone:
    """Fixed-offset zone used for everything written into cells (UTC+9 by default)"""
    hours = settings.MARKER_UTC_OFFSET_HOURS if offset_hours is None else offset_hours
    return timezone(timedelta(hours=hours))


def to_local(moment: datetime, offset_hours: Optional[int] = None) -> datetime:
    """Convert an aware datetime to the fixed zone, independent of the host timezone"""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(fixed_zone(offset_hours))


def format_local(moment: datetime, offset_hours: Optional[int] = None) -> str:
    return to_local(moment, offset_hours).strftime(LOG_TIME_FORMAT)
