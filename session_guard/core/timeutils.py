"""
Clock & calendar helpers.

Everything is stored in UTC.  Calendar periods (today / week / month /
year) are cut in the configured reference zone and converted back to UTC
before they reach a query.
"""

import enum
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from session_guard.core.config import settings


class Period(str, enum.Enum):
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive values, convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def elapsed_minutes(start: datetime, end: datetime) -> int:
    """Whole minutes between two instants, never negative."""
    seconds = (as_utc(end) - as_utc(start)).total_seconds()
    return max(int(seconds // 60), 0)


def reference_zone() -> ZoneInfo:
    return ZoneInfo(settings.REFERENCE_TIMEZONE)


def period_bounds(
    period: Period,
    now: datetime,
    tz: ZoneInfo | None = None,
) -> tuple[datetime, datetime]:
    """
    Return the ``[start, end)`` UTC interval of the calendar period that
    contains ``now``.  Weeks start on Monday.
    """
    tz = tz or reference_zone()
    local = as_utc(now).astimezone(tz)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)

    if period is Period.TODAY:
        start = midnight
        end = _local_shift(start, days=1, tz=tz)
    elif period is Period.WEEK:
        start = _local_shift(midnight, days=-midnight.weekday(), tz=tz)
        end = _local_shift(start, days=7, tz=tz)
    elif period is Period.MONTH:
        start = midnight.replace(day=1)
        if start.month == 12:
            end = start.replace(year=start.year + 1, month=1)
        else:
            end = start.replace(month=start.month + 1)
    else:
        start = midnight.replace(month=1, day=1)
        end = start.replace(year=start.year + 1)

    return _normalize(start, tz), _normalize(end, tz)


def _local_shift(value: datetime, *, days: int, tz: ZoneInfo) -> datetime:
    # Wall-clock arithmetic: keep midnight at midnight across DST changes.
    shifted = value.replace(tzinfo=None) + timedelta(days=days)
    return shifted.replace(tzinfo=tz)


def _normalize(value: datetime, tz: ZoneInfo) -> datetime:
    return value.replace(tzinfo=None).replace(tzinfo=tz).astimezone(timezone.utc)
