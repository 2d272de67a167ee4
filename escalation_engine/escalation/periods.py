"""
Calendar periods in the escalation timezone.

A period is the local calendar date of as_of. Database bounds are
returned as naive UTC to match the storage convention.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def localize(as_of: Optional[datetime], tz: ZoneInfo) -> datetime:
    """Aware local datetime for as_of (now when None, UTC when naive)."""
    if as_of is None:
        return datetime.now(tz)
    if as_of.tzinfo is None:
        as_of = as_of.replace(tzinfo=timezone.utc)
    return as_of.astimezone(tz)


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def period_of(as_of: datetime, tz: ZoneInfo) -> date:
    return localize(as_of, tz).date()


def period_bounds(period: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """[start, end) of a local calendar day, as naive UTC."""
    start = datetime.combine(period, time.min, tzinfo=tz)
    end = datetime.combine(period + timedelta(days=1), time.min, tzinfo=tz)
    return to_utc_naive(start), to_utc_naive(end)


def deadline_passed(as_of: datetime, deadline: Optional[time], tz: ZoneInfo) -> bool:
    """True once the local time-of-day of as_of is at or past deadline."""
    if deadline is None:
        return False
    local = localize(as_of, tz)
    return local.time().replace(second=0, microsecond=0) >= deadline.replace(second=0, microsecond=0)
