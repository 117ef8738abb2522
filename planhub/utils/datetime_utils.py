"""
Centralized datetime and timezone utilities.

All timestamps in the core are naive datetimes in the deployment's local
timezone; these helpers are the only place that converts. The timezone is
always passed in by the caller, which takes it from its Settings.
"""

from datetime import datetime, timedelta
from typing import Optional
import pytz


def get_local_tz(timezone: str) -> pytz.BaseTzInfo:
    """Get the named timezone."""
    return pytz.timezone(timezone)


def get_local_now(timezone: str) -> datetime:
    """Get current time in the given timezone (naive)."""
    return datetime.now(get_local_tz(timezone)).replace(tzinfo=None)


def to_naive_local(dt: Optional[datetime], timezone: str) -> Optional[datetime]:
    """
    Convert any datetime to naive local time for storage.

    Aware datetimes are converted to the local timezone and stripped;
    naive datetimes are assumed to already be local.
    """
    if dt is None:
        return None

    if dt.tzinfo is not None:
        return dt.astimezone(get_local_tz(timezone)).replace(tzinfo=None)

    return dt


def is_overdue(deadline: Optional[datetime], now: datetime) -> bool:
    """
    Check if a deadline has passed.

    Args:
        deadline: Naive datetime in local time
        now: Reference time, naive local
    """
    if deadline is None:
        return False

    return deadline < now


def is_due_within(deadline: Optional[datetime], days: int, now: datetime) -> bool:
    """True when the (naive local) deadline falls between now and now + days."""
    if deadline is None:
        return False

    return now <= deadline <= now + timedelta(days=days)


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes elapsed between two naive local datetimes (never negative)."""
    seconds = (end - start).total_seconds()
    return max(0, int(seconds // 60))
