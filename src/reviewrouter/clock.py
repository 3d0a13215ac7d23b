"""Time helpers shared by routing and escalation.

All timestamps handled by ReviewRouter are timezone-aware UTC datetimes.
Some database backends (SQLite) hand back naive datetimes; ``as_utc``
normalizes those before any arithmetic.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Coerce a datetime to aware UTC, treating naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def hours_between(start: datetime, end: datetime) -> float:
    """Elapsed hours from start to end (negative if end precedes start)."""
    return (as_utc(end) - as_utc(start)).total_seconds() / 3600.0
