"""Datetime helpers for the timezone-aware UTC timestamps used across the engine."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize a datetime to aware UTC.

    SQLite hands ``DateTime(timezone=True)`` values back without tzinfo; those
    were written as UTC, so they are tagged rather than converted.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def day_of_week(value: datetime) -> int:
    """Return the weekday numbered 1-7 with Sunday as 1."""
    return (value.weekday() + 1) % 7 + 1


def hours_between(earlier: datetime, later: datetime) -> float:
    return (as_utc(later) - as_utc(earlier)) / timedelta(hours=1)
