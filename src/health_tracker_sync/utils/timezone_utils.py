"""
Timezone and datetime utilities.

Provides utilities for handling timezone-aware datetime operations and
calendar-day bucketing in the user's configured timezone.
"""

from datetime import date, datetime, timedelta

import pytz
from dateutil import parser


def make_timezone_aware(
    dt: datetime, timezone_str: str = "UTC", assume_local: bool = False
) -> datetime:
    """
    Make a datetime object timezone-aware.

    Args:
        dt: Datetime object (may be naive or aware).
        timezone_str: Timezone string (e.g., "America/Santiago").
        assume_local: If True and dt is naive, assume it's in timezone_str.

    Returns:
        Timezone-aware datetime object.
    """
    tz = pytz.timezone(timezone_str)

    if dt.tzinfo is None:
        if assume_local:
            return tz.localize(dt)
        else:
            return pytz.utc.localize(dt).astimezone(tz)
    else:
        return dt.astimezone(tz)


def parse_datetime(value: str, timezone_str: str = "UTC") -> datetime:
    """
    Parse a datetime string into a timezone-aware datetime.

    Naive strings are interpreted in ``timezone_str``.

    Args:
        value: Date/time string (various formats supported).
        timezone_str: Timezone to assign to naive values.

    Returns:
        Timezone-aware datetime object.
    """
    dt = parser.parse(value)

    if dt.tzinfo is None:
        return make_timezone_aware(dt, timezone_str, assume_local=True)
    return dt


def ensure_aware(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC; return aware ones unchanged."""
    if dt.tzinfo is None:
        return pytz.utc.localize(dt)
    return dt


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(pytz.utc)


def local_day(dt: datetime, timezone_str: str = "UTC") -> date:
    """
    Return the calendar day of a timestamp in the given timezone.

    Args:
        dt: Timestamp (naive values are treated as UTC).
        timezone_str: Timezone that defines day boundaries.

    Returns:
        Calendar date.
    """
    return make_timezone_aware(dt, timezone_str).date()


def days_ago(days: int, now: datetime | None = None) -> datetime:
    """Return the instant ``days`` days before ``now`` (default: current UTC time)."""
    return (now or utc_now()) - timedelta(days=days)


def seconds_between(ts1: datetime, ts2: datetime) -> float:
    """Absolute distance between two timestamps in seconds."""
    return abs((ts1 - ts2).total_seconds())


def timestamps_match(ts1: datetime, ts2: datetime, tolerance_seconds: float = 60) -> bool:
    """
    Check if two timestamps are strictly closer than a tolerance.

    Args:
        ts1: First timestamp.
        ts2: Second timestamp.
        tolerance_seconds: Tolerance in seconds.

    Returns:
        True if timestamps are within tolerance, False otherwise.
    """
    return seconds_between(ts1, ts2) < tolerance_seconds
