"""
Streak and statistics calculations.

All functions are pure: they take a snapshot of a tracker's entries (any
order) and derive goal-met days, streaks, trends and averages from it.
Days are calendar days in the configured timezone.
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timedelta

import pandas as pd

from health_tracker_sync.domain.entries import Entry
from health_tracker_sync.domain.sync import StreakState
from health_tracker_sync.services.entry_store import sort_entries
from health_tracker_sync.utils.timezone_utils import days_ago, local_day, utc_now

logger = logging.getLogger(__name__)

TREND_WINDOW = 7


def _frame(entries: Iterable[Entry], timezone_str: str) -> pd.DataFrame:
    records = [
        {"date": local_day(e.timestamp, timezone_str), "kind": e.kind or "", "value": e.value}
        for e in entries
    ]
    return pd.DataFrame(records, columns=["date", "kind", "value"])


def daily_totals(entries: Iterable[Entry], timezone_str: str = "UTC") -> pd.Series:
    """
    Sum entry values per calendar day.

    Args:
        entries: Entries of one tracker.
        timezone_str: Timezone that defines day boundaries.

    Returns:
        Series indexed by ``date`` with the day's total, oldest day first.
    """
    df = _frame(entries, timezone_str)
    if df.empty:
        return pd.Series(dtype=float, name="value")
    return df.groupby("date")["value"].sum().sort_index()


def goal_met_days(
    entries: Iterable[Entry],
    goal: float | None,
    timezone_str: str = "UTC",
) -> set[date]:
    """
    Days whose total reaches ``goal``.

    Args:
        entries: Entries of one tracker.
        goal: Daily threshold, or None when any entry meets the day's goal.
        timezone_str: Timezone that defines day boundaries.

    Returns:
        Set of calendar days meeting the goal.
    """
    totals = daily_totals(entries, timezone_str)
    if goal is None:
        return set(totals.index)
    return set(totals[totals >= goal].index)


def current_streak(met_days: Iterable[date], today: date) -> int:
    """
    Consecutive goal-met days ending today, or yesterday when today has no
    data yet. Any missing day breaks the streak.
    """
    days = set(met_days)
    if today in days:
        day = today
    elif today - timedelta(days=1) in days:
        day = today - timedelta(days=1)
    else:
        return 0

    streak = 0
    while day in days:
        streak += 1
        day -= timedelta(days=1)
    return streak


def longest_streak(met_days: Iterable[date]) -> int:
    """Longest run of consecutive goal-met calendar days."""
    longest = 0
    run = 0
    previous: date | None = None

    for day in sorted(set(met_days)):
        if previous is not None and day - previous == timedelta(days=1):
            run += 1
        else:
            run = 1
        longest = max(longest, run)
        previous = day

    return longest


def compute_streaks(
    entries: Iterable[Entry],
    goal: float | None,
    today: date | None = None,
    timezone_str: str = "UTC",
) -> StreakState:
    """
    Derive the current and longest streak of a tracker.

    Args:
        entries: Entries of one tracker.
        goal: Daily threshold, or None for presence-based goals.
        today: Reference day (default: today in ``timezone_str``).
        timezone_str: Timezone that defines day boundaries.
    """
    days = goal_met_days(entries, goal, timezone_str)
    if today is None:
        today = local_day(utc_now(), timezone_str)
    return StreakState(current=current_streak(days, today), longest=longest_streak(days))


def trend(entries: Sequence[Entry]) -> float | None:
    """
    Newest value minus the value up to seven readings back.

    Returns:
        The difference, or None with fewer than two entries.
    """
    recent = sort_entries(entries)[:TREND_WINDOW]
    if len(recent) < 2:
        return None
    return recent[0].value - recent[-1].value


def average(entries: Sequence[Entry]) -> float | None:
    """Arithmetic mean of all values, or None when there are no entries."""
    if not entries:
        return None
    return sum(e.value for e in entries) / len(entries)


def latest(entries: Iterable[Entry]) -> Entry | None:
    """Most recent entry."""
    return max(entries, key=lambda e: e.timestamp, default=None)


def change_since(entries: Sequence[Entry], day: date, timezone_str: str = "UTC") -> float | None:
    """
    Change between the latest value and the last reading on or before ``day``.

    Returns:
        The difference, or None when no reading exists on or before ``day``.
    """
    newest = latest(entries)
    if newest is None:
        return None

    reference = next(
        (e for e in sort_entries(entries) if local_day(e.timestamp, timezone_str) <= day),
        None,
    )
    if reference is None:
        return None
    return newest.value - reference.value


def average_over_days(
    entries: Iterable[Entry],
    days: int = TREND_WINDOW,
    now: datetime | None = None,
) -> float | None:
    """Mean value of the entries recorded during the last ``days`` days."""
    since = days_ago(days, now)
    return average([e for e in entries if e.timestamp >= since])


def period_trend(
    entries: Sequence[Entry],
    days: int = TREND_WINDOW,
    now: datetime | None = None,
) -> float | None:
    """
    Mean of the last ``days`` days minus the mean of the ``days`` before.

    Returns:
        The difference, or None when either period has no entries.
    """
    now = now or utc_now()
    recent_start = days_ago(days, now)
    older_start = days_ago(2 * days, now)

    recent = [e for e in entries if recent_start <= e.timestamp <= now]
    older = [e for e in entries if older_start <= e.timestamp < recent_start]
    if not recent or not older:
        return None
    return average(recent) - average(older)


def total_for_day(entries: Iterable[Entry], day: date, timezone_str: str = "UTC") -> float:
    """Sum of the values recorded on ``day``."""
    totals = daily_totals(entries, timezone_str)
    return float(totals.get(day, 0.0))


def progress_for_day(
    entries: Iterable[Entry],
    day: date,
    goal: float,
    timezone_str: str = "UTC",
) -> float:
    """Fraction of ``goal`` reached on ``day``, capped at 1.0."""
    if goal <= 0:
        return 0.0
    return min(total_for_day(entries, day, timezone_str) / goal, 1.0)


def totals_by_kind(
    entries: Iterable[Entry],
    day: date | None = None,
    timezone_str: str = "UTC",
) -> dict[str, float]:
    """
    Sum of values per entry kind, optionally restricted to one day.

    Returns:
        Mapping of kind (e.g. drink type) to total.
    """
    df = _frame(entries, timezone_str)
    if day is not None:
        df = df[df["date"] == day]
    if df.empty:
        return {}
    totals = df.groupby("kind")["value"].sum()
    return {str(kind): float(total) for kind, total in totals.items()}
