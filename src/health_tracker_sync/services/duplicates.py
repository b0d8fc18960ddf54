"""
Duplicate detection.

Decides whether two records describe the same real-world event by
comparing them inside a tolerance window. The tolerances are policy, not
physics: a loose window merges distinct events, a tight one lets duplicates
through, and each call site picks its own ``TolerancePolicy``.
"""

from collections.abc import Callable, Iterable
from datetime import datetime
from typing import NamedTuple, TypeVar

from health_tracker_sync.utils.parameters import TolerancePolicy
from health_tracker_sync.utils.timezone_utils import timestamps_match

T = TypeVar("T")


class MatchKey(NamedTuple):
    """
    The parts of a record that identify the event it describes.

    Attributes:
        times: Timestamps compared pairwise (one for point events, bed and
            wake time for sleep).
        value: Canonical value, or None when values are not compared.
        kind: Sub-type (e.g. drink type), or None for single-kind trackers.
    """

    times: tuple[datetime, ...]
    value: float | None = None
    kind: str | None = None


def keys_match(candidate: MatchKey, existing: MatchKey, policy: TolerancePolicy) -> bool:
    """
    Check whether two keys describe the same event under ``policy``.

    Every timestamp must be strictly closer than the time tolerance, values
    strictly closer than the value tolerance (when the policy compares
    values and both sides have one), and kinds must agree when both are set.
    """
    if len(candidate.times) != len(existing.times):
        return False

    if candidate.kind is not None and existing.kind is not None and candidate.kind != existing.kind:
        return False

    for ts1, ts2 in zip(candidate.times, existing.times):
        if not timestamps_match(ts1, ts2, policy.time_tolerance_seconds):
            return False

    if policy.value_tolerance is not None and candidate.value is not None and existing.value is not None:
        if abs(candidate.value - existing.value) >= policy.value_tolerance:
            return False

    return True


def is_duplicate(candidate: MatchKey, existing: Iterable[MatchKey], policy: TolerancePolicy) -> bool:
    """
    Check a candidate against existing records.

    Args:
        candidate: Key of the record being considered.
        existing: Keys of the records already known.
        policy: Tolerance window.

    Returns:
        True if any existing record matches the candidate.
    """
    return any(keys_match(candidate, other, policy) for other in existing)


def find_match(
    candidate: MatchKey,
    existing: Iterable[T],
    policy: TolerancePolicy,
    key: Callable[[T], MatchKey],
) -> T | None:
    """
    Return the first existing record matching the candidate.

    Args:
        candidate: Key of the record being considered.
        existing: Records to search.
        policy: Tolerance window.
        key: Extracts the match key of an existing record.

    Returns:
        The matching record, or None.
    """
    for item in existing:
        if keys_match(candidate, key(item), policy):
            return item
    return None
