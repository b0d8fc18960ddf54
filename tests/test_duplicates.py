"""Unit tests for duplicate detection."""

from datetime import datetime, timedelta

import pytz

from health_tracker_sync.services.duplicates import MatchKey, find_match, is_duplicate, keys_match
from health_tracker_sync.utils.parameters import TolerancePolicy

T0 = datetime(2024, 1, 15, 10, 30, 0, tzinfo=pytz.UTC)
WEIGHT_POLICY = TolerancePolicy(time_tolerance_seconds=60, value_tolerance=0.1)


def test_match_within_time_and_value_tolerance() -> None:
    """Test that close timestamps and values describe the same event."""
    candidate = MatchKey((T0 + timedelta(seconds=30),), 150.05)
    existing = MatchKey((T0,), 150.0)

    if not keys_match(candidate, existing, WEIGHT_POLICY):
        raise AssertionError("Expected entries 30s / 0.05 lb apart to match")


def test_time_tolerance_is_strict() -> None:
    """Test that a difference equal to the tolerance does not match."""
    candidate = MatchKey((T0 + timedelta(seconds=60),), 150.0)
    existing = MatchKey((T0,), 150.0)

    if keys_match(candidate, existing, WEIGHT_POLICY):
        raise AssertionError("Expected a 60s difference not to match a 60s tolerance")


def test_value_difference_breaks_match() -> None:
    """Test that values further apart than the tolerance do not match."""
    candidate = MatchKey((T0,), 150.5)
    existing = MatchKey((T0,), 150.0)

    if keys_match(candidate, existing, WEIGHT_POLICY):
        raise AssertionError("Expected 0.5 lb difference not to match")


def test_kind_must_agree() -> None:
    """Test that drinks of different types never match."""
    policy = TolerancePolicy(time_tolerance_seconds=300, value_tolerance=0.01)
    water = MatchKey((T0,), 8.0, "water")
    coffee = MatchKey((T0,), 8.0, "coffee")

    if keys_match(water, coffee, policy):
        raise AssertionError("Expected water and coffee not to match")

    if not keys_match(water, MatchKey((T0,), 8.0, "water"), policy):
        raise AssertionError("Expected identical water entries to match")


def test_sleep_compares_both_times_without_value() -> None:
    """Test interval keys: both bed and wake time must be within tolerance."""
    policy = TolerancePolicy(time_tolerance_seconds=60)
    bed = T0 - timedelta(hours=8)
    session = MatchKey((bed, T0))

    if not keys_match(MatchKey((bed + timedelta(seconds=20), T0)), session, policy):
        raise AssertionError("Expected sessions 20s apart to match")

    if keys_match(MatchKey((bed, T0 + timedelta(minutes=30))), session, policy):
        raise AssertionError("Expected sessions with different wake times not to match")


def test_is_duplicate_and_find_match() -> None:
    """Test searching a collection for a matching record."""
    records = [(T0 - timedelta(hours=2), 149.0), (T0, 150.0), (T0 + timedelta(seconds=10), 150.0)]
    candidate = MatchKey((T0 + timedelta(seconds=5),), 150.02)

    if not is_duplicate(candidate, [MatchKey((ts,), v) for ts, v in records], WEIGHT_POLICY):
        raise AssertionError("Expected candidate to be a duplicate")

    match = find_match(candidate, records, WEIGHT_POLICY, key=lambda r: MatchKey((r[0],), r[1]))
    if match != records[1]:
        raise AssertionError(f"Expected first matching record, got {match}")

    far = MatchKey((T0 + timedelta(hours=1),), 150.0)
    if find_match(far, records, WEIGHT_POLICY, key=lambda r: MatchKey((r[0],), r[1])) is not None:
        raise AssertionError("Expected no match an hour away")
