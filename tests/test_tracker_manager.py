"""Tests for the tracker manager facade."""

import asyncio
from datetime import timedelta

import pytest

from health_tracker_sync.domain.entries import DrinkEntry, DrinkType, EntrySource, SleepEntry, WeightEntry
from health_tracker_sync.infrastructure.health_store.client import HealthDataType, RemoteSample
from health_tracker_sync.utils.exceptions import DuplicateEntryError, SyncDisabledError, ValidationError


def test_add_entry_validates_input(make_manager, recent, run) -> None:
    """Test per-tracker validation of manual entries."""
    weight = make_manager("weight")
    with pytest.raises(ValidationError):
        run(weight.add_entry(WeightEntry(timestamp=recent(1), weight_lbs=-5.0)))

    sleep = make_manager("sleep")
    wake = recent(1)
    with pytest.raises(ValidationError):
        run(sleep.add_entry(SleepEntry(bed_time=wake - timedelta(minutes=10), timestamp=wake)))

    with pytest.raises(ValidationError):
        run(sleep.add_entry(SleepEntry(bed_time=wake - timedelta(hours=20), timestamp=wake)))

    hydration = make_manager("hydration")
    with pytest.raises(ValidationError):
        run(hydration.add_entry(DrinkEntry(timestamp=recent(1), amount_oz=0.0)))

    if weight.entries or sleep.entries or hydration.entries:
        raise AssertionError("Expected invalid entries not to be stored")


def test_manual_duplicate_rejected(make_manager, recent, run) -> None:
    """Test that a manual entry close to an existing one is refused."""
    manager = make_manager("weight")
    run(manager.add_entry(WeightEntry(timestamp=recent(2), weight_lbs=150.0)))

    candidate = WeightEntry(timestamp=recent(2) + timedelta(minutes=10), weight_lbs=150.05)
    if not manager.would_create_duplicate(candidate):
        raise AssertionError("Expected candidate to be flagged as a duplicate")

    with pytest.raises(DuplicateEntryError):
        run(manager.add_entry(candidate))

    run(manager.add_entry(WeightEntry(timestamp=recent(2) + timedelta(minutes=10), weight_lbs=152.0)))
    if len(manager.entries) != 2:
        raise AssertionError(f"Expected 2 entries, got {len(manager.entries)}")


def test_hydration_allows_repeated_drinks(make_manager, recent, run) -> None:
    """Test that hydration has no manual duplicate check."""
    manager = make_manager("hydration")
    entry_time = recent(1)

    async def scenario():
        for _ in range(3):
            await manager.add_entry(DrinkEntry(timestamp=entry_time, amount_oz=8.0))

    run(scenario())

    if len(manager.entries) != 3:
        raise AssertionError(f"Expected 3 identical drinks, got {len(manager.entries)}")


def test_add_entry_mirrors_when_sync_enabled(make_manager, health_store, recent, run) -> None:
    """Test that manual entries are written outward and keep the external id."""
    manager = make_manager("weight")

    async def scenario():
        await manager.enable_sync()
        stored = await manager.add_entry(WeightEntry(timestamp=recent(1), weight_lbs=150.0))
        await manager.close()
        return stored

    stored = run(scenario())
    samples = health_store.samples(HealthDataType.BODY_MASS)

    if len(samples) != 1 or stored.external_id != samples[0].identifier:
        raise AssertionError(f"Expected external id {samples[0].identifier if samples else None}, got {stored.external_id}")

    if manager.entries[0].external_id != stored.external_id or not manager.entries[0].is_manual:
        raise AssertionError("Expected the stored entry to stay manual and carry the external id")


def test_sync_failure_does_not_block_logging(make_manager, health_store, recent, run) -> None:
    """Test that a failed mirror write keeps the local entry."""
    manager = make_manager("weight")

    async def scenario():
        await manager.enable_sync()
        health_store.fail_writes = True
        stored = await manager.add_entry(WeightEntry(timestamp=recent(1), weight_lbs=150.0))
        await manager.close()
        return stored

    stored = run(scenario())

    if stored.external_id is not None or len(manager.entries) != 1:
        raise AssertionError("Expected the entry to be stored locally without an external id")

    if manager.sync_state.last_error is None:
        raise AssertionError("Expected the failure to be recorded")


def test_delete_entry_is_bidirectional(make_manager, health_store, recent, run) -> None:
    """Test deleting mirrored and imported entries removes their samples too."""
    health_store.authorized.add(HealthDataType.BODY_MASS)
    health_store.put(HealthDataType.BODY_MASS, RemoteSample(start=recent(30), value=149.0))
    manager = make_manager("weight")

    async def scenario():
        await manager.enable_sync()
        manual = await manager.add_entry(WeightEntry(timestamp=recent(1), weight_lbs=150.0))
        imported = next(e for e in manager.entries if e.source == EntrySource.EXTERNAL_SYNC)
        removed = [await manager.delete_entry(manual.id), await manager.delete_entry(imported.id)]
        missing = await manager.delete_entry("no-such-id")
        await manager.close()
        return removed, missing

    removed, missing = run(scenario())

    if None in removed or missing is not None:
        raise AssertionError(f"Unexpected delete results: {removed}, {missing}")

    if manager.entries:
        raise AssertionError("Expected no local entries left")

    if health_store.samples(HealthDataType.BODY_MASS):
        raise AssertionError("Expected both samples to be deleted from the health store")


def test_delete_without_external_id_matches_by_tolerance(make_manager, health_store, recent, run) -> None:
    """Test that a mirrored sample is found by time and value when the id is unknown."""
    manager = make_manager("weight")
    entry = WeightEntry(timestamp=recent(3), weight_lbs=151.0)

    async def scenario():
        await manager.add_entry(entry)
        await manager.enable_sync()
        health_store.put(HealthDataType.BODY_MASS, RemoteSample(start=entry.timestamp, value=151.0))
        await manager.delete_entry(entry.id)
        await manager.close()

    run(scenario())

    if health_store.samples(HealthDataType.BODY_MASS):
        raise AssertionError("Expected the matching sample to be deleted")


def test_export_pending(make_manager, health_store, recent, run) -> None:
    """Test exporting manual water entries that were logged before sync was enabled."""
    manager = make_manager("hydration")

    async def scenario():
        await manager.add_entry(DrinkEntry(timestamp=recent(3), amount_oz=8.0))
        await manager.add_entry(DrinkEntry(timestamp=recent(2), drink_type=DrinkType.COFFEE, amount_oz=8.0))
        await manager.enable_sync()
        exported = await manager.export_pending()
        await asyncio.sleep(0.1)
        again = await manager.export_pending()
        result = await manager.sync()
        await manager.close()
        return exported, again, result

    exported, again, result = run(scenario())

    if (exported, again) != (1, 0):
        raise AssertionError(f"Expected one export then none, got {exported}, {again}")

    if len(health_store.samples(HealthDataType.DIETARY_WATER)) != 1:
        raise AssertionError("Expected only the water entry in the health store")

    if result.added != 0 or len(manager.entries) != 2:
        raise AssertionError("Expected the exported entry not to be re-imported")


def test_export_requires_sync(make_manager, run) -> None:
    """Test that exporting with sync disabled is refused."""
    manager = make_manager("hydration")

    with pytest.raises(SyncDisabledError):
        run(manager.export_pending())


def test_goal_updates(make_manager, kv_store) -> None:
    """Test goal defaults, the hydration minimum and persistence."""
    hydration = make_manager("hydration")
    if hydration.goal != 64.0:
        raise AssertionError(f"Expected default goal 64, got {hydration.goal}")

    if hydration.set_goal(4) != 8.0:
        raise AssertionError("Expected goal to be raised to the 8 oz minimum")

    if kv_store.load("hydration.goal") != b"8.0":
        raise AssertionError("Expected goal to be persisted")

    weight = make_manager("weight")
    if weight.goal is not None:
        raise AssertionError("Expected weight to have a presence-based goal")

    with pytest.raises(ValidationError):
        weight.set_goal(150)


def test_streaks_follow_entry_changes(make_manager, recent, run) -> None:
    """Test that streaks are recomputed after mutations."""
    manager = make_manager("hydration")

    async def scenario():
        await manager.add_entry(DrinkEntry(timestamp=recent(0), amount_oz=64.0))
        await asyncio.sleep(0)
        return manager.streaks

    streaks = run(scenario())

    if streaks.current != 1 or streaks.longest != 1:
        raise AssertionError(f"Expected a one-day streak, got {streaks}")


def test_statistics_summary(make_manager, recent, run) -> None:
    """Test the statistics summary of a tracker."""
    manager = make_manager("sleep")
    wake = recent(0)

    run(manager.add_entry(SleepEntry(bed_time=wake - timedelta(hours=8), timestamp=wake, quality=4)))
    stats = manager.statistics()

    for key in ("count", "latest", "average", "trend", "current_streak", "longest_streak", "goal"):
        if key not in stats:
            raise AssertionError(f"Missing statistic {key}")

    if stats["count"] != 1 or abs(stats["latest"] - 8.0) > 1e-9 or stats["goal"] != 7.0:
        raise AssertionError(f"Unexpected statistics: {stats}")

    if stats["trend"] is not None:
        raise AssertionError("Expected no trend for a single entry")
