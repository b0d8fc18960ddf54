"""Tests for the sync coordinator state machine."""

import asyncio

from health_tracker_sync.domain.entries import WeightEntry
from health_tracker_sync.domain.sync import CoordinatorState, SyncMode, SyncState
from health_tracker_sync.infrastructure.health_store.client import HealthDataType, RemoteSample
from health_tracker_sync.infrastructure.health_store.memory import InMemoryHealthStore
from health_tracker_sync.services.tracker import TrackerManager
from health_tracker_sync.trackers.registry import create_adapter
from health_tracker_sync.utils.parameters import AppConfig


def test_enable_granted_runs_initial_sync(make_manager, health_store, kv_store, recent, run) -> None:
    """Test that granted authorization imports existing samples and starts observing."""
    health_store.put(HealthDataType.BODY_MASS, RemoteSample(start=recent(2), value=150.0))
    manager = make_manager("weight")

    async def scenario():
        result = await manager.enable_sync()
        await manager.close()
        return result

    result = run(scenario())

    if not result.succeeded or result.added != 1:
        raise AssertionError(f"Expected one imported sample, got {result}")

    if manager.coordinator.state != CoordinatorState.OBSERVING:
        raise AssertionError(f"Expected observing state, got {manager.coordinator.state}")

    persisted = SyncState.model_validate_json(kv_store.load("weight.sync_state"))
    if not persisted.enabled or persisted.last_synced_at is None:
        raise AssertionError(f"Expected enabled flag and sync time to be persisted, got {persisted}")


def test_enable_denied_reverts_flag(make_manager, health_store, run) -> None:
    """Test that denied authorization leaves sync disabled with a reason."""
    health_store.grant_on_request = False
    manager = make_manager("weight")

    result = run(manager.enable_sync())

    if result.error is None:
        raise AssertionError("Expected denial to be reported")

    if manager.sync_state.enabled or manager.coordinator.state != CoordinatorState.DISABLED:
        raise AssertionError("Expected sync to stay disabled")

    if health_store.is_observing(HealthDataType.BODY_MASS):
        raise AssertionError("Expected no change subscription after denial")


def test_unauthorized_store_reports_error(make_manager, health_store, recent, run) -> None:
    """Test that losing authorization yields an error result with zero changes."""
    manager = make_manager("weight")

    async def scenario():
        await manager.enable_sync()
        health_store.authorized.clear()
        health_store.put(HealthDataType.BODY_MASS, RemoteSample(start=recent(1), value=151.0))
        result = await manager.sync()
        await manager.close()
        return result

    result = run(scenario())

    if result.error is None or result.changed:
        raise AssertionError(f"Expected an error without changes, got {result}")

    if manager.sync_state.last_error is None:
        raise AssertionError("Expected last_error to be recorded")

    if len(manager.entries) != 0:
        raise AssertionError("Expected no entries to be imported")


def test_unreachable_store_reports_error(make_manager, health_store, run) -> None:
    """Test that an unreachable store never raises out of the coordinator."""
    manager = make_manager("hydration")

    async def scenario():
        await manager.enable_sync()
        health_store.available = False
        full = await manager.reconcile_with_deletions()
        history = await manager.import_history()
        await manager.close()
        return full, history

    full, history = run(scenario())

    for result in (full, history):
        if result.error is None:
            raise AssertionError(f"Expected an error result, got {result}")

    if manager.sync_state.last_import_completed:
        raise AssertionError("Expected a failed import not to be marked completed")


def test_mirror_write_suppresses_incremental_sync(make_manager, health_store, recent, run) -> None:
    """Test the suppression window around a mirrored manual write."""
    manager = make_manager("weight")

    async def scenario():
        await manager.enable_sync()
        await manager.add_entry(WeightEntry(timestamp=recent(1), weight_lbs=150.0))
        during = (manager.coordinator.state, await manager.sync())
        await asyncio.sleep(0.15)
        after = (manager.coordinator.state, await manager.sync())
        await manager.close()
        return during, after

    (state_during, result_during), (state_after, result_after) = run(scenario())

    if state_during != CoordinatorState.SUPPRESSED or not result_during.skipped:
        raise AssertionError(f"Expected sync to be skipped while suppressed, got {result_during}")

    if state_after != CoordinatorState.OBSERVING or result_after.skipped:
        raise AssertionError(f"Expected suppression to be lifted, got {state_after}")

    if result_after.added != 0 or len(manager.entries) != 1:
        raise AssertionError("Expected the mirrored write not to be re-imported")

    if len(health_store.samples(HealthDataType.BODY_MASS)) != 1:
        raise AssertionError("Expected the manual entry to be written to the health store")


def test_newer_write_replaces_cooldown_timer(make_manager, recent, run) -> None:
    """Test that a second write cancels the pending suppression timer."""
    manager = make_manager("weight")

    async def scenario():
        await manager.enable_sync()
        await manager.add_entry(WeightEntry(timestamp=recent(5), weight_lbs=150.0))
        first_timer = manager.coordinator._cooldown_task
        await manager.add_entry(WeightEntry(timestamp=recent(1), weight_lbs=151.0))
        await asyncio.sleep(0)
        cancelled = first_timer.cancelled()
        await asyncio.sleep(0.15)
        suppressed = manager.coordinator.suppressed
        await manager.close()
        return cancelled, suppressed

    cancelled, suppressed = run(scenario())

    if not cancelled:
        raise AssertionError("Expected the first cooldown timer to be cancelled")

    if suppressed:
        raise AssertionError("Expected suppression to be lifted after the cooldown")


def test_change_notification_triggers_debounced_sync(make_manager, health_store, recent, run) -> None:
    """Test that external changes are imported after the debounce delay."""
    manager = make_manager("weight")

    async def scenario():
        await manager.enable_sync()
        health_store.put(HealthDataType.BODY_MASS, RemoteSample(start=recent(3), value=149.0))
        health_store.put(HealthDataType.BODY_MASS, RemoteSample(start=recent(2), value=149.5))
        await asyncio.sleep(0.1)
        await manager.close()

    calls_before = health_store.fetch_calls
    run(scenario())

    if len(manager.entries) != 2:
        raise AssertionError(f"Expected 2 imported entries, got {len(manager.entries)}")

    # initial sync plus one debounced sync for both notifications
    if health_store.fetch_calls - calls_before != 2:
        raise AssertionError(f"Expected 2 fetches, got {health_store.fetch_calls - calls_before}")


def test_overlapping_syncs_are_coalesced(make_manager, health_store, recent, run) -> None:
    """Test that concurrent syncs of the same mode share one run."""
    health_store.put(HealthDataType.BODY_MASS, RemoteSample(start=recent(2), value=150.0))
    manager = make_manager("weight")

    async def scenario():
        await manager.enable_sync()
        calls = health_store.fetch_calls
        first, second = await asyncio.gather(manager.sync(), manager.sync())
        fetches = health_store.fetch_calls - calls
        await manager.close()
        return first, second, fetches

    first, second, fetches = run(scenario())

    if fetches != 1:
        raise AssertionError(f"Expected one fetch for two overlapping syncs, got {fetches}")

    if first != second:
        raise AssertionError(f"Expected both callers to get the same result, got {first} / {second}")


def test_disable_keeps_entries(make_manager, health_store, recent, run) -> None:
    """Test that disabling unsubscribes and leaves entries untouched."""
    health_store.put(HealthDataType.BODY_MASS, RemoteSample(start=recent(2), value=150.0))
    manager = make_manager("weight")

    async def scenario():
        await manager.enable_sync()
        await manager.disable_sync()
        return await manager.sync()

    result = run(scenario())

    if health_store.is_observing(HealthDataType.BODY_MASS):
        raise AssertionError("Expected the change subscription to be removed")

    if len(manager.entries) != 1:
        raise AssertionError("Expected imported entries to be kept after disabling")

    if not result.skipped or result.error is None:
        raise AssertionError(f"Expected sync to be refused while disabled, got {result}")


def test_import_history_marks_completion(make_manager, health_store, recent, run) -> None:
    """Test that a successful historical import is recorded."""
    health_store.put(HealthDataType.BODY_MASS, RemoteSample(start=recent(24 * 200), value=160.0))
    manager = make_manager("weight")

    async def scenario():
        await manager.enable_sync()
        result = await manager.import_history()
        await manager.close()
        return result

    result = run(scenario())

    if result.mode != SyncMode.HISTORICAL or not result.succeeded:
        raise AssertionError(f"Expected a successful historical import, got {result}")

    if not manager.sync_state.last_import_completed:
        raise AssertionError("Expected last_import_completed to be set")


def test_resume_after_restart(make_manager, health_store, kv_store, run) -> None:
    """Test that a persisted flag resubscribes and stale suppression is cleared."""
    kv_store.save(
        SyncState(enabled=True, suppressed=True).model_dump_json().encode("utf-8"),
        "weight.sync_state",
    )
    health_store.authorized.add(HealthDataType.BODY_MASS)
    manager = make_manager("weight")

    if manager.sync_state.suppressed:
        raise AssertionError("Expected stale suppression to be cleared at load")

    async def scenario():
        resumed = await manager.resume()
        observing = health_store.is_observing(HealthDataType.BODY_MASS)
        await manager.close()
        return resumed, observing

    resumed, observing = run(scenario())

    if not resumed or not observing:
        raise AssertionError("Expected the coordinator to observe changes after resume")


def test_deletion_notice(make_manager, health_store, recent, run) -> None:
    """Test that an explicit deletion notice removes only synced entries."""
    health_store.put(HealthDataType.BODY_MASS, RemoteSample(start=recent(4), value=150.0, identifier="r1"))
    manager = make_manager("weight")

    async def scenario():
        refused = await manager.apply_deletions([])
        await manager.enable_sync()
        await manager.add_entry(WeightEntry(timestamp=recent(1), weight_lbs=151.0))
        deleted = health_store.samples(HealthDataType.BODY_MASS)
        result = await manager.apply_deletions(deleted)
        await manager.close()
        return refused, result

    refused, result = run(scenario())

    if refused.error is None:
        raise AssertionError("Expected deletion notices to be refused while sync is disabled")

    if result.mode != SyncMode.DELETION_NOTICE or result.removed != 1:
        raise AssertionError(f"Expected one synced entry to be removed, got {result}")

    if len(manager.entries) != 1 or not manager.entries[0].is_manual:
        raise AssertionError("Expected only the manual entry to remain")


class BrokenFetchHealthStore(InMemoryHealthStore):
    """Health store whose reads fail with an unexpected error."""

    async def fetch_entries(self, data_type, start, end):
        raise RuntimeError("connection reset")


def test_unmappable_remote_sample_does_not_escape(make_manager, health_store, recent, run) -> None:
    """Test that a remote sample with invalid metadata is skipped by sync and by notifications."""
    manager = make_manager("weight")

    async def scenario():
        await manager.enable_sync()
        health_store.put(
            HealthDataType.BODY_MASS,
            RemoteSample(start=recent(2), value=150.0, metadata={"bmi": "n/a"}),
        )
        health_store.put(HealthDataType.BODY_MASS, RemoteSample(start=recent(1), value=151.0))
        await asyncio.sleep(0.1)
        result = await manager.sync()
        await manager.close()
        return result

    result = run(scenario())

    if not result.succeeded:
        raise AssertionError(f"Expected sync to succeed, got {result}")

    if len(manager.entries) != 1 or manager.entries[0].weight_lbs != 151.0:
        raise AssertionError(f"Expected only the valid sample to be imported, got {manager.entries}")


def test_unexpected_client_error_is_reported(kv_store, sync_config, run) -> None:
    """Test that errors outside the health store hierarchy still become results."""
    manager = TrackerManager(
        create_adapter("weight", AppConfig()), kv_store, BrokenFetchHealthStore(), sync_config
    )
    manager.load()

    async def scenario():
        result = await manager.enable_sync()
        await manager.close()
        return result

    result = run(scenario())

    if result.error is None or "connection reset" not in result.error:
        raise AssertionError(f"Expected the fetch error in the result, got {result}")

    if manager.sync_state.last_error is None:
        raise AssertionError("Expected last_error to be recorded")
