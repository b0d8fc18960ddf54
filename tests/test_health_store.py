"""Unit tests for the file-backed health store."""

from pathlib import Path

import pytest

from health_tracker_sync.domain.entries import WeightEntry
from health_tracker_sync.domain.sync import CoordinatorState
from health_tracker_sync.infrastructure.health_store.client import HealthDataType, RemoteSample
from health_tracker_sync.infrastructure.health_store.memory import JsonFileHealthStore
from health_tracker_sync.services.tracker import TrackerManager
from health_tracker_sync.trackers.registry import create_adapter
from health_tracker_sync.utils.exceptions import HealthStoreError
from health_tracker_sync.utils.parameters import AppConfig


def blocked_path(tmp_path: Path) -> Path:
    """A path whose parent is a regular file, so it can never be written."""
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    return blocker / "health_store.json"


def weight_manager(health_store, kv_store, sync_config) -> TrackerManager:
    manager = TrackerManager(create_adapter("weight", AppConfig()), kv_store, health_store, sync_config)
    manager.load()
    return manager


def test_json_store_round_trip(tmp_path: Path, run) -> None:
    """Test that samples and authorizations survive a reload."""
    path = tmp_path / "health_store.json"
    store = JsonFileHealthStore(path)
    run(store.request_authorization([HealthDataType.DIETARY_WATER]))
    identifier = store.put(HealthDataType.DIETARY_WATER, RemoteSample(start="2024-01-15T10:00:00Z", value=8.0))

    reloaded = JsonFileHealthStore(path)

    if HealthDataType.DIETARY_WATER not in reloaded.authorized:
        raise AssertionError("Expected authorization to be persisted")

    samples = reloaded.samples(HealthDataType.DIETARY_WATER)
    if [s.identifier for s in samples] != [identifier]:
        raise AssertionError(f"Expected sample {identifier} after reload, got {samples}")


def test_json_store_write_failure_raises_store_error(tmp_path: Path) -> None:
    """Test that file errors surface as health store errors."""
    store = JsonFileHealthStore(blocked_path(tmp_path))

    with pytest.raises(HealthStoreError):
        store.put(HealthDataType.BODY_MASS, RemoteSample(start="2024-01-15T10:00:00Z", value=150.0))


def test_json_store_invalid_file_raises_store_error(tmp_path: Path) -> None:
    """Test that unreadable and malformed files surface as health store errors."""
    for content in ("{not json", "[]", '{"samples": {"steps": []}}'):
        path = tmp_path / "health_store.json"
        path.write_text(content, encoding="utf-8")
        with pytest.raises(HealthStoreError):
            JsonFileHealthStore(path)


def test_enable_with_unwritable_store_reverts(tmp_path: Path, kv_store, sync_config, run) -> None:
    """Test that a file error during authorization leaves sync disabled."""
    manager = weight_manager(JsonFileHealthStore(blocked_path(tmp_path)), kv_store, sync_config)

    result = run(manager.enable_sync())

    if result.error is None:
        raise AssertionError("Expected the write failure to be reported")

    if manager.sync_state.enabled or manager.coordinator.state != CoordinatorState.DISABLED:
        raise AssertionError(f"Expected sync to be disabled, got {manager.coordinator.state}")


def test_unwritable_store_does_not_block_logging(tmp_path: Path, kv_store, sync_config, recent, run) -> None:
    """Test that a failed mirror write to the file store keeps the local entry."""
    health_store = JsonFileHealthStore(tmp_path / "health_store.json")
    manager = weight_manager(health_store, kv_store, sync_config)

    async def scenario():
        await manager.enable_sync()
        health_store.path = blocked_path(tmp_path)
        stored = await manager.add_entry(WeightEntry(timestamp=recent(1), weight_lbs=150.0))
        await manager.close()
        return stored

    stored = run(scenario())

    if len(manager.entries) != 1 or stored.external_id is not None:
        raise AssertionError("Expected the entry to be stored locally without an external id")

    if manager.sync_state.last_error is None:
        raise AssertionError("Expected the failure to be recorded")
