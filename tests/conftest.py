"""Shared fixtures for tracker tests."""

import asyncio
from collections.abc import Callable, Coroutine
from datetime import datetime, timedelta
from typing import Any

import pytest

from health_tracker_sync.infrastructure.health_store.memory import InMemoryHealthStore
from health_tracker_sync.infrastructure.storage.kv_store import InMemoryKeyValueStore
from health_tracker_sync.services.tracker import TrackerManager
from health_tracker_sync.trackers.registry import create_adapter
from health_tracker_sync.utils.parameters import AppConfig, SyncConfig
from health_tracker_sync.utils.timezone_utils import utc_now


def run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run a coroutine on a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@pytest.fixture
def run() -> Callable[[Coroutine[Any, Any, Any]], Any]:
    return run_async


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def health_store() -> InMemoryHealthStore:
    return InMemoryHealthStore()


@pytest.fixture
def sync_config() -> SyncConfig:
    return SyncConfig(suppression_cooldown_seconds=0.05, debounce_seconds=0.01)


@pytest.fixture
def recent() -> Callable[[float], datetime]:
    """Timestamps relative to now, rounded to the second."""
    now = utc_now().replace(microsecond=0)

    def _at(hours_ago: float) -> datetime:
        return now - timedelta(hours=hours_ago)

    return _at


@pytest.fixture
def make_manager(
    kv_store: InMemoryKeyValueStore,
    health_store: InMemoryHealthStore,
    sync_config: SyncConfig,
) -> Callable[[str], TrackerManager[Any]]:
    """Build managers sharing the fixture storage and health store."""

    def _make(name: str) -> TrackerManager[Any]:
        manager = TrackerManager(create_adapter(name, AppConfig()), kv_store, health_store, sync_config)
        manager.load()
        return manager

    return _make
