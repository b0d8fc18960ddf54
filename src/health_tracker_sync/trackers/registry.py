"""Lookup of tracker adapters by name."""

from typing import Any

from health_tracker_sync.infrastructure.health_store.client import HealthStoreClient
from health_tracker_sync.infrastructure.storage.kv_store import KeyValueStore
from health_tracker_sync.services.tracker import TrackerManager
from health_tracker_sync.trackers.base import TrackerAdapter
from health_tracker_sync.trackers.hydration import HydrationAdapter
from health_tracker_sync.trackers.sleep import SleepAdapter
from health_tracker_sync.trackers.weight import WeightAdapter
from health_tracker_sync.utils.exceptions import ConfigurationError
from health_tracker_sync.utils.parameters import AppConfig

ADAPTERS: dict[str, type[TrackerAdapter[Any]]] = {
    WeightAdapter.name: WeightAdapter,
    HydrationAdapter.name: HydrationAdapter,
    SleepAdapter.name: SleepAdapter,
}

TRACKER_NAMES = tuple(ADAPTERS)


def create_adapter(name: str, config: AppConfig) -> TrackerAdapter[Any]:
    """
    Build the adapter of a tracker from the application configuration.

    Raises:
        ConfigurationError: If the tracker is unknown.
    """
    try:
        adapter_cls = ADAPTERS[name]
    except KeyError as e:
        raise ConfigurationError(
            f"Unknown tracker '{name}' (expected one of: {', '.join(TRACKER_NAMES)})"
        ) from e
    return adapter_cls(getattr(config, name))


def create_manager(
    name: str,
    config: AppConfig,
    kv_store: KeyValueStore,
    client: HealthStoreClient,
) -> TrackerManager[Any]:
    """Build the manager of a tracker, sharing storage and the health store client."""
    return TrackerManager(
        create_adapter(name, config),
        kv_store,
        client,
        config.sync,
        timezone_str=config.calendar.timezone,
    )
