"""
In-process health store implementations.

``InMemoryHealthStore`` stands in for the platform store in tests and
supports failure injection. ``JsonFileHealthStore`` persists the same data
to a JSON file so the command-line tool has a durable external store to sync
against.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from health_tracker_sync.infrastructure.health_store.client import (
    ChangeCallback,
    HealthDataType,
    RemoteSample,
)
from health_tracker_sync.utils.exceptions import (
    AuthorizationError,
    HealthStoreError,
    HealthStoreUnavailableError,
)
from health_tracker_sync.utils.hashing import new_entry_id

logger = logging.getLogger(__name__)


class InMemoryHealthStore:
    """
    Health store held in memory.

    Attributes:
        available: When False every call raises HealthStoreUnavailableError.
        grant_on_request: Answer given to authorization requests.
        authorized: Data types currently authorized.
        fail_writes: When True, save/delete raise HealthStoreError.
    """

    def __init__(
        self,
        authorized: set[HealthDataType] | None = None,
        grant_on_request: bool = True,
    ) -> None:
        self.available = True
        self.grant_on_request = grant_on_request
        self.authorized: set[HealthDataType] = set(authorized or ())
        self.fail_writes = False
        self.fetch_calls = 0
        self._samples: dict[HealthDataType, dict[str, RemoteSample]] = {
            data_type: {} for data_type in HealthDataType
        }
        self._observers: dict[HealthDataType, ChangeCallback] = {}

    def _check_available(self) -> None:
        if not self.available:
            raise HealthStoreUnavailableError("Health store is not reachable")

    def _check_authorized(self, data_type: HealthDataType) -> None:
        self._check_available()
        if data_type not in self.authorized:
            raise AuthorizationError(f"Access to {data_type.value} is not authorized")

    async def request_authorization(self, data_types: list[HealthDataType]) -> bool:
        self._check_available()
        if self.grant_on_request:
            self.authorized.update(data_types)
        return self.grant_on_request

    async def is_authorized(self, data_type: HealthDataType) -> bool:
        self._check_available()
        return data_type in self.authorized

    async def fetch_entries(
        self, data_type: HealthDataType, start: datetime, end: datetime
    ) -> list[RemoteSample]:
        self._check_authorized(data_type)
        self.fetch_calls += 1
        samples = [s for s in self._samples[data_type].values() if start <= s.timestamp <= end]
        return sorted(samples, key=lambda s: s.timestamp)

    async def save_entry(self, data_type: HealthDataType, sample: RemoteSample) -> str:
        self._check_authorized(data_type)
        if self.fail_writes:
            raise HealthStoreError(f"Failed to save {data_type.value} sample")
        return self.put(data_type, sample)

    async def delete_entry(self, data_type: HealthDataType, identifier: str) -> None:
        self._check_authorized(data_type)
        if self.fail_writes:
            raise HealthStoreError(f"Failed to delete {data_type.value} sample")
        if not self.discard(data_type, identifier):
            raise HealthStoreError(f"No {data_type.value} sample with identifier {identifier}")

    def observe_changes(self, data_type: HealthDataType, callback: ChangeCallback) -> None:
        self._observers[data_type] = callback

    def stop_observing(self, data_type: HealthDataType) -> None:
        self._observers.pop(data_type, None)

    def is_observing(self, data_type: HealthDataType) -> bool:
        return data_type in self._observers

    # ------------------------------------------------------------------
    # Direct manipulation (simulates changes made by other apps)
    # ------------------------------------------------------------------

    def put(self, data_type: HealthDataType, sample: RemoteSample) -> str:
        """Store a sample and notify the observer of its type."""
        identifier = sample.identifier or new_entry_id()
        self._samples[data_type][identifier] = sample.model_copy(update={"identifier": identifier})
        self._changed(data_type)
        return identifier

    def discard(self, data_type: HealthDataType, identifier: str) -> bool:
        """Remove a sample; returns whether it existed."""
        removed = self._samples[data_type].pop(identifier, None)
        if removed is not None:
            self._changed(data_type)
        return removed is not None

    def samples(self, data_type: HealthDataType) -> list[RemoteSample]:
        return sorted(self._samples[data_type].values(), key=lambda s: s.timestamp)

    def notify(self, data_type: HealthDataType) -> None:
        """Fire the change callback of ``data_type``, if any."""
        callback = self._observers.get(data_type)
        if callback is not None:
            callback(data_type)

    def _changed(self, data_type: HealthDataType) -> None:
        self.notify(data_type)


class JsonFileHealthStore(InMemoryHealthStore):
    """In-memory store mirrored to a JSON file after every change."""

    def __init__(self, path: str | Path, grant_on_request: bool = True) -> None:
        """
        Initialize file-backed store.

        Args:
            path: JSON file holding samples and authorized types.
            grant_on_request: Answer given to authorization requests.

        Raises:
            HealthStoreError: If the file exists but cannot be parsed.
        """
        super().__init__(grant_on_request=grant_on_request)
        self.path = Path(path)
        self._loading = False
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return

        try:
            with open(self.path, encoding="utf-8") as f:
                raw: dict[str, Any] = json.load(f)
        except (OSError, ValueError) as e:
            raise HealthStoreError(f"Failed to read health store file {self.path}: {e}") from e

        self._loading = True
        try:
            self.authorized = {HealthDataType(t) for t in raw.get("authorized", [])}
            for type_name, samples in raw.get("samples", {}).items():
                data_type = HealthDataType(type_name)
                for sample in samples:
                    self.put(data_type, RemoteSample.model_validate(sample))
        except (AttributeError, TypeError, ValueError) as e:
            raise HealthStoreError(f"Invalid health store file {self.path}: {e}") from e
        finally:
            self._loading = False

        logger.debug(f"Loaded health store from {self.path}")

    def _save(self) -> None:
        data = {
            "authorized": sorted(t.value for t in self.authorized),
            "samples": {
                data_type.value: [s.model_dump(mode="json") for s in self.samples(data_type)]
                for data_type in HealthDataType
            },
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
        except (OSError, TypeError, ValueError) as e:
            raise HealthStoreError(f"Failed to write health store file {self.path}: {e}") from e

    async def request_authorization(self, data_types: list[HealthDataType]) -> bool:
        granted = await super().request_authorization(data_types)
        self._save()
        return granted

    def _changed(self, data_type: HealthDataType) -> None:
        if not self._loading:
            self._save()
        super()._changed(data_type)
