"""
Legacy data migration.

Earlier releases stored each tracker's entries as a flat list of camelCase
dictionaries under keys such as ``weightEntries``, with dates written either
as ISO strings or as seconds since 2001-01-01 (the reference date of the
encoder that produced them). The migration runs once, at first access:
records that cannot be mapped are skipped, the rest are merged into the
entry store and the legacy key is removed.
"""

import json
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import pytz
from pydantic import ValidationError as PydanticValidationError

from health_tracker_sync.domain.entries import EntrySource
from health_tracker_sync.infrastructure.storage.kv_store import KeyValueStore
from health_tracker_sync.services.entry_store import EntryStore
from health_tracker_sync.utils.timezone_utils import parse_datetime

if TYPE_CHECKING:
    from health_tracker_sync.trackers.base import TrackerAdapter

logger = logging.getLogger(__name__)

REFERENCE_DATE = datetime(2001, 1, 1, tzinfo=pytz.utc)

_MANUAL_SOURCES = {"manual", "manual entry"}


def parse_legacy_timestamp(value: Any) -> datetime | None:
    """
    Parse a legacy date value.

    Args:
        value: ISO-8601 string, or number of seconds since 2001-01-01 UTC.

    Returns:
        Timezone-aware datetime, or None when the value is missing or invalid.
    """
    if isinstance(value, bool) or value is None:
        return None

    if isinstance(value, (int, float)):
        try:
            return REFERENCE_DATE + timedelta(seconds=float(value))
        except OverflowError:
            return None

    if isinstance(value, str):
        try:
            return parse_datetime(value, "UTC")
        except (ValueError, OverflowError):
            return None

    return None


def legacy_float(value: Any) -> float | None:
    """Coerce a legacy numeric field, returning None when absent or invalid."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def legacy_source(value: Any) -> EntrySource:
    """Map a legacy source label ("Manual Entry", "Apple Health", ...) to a provenance."""
    if value is None or (isinstance(value, str) and value.strip().lower() in _MANUAL_SOURCES):
        return EntrySource.MANUAL
    return EntrySource.EXTERNAL_SYNC


class LegacyMigrator:
    """Imports a tracker's legacy records into its entry store."""

    def __init__(self, adapter: "TrackerAdapter[Any]", kv_store: KeyValueStore) -> None:
        self.adapter = adapter
        self._kv = kv_store

    def has_legacy_data(self) -> bool:
        return self._kv.exists(self.adapter.legacy_key)

    def migrate(self, store: EntryStore[Any]) -> int:
        """
        Run the migration if legacy data exists.

        Args:
            store: Loaded entry store of the tracker.

        Returns:
            Number of entries imported.

        Raises:
            PersistenceError: If the merged snapshot cannot be saved.
        """
        key = self.adapter.legacy_key
        blob = self._kv.load(key)
        if blob is None:
            return 0

        try:
            raw = json.loads(blob.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            logger.warning(f"Legacy {self.adapter.name} data under '{key}' is unreadable, leaving it: {e}")
            return 0

        records = raw if isinstance(raw, list) else [raw]
        known_ids = {e.id for e in store.all()}
        migrated = []
        skipped = 0

        for item in records:
            record = self.adapter.legacy_to_record(item) if isinstance(item, dict) else None
            if record is None:
                skipped += 1
                continue

            try:
                entry = self.adapter.entry_cls.from_dict(record)
            except PydanticValidationError as e:
                logger.debug(f"Skipping legacy {self.adapter.name} record: {e}")
                skipped += 1
                continue

            if entry.id in known_ids:
                continue

            known_ids.add(entry.id)
            migrated.append(entry)

        if migrated:
            store.replace([*store.all(), *migrated])
        self._kv.remove(key)

        logger.info(
            f"Migrated {len(migrated)} legacy {self.adapter.name} entries "
            f"({skipped} skipped)"
        )
        return len(migrated)
