"""
Tracker manager.

One manager per tracker ties together the entry store, the reconciliation
engine, the sync coordinator and the tracker adapter. All entry mutations
go through the manager's ``asyncio.Lock`` so they apply one at a time.
Manual logging never depends on the external store: mirroring failures are
recorded on the sync state and the local entry is kept.
"""

import asyncio
import json
import logging
from datetime import timedelta
from typing import Any, Generic

from health_tracker_sync.domain.sync import ReconcileResult, StreakState, SyncState
from health_tracker_sync.infrastructure.health_store.client import HealthStoreClient, RemoteSample
from health_tracker_sync.infrastructure.storage.kv_store import KeyValueStore
from health_tracker_sync.services import statistics
from health_tracker_sync.services.coordinator import SyncCoordinator
from health_tracker_sync.services.duplicates import is_duplicate
from health_tracker_sync.services.entry_store import EntryStore
from health_tracker_sync.services.migration import LegacyMigrator
from health_tracker_sync.services.reconciliation import ReconciliationEngine
from health_tracker_sync.trackers.base import E, TrackerAdapter
from health_tracker_sync.utils.exceptions import (
    DuplicateEntryError,
    PersistenceError,
    SyncDisabledError,
    ValidationError,
)
from health_tracker_sync.utils.parameters import SyncConfig
from health_tracker_sync.utils.timezone_utils import local_day, utc_now

logger = logging.getLogger(__name__)


class TrackerManager(Generic[E]):
    """
    Facade over one tracker's entries and sync.

    Usage::

        manager = TrackerManager(WeightAdapter(config.weight), kv_store, client, config.sync)
        manager.load()
        await manager.add_entry(WeightEntry(timestamp=now, weight_lbs=150.0))
        print(manager.streaks.current)
    """

    def __init__(
        self,
        adapter: TrackerAdapter[E],
        kv_store: KeyValueStore,
        client: HealthStoreClient,
        sync_config: SyncConfig,
        timezone_str: str = "UTC",
    ) -> None:
        """
        Initialize tracker manager.

        Args:
            adapter: Tracker adapter.
            kv_store: Durable key-value storage shared by all trackers.
            client: External health store client shared by all trackers.
            sync_config: Cooldown and debounce timings.
            timezone_str: Timezone that defines calendar days.
        """
        self.adapter = adapter
        self.timezone = timezone_str
        self.goal_key = f"{adapter.name}.goal"
        self.streaks_key = f"{adapter.name}.streaks"
        self._kv = kv_store
        self._lock = asyncio.Lock()

        self.store: EntryStore[E] = EntryStore(adapter.name, adapter.entry_cls, kv_store)
        self.engine = ReconciliationEngine(self.store, adapter)
        self.coordinator = SyncCoordinator(
            adapter, self.engine, client, kv_store, sync_config, lock=self._lock
        )

        self._goal: float | None = None
        self._streaks = StreakState()
        self._streaks_version = -1
        self._loaded = False

    @property
    def name(self) -> str:
        return self.adapter.name

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self) -> None:
        """
        Load entries, goal and sync state; migrate legacy data on first access.

        Raises:
            DecodingError: If the persisted entries are corrupt.
            PersistenceError: If migrated entries cannot be saved.
        """
        if self._loaded:
            return

        self.store.load()
        migrator = LegacyMigrator(self.adapter, self._kv)
        if migrator.has_legacy_data():
            migrator.migrate(self.store)

        self.coordinator.load_state()
        self._load_goal()
        self.store.add_listener(self._on_entries_changed)
        self._loaded = True
        self.refresh_streaks()

    def _load_goal(self) -> None:
        blob = self._kv.load(self.goal_key)
        if blob is None:
            return
        try:
            self._goal = float(json.loads(blob.decode("utf-8")))
        except (UnicodeDecodeError, ValueError, TypeError) as e:
            logger.warning(f"Ignoring unreadable {self.name} goal: {e}")

    @property
    def entries(self) -> tuple[E, ...]:
        self.load()
        return self.store.all()

    @property
    def sync_state(self) -> SyncState:
        return self.coordinator.sync_state

    # ------------------------------------------------------------------
    # Goal and streaks
    # ------------------------------------------------------------------

    @property
    def goal(self) -> float | None:
        """Daily goal, or None for trackers where any entry meets the goal."""
        if self.adapter.default_goal is None:
            return None
        return self._goal if self._goal is not None else self.adapter.default_goal

    def set_goal(self, value: float) -> float:
        """
        Update the daily goal.

        Values below the tracker's minimum are raised to the minimum.

        Returns:
            The goal actually stored.

        Raises:
            ValidationError: If the tracker has no daily goal.
            PersistenceError: If the goal cannot be saved.
        """
        self.load()
        if self.adapter.default_goal is None:
            raise ValidationError(f"The {self.name} tracker has no daily goal")

        goal = max(float(value), self.adapter.minimum_goal)
        self._kv.save(json.dumps(goal).encode("utf-8"), self.goal_key)
        self._goal = goal
        self.refresh_streaks()
        return goal

    @property
    def streaks(self) -> StreakState:
        """Current and longest streak, recomputed when entries changed."""
        self.load()
        if self._streaks_version != self.store.version:
            self.refresh_streaks()
        return self._streaks

    def refresh_streaks(self) -> StreakState:
        """Recompute streaks from the entry store and cache them."""
        self._streaks = statistics.compute_streaks(
            self.store.all(), self.goal, timezone_str=self.timezone
        )
        self._streaks_version = self.store.version

        try:
            self._kv.save(self._streaks.model_dump_json().encode("utf-8"), self.streaks_key)
        except PersistenceError as e:
            logger.warning(f"Failed to cache {self.name} streaks: {e}")

        return self._streaks

    def _on_entries_changed(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Outside a loop the streaks property recomputes on next access.
            return
        loop.call_soon(self._refresh_if_stale)

    def _refresh_if_stale(self) -> None:
        if self._streaks_version != self.store.version:
            self.refresh_streaks()

    # ------------------------------------------------------------------
    # Manual entries
    # ------------------------------------------------------------------

    def would_create_duplicate(self, entry: E) -> bool:
        """Whether a manual entry matches an existing one under the manual-entry policy."""
        policy = self.adapter.manual_policy
        if policy is None:
            return False
        existing = [self.adapter.match_key(e) for e in self.entries]
        return is_duplicate(self.adapter.match_key(entry), existing, policy)

    async def add_entry(self, entry: E) -> E:
        """
        Record a manual entry and mirror it to the external store when sync is on.

        Returns:
            The stored entry, with ``external_id`` set when it was mirrored.

        Raises:
            ValidationError: If the entry is invalid.
            DuplicateEntryError: If it duplicates an existing entry.
            PersistenceError: If the entry cannot be saved locally.
        """
        self.load()
        self.adapter.validate(entry)

        async with self._lock:
            if self.would_create_duplicate(entry):
                raise DuplicateEntryError(
                    f"A similar {self.name} entry already exists near {entry.timestamp.isoformat()}"
                )
            self.store.append(entry)

        logger.info(f"Added {self.name} entry {entry.id}")

        identifier = await self.coordinator.mirror_write(entry)
        if identifier is None:
            return entry

        updated = await self._record_external_ids({entry.id: identifier})
        return updated.get(entry.id, entry)

    async def delete_entry(self, entry_id: str) -> E | None:
        """
        Delete an entry locally and its mirrored sample externally.

        Returns:
            The removed entry, or None if no entry has this id.

        Raises:
            PersistenceError: If the removal cannot be saved.
        """
        self.load()
        async with self._lock:
            removed = self.store.remove(lambda e: e.id == entry_id)

        if not removed:
            return None

        entry = removed[0]
        logger.info(f"Deleted {self.name} entry {entry.id}")
        await self.coordinator.mirror_delete(entry)
        return entry

    async def export_pending(self) -> int:
        """
        Mirror manual entries that have never been written to the external store.

        Returns:
            Number of entries exported.

        Raises:
            SyncDisabledError: If sync is off.
        """
        self.load()
        if not self.coordinator.enabled:
            raise SyncDisabledError(f"{self.name} sync is disabled")

        pending = [
            e for e in self.store.all()
            if e.is_manual and e.external_id is None and self.adapter.is_synced(e)
        ]

        identifiers = {}
        for entry in pending:
            identifier = await self.coordinator.mirror_write(entry)
            if identifier is not None:
                identifiers[entry.id] = identifier

        if identifiers:
            await self._record_external_ids(identifiers)

        logger.info(f"Exported {len(identifiers)} of {len(pending)} pending {self.name} entries")
        return len(identifiers)

    async def _record_external_ids(self, identifiers: dict[str, str]) -> dict[str, E]:
        updated: dict[str, E] = {}
        async with self._lock:
            entries = []
            for e in self.store.all():
                if e.id in identifiers:
                    e = e.model_copy(update={"external_id": identifiers[e.id]})
                    updated[e.id] = e
                entries.append(e)
            try:
                self.store.replace(entries)
            except PersistenceError as e:
                logger.warning(f"Failed to record external ids for {self.name}: {e}")
                return {}
        return updated

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def enable_sync(self) -> ReconcileResult:
        self.load()
        return await self.coordinator.enable()

    async def disable_sync(self) -> None:
        self.load()
        await self.coordinator.disable()

    async def resume(self) -> bool:
        self.load()
        return await self.coordinator.resume()

    async def sync(self) -> ReconcileResult:
        self.load()
        return await self.coordinator.sync()

    async def import_history(self) -> ReconcileResult:
        self.load()
        return await self.coordinator.import_history()

    async def reconcile_with_deletions(self) -> ReconcileResult:
        self.load()
        return await self.coordinator.reconcile_with_deletions()

    async def apply_deletions(self, deleted: list[RemoteSample]) -> ReconcileResult:
        """Remove synced entries the health store reports as deleted."""
        self.load()
        return await self.coordinator.apply_deletions(deleted)

    async def close(self) -> None:
        await self.coordinator.close()

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def statistics(self) -> dict[str, Any]:
        """
        Summary statistics of the tracker.

        Returns:
            Dictionary with counts, latest value, averages, trends, streaks
            and, for goal-based trackers, today's progress.
        """
        entries = self.entries
        now = utc_now()
        today = local_day(now, self.timezone)
        newest = statistics.latest(entries)
        streaks = self.streaks

        stats: dict[str, Any] = {
            "tracker": self.name,
            "count": len(entries),
            "latest": newest.value if newest is not None else None,
            "latest_at": newest.timestamp.isoformat() if newest is not None else None,
            "average": statistics.average(entries),
            "trend": statistics.trend(entries),
            "average_7d": statistics.average_over_days(entries, now=now),
            "period_trend": statistics.period_trend(entries, now=now),
            "change_7d": statistics.change_since(entries, today - timedelta(days=7), self.timezone),
            "change_30d": statistics.change_since(entries, today - timedelta(days=30), self.timezone),
            "current_streak": streaks.current,
            "longest_streak": streaks.longest,
            "goal": self.goal,
            "sync_enabled": self.sync_state.enabled,
            "last_synced_at": (
                self.sync_state.last_synced_at.isoformat() if self.sync_state.last_synced_at else None
            ),
            "last_error": self.sync_state.last_error,
        }

        if self.goal is not None:
            stats["today_total"] = statistics.total_for_day(entries, today, self.timezone)
            stats["today_progress"] = statistics.progress_for_day(
                entries, today, self.goal, self.timezone
            )

        if self.adapter.synced_kind is not None:
            stats["today_by_kind"] = statistics.totals_by_kind(entries, today, self.timezone)

        return stats
