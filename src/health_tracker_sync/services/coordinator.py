"""
Sync coordinator.

Owns one tracker's sync flag and drives the reconciliation engine against
the external health store. State machine::

    disabled -> authorization_pending -> observing <-> suppressed
         ^                |                  |
         +----------------+------------------+   (denied / disable())

While a manual entry is being mirrored outward the coordinator is
``suppressed`` and skips incremental syncs, so the change notification the
write itself produces does not re-import the entry. Suppression is lifted by
a cancellable cooldown task; a newer write replaces the pending one.

Failures never raise out of the coordinator, whether the external store
rejects a call or a snapshot cannot be applied: they yield a
``ReconcileResult`` with ``error`` set and are recorded as the tracker's
``last_error``.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Generic

from pydantic import ValidationError as PydanticValidationError

from health_tracker_sync.domain.sync import CoordinatorState, ReconcileResult, SyncMode, SyncState
from health_tracker_sync.infrastructure.health_store.client import (
    HealthDataType,
    HealthStoreClient,
    RemoteSample,
)
from health_tracker_sync.infrastructure.storage.kv_store import KeyValueStore
from health_tracker_sync.services.duplicates import find_match
from health_tracker_sync.services.reconciliation import ReconciliationEngine
from health_tracker_sync.trackers.base import E, TrackerAdapter
from health_tracker_sync.utils.exceptions import PersistenceError, SyncDisabledError
from health_tracker_sync.utils.parameters import SyncConfig
from health_tracker_sync.utils.timezone_utils import days_ago, utc_now

logger = logging.getLogger(__name__)


class SyncCoordinator(Generic[E]):
    """
    Sync state machine of one tracker.

    Usage::

        coordinator = SyncCoordinator(adapter, engine, client, kv_store, config.sync)
        coordinator.load_state()
        result = await coordinator.enable()
    """

    def __init__(
        self,
        adapter: TrackerAdapter[E],
        engine: ReconciliationEngine[E],
        client: HealthStoreClient,
        kv_store: KeyValueStore,
        config: SyncConfig,
        lock: asyncio.Lock | None = None,
    ) -> None:
        """
        Initialize sync coordinator.

        Args:
            adapter: Tracker adapter.
            engine: Reconciliation engine of the tracker's entry store.
            client: Shared external health store client.
            kv_store: Storage for the persisted sync state.
            config: Cooldown and debounce timings.
            lock: Lock serializing entry store mutations of the tracker.
        """
        self.adapter = adapter
        self.engine = engine
        self.client = client
        self.config = config
        self.state_key = f"{adapter.name}.sync_state"
        self._kv = kv_store
        self._lock = lock or asyncio.Lock()

        self.sync_state = SyncState()
        self.state = CoordinatorState.DISABLED

        self._loop: asyncio.AbstractEventLoop | None = None
        self._cooldown_task: asyncio.Task[None] | None = None
        self._debounce_task: asyncio.Task[None] | None = None
        self._in_flight: dict[SyncMode, asyncio.Task[ReconcileResult]] = {}

    @property
    def data_type(self) -> HealthDataType:
        return self.adapter.data_type

    @property
    def enabled(self) -> bool:
        return self.sync_state.enabled

    @property
    def suppressed(self) -> bool:
        return self.sync_state.suppressed

    # ------------------------------------------------------------------
    # Persisted state
    # ------------------------------------------------------------------

    def load_state(self) -> None:
        """Load the persisted sync flags. A stale suppression flag is cleared."""
        blob = self._kv.load(self.state_key)
        if blob is None:
            return

        try:
            self.sync_state = SyncState.model_validate_json(blob)
        except PydanticValidationError as e:
            logger.warning(f"Ignoring unreadable {self.adapter.name} sync state: {e}")
            self.sync_state = SyncState()
            return

        if self.sync_state.suppressed:
            self.sync_state.suppressed = False
            self._save_state()

    def _save_state(self) -> None:
        try:
            self._kv.save(self.sync_state.model_dump_json().encode("utf-8"), self.state_key)
        except PersistenceError as e:
            logger.error(f"Failed to persist {self.adapter.name} sync state: {e}")

    def _record_failure(self, mode: SyncMode, error: Exception | str) -> ReconcileResult:
        logger.warning(f"{self.adapter.name} {mode.value} sync failed: {error}")
        self.sync_state.last_error = str(error)
        self._save_state()
        return ReconcileResult.failure(mode, error)

    # ------------------------------------------------------------------
    # Enabling and disabling
    # ------------------------------------------------------------------

    async def enable(self) -> ReconcileResult:
        """
        Turn sync on.

        Requests authorization; when granted runs an initial incremental sync
        and subscribes to change notifications. When denied (or the store
        fails) the flag stays off and the result carries the reason.
        """
        mode = SyncMode.INCREMENTAL
        self.state = CoordinatorState.AUTHORIZATION_PENDING
        logger.info(f"Requesting authorization for {self.data_type.value}")

        try:
            granted = await self.client.request_authorization([self.data_type])
        except Exception as e:
            self._revert_to_disabled()
            return self._record_failure(mode, e)

        if not granted:
            self._revert_to_disabled()
            return self._record_failure(mode, f"Authorization for {self.data_type.value} was denied")

        self.sync_state.enabled = True
        self.sync_state.last_error = None
        self._save_state()
        self._subscribe()
        self.state = CoordinatorState.OBSERVING
        logger.info(f"{self.adapter.name} sync enabled")

        return await self.sync()

    async def disable(self) -> None:
        """Turn sync off. Entries are left untouched."""
        self._unsubscribe()
        self._cancel_timers()
        self.sync_state.enabled = False
        self.sync_state.suppressed = False
        self._save_state()
        self.state = CoordinatorState.DISABLED
        logger.info(f"{self.adapter.name} sync disabled")

    async def resume(self) -> bool:
        """
        Re-subscribe after a restart when sync was left enabled.

        Returns:
            True if the coordinator is observing afterwards.
        """
        if not self.sync_state.enabled:
            return False

        try:
            authorized = await self.client.is_authorized(self.data_type)
        except Exception as e:
            self._record_failure(SyncMode.INCREMENTAL, e)
            return False

        if not authorized:
            self._record_failure(
                SyncMode.INCREMENTAL, f"Authorization for {self.data_type.value} is missing"
            )
            return False

        self._subscribe()
        self.state = CoordinatorState.OBSERVING
        return True

    async def close(self) -> None:
        """Stop observing and cancel pending timers, keeping the persisted flag."""
        self._unsubscribe()
        self._cancel_timers()
        for task in list(self._in_flight.values()):
            task.cancel()
        self._in_flight.clear()

    def _revert_to_disabled(self) -> None:
        self.sync_state.enabled = False
        self.state = CoordinatorState.DISABLED

    def _subscribe(self) -> None:
        self._loop = asyncio.get_running_loop()
        self.client.observe_changes(self.data_type, self._on_change)

    def _unsubscribe(self) -> None:
        self.client.stop_observing(self.data_type)

    def _cancel_timers(self) -> None:
        for task in (self._cooldown_task, self._debounce_task):
            if task is not None and not task.done():
                task.cancel()
        self._cooldown_task = None
        self._debounce_task = None

    # ------------------------------------------------------------------
    # Mirroring manual changes outward
    # ------------------------------------------------------------------

    async def mirror_write(self, entry: E) -> str | None:
        """
        Save a manual entry to the external store.

        Returns:
            Identifier of the new external sample, or None when sync is off,
            the entry's kind is not synchronized, or the write failed.
        """
        if not self.sync_state.enabled or not self.adapter.is_synced(entry):
            return None

        self._suppress()
        try:
            identifier = await self.client.save_entry(self.data_type, self.adapter.to_remote(entry))
        except Exception as e:
            self._record_failure(SyncMode.INCREMENTAL, e)
            return None

        logger.debug(f"Mirrored {self.adapter.name} entry {entry.id} as {identifier}")
        return identifier

    async def mirror_delete(self, entry: E) -> bool:
        """
        Delete the external sample mirroring ``entry``.

        Uses ``external_id`` when known; otherwise looks the sample up by
        tolerance match in a small window around the entry's timestamp.

        Returns:
            True if a sample was deleted.
        """
        if not self.sync_state.enabled or not self.adapter.is_synced(entry):
            return False

        self._suppress()
        try:
            identifier = entry.external_id or await self._find_remote_identifier(entry)
            if identifier is None:
                logger.debug(f"No external sample found for {self.adapter.name} entry {entry.id}")
                return False
            await self.client.delete_entry(self.data_type, identifier)
        except Exception as e:
            self._record_failure(SyncMode.INCREMENTAL, e)
            return False

        logger.debug(f"Deleted external {self.adapter.name} sample {identifier}")
        return True

    async def _find_remote_identifier(self, entry: E) -> str | None:
        policy = self.adapter.policy_for(SyncMode.FULL)
        margin = timedelta(seconds=policy.time_tolerance_seconds)
        samples = await self.client.fetch_entries(
            self.data_type, entry.timestamp - margin, entry.timestamp + margin
        )
        match = find_match(
            self.adapter.match_key(entry),
            [s for s in samples if self.adapter.accepts(s)],
            policy,
            key=self.adapter.sample_key,
        )
        return match.identifier if match is not None else None

    def _suppress(self) -> None:
        self.sync_state.suppressed = True
        self.state = CoordinatorState.SUPPRESSED
        self._save_state()

        if self._cooldown_task is not None and not self._cooldown_task.done():
            self._cooldown_task.cancel()
        self._cooldown_task = asyncio.get_running_loop().create_task(self._lift_suppression())

    async def _lift_suppression(self) -> None:
        await asyncio.sleep(self.config.suppression_cooldown_seconds)
        self.sync_state.suppressed = False
        self._save_state()
        if self.sync_state.enabled:
            self.state = CoordinatorState.OBSERVING
        logger.debug(f"{self.adapter.name} suppression lifted")

    # ------------------------------------------------------------------
    # Change notifications
    # ------------------------------------------------------------------

    def _on_change(self, data_type: HealthDataType) -> None:
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._schedule_debounce)

    def _schedule_debounce(self) -> None:
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = asyncio.get_running_loop().create_task(self._debounced_sync())

    async def _debounced_sync(self) -> None:
        await asyncio.sleep(self.config.debounce_seconds)
        if self.sync_state.suppressed:
            logger.debug(f"Skipping {self.adapter.name} change notification while suppressed")
            return
        await self.sync()

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def sync(self) -> ReconcileResult:
        """Incremental, additive sync. Skipped while suppressed."""
        if self.sync_state.enabled and self.sync_state.suppressed:
            logger.debug(f"{self.adapter.name} incremental sync skipped while suppressed")
            return ReconcileResult(mode=SyncMode.INCREMENTAL, skipped=True)
        return await self._run(SyncMode.INCREMENTAL)

    async def import_history(self) -> ReconcileResult:
        """Historical import. Marks ``last_import_completed`` on success."""
        return await self._run(SyncMode.HISTORICAL)

    async def reconcile_with_deletions(self) -> ReconcileResult:
        """Full reconciliation including deletion propagation."""
        return await self._run(SyncMode.FULL)

    async def apply_deletions(self, deleted: list[RemoteSample]) -> ReconcileResult:
        """Apply an explicit deletion notice from the external store."""
        if not self.sync_state.enabled:
            return ReconcileResult.failure(
                SyncMode.DELETION_NOTICE, SyncDisabledError(f"{self.adapter.name} sync is disabled")
            )
        async with self._lock:
            return self.engine.remove_deleted(deleted)

    async def _run(self, mode: SyncMode) -> ReconcileResult:
        if not self.sync_state.enabled:
            return ReconcileResult(
                mode=mode,
                skipped=True,
                error=str(SyncDisabledError(f"{self.adapter.name} sync is disabled")),
            )

        task = self._in_flight.get(mode)
        if task is not None and not task.done():
            logger.debug(f"Joining in-flight {self.adapter.name} {mode.value} sync")
            return await task

        task = asyncio.get_running_loop().create_task(self._perform(mode))
        self._in_flight[mode] = task
        task.add_done_callback(lambda _: self._in_flight.pop(mode, None))
        return await task

    async def _perform(self, mode: SyncMode) -> ReconcileResult:
        end = utc_now()
        start = days_ago(self.adapter.lookback_days(mode), end)

        try:
            samples = await self.client.fetch_entries(self.data_type, start, end)
        except Exception as e:
            return self._record_failure(mode, e)

        try:
            async with self._lock:
                result = self._reconcile(mode, samples, start, end)
        except Exception as e:
            return self._record_failure(mode, e)

        if not result.succeeded:
            return self._record_failure(mode, result.error or "reconciliation failed")

        if mode == SyncMode.HISTORICAL:
            self.sync_state.last_import_completed = True
        self.sync_state.last_synced_at = end
        self.sync_state.last_error = None
        self._save_state()
        return result

    def _reconcile(
        self, mode: SyncMode, samples: list[RemoteSample], start: datetime, end: datetime
    ) -> ReconcileResult:
        if mode == SyncMode.HISTORICAL:
            return self.engine.import_all(samples)
        if mode == SyncMode.FULL:
            return self.engine.reconcile_with_deletions(samples, window_start=start, window_end=end)
        return self.engine.reconcile(samples)
