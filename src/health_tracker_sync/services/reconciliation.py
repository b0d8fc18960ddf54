"""
Reconciliation engine.

Merges a snapshot of external-store samples into a tracker's entry store.
Every operation computes the complete new sequence first and applies it with
a single ``EntryStore.replace``; when that save fails the store keeps its
previous contents and the result carries the error.

Manual entries are never removed or rewritten here. Only entries that came
from the external store (``external_sync``) and belong to the synchronized
kind can be deleted by reconciliation.
"""

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any, Generic

from pydantic import ValidationError as PydanticValidationError

from health_tracker_sync.domain.entries import EntrySource
from health_tracker_sync.domain.sync import ReconcileResult, SyncMode
from health_tracker_sync.infrastructure.health_store.client import RemoteSample
from health_tracker_sync.services.duplicates import MatchKey, find_match, is_duplicate
from health_tracker_sync.services.entry_store import EntryStore
from health_tracker_sync.trackers.base import E, TrackerAdapter
from health_tracker_sync.utils.exceptions import PersistenceError
from health_tracker_sync.utils.parameters import TolerancePolicy

logger = logging.getLogger(__name__)


class ReconciliationEngine(Generic[E]):
    """
    Applies remote snapshots to one tracker's entry store.

    Usage::

        engine = ReconciliationEngine(store, WeightAdapter(config.weight))
        result = engine.reconcile(samples)
        if result.error:
            ...
    """

    def __init__(self, store: EntryStore[E], adapter: TrackerAdapter[E]) -> None:
        """
        Initialize reconciliation engine.

        Args:
            store: Entry store of the tracker.
            adapter: Tracker adapter providing keys, mapping and policies.
        """
        self.store = store
        self.adapter = adapter

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def reconcile(self, remote: Iterable[RemoteSample]) -> ReconcileResult:
        """
        Incremental, additive merge of recent remote samples.

        Args:
            remote: Samples fetched from the external store.

        Returns:
            Result with the number of entries added.
        """
        return self._merge(list(remote), SyncMode.INCREMENTAL)

    def import_all(self, remote: Iterable[RemoteSample]) -> ReconcileResult:
        """
        Historical, additive import using the looser historical tolerance.

        Args:
            remote: Samples fetched over the historical lookback window.

        Returns:
            Result with the number of entries added.
        """
        return self._merge(list(remote), SyncMode.HISTORICAL)

    def reconcile_with_deletions(
        self,
        remote: Iterable[RemoteSample],
        window_start: datetime | None = None,
        window_end: datetime | None = None,
    ) -> ReconcileResult:
        """
        Full reconciliation: propagate remote deletions, then add what is missing.

        Args:
            remote: Complete remote snapshot for the window.
            window_start: Start of the fetched window.
            window_end: End of the fetched window. Entries outside the window
                were not covered by the snapshot and are left alone.

        Returns:
            Result with the numbers of entries added and removed.
        """
        return self._merge(
            list(remote),
            SyncMode.FULL,
            window_start=window_start,
            window_end=window_end,
            with_deletions=True,
        )

    def remove_deleted(self, deleted: Iterable[RemoteSample]) -> ReconcileResult:
        """
        Apply an explicit deletion notice from the external store.

        Only ``external_sync`` entries matching a deleted sample (by
        identifier, or by tolerance when the entry has none) are removed.

        Args:
            deleted: Samples the external store reports as deleted.

        Returns:
            Result with the number of entries removed.
        """
        deleted = [s for s in deleted if self.adapter.accepts(s)]
        mode = SyncMode.DELETION_NOTICE
        policy = self.adapter.policy_for(mode)
        snapshot = self.store.all()

        removed_ids = {
            entry.id
            for entry in snapshot
            if self._deletable(entry) and self._counterpart(entry, deleted, policy) is not None
        }

        if not removed_ids:
            return ReconcileResult(mode=mode, remote_count=len(deleted))

        kept = [e for e in snapshot if e.id not in removed_ids]
        return self._apply(kept, mode, added=0, removed=len(removed_ids), remote_count=len(deleted))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _merge(
        self,
        remote: list[RemoteSample],
        mode: SyncMode,
        window_start: datetime | None = None,
        window_end: datetime | None = None,
        with_deletions: bool = False,
    ) -> ReconcileResult:
        policy = self.adapter.policy_for(mode)
        accepted = [s for s in remote if self.adapter.accepts(s)]
        if len(accepted) < len(remote):
            logger.debug(f"Ignoring {len(remote) - len(accepted)} unusable {self.adapter.name} samples")

        snapshot = list(self.store.all())
        removed = 0

        if with_deletions:
            kept = []
            for entry in snapshot:
                in_window = (window_start is None or entry.timestamp >= window_start) and (
                    window_end is None or entry.timestamp <= window_end
                )
                if (
                    in_window
                    and self._deletable(entry)
                    and self._counterpart(entry, accepted, policy) is None
                ):
                    removed += 1
                    continue
                kept.append(entry)
            snapshot = kept

        known_ids = {e.external_id for e in snapshot if e.external_id}
        known_keys = [self.adapter.match_key(e) for e in snapshot]
        additions = []

        for sample in accepted:
            if sample.identifier and sample.identifier in known_ids:
                continue

            key = self.adapter.sample_key(sample)
            if is_duplicate(key, known_keys, policy):
                continue

            try:
                entry = self.adapter.from_remote(sample)
            except PydanticValidationError as e:
                logger.warning(
                    f"Skipping {self.adapter.name} sample {sample.identifier} that cannot be mapped: {e}"
                )
                continue

            additions.append(entry)
            known_keys.append(key)
            if sample.identifier:
                known_ids.add(sample.identifier)

        if not additions and not removed:
            logger.debug(f"{self.adapter.name} {mode.value} reconciliation: nothing to change")
            return ReconcileResult(mode=mode, remote_count=len(accepted))

        return self._apply(
            [*snapshot, *additions],
            mode,
            added=len(additions),
            removed=removed,
            remote_count=len(accepted),
        )

    def _apply(
        self,
        entries: list[Any],
        mode: SyncMode,
        added: int,
        removed: int,
        remote_count: int,
    ) -> ReconcileResult:
        try:
            self.store.replace(entries)
        except PersistenceError as e:
            logger.error(f"Failed to persist {self.adapter.name} {mode.value} reconciliation: {e}")
            return ReconcileResult(mode=mode, remote_count=remote_count, error=str(e))

        logger.info(
            f"{self.adapter.name} {mode.value} reconciliation: "
            f"{added} added, {removed} removed ({remote_count} remote samples)"
        )
        return ReconcileResult(mode=mode, added=added, removed=removed, remote_count=remote_count)

    def _deletable(self, entry: E) -> bool:
        return entry.source == EntrySource.EXTERNAL_SYNC and self.adapter.is_synced(entry)

    def _counterpart(
        self,
        entry: E,
        samples: list[RemoteSample],
        policy: TolerancePolicy,
    ) -> RemoteSample | None:
        """Remote sample describing the same event as ``entry``, if any."""
        if entry.external_id:
            for sample in samples:
                if sample.identifier == entry.external_id:
                    return sample

        key: MatchKey = self.adapter.match_key(entry)
        return find_match(key, samples, policy, key=self.adapter.sample_key)
