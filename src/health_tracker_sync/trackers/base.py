"""
Tracker adapter interface.

Each tracker plugs into the generic store, engine and coordinator through a
thin adapter that knows how to extract match keys from its entries, how to
map entries to and from external-store samples, and how to validate manual
input.
"""

from abc import ABC, abstractmethod
from typing import Any, ClassVar, Generic, TypeVar

from health_tracker_sync.domain.entries import Entry
from health_tracker_sync.domain.sync import SyncMode
from health_tracker_sync.infrastructure.health_store.client import HealthDataType, RemoteSample
from health_tracker_sync.services.duplicates import MatchKey
from health_tracker_sync.utils.parameters import TolerancePolicy, TrackerSyncConfig

E = TypeVar("E", bound=Entry)


class TrackerAdapter(ABC, Generic[E]):
    """
    Per-tracker knowledge used by the generic sync machinery.

    Class attributes:
        name: Tracker name, also the storage key prefix.
        data_type: External store data type exchanged by this tracker.
        entry_cls: Entry model of this tracker.
        legacy_key: Storage key used by the flat legacy format.
        synced_kind: When set, only entries of this kind are exchanged
            with the external store.
        minimum_goal: Lower bound applied to user-provided daily goals.
    """

    name: ClassVar[str]
    data_type: ClassVar[HealthDataType]
    entry_cls: type[E]
    legacy_key: ClassVar[str]
    synced_kind: ClassVar[str | None] = None
    minimum_goal: ClassVar[float] = 0.0

    def __init__(self, config: TrackerSyncConfig) -> None:
        self.config = config

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    @abstractmethod
    def match_key(self, entry: E) -> MatchKey:
        """Match key of a local entry."""

    @abstractmethod
    def sample_key(self, sample: RemoteSample) -> MatchKey:
        """Match key of an external sample."""

    def policy_for(self, mode: SyncMode) -> TolerancePolicy:
        """Tolerance policy used by a reconciliation mode."""
        if mode == SyncMode.INCREMENTAL:
            return self.config.incremental
        if mode == SyncMode.HISTORICAL:
            return self.config.historical
        return self.config.reconcile

    def lookback_days(self, mode: SyncMode) -> int:
        """Size of the remote window fetched by a reconciliation mode."""
        if mode == SyncMode.INCREMENTAL:
            return self.config.incremental_lookback_days
        if mode == SyncMode.HISTORICAL:
            return self.config.historical_lookback_days
        return self.config.reconcile_lookback_days

    @property
    def manual_policy(self) -> TolerancePolicy | None:
        """Policy used to reject manual entries that duplicate existing ones."""
        return self.config.manual

    def is_synced(self, entry: E) -> bool:
        """Whether the entry's kind is exchanged with the external store."""
        return self.synced_kind is None or entry.kind == self.synced_kind

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def accepts(self, sample: RemoteSample) -> bool:
        """Whether an external sample can be turned into an entry."""
        return True

    @abstractmethod
    def from_remote(self, sample: RemoteSample) -> E:
        """Build an ``external_sync`` entry from an external sample."""

    @abstractmethod
    def to_remote(self, entry: E) -> RemoteSample:
        """Build the external sample mirroring a local entry."""

    # ------------------------------------------------------------------
    # Validation and goals
    # ------------------------------------------------------------------

    def validate(self, entry: E) -> None:
        """
        Validate a manual entry.

        Raises:
            ValidationError: If the entry is not acceptable.
        """

    @property
    def default_goal(self) -> float | None:
        """Daily goal threshold, or None when any entry meets the day's goal."""
        return None

    # ------------------------------------------------------------------
    # Legacy format
    # ------------------------------------------------------------------

    @abstractmethod
    def legacy_to_record(self, raw: dict[str, Any]) -> dict[str, Any] | None:
        """
        Convert one legacy record to the current serialized format.

        Returns:
            The record, or None when required fields are missing.
        """
