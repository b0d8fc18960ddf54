"""
Sync, streak and reconciliation result models.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class CoordinatorState(str, Enum):
    """States of a tracker's sync coordinator."""

    DISABLED = "disabled"
    AUTHORIZATION_PENDING = "authorization_pending"
    OBSERVING = "observing"
    SUPPRESSED = "suppressed"


class SyncMode(str, Enum):
    """Reconciliation modes."""

    INCREMENTAL = "incremental"
    HISTORICAL = "historical"
    FULL = "full"
    DELETION_NOTICE = "deletion_notice"


class SyncState(BaseModel):
    """
    Persisted sync flags of one tracker.

    ``suppressed`` is true while a manual write is being mirrored to the
    external store. ``last_error`` backs the "last sync failed" indicator.
    """

    enabled: bool = False
    last_import_completed: bool = False
    suppressed: bool = False
    last_synced_at: datetime | None = None
    last_error: str | None = None


class StreakState(BaseModel):
    """Derived goal streaks. Always re-derivable from the entry store."""

    current: int = 0
    longest: int = 0

    model_config = ConfigDict(frozen=True)


class ReconcileResult(BaseModel):
    """
    Outcome of one reconciliation run.

    A result with ``error`` set never carries changes: failures degrade to
    "no data change, error reported".
    """

    mode: SyncMode
    added: int = 0
    removed: int = 0
    remote_count: int = 0
    error: str | None = None
    skipped: bool = Field(False, description="True when the run was intentionally not performed")

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)

    @classmethod
    def failure(cls, mode: SyncMode, error: Exception | str) -> "ReconcileResult":
        return cls(mode=mode, error=str(error))
