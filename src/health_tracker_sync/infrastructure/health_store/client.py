"""
External health-data store interface.

The platform health store is consumed, not implemented: trackers talk to it
only through ``HealthStoreClient``. One client instance is shared by all
trackers and passed to each at construction.
"""

from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, field_validator

from health_tracker_sync.utils.timezone_utils import ensure_aware


class HealthDataType(str, Enum):
    """Data types exchanged with the external store."""

    BODY_MASS = "body_mass"
    DIETARY_WATER = "dietary_water"
    SLEEP_ANALYSIS = "sleep_analysis"


class RemoteSample(BaseModel):
    """
    One sample as seen in the external store.

    For point samples (weight, water) ``end`` is None. For sleep, ``start`` is
    bed time and ``end`` is wake time. ``value`` is in the tracker's canonical
    unit.
    """

    start: datetime
    end: datetime | None = None
    value: float
    identifier: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @field_validator("start", "end")
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        return ensure_aware(value) if value is not None else None

    @property
    def timestamp(self) -> datetime:
        """Instant the sample is filed under (wake time for intervals)."""
        return self.end or self.start


ChangeCallback = Callable[[HealthDataType], None]


@runtime_checkable
class HealthStoreClient(Protocol):
    """
    Narrow interface to the platform health store.

    Methods raise ``AuthorizationError`` when access is denied and
    ``HealthStoreUnavailableError`` when the store cannot be reached.
    """

    async def request_authorization(self, data_types: list[HealthDataType]) -> bool:
        """Prompt for access; returns whether it was granted."""
        ...

    async def is_authorized(self, data_type: HealthDataType) -> bool:
        """Whether read/write access to ``data_type`` is granted."""
        ...

    async def fetch_entries(
        self, data_type: HealthDataType, start: datetime, end: datetime
    ) -> list[RemoteSample]:
        """Samples of ``data_type`` filed between ``start`` and ``end``."""
        ...

    async def save_entry(self, data_type: HealthDataType, sample: RemoteSample) -> str:
        """Write a sample; returns its identifier in the store."""
        ...

    async def delete_entry(self, data_type: HealthDataType, identifier: str) -> None:
        """Delete a sample by identifier."""
        ...

    def observe_changes(self, data_type: HealthDataType, callback: ChangeCallback) -> None:
        """Register a callback fired whenever data of ``data_type`` changes."""
        ...

    def stop_observing(self, data_type: HealthDataType) -> None:
        """Unregister the change callback of ``data_type``."""
        ...
