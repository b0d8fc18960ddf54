"""
Tracker entry domain models and canonical schema.

This module defines the entries recorded by each tracker. All values are
stored in one canonical unit (pounds, fluid ounces, seconds) and timestamps
are timezone-aware. Entries are immutable; an update is a remove followed by
an append.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from health_tracker_sync.utils.hashing import new_entry_id
from health_tracker_sync.utils.timezone_utils import ensure_aware

E = TypeVar("E", bound="Entry")


class EntrySource(str, Enum):
    """Provenance of an entry."""

    MANUAL = "manual"
    EXTERNAL_SYNC = "external_sync"


class DrinkType(str, Enum):
    """Enumeration of drink types."""

    WATER = "water"
    COFFEE = "coffee"
    TEA = "tea"

    @property
    def standard_serving_oz(self) -> float:
        """Standard serving size in fluid ounces."""
        return 8.0


class Entry(BaseModel, ABC):
    """
    Base model for one recorded instance of a tracked metric.

    Abstract: each tracker subclass defines its own fields and ``value``.

    ``timestamp`` is when the event happened, not when it was recorded.
    ``external_id`` is the identifier of the mirrored sample in the external
    health store, when known.
    """

    id: str = Field(default_factory=new_entry_id, description="Opaque unique identifier")
    timestamp: datetime = Field(description="Event timestamp (timezone-aware)")
    source: EntrySource = Field(EntrySource.MANUAL, description="Provenance of the entry")
    external_id: str | None = Field(None, description="Identifier in the external store")

    model_config = ConfigDict(frozen=True)

    @field_validator("timestamp")
    @classmethod
    def _timestamp_aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @property
    @abstractmethod
    def value(self) -> float:
        """Canonical numeric value used for matching and statistics."""

    @property
    def kind(self) -> str | None:
        """Sub-type of the entry, for trackers that record several kinds."""
        return None

    @property
    def is_manual(self) -> bool:
        return self.source == EntrySource.MANUAL

    def to_dict(self) -> dict[str, Any]:
        """
        Convert entry to its serialized record.

        Returns:
            JSON-compatible dictionary with ``id``, ``timestamp`` (ISO-8601),
            ``source``, ``value`` and the tracker-specific fields.
        """
        data = self.model_dump(mode="json")
        data["value"] = self.value
        return data

    @classmethod
    def from_dict(cls: type[E], data: dict[str, Any]) -> E:
        """Rebuild an entry from its serialized record. The derived ``value`` key is ignored."""
        return cls.model_validate(data)


class WeightEntry(Entry):
    """A weight reading. Weight is stored in pounds."""

    weight_lbs: float = Field(description="Weight in pounds")
    bmi: float | None = Field(None, description="Body mass index")
    body_fat_pct: float | None = Field(None, description="Body fat percentage")

    @property
    def value(self) -> float:
        return self.weight_lbs


class DrinkEntry(Entry):
    """A drink. Amount is stored in fluid ounces."""

    drink_type: DrinkType = Field(DrinkType.WATER, description="Kind of drink")
    amount_oz: float = Field(description="Amount in fluid ounces")

    @property
    def value(self) -> float:
        return self.amount_oz

    @property
    def kind(self) -> str | None:
        return self.drink_type.value


class SleepEntry(Entry):
    """
    A sleep session.

    ``timestamp`` holds the wake time so that sleep sessions sort and bucket
    by the morning they ended.
    """

    bed_time: datetime = Field(description="When the session started")
    quality: int | None = Field(None, ge=1, le=5, description="Optional rating (1-5)")

    @field_validator("bed_time")
    @classmethod
    def _bed_time_aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @property
    def wake_time(self) -> datetime:
        return self.timestamp

    @property
    def duration_seconds(self) -> float:
        return (self.timestamp - self.bed_time).total_seconds()

    @property
    def value(self) -> float:
        """Sleep duration in hours."""
        return self.duration_seconds / 3600

    def formatted_duration(self) -> str:
        """Duration as e.g. ``7h 30m``."""
        hours = int(self.duration_seconds // 3600)
        minutes = int((self.duration_seconds % 3600) // 60)
        return f"{hours}h {minutes}m"
