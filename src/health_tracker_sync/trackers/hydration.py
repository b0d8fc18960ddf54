"""Hydration tracker adapter."""

from typing import Any

from health_tracker_sync.domain.entries import DrinkEntry, DrinkType, EntrySource
from health_tracker_sync.infrastructure.health_store.client import HealthDataType, RemoteSample
from health_tracker_sync.services.duplicates import MatchKey
from health_tracker_sync.services.migration import legacy_float, legacy_source, parse_legacy_timestamp
from health_tracker_sync.trackers.base import TrackerAdapter
from health_tracker_sync.utils.exceptions import ValidationError
from health_tracker_sync.utils.hashing import generate_legacy_id
from health_tracker_sync.utils.parameters import HydrationConfig


class HydrationAdapter(TrackerAdapter[DrinkEntry]):
    """
    Drinks in fluid ounces.

    Only water is exchanged with the external store (as dietary water);
    coffee and tea stay local.
    """

    name = "hydration"
    data_type = HealthDataType.DIETARY_WATER
    entry_cls = DrinkEntry
    legacy_key = "drinkEntries"
    synced_kind = DrinkType.WATER.value
    minimum_goal = 8.0

    config: HydrationConfig

    def match_key(self, entry: DrinkEntry) -> MatchKey:
        return MatchKey((entry.timestamp,), entry.amount_oz, entry.kind)

    def sample_key(self, sample: RemoteSample) -> MatchKey:
        return MatchKey((sample.timestamp,), sample.value, self.synced_kind)

    def from_remote(self, sample: RemoteSample) -> DrinkEntry:
        return DrinkEntry(
            timestamp=sample.timestamp,
            drink_type=DrinkType.WATER,
            amount_oz=sample.value,
            source=EntrySource.EXTERNAL_SYNC,
            external_id=sample.identifier,
        )

    def to_remote(self, entry: DrinkEntry) -> RemoteSample:
        return RemoteSample(start=entry.timestamp, value=entry.amount_oz)

    def validate(self, entry: DrinkEntry) -> None:
        if entry.amount_oz <= 0:
            raise ValidationError("Drink amount must be greater than zero")

    @property
    def default_goal(self) -> float | None:
        return self.config.daily_goal_oz

    def legacy_to_record(self, raw: dict[str, Any]) -> dict[str, Any] | None:
        timestamp = parse_legacy_timestamp(raw.get("date"))
        amount = legacy_float(raw.get("amount"))
        if timestamp is None or amount is None:
            return None

        type_label = str(raw.get("type") or DrinkType.WATER.value).lower()
        try:
            drink_type = DrinkType(type_label)
        except ValueError:
            return None

        return {
            "id": raw.get("id") or generate_legacy_id(self.name, timestamp, amount),
            "timestamp": timestamp,
            "drink_type": drink_type,
            "amount_oz": amount,
            "source": legacy_source(raw.get("source")),
        }
