"""Weight tracker adapter."""

from typing import Any

from health_tracker_sync.domain.entries import EntrySource, WeightEntry
from health_tracker_sync.infrastructure.health_store.client import HealthDataType, RemoteSample
from health_tracker_sync.services.duplicates import MatchKey
from health_tracker_sync.services.migration import legacy_float, legacy_source, parse_legacy_timestamp
from health_tracker_sync.trackers.base import TrackerAdapter
from health_tracker_sync.utils.exceptions import ValidationError
from health_tracker_sync.utils.hashing import generate_legacy_id


class WeightAdapter(TrackerAdapter[WeightEntry]):
    """Weight readings in pounds, synced as body mass samples."""

    name = "weight"
    data_type = HealthDataType.BODY_MASS
    entry_cls = WeightEntry
    legacy_key = "weightEntries"

    def match_key(self, entry: WeightEntry) -> MatchKey:
        return MatchKey((entry.timestamp,), entry.weight_lbs)

    def sample_key(self, sample: RemoteSample) -> MatchKey:
        return MatchKey((sample.timestamp,), sample.value)

    def from_remote(self, sample: RemoteSample) -> WeightEntry:
        return WeightEntry(
            timestamp=sample.timestamp,
            weight_lbs=sample.value,
            bmi=sample.metadata.get("bmi"),
            body_fat_pct=sample.metadata.get("body_fat_pct"),
            source=EntrySource.EXTERNAL_SYNC,
            external_id=sample.identifier,
        )

    def to_remote(self, entry: WeightEntry) -> RemoteSample:
        metadata = {
            name: value
            for name, value in (("bmi", entry.bmi), ("body_fat_pct", entry.body_fat_pct))
            if value is not None
        }
        return RemoteSample(start=entry.timestamp, value=entry.weight_lbs, metadata=metadata)

    def validate(self, entry: WeightEntry) -> None:
        if entry.weight_lbs <= 0:
            raise ValidationError("Weight must be greater than zero")
        if entry.bmi is not None and entry.bmi <= 0:
            raise ValidationError("BMI must be greater than zero")
        if entry.body_fat_pct is not None and not 0 <= entry.body_fat_pct <= 100:
            raise ValidationError("Body fat percentage must be between 0 and 100")

    def legacy_to_record(self, raw: dict[str, Any]) -> dict[str, Any] | None:
        timestamp = parse_legacy_timestamp(raw.get("date"))
        weight = legacy_float(raw.get("weight"))
        if timestamp is None or weight is None:
            return None

        return {
            "id": raw.get("id") or generate_legacy_id(self.name, timestamp, weight),
            "timestamp": timestamp,
            "weight_lbs": weight,
            "bmi": legacy_float(raw.get("bmi")),
            "body_fat_pct": legacy_float(raw.get("bodyFat")),
            "source": legacy_source(raw.get("source")),
            "external_id": raw.get("healthKitUUID"),
        }
