"""Sleep tracker adapter."""

from typing import Any

from health_tracker_sync.domain.entries import EntrySource, SleepEntry
from health_tracker_sync.infrastructure.health_store.client import HealthDataType, RemoteSample
from health_tracker_sync.services.duplicates import MatchKey
from health_tracker_sync.services.migration import legacy_float, legacy_source, parse_legacy_timestamp
from health_tracker_sync.trackers.base import TrackerAdapter
from health_tracker_sync.utils.exceptions import ValidationError
from health_tracker_sync.utils.hashing import generate_legacy_id
from health_tracker_sync.utils.parameters import SleepConfig


class SleepAdapter(TrackerAdapter[SleepEntry]):
    """Sleep sessions, matched on bed and wake time."""

    name = "sleep"
    data_type = HealthDataType.SLEEP_ANALYSIS
    entry_cls = SleepEntry
    legacy_key = "sleepEntries"

    config: SleepConfig

    def match_key(self, entry: SleepEntry) -> MatchKey:
        return MatchKey((entry.bed_time, entry.wake_time))

    def sample_key(self, sample: RemoteSample) -> MatchKey:
        return MatchKey((sample.start, sample.timestamp))

    def accepts(self, sample: RemoteSample) -> bool:
        return sample.end is not None and sample.end > sample.start

    def from_remote(self, sample: RemoteSample) -> SleepEntry:
        quality = sample.metadata.get("quality")
        return SleepEntry(
            bed_time=sample.start,
            timestamp=sample.timestamp,
            quality=quality if isinstance(quality, int) and 1 <= quality <= 5 else None,
            source=EntrySource.EXTERNAL_SYNC,
            external_id=sample.identifier,
        )

    def to_remote(self, entry: SleepEntry) -> RemoteSample:
        return RemoteSample(start=entry.bed_time, end=entry.wake_time, value=entry.value)

    def validate(self, entry: SleepEntry) -> None:
        if entry.wake_time <= entry.bed_time:
            raise ValidationError("Wake time must be after bed time")

        if entry.duration_seconds < self.config.min_duration_seconds:
            raise ValidationError(
                f"Sleep duration must be at least {self.config.min_duration_seconds / 60:.0f} minutes"
            )

        if entry.duration_seconds > self.config.max_duration_seconds:
            raise ValidationError(
                f"Sleep duration cannot exceed {self.config.max_duration_seconds / 3600:.0f} hours"
            )

    @property
    def default_goal(self) -> float | None:
        return self.config.daily_goal_hours

    def legacy_to_record(self, raw: dict[str, Any]) -> dict[str, Any] | None:
        bed_time = parse_legacy_timestamp(raw.get("bedTime"))
        wake_time = parse_legacy_timestamp(raw.get("wakeTime"))
        if bed_time is None or wake_time is None or wake_time <= bed_time:
            return None

        quality = legacy_float(raw.get("quality"))
        hours = (wake_time - bed_time).total_seconds() / 3600

        return {
            "id": raw.get("id") or generate_legacy_id(self.name, wake_time, hours),
            "timestamp": wake_time,
            "bed_time": bed_time,
            "quality": int(quality) if quality is not None and 1 <= quality <= 5 else None,
            "source": legacy_source(raw.get("source")),
        }
