"""
Configuration and parameter loading using Pydantic.

This module provides centralized configuration management for the entire application.
All parameters are loaded from YAML and validated using Pydantic models. Every
field has a default so an empty YAML file (or none at all, via ``AppConfig()``)
yields a working configuration.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from health_tracker_sync.utils.exceptions import ConfigurationError


class TolerancePolicy(BaseModel):
    """
    Window within which two entries are treated as the same real-world event.

    A ``value_tolerance`` of None disables the value comparison (used by sleep,
    which matches on bed and wake times only).
    """

    time_tolerance_seconds: float = Field(gt=0)
    value_tolerance: float | None = Field(None, gt=0)


class TrackerSyncConfig(BaseModel):
    """Per-tracker reconciliation policy."""

    incremental: TolerancePolicy
    historical: TolerancePolicy
    reconcile: TolerancePolicy
    manual: TolerancePolicy | None = None
    incremental_lookback_days: int = Field(365, gt=0)
    historical_lookback_days: int = Field(365, gt=0)
    reconcile_lookback_days: int = Field(365, gt=0)


class WeightConfig(TrackerSyncConfig):
    """Weight tracker configuration. Values are in pounds."""

    incremental: TolerancePolicy = Field(
        default_factory=lambda: TolerancePolicy(time_tolerance_seconds=60, value_tolerance=0.1)
    )
    historical: TolerancePolicy = Field(
        default_factory=lambda: TolerancePolicy(time_tolerance_seconds=300, value_tolerance=0.2)
    )
    reconcile: TolerancePolicy = Field(
        default_factory=lambda: TolerancePolicy(time_tolerance_seconds=60, value_tolerance=0.1)
    )
    manual: TolerancePolicy | None = Field(
        default_factory=lambda: TolerancePolicy(time_tolerance_seconds=1800, value_tolerance=0.1)
    )
    incremental_lookback_days: int = Field(3650, gt=0)
    reconcile_lookback_days: int = Field(3650, gt=0)


class HydrationConfig(TrackerSyncConfig):
    """Hydration tracker configuration. Values are in fluid ounces."""

    incremental: TolerancePolicy = Field(
        default_factory=lambda: TolerancePolicy(time_tolerance_seconds=300, value_tolerance=0.01)
    )
    historical: TolerancePolicy = Field(
        default_factory=lambda: TolerancePolicy(time_tolerance_seconds=300, value_tolerance=0.02)
    )
    reconcile: TolerancePolicy = Field(
        default_factory=lambda: TolerancePolicy(time_tolerance_seconds=300, value_tolerance=0.02)
    )
    daily_goal_oz: float = Field(64.0, ge=8.0)


class SleepConfig(TrackerSyncConfig):
    """Sleep tracker configuration."""

    incremental: TolerancePolicy = Field(
        default_factory=lambda: TolerancePolicy(time_tolerance_seconds=60)
    )
    historical: TolerancePolicy = Field(
        default_factory=lambda: TolerancePolicy(time_tolerance_seconds=60)
    )
    reconcile: TolerancePolicy = Field(
        default_factory=lambda: TolerancePolicy(time_tolerance_seconds=60)
    )
    manual: TolerancePolicy | None = Field(
        default_factory=lambda: TolerancePolicy(time_tolerance_seconds=7200)
    )
    incremental_lookback_days: int = Field(730, gt=0)
    reconcile_lookback_days: int = Field(730, gt=0)
    daily_goal_hours: float = Field(7.0, gt=0)
    min_duration_seconds: float = Field(1800, gt=0)
    max_duration_seconds: float = Field(57600, gt=0)


class StorageConfig(BaseModel):
    """Local key-value storage configuration."""

    dir: str = "data/store"
    max_value_bytes: int = Field(1_048_576, gt=0)


class SyncConfig(BaseModel):
    """Sync coordinator timing configuration."""

    suppression_cooldown_seconds: float = Field(2.0, ge=0)
    debounce_seconds: float = Field(1.0, ge=0)
    remote_store_file: str = "data/health_store.json"


class CalendarConfig(BaseModel):
    """Calendar configuration for day grouping."""

    timezone: str = "UTC"


class DisplayConfig(BaseModel):
    """Presentation units. Stored values are never converted."""

    weight_unit: str = Field("lbs", pattern="^(lbs|kg)$")
    hydration_unit: str = Field("oz", pattern="^(oz|ml)$")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: str | None = None
    console: bool = True


class AppConfig(BaseSettings):
    """Main application configuration."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    calendar: CalendarConfig = Field(default_factory=CalendarConfig)
    display: DisplayConfig = Field(default_factory=DisplayConfig)
    weight: WeightConfig = Field(default_factory=WeightConfig)
    hydration: HydrationConfig = Field(default_factory=HydrationConfig)
    sleep: SleepConfig = Field(default_factory=SleepConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="HTS_", env_nested_delimiter="__", case_sensitive=False
    )


class ParameterLoader:
    """
    Centralized parameter loader for the application.

    Loads and validates configuration from YAML files using Pydantic models.
    Provides type-safe access to all configuration parameters.
    """

    def __init__(self, config_path: str = "config/config.yaml") -> None:
        """
        Initialize parameter loader.

        Args:
            config_path: Path to the YAML configuration file.

        Raises:
            ConfigurationError: If configuration file cannot be loaded or is invalid.
        """
        self.config_path = Path(config_path)
        self.config: AppConfig
        self._load_config()

    def _load_config(self) -> None:
        """
        Load configuration from YAML file.

        Raises:
            ConfigurationError: If configuration file cannot be loaded or is invalid.
        """
        if not self.config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, encoding="utf-8") as f:
                config_dict = yaml.safe_load(f) or {}

            self.config = AppConfig(**config_dict)

        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML configuration: {e}") from e
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}") from e

    def get_storage_config(self) -> StorageConfig:
        """Get local storage configuration."""
        return self.config.storage

    def get_sync_config(self) -> SyncConfig:
        """Get sync coordinator configuration."""
        return self.config.sync

    def get_calendar_config(self) -> CalendarConfig:
        """Get calendar configuration."""
        return self.config.calendar

    def get_display_config(self) -> DisplayConfig:
        """Get display unit configuration."""
        return self.config.display

    def get_tracker_config(self, tracker: str) -> TrackerSyncConfig:
        """
        Get the configuration section of a tracker.

        Args:
            tracker: Tracker name ("weight", "hydration" or "sleep").

        Raises:
            ConfigurationError: If the tracker is unknown.
        """
        section = getattr(self.config, tracker, None)
        if not isinstance(section, TrackerSyncConfig):
            raise ConfigurationError(f"Unknown tracker: {tracker}")
        return section

    def get_logging_config(self) -> LoggingConfig:
        """Get logging configuration."""
        return self.config.logging

    def get_raw_config(self) -> dict[str, Any]:
        """
        Get raw configuration dictionary.

        Returns:
            Dictionary representation of the configuration.
        """
        return self.config.model_dump()
