"""
Command-line interface for Health Tracker Sync.

Provides commands for logging entries, reading statistics and synchronizing
each tracker with the external health store.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, TypeVar

import typer

from health_tracker_sync.domain.entries import DrinkEntry, DrinkType, Entry, SleepEntry, WeightEntry
from health_tracker_sync.domain.sync import ReconcileResult
from health_tracker_sync.infrastructure.health_store.memory import JsonFileHealthStore
from health_tracker_sync.infrastructure.storage.kv_store import FileKeyValueStore
from health_tracker_sync.services.tracker import TrackerManager
from health_tracker_sync.trackers.registry import TRACKER_NAMES, create_adapter, create_manager
from health_tracker_sync.utils.exceptions import (
    ConfigurationError,
    HealthTrackerSyncError,
    ReconciliationError,
    ValidationError,
)
from health_tracker_sync.utils.logging_config import get_logger, setup_logging
from health_tracker_sync.utils.parameters import DisplayConfig, ParameterLoader
from health_tracker_sync.utils.timezone_utils import make_timezone_aware, parse_datetime, utc_now
from health_tracker_sync.utils.units import HydrationUnit, WeightUnit

app = typer.Typer(help="Health Tracker Sync - Weight, hydration and sleep logs synced with a health store")

logger = get_logger(__name__)

T = TypeVar("T")

TRACKER_HELP = f"Tracker name ({', '.join(TRACKER_NAMES)})"


def init_config(config_path: str = "config/config.yaml") -> ParameterLoader:
    """
    Initialize configuration and logging.

    Args:
        config_path: Path to configuration file.

    Returns:
        Parameter loader instance.
    """
    param_loader = ParameterLoader(config_path)
    setup_logging(param_loader.get_logging_config(), "health_tracker_sync")
    return param_loader


def build_backends(param_loader: ParameterLoader) -> tuple[FileKeyValueStore, JsonFileHealthStore]:
    """Create the local storage and the file-backed health store from configuration."""
    storage_config = param_loader.get_storage_config()
    sync_config = param_loader.get_sync_config()
    kv_store = FileKeyValueStore(storage_config.dir, storage_config.max_value_bytes)
    health_store = JsonFileHealthStore(sync_config.remote_store_file)
    return kv_store, health_store


def run_with_manager(
    param_loader: ParameterLoader,
    tracker: str,
    operation: Callable[[TrackerManager[Any]], Awaitable[T]],
) -> T:
    """
    Run an async operation against a loaded tracker manager.

    Sync is resumed first when it was left enabled, and timers are cancelled
    once the operation finishes.
    """

    async def _run() -> T:
        kv_store, health_store = build_backends(param_loader)
        manager = create_manager(tracker, param_loader.config, kv_store, health_store)
        manager.load()
        await manager.resume()
        try:
            return await operation(manager)
        finally:
            await manager.close()

    return asyncio.run(_run())


def parse_when(value: str | None, timezone_str: str) -> datetime:
    """Parse a user-supplied time, defaulting to now."""
    if value is None:
        return utc_now()
    try:
        return parse_datetime(value, timezone_str)
    except (ValueError, OverflowError) as e:
        raise ValidationError(f"Invalid date/time '{value}': {e}") from e


def build_entry(
    tracker: str,
    display: DisplayConfig,
    timezone_str: str,
    value: float | None,
    at: str | None,
    drink_type: str,
    bed_time: str | None,
    quality: int | None,
    bmi: float | None,
    body_fat: float | None,
) -> Entry:
    """
    Build a manual entry from command-line options.

    Weight and hydration values are read in the configured display unit and
    converted to pounds and fluid ounces.

    Raises:
        ConfigurationError: If the tracker is unknown.
        ValidationError: If a required option is missing or invalid.
    """
    if tracker not in TRACKER_NAMES:
        raise ConfigurationError(f"Unknown tracker: {tracker}")

    timestamp = parse_when(at, timezone_str)

    if tracker == "weight":
        if value is None:
            raise ValidationError("--value is required for weight entries")
        return WeightEntry(
            timestamp=timestamp,
            weight_lbs=WeightUnit(display.weight_unit).to_pounds(value),
            bmi=bmi,
            body_fat_pct=body_fat,
        )

    if tracker == "hydration":
        try:
            kind = DrinkType(drink_type.lower())
        except ValueError as e:
            raise ValidationError(f"Unknown drink type: {drink_type}") from e
        if value is None:
            amount = kind.standard_serving_oz
        else:
            amount = HydrationUnit(display.hydration_unit).to_ounces(value)
        return DrinkEntry(timestamp=timestamp, drink_type=kind, amount_oz=amount)

    if bed_time is None:
        raise ValidationError("--bed-time is required for sleep entries")
    return SleepEntry(
        timestamp=timestamp,
        bed_time=parse_when(bed_time, timezone_str),
        quality=quality,
    )


def format_entry(entry: Entry, display: DisplayConfig, timezone_str: str) -> str:
    """One-line description of an entry in display units."""
    stamp = make_timezone_aware(entry.timestamp, timezone_str).strftime("%Y-%m-%d %H:%M")
    source = entry.source.value

    if isinstance(entry, WeightEntry):
        unit = WeightUnit(display.weight_unit)
        detail = f"{unit.from_pounds(entry.weight_lbs):.1f} {unit.value}"
        if entry.body_fat_pct is not None:
            detail += f", {entry.body_fat_pct:.1f}% body fat"
    elif isinstance(entry, DrinkEntry):
        unit = HydrationUnit(display.hydration_unit)
        detail = f"{unit.from_ounces(entry.amount_oz):.1f} {unit.value} {entry.drink_type.value}"
    elif isinstance(entry, SleepEntry):
        detail = f"{entry.formatted_duration()} (bed {entry.bed_time.strftime('%Y-%m-%d %H:%M')})"
        if entry.quality is not None:
            detail += f", quality {entry.quality}/5"
    else:
        detail = f"{entry.value:.2f}"

    return f"{entry.id}  {stamp}  {detail}  [{source}]"


def echo_result(result: ReconcileResult, action: str) -> None:
    """
    Print a reconciliation result.

    Raises:
        ReconciliationError: If the result carries an error.
    """
    if result.error:
        raise ReconciliationError(result.error)

    if result.skipped:
        typer.echo(f"{action} skipped")
        return

    typer.echo(
        f"{action}: {result.added} added, {result.removed} removed "
        f"({result.remote_count} remote samples)"
    )


@app.command()
def add(
    tracker: str = typer.Argument(..., help=TRACKER_HELP),
    value: float | None = typer.Option(None, help="Weight or drink amount, in display units"),
    at: str | None = typer.Option(None, help="When it happened (wake time for sleep); default now"),
    drink_type: str = typer.Option("water", help="Drink type: water, coffee or tea"),
    bed_time: str | None = typer.Option(None, help="Bed time (sleep only)"),
    quality: int | None = typer.Option(None, min=1, max=5, help="Sleep quality 1-5"),
    bmi: float | None = typer.Option(None, help="Body mass index (weight only)"),
    body_fat: float | None = typer.Option(None, help="Body fat percentage (weight only)"),
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
) -> None:
    """
    Log a manual entry.

    The entry is mirrored to the health store when sync is enabled.
    """
    try:
        param_loader = init_config(config_path)
        timezone_str = param_loader.get_calendar_config().timezone
        entry = build_entry(
            tracker,
            param_loader.get_display_config(),
            timezone_str,
            value,
            at,
            drink_type,
            bed_time,
            quality,
            bmi,
            body_fat,
        )

        stored = run_with_manager(param_loader, tracker, lambda m: m.add_entry(entry))

        typer.echo(f"Added {tracker} entry {stored.id}")
        if stored.external_id:
            typer.echo(f"  Mirrored to health store as {stored.external_id}")

    except HealthTrackerSyncError as e:
        logger.error(f"Add failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command()
def delete(
    tracker: str = typer.Argument(..., help=TRACKER_HELP),
    entry_id: str = typer.Argument(..., help="Identifier of the entry to delete"),
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
) -> None:
    """Delete an entry locally and, when sync is enabled, from the health store."""
    try:
        param_loader = init_config(config_path)
        removed = run_with_manager(param_loader, tracker, lambda m: m.delete_entry(entry_id))

        if removed is None:
            typer.echo(f"Error: no {tracker} entry with id {entry_id}", err=True)
            raise typer.Exit(code=1)

        typer.echo(f"Deleted {tracker} entry {removed.id}")

    except HealthTrackerSyncError as e:
        logger.error(f"Delete failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command(name="list")
def list_entries(
    tracker: str = typer.Argument(..., help=TRACKER_HELP),
    limit: int = typer.Option(20, min=1, help="Maximum number of entries to show"),
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
) -> None:
    """List the most recent entries of a tracker."""
    try:
        param_loader = init_config(config_path)
        kv_store, health_store = build_backends(param_loader)
        manager = create_manager(tracker, param_loader.config, kv_store, health_store)
        display = param_loader.get_display_config()
        timezone_str = param_loader.get_calendar_config().timezone

        entries = manager.entries
        if not entries:
            typer.echo(f"No {tracker} entries")
            return

        for entry in entries[:limit]:
            typer.echo(format_entry(entry, display, timezone_str))
        if len(entries) > limit:
            typer.echo(f"... {len(entries) - limit} more")

    except HealthTrackerSyncError as e:
        logger.error(f"List failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command()
def stats(
    tracker: str = typer.Argument(..., help=TRACKER_HELP),
    set_goal: float | None = typer.Option(None, help="Update the daily goal first"),
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
) -> None:
    """Show streaks, averages and trends of a tracker."""
    try:
        param_loader = init_config(config_path)
        kv_store, health_store = build_backends(param_loader)
        manager = create_manager(tracker, param_loader.config, kv_store, health_store)

        if set_goal is not None:
            goal = manager.set_goal(set_goal)
            typer.echo(f"Daily goal set to {goal:g}")

        for name, stat in manager.statistics().items():
            if isinstance(stat, float):
                stat = f"{stat:.2f}"
            elif stat is None:
                stat = "N/A"
            typer.echo(f"{name}: {stat}")

    except HealthTrackerSyncError as e:
        logger.error(f"Stats failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command(name="enable-sync")
def enable_sync(
    tracker: str = typer.Argument(..., help=TRACKER_HELP),
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
) -> None:
    """Request authorization, run an initial sync and keep the tracker in sync."""
    try:
        param_loader = init_config(config_path)
        result = run_with_manager(param_loader, tracker, lambda m: m.enable_sync())
        echo_result(result, f"Enable {tracker} sync")

    except HealthTrackerSyncError as e:
        logger.error(f"Enable sync failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command(name="disable-sync")
def disable_sync(
    tracker: str = typer.Argument(..., help=TRACKER_HELP),
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
) -> None:
    """Stop syncing a tracker. Existing entries are kept."""
    try:
        param_loader = init_config(config_path)
        run_with_manager(param_loader, tracker, lambda m: m.disable_sync())
        typer.echo(f"{tracker} sync disabled")

    except HealthTrackerSyncError as e:
        logger.error(f"Disable sync failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command()
def sync(
    tracker: str = typer.Argument(..., help=TRACKER_HELP),
    export_pending: bool = typer.Option(
        False, help="Also write manual entries not yet in the health store"
    ),
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
) -> None:
    """Import new samples from the health store (additive)."""
    try:
        param_loader = init_config(config_path)

        async def _sync(manager: TrackerManager[Any]) -> tuple[ReconcileResult, int]:
            result = await manager.sync()
            exported = await manager.export_pending() if export_pending and result.succeeded else 0
            return result, exported

        result, exported = run_with_manager(param_loader, tracker, _sync)
        echo_result(result, f"Sync {tracker}")
        if export_pending:
            typer.echo(f"Exported {exported} entries to the health store")

    except HealthTrackerSyncError as e:
        logger.error(f"Sync failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command(name="import-history")
def import_history(
    tracker: str = typer.Argument(..., help=TRACKER_HELP),
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
) -> None:
    """Import the full history of a tracker from the health store."""
    try:
        param_loader = init_config(config_path)
        result = run_with_manager(param_loader, tracker, lambda m: m.import_history())
        echo_result(result, f"Import {tracker} history")

    except HealthTrackerSyncError as e:
        logger.error(f"Import failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command()
def reconcile(
    tracker: str = typer.Argument(..., help=TRACKER_HELP),
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
) -> None:
    """Full reconciliation: drop synced entries deleted remotely, add missing ones."""
    try:
        param_loader = init_config(config_path)
        result = run_with_manager(param_loader, tracker, lambda m: m.reconcile_with_deletions())
        echo_result(result, f"Reconcile {tracker}")

    except HealthTrackerSyncError as e:
        logger.error(f"Reconcile failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command(name="remote-add")
def remote_add(
    tracker: str = typer.Argument(..., help=TRACKER_HELP),
    value: float | None = typer.Option(None, help="Weight or water amount, in display units"),
    at: str | None = typer.Option(None, help="When it happened (wake time for sleep); default now"),
    bed_time: str | None = typer.Option(None, help="Bed time (sleep only)"),
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
) -> None:
    """Write a sample straight into the health store, as another app would."""
    try:
        param_loader = init_config(config_path)
        timezone_str = param_loader.get_calendar_config().timezone
        entry = build_entry(
            tracker,
            param_loader.get_display_config(),
            timezone_str,
            value,
            at,
            "water",
            bed_time,
            None,
            None,
            None,
        )

        adapter = create_adapter(tracker, param_loader.config)
        _, health_store = build_backends(param_loader)
        identifier = health_store.put(adapter.data_type, adapter.to_remote(entry))

        typer.echo(f"Added {adapter.data_type.value} sample {identifier}")

    except HealthTrackerSyncError as e:
        logger.error(f"Remote add failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command(name="remote-delete")
def remote_delete(
    tracker: str = typer.Argument(..., help=TRACKER_HELP),
    identifier: str = typer.Argument(..., help="Identifier of the health store sample"),
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
) -> None:
    """Delete a sample straight from the health store, as another app would."""
    try:
        param_loader = init_config(config_path)
        adapter = create_adapter(tracker, param_loader.config)
        _, health_store = build_backends(param_loader)

        if not health_store.discard(adapter.data_type, identifier):
            typer.echo(f"Error: no {adapter.data_type.value} sample {identifier}", err=True)
            raise typer.Exit(code=1)

        typer.echo(f"Deleted {adapter.data_type.value} sample {identifier}")

    except HealthTrackerSyncError as e:
        logger.error(f"Remote delete failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


if __name__ == "__main__":
    app()
