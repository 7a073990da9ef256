"""
Command-line interface for Health Record Sync.

Provides commands for recording measurements, importing scan results,
reconciling with the health store, resyncing, deleting and exporting records.
"""

import asyncio
import json
import logging
from datetime import datetime
from datetime import timezone as dt_timezone
from pathlib import Path

import typer

from health_record_sync.domain.health_record import HealthCategory, HealthRecord
from health_record_sync.domain.scan import ScanResult
from health_record_sync.infrastructure.health_store.file_store import FileHealthStore
from health_record_sync.infrastructure.record_store.json_store import LocalRecordStore
from health_record_sync.services.candidates import build_candidates
from health_record_sync.services.output import OutputService
from health_record_sync.services.sync_coordinator import SyncCoordinator, SyncOutcome
from health_record_sync.utils.exceptions import HealthRecordSyncError, ValidationError
from health_record_sync.utils.logging_config import setup_logging
from health_record_sync.utils.parameters import ParameterLoader
from health_record_sync.utils.timezone_utils import parse_datetime

app = typer.Typer(help="Health Record Sync - Local records mirrored into the health store")

logger = logging.getLogger(__name__)

CONFIG_OPTION = typer.Option("config/config.yaml", help="Path to configuration file")


class Services:
    """Collaborators constructed once per command invocation."""

    def __init__(self, config_path: str) -> None:
        self.params = ParameterLoader(config_path)
        setup_logging(self.params.get_logging_config())

        storage = self.params.get_storage_config()
        sync_config = self.params.get_sync_config()
        self.health_store = FileHealthStore(
            storage.health_store_file, timeout_seconds=sync_config.external_timeout_seconds
        )
        self.record_store = LocalRecordStore(storage.records_file)
        self.coordinator = SyncCoordinator(self.health_store, self.record_store, sync_config)


def _parse_timestamp(value: str | None, timezone_str: str) -> datetime:
    if value is None:
        return datetime.now(dt_timezone.utc)
    try:
        return parse_datetime(value, timezone_str=timezone_str)
    except (ValueError, OverflowError) as e:
        raise ValidationError(f"Invalid measurement time: {value}") from e


def _echo_record(record: HealthRecord, syncing: bool = False) -> None:
    state = "syncing" if syncing else record.sync_state.value
    line = (
        f"{record.id}  {record.timestamp.isoformat()}  "
        f"{record.category.value:<16} {record.formatted_value:<14} [{state}]"
    )
    if record.notes:
        line += f"  {record.notes}"
    typer.echo(line)


def _report_outcome(outcome: SyncOutcome, action: str) -> None:
    if outcome.success:
        typer.echo(f"{action} succeeded for {len(outcome.record_ids)} record(s)")
        if outcome.message:
            typer.echo(f"  Note: {outcome.message}")
        return

    typer.echo(f"Error: {action} failed: {outcome.message}", err=True)
    if outcome.needs_authorization:
        typer.echo(
            "Grant sharing permission with `health-sync authorize` and try again.", err=True
        )
    raise typer.Exit(code=1)


@app.command()
def record(
    category: HealthCategory = typer.Argument(..., help="Measurement category"),
    value: float | None = typer.Option(None, help="Value in the category's canonical unit"),
    systolic: float | None = typer.Option(None, help="Systolic pressure (blood pressure)"),
    diastolic: float | None = typer.Option(None, help="Diastolic pressure (blood pressure)"),
    at: str | None = typer.Option(None, help="Measurement time, defaults to now"),
    notes: str | None = typer.Option(None, help="Free text notes"),
    config_path: str = CONFIG_OPTION,
) -> None:
    """
    Record a single confirmed measurement in both stores.
    """
    try:
        services = Services(config_path)
        timezone_str = services.params.get_processing_config().timezone

        primary = value if value is not None else systolic
        if primary is None:
            raise HealthRecordSyncError("A value (or systolic pressure) is required")

        candidate = HealthRecord.create(
            category=category,
            primary_value=primary,
            systolic=systolic,
            diastolic=diastolic,
            timestamp=_parse_timestamp(at, timezone_str),
            notes=notes,
        )
        outcome = asyncio.run(services.coordinator.save_batch([candidate]))
        _report_outcome(outcome, "Save")

    except HealthRecordSyncError as e:
        logger.error(f"Record failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command("import-scan")
def import_scan(
    scan_file: Path = typer.Argument(..., help="JSON file with the OCR scan result"),
    at: str | None = typer.Option(None, help="Override the measurement time read from the scan"),
    notes: str | None = typer.Option(None, help="Free text notes for every record"),
    config_path: str = CONFIG_OPTION,
) -> None:
    """
    Import a confirmed scan result as one all-or-nothing batch.
    """
    try:
        services = Services(config_path)
        timezone_str = services.params.get_processing_config().timezone

        try:
            with open(scan_file, encoding="utf-8") as f:
                scan = ScanResult.model_validate(json.load(f))
        except (OSError, ValueError) as e:
            raise HealthRecordSyncError(f"Failed to read scan result {scan_file}: {e}") from e

        if not scan.success:
            raise HealthRecordSyncError(f"Scan was not successful: {scan.error or scan.message}")

        if at is not None:
            timestamp = _parse_timestamp(at, timezone_str)
        else:
            timestamp = scan.measurement_timestamp(timezone_str) or _parse_timestamp(
                None, timezone_str
            )

        candidates = build_candidates(scan, timestamp, notes=notes)
        if not candidates:
            raise HealthRecordSyncError("Scan result contains no usable readings")

        for candidate in candidates:
            typer.echo(f"  {candidate.category.value}: {candidate.formatted_value}")

        outcome = asyncio.run(services.coordinator.save_batch(candidates))
        _report_outcome(outcome, "Import")

    except HealthRecordSyncError as e:
        logger.error(f"Import failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command("list")
def list_records(
    category: HealthCategory | None = typer.Option(None, help="Only show this category"),
    limit: int | None = typer.Option(None, help="Show at most this many records"),
    verify: bool = typer.Option(False, help="Reconcile with the health store first"),
    config_path: str = CONFIG_OPTION,
) -> None:
    """
    List local records, newest first.
    """
    try:
        services = Services(config_path)
        coordinator = services.coordinator

        if verify:

            async def _verify() -> None:
                await coordinator.run_in_background(coordinator.verify_sync_status())
                await coordinator.drain()

            asyncio.run(_verify())

        records = (
            coordinator.records_of_category(category) if category else coordinator.records
        )
        if limit is not None:
            records = records[:limit]

        if not records:
            typer.echo("No records")
            return

        for item in records:
            _echo_record(item, coordinator.is_syncing(item.id))

    except HealthRecordSyncError as e:
        logger.error(f"List failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command()
def delete(
    record_id: str = typer.Argument(..., help="Id of the record to delete"),
    config_path: str = CONFIG_OPTION,
) -> None:
    """
    Delete a record locally and, when synced, from the health store.
    """
    try:
        services = Services(config_path)
        outcome = asyncio.run(services.coordinator.delete_record(record_id))
        _report_outcome(outcome, "Delete")

    except HealthRecordSyncError as e:
        logger.error(f"Delete failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command()
def resync(
    record_id: str = typer.Argument(..., help="Id of the record to resync"),
    config_path: str = CONFIG_OPTION,
) -> None:
    """
    Retry writing a not-synced record to the health store.
    """
    try:
        services = Services(config_path)
        outcome = asyncio.run(services.coordinator.resync_record(record_id))
        _report_outcome(outcome, "Resync")

    except HealthRecordSyncError as e:
        logger.error(f"Resync failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command()
def verify(config_path: str = CONFIG_OPTION) -> None:
    """
    Reconcile synced records with the health store.
    """
    try:
        services = Services(config_path)
        report = asyncio.run(services.coordinator.verify_sync_status())

        typer.echo(f"Checked {report.checked} synced records")
        typer.echo(f"  Skipped (recently synced): {report.excluded}")
        typer.echo(f"  Marked not synced: {len(report.demoted)}")
        for record_id in report.demoted:
            typer.echo(f"    - {record_id}")
        if report.errors:
            typer.echo(f"  Could not verify: {report.errors}")

    except HealthRecordSyncError as e:
        logger.error(f"Verification failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command()
def notes(
    record_id: str = typer.Argument(..., help="Id of the record"),
    text: str | None = typer.Argument(None, help="New notes, omit to clear"),
    config_path: str = CONFIG_OPTION,
) -> None:
    """
    Set or clear a record's notes.
    """
    try:
        services = Services(config_path)
        updated = services.coordinator.update_notes(record_id, text)
        _echo_record(updated)

    except HealthRecordSyncError as e:
        logger.error(f"Updating notes failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command()
def permissions(config_path: str = CONFIG_OPTION) -> None:
    """
    Show sharing permission per category.
    """
    try:
        services = Services(config_path)

        for category in HealthCategory:
            status = services.health_store.authorization_state(category)
            typer.echo(f"{category.value:<16} {status.value}")

        unauthorized = services.coordinator.get_unauthorized_categories()
        if unauthorized:
            names = ", ".join(c.value for c in unauthorized)
            typer.echo(f"\nNeeds permission: {names}")

        summary = services.health_store.summary()
        typer.echo(
            f"\nHealth store holds {summary['samples']} samples "
            f"and {summary['correlations']} correlations"
        )

    except HealthRecordSyncError as e:
        logger.error(f"Permission check failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command()
def authorize(
    categories: list[HealthCategory] | None = typer.Argument(
        None, help="Categories to change, defaults to all"
    ),
    revoke: bool = typer.Option(False, help="Deny instead of grant"),
    config_path: str = CONFIG_OPTION,
) -> None:
    """
    Grant (or revoke) sharing permission in the health store.
    """
    try:
        services = Services(config_path)
        selected = categories or list(HealthCategory)

        if revoke:
            services.health_store.revoke(selected)
        else:
            asyncio.run(services.health_store.request_authorization(selected))

        action = "Revoked" if revoke else "Granted"
        typer.echo(f"{action} sharing for: {', '.join(c.value for c in selected)}")

    except HealthRecordSyncError as e:
        logger.error(f"Authorization failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command()
def export(
    file_name: str | None = typer.Option(None, help="Override the configured CSV file name"),
    config_path: str = CONFIG_OPTION,
) -> None:
    """
    Export the local record history to CSV.
    """
    try:
        services = Services(config_path)
        output_service = OutputService(services.params.get_export_config())
        path = output_service.write_records_csv(services.coordinator.records, file_name)

        if path is None:
            typer.echo("No records to export")
        else:
            typer.echo(f"Exported {len(services.coordinator.records)} records to {path}")

    except HealthRecordSyncError as e:
        logger.error(f"Export failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


if __name__ == "__main__":
    app()
