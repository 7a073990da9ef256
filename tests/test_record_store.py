"""Unit tests for the local record store."""

from datetime import datetime, timedelta

import pytest
import pytz

from health_record_sync.domain.health_record import HealthCategory, HealthRecord, SyncState
from health_record_sync.infrastructure.record_store.json_store import LocalRecordStore
from health_record_sync.utils.exceptions import RecordStoreError

TS = datetime(2025, 10, 16, 8, 30, 0, tzinfo=pytz.UTC)


def _weight(value: float, offset_minutes: int = 0) -> HealthRecord:
    return HealthRecord(
        category=HealthCategory.WEIGHT,
        primary_value=value,
        timestamp=TS + timedelta(minutes=offset_minutes),
    )


def test_list_all_newest_first() -> None:
    """Test that records are listed by timestamp descending."""
    store = LocalRecordStore()
    older, newer, middle = _weight(70.0, 0), _weight(70.4, 20), _weight(70.2, 10)
    for record in (older, newer, middle):
        store.insert(record)

    ids = [r.id for r in store.list_all()]

    if ids != [newer.id, middle.id, older.id]:
        raise AssertionError(f"Unexpected order: {ids}")


def test_records_survive_reopening(tmp_path) -> None:
    """Test durability across store instances."""
    path = tmp_path / "records.json"
    store = LocalRecordStore(path)
    bp = HealthRecord(
        category=HealthCategory.BLOOD_PRESSURE,
        primary_value=118,
        systolic=118,
        diastolic=76,
        timestamp=TS,
        notes="left arm",
    )
    store.insert(bp)
    store.update_sync_state(bp.id, SyncState.SYNCED)

    reopened = LocalRecordStore(path)
    loaded = reopened.get(bp.id)

    if loaded is None:
        raise AssertionError("Expected the record to be loaded from disk")
    if loaded.sync_state != SyncState.SYNCED:
        raise AssertionError(f"Expected synced, got {loaded.sync_state}")
    if (loaded.systolic, loaded.diastolic, loaded.notes) != (118, 76, "left arm"):
        raise AssertionError(f"Unexpected record contents: {loaded}")
    if loaded.timestamp != TS:
        raise AssertionError(f"Expected timestamp {TS}, got {loaded.timestamp}")


def test_duplicate_insert_rejected() -> None:
    """Test that ids are unique within the store."""
    store = LocalRecordStore()
    record = _weight(70.0)
    store.insert(record)

    with pytest.raises(RecordStoreError):
        store.insert(record)


def test_delete_missing_record_raises() -> None:
    """Test that deleting an unknown id fails."""
    store = LocalRecordStore()

    with pytest.raises(RecordStoreError):
        store.delete("missing")


def test_failed_save_keeps_memory_unchanged(tmp_path) -> None:
    """Test that a write failure leaves the in-memory records intact."""
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    store = LocalRecordStore(blocker / "records.json")

    with pytest.raises(RecordStoreError):
        store.insert(_weight(70.0))

    if len(store) != 0:
        raise AssertionError("Expected no record after a failed save")


def test_returned_records_are_copies() -> None:
    """Test that callers cannot mutate stored state through returned records."""
    store = LocalRecordStore()
    record = _weight(70.0)
    store.insert(record)

    listed = store.list_all()[0]
    listed.notes = "changed"

    if store.get(record.id).notes is not None:
        raise AssertionError("Expected stored notes to be unchanged")


def test_non_object_document_raises(tmp_path) -> None:
    """Test that a records file holding a JSON list is reported as a store error."""
    path = tmp_path / "records.json"
    path.write_text("[1, 2, 3]")

    with pytest.raises(RecordStoreError):
        LocalRecordStore(path)
