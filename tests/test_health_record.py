"""Unit tests for the health record model."""

from datetime import datetime, timezone

import pytest

from health_record_sync.domain.health_record import HealthCategory, HealthRecord, SyncState
from health_record_sync.utils.exceptions import ValidationError

TS = datetime(2025, 10, 16, 8, 30, 0, tzinfo=timezone.utc)


def test_blood_pressure_requires_both_components() -> None:
    """Test that a blood pressure record cannot carry only one component."""
    with pytest.raises(ValidationError):
        HealthRecord.create(
            category=HealthCategory.BLOOD_PRESSURE, primary_value=120, systolic=120, timestamp=TS
        )

    with pytest.raises(ValidationError):
        HealthRecord.create(
            category=HealthCategory.BLOOD_PRESSURE, primary_value=120, diastolic=80, timestamp=TS
        )


def test_components_rejected_outside_blood_pressure() -> None:
    """Test that other categories cannot carry systolic/diastolic."""
    with pytest.raises(ValidationError):
        HealthRecord.create(
            category=HealthCategory.HEART_RATE,
            primary_value=72,
            systolic=120,
            diastolic=80,
            timestamp=TS,
        )


def test_measurement_fields_cannot_change() -> None:
    """Test that rejected assignments leave the reading intact."""
    record = HealthRecord(
        category=HealthCategory.BLOOD_PRESSURE,
        primary_value=120,
        systolic=120,
        diastolic=80,
        timestamp=TS,
        source_image_url="https://example.com/scan.jpg",
    )

    with pytest.raises(ValueError):
        record.diastolic = None
    with pytest.raises(ValueError):
        record.systolic = 140
    with pytest.raises(ValueError):
        record.primary_value = 140
    with pytest.raises(ValueError):
        record.timestamp = datetime(2025, 10, 17, tzinfo=timezone.utc)
    with pytest.raises(ValueError):
        record.source_image_url = None

    if (record.systolic, record.diastolic, record.primary_value) != (120, 80, 120):
        raise AssertionError(f"Expected 120/80 after rejected assignments, got {record}")
    if record.formatted_value != "120/80 mmHg":
        raise AssertionError(f"Unexpected formatted value: {record.formatted_value}")
    if record.timestamp != TS or record.source_image_url != "https://example.com/scan.jpg":
        raise AssertionError(f"Expected timestamp and image to be unchanged, got {record}")


def test_primary_value_mirrors_systolic() -> None:
    """Test that blood pressure stores systolic as the primary value."""
    record = HealthRecord(
        category=HealthCategory.BLOOD_PRESSURE,
        primary_value=0,
        systolic=131,
        diastolic=85,
        timestamp=TS,
    )

    if record.primary_value != 131:
        raise AssertionError(f"Expected primary_value=131, got {record.primary_value}")
    if record.formatted_value != "131/85 mmHg":
        raise AssertionError(f"Unexpected formatted value: {record.formatted_value}")


def test_id_and_category_are_frozen() -> None:
    """Test that identity fields cannot change after creation."""
    record = HealthRecord(category=HealthCategory.WEIGHT, primary_value=70.25, timestamp=TS)

    with pytest.raises(ValueError):
        record.id = "other"
    with pytest.raises(ValueError):
        record.category = HealthCategory.HEIGHT

    record.sync_state = SyncState.SYNCED
    record.notes = "morning"
    if not record.is_synced:
        raise AssertionError("Expected sync_state to be assignable")


def test_defaults_and_naive_timestamp() -> None:
    """Test generated ids, initial state and UTC interpretation of naive timestamps."""
    first = HealthRecord(
        category=HealthCategory.BODY_TEMPERATURE,
        primary_value=36.8,
        timestamp=datetime(2025, 10, 16, 8, 30),
    )
    second = HealthRecord(category=HealthCategory.BODY_TEMPERATURE, primary_value=36.8, timestamp=TS)

    if first.id == second.id:
        raise AssertionError("Expected unique ids")
    if first.sync_state != SyncState.NOT_SYNCED:
        raise AssertionError("Expected new records to start not synced")
    if first.timestamp != TS:
        raise AssertionError(f"Expected naive timestamp treated as UTC, got {first.timestamp}")
    if first.formatted_value != "36.8 °C":
        raise AssertionError(f"Unexpected formatted value: {first.formatted_value}")
