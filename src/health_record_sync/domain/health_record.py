"""
Health record domain model and sync-state machine.

A HealthRecord is one confirmed measurement. Its ``sync_state`` is the local
claim that a live counterpart exists in the external health store; the claim
is promoted by a successful external write and demoted by reconciliation.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from health_record_sync.utils.exceptions import ValidationError


class HealthCategory(str, Enum):
    """Closed set of measurement categories."""

    WEIGHT = "weight"
    HEIGHT = "height"
    BLOOD_PRESSURE = "blood_pressure"
    HEART_RATE = "heart_rate"
    BLOOD_GLUCOSE = "blood_glucose"
    BODY_TEMPERATURE = "body_temperature"

    @property
    def unit(self) -> str:
        """Canonical unit the primary value is expressed in."""
        return CATEGORY_UNITS[self]


CATEGORY_UNITS: dict[HealthCategory, str] = {
    HealthCategory.WEIGHT: "kg",
    HealthCategory.HEIGHT: "cm",
    HealthCategory.BLOOD_PRESSURE: "mmHg",
    HealthCategory.HEART_RATE: "bpm",
    HealthCategory.BLOOD_GLUCOSE: "mg/dL",
    HealthCategory.BODY_TEMPERATURE: "°C",
}


class SyncState(str, Enum):
    """Local claim about the record's presence in the external health store."""

    NOT_SYNCED = "not_synced"
    SYNCED = "synced"


class HealthRecord(BaseModel):
    """
    One measurement instance.

    Only ``sync_state`` and ``notes`` change after creation; every other
    field is frozen. Blood-pressure records carry both ``systolic`` and
    ``diastolic`` (``primary_value`` mirrors systolic); every other category
    carries neither.
    """

    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        frozen=True,
        description="Local identity, never sent to the external store",
    )
    category: HealthCategory = Field(frozen=True, description="Measurement category")
    primary_value: float = Field(
        frozen=True, description="Magnitude in the category's canonical unit"
    )
    systolic: float | None = Field(
        None, frozen=True, description="Systolic pressure (blood pressure only)"
    )
    diastolic: float | None = Field(
        None, frozen=True, description="Diastolic pressure (blood pressure only)"
    )
    timestamp: datetime = Field(frozen=True, description="User-confirmed measurement instant")
    source_image_url: str | None = Field(
        None, frozen=True, description="Remote photo of the reading"
    )
    notes: str | None = Field(None, description="Free text notes")
    sync_state: SyncState = Field(SyncState.NOT_SYNCED, description="External sync claim")

    model_config = ConfigDict(validate_assignment=True)

    @field_validator("timestamp")
    @classmethod
    def _ensure_timezone(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _check_blood_pressure_pairing(self) -> "HealthRecord":
        if self.category == HealthCategory.BLOOD_PRESSURE:
            if self.systolic is None or self.diastolic is None:
                raise ValueError("blood pressure requires both systolic and diastolic")
            if self.primary_value != self.systolic:
                # Bypass validate_assignment to avoid re-entering this validator.
                object.__setattr__(self, "primary_value", self.systolic)
        elif self.systolic is not None or self.diastolic is not None:
            raise ValueError(
                f"systolic/diastolic are only valid for blood pressure, not {self.category.value}"
            )
        return self

    @classmethod
    def create(cls, **data: Any) -> "HealthRecord":
        """
        Build a record, translating model validation failures.

        Raises:
            ValidationError: If the data violates the record invariants.
        """
        try:
            return cls(**data)
        except ValueError as e:
            raise ValidationError(f"Invalid health record: {e}") from e

    @property
    def is_synced(self) -> bool:
        return self.sync_state == SyncState.SYNCED

    @property
    def formatted_value(self) -> str:
        """Human readable value with unit, e.g. ``120/80 mmHg``."""
        if self.category == HealthCategory.BLOOD_PRESSURE:
            if self.systolic is None or self.diastolic is None:
                return "N/A"
            return f"{int(self.systolic)}/{int(self.diastolic)} {self.category.unit}"
        return f"{self.primary_value:.1f} {self.category.unit}"

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible representation used by the stores and exports."""
        return self.model_dump(mode="json")
