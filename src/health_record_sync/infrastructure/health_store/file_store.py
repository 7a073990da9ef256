"""
File-backed external health store.

Models the platform health repository: quantity samples per quantity type,
blood-pressure correlations that own a systolic and a diastolic sample, and
per-quantity-type sharing permissions. State lives in a JSON document so the
repository can be inspected and edited outside the application, the way a
user edits entries in the platform's own health app.
"""

import json
import logging
import os
import uuid
from collections.abc import Iterable
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from health_record_sync.domain.health_record import HealthCategory, HealthRecord
from health_record_sync.infrastructure.health_store.base import (
    AuthorizationStatus,
    ExternalHealthStore,
    TimeWindow,
    combine_authorization,
)
from health_record_sync.utils.exceptions import AuthorizationError, StoreError, ValidationError

logger = logging.getLogger(__name__)


class QuantityType(str, Enum):
    """Platform quantity types."""

    BODY_MASS = "body_mass"
    HEIGHT = "height"
    BLOOD_PRESSURE_SYSTOLIC = "blood_pressure_systolic"
    BLOOD_PRESSURE_DIASTOLIC = "blood_pressure_diastolic"
    HEART_RATE = "heart_rate"
    BLOOD_GLUCOSE = "blood_glucose"
    BODY_TEMPERATURE = "body_temperature"


BLOOD_PRESSURE_CORRELATION = "blood_pressure"

QUANTITY_UNITS: dict[QuantityType, str] = {
    QuantityType.BODY_MASS: "kg",
    QuantityType.HEIGHT: "cm",
    QuantityType.BLOOD_PRESSURE_SYSTOLIC: "mmHg",
    QuantityType.BLOOD_PRESSURE_DIASTOLIC: "mmHg",
    QuantityType.HEART_RATE: "count/min",
    QuantityType.BLOOD_GLUCOSE: "mg/dL",
    QuantityType.BODY_TEMPERATURE: "degC",
}

CATEGORY_QUANTITY_TYPES: dict[HealthCategory, tuple[QuantityType, ...]] = {
    HealthCategory.WEIGHT: (QuantityType.BODY_MASS,),
    HealthCategory.HEIGHT: (QuantityType.HEIGHT,),
    HealthCategory.BLOOD_PRESSURE: (
        QuantityType.BLOOD_PRESSURE_SYSTOLIC,
        QuantityType.BLOOD_PRESSURE_DIASTOLIC,
    ),
    HealthCategory.HEART_RATE: (QuantityType.HEART_RATE,),
    HealthCategory.BLOOD_GLUCOSE: (QuantityType.BLOOD_GLUCOSE,),
    HealthCategory.BODY_TEMPERATURE: (QuantityType.BODY_TEMPERATURE,),
}


class StoredSample(BaseModel):
    """One quantity sample."""

    uuid: str = Field(default_factory=lambda: str(uuid.uuid4()))
    quantity_type: QuantityType
    value: float
    unit: str
    start: datetime


class StoredCorrelation(BaseModel):
    """A grouping of samples the platform treats as one clinical reading."""

    uuid: str = Field(default_factory=lambda: str(uuid.uuid4()))
    correlation_type: str
    start: datetime
    sample_ids: list[str]


class HealthStoreState(BaseModel):
    """Serialized repository contents."""

    samples: list[StoredSample] = Field(default_factory=list)
    correlations: list[StoredCorrelation] = Field(default_factory=list)
    permissions: dict[QuantityType, AuthorizationStatus] = Field(default_factory=dict)


class FileHealthStore(ExternalHealthStore):
    """
    External health store adapter persisted to a JSON file.

    With ``path=None`` the repository lives in memory only.
    """

    def __init__(self, path: str | Path | None = None, timeout_seconds: float | None = None) -> None:
        """
        Initialize the store.

        Args:
            path: JSON file holding the repository, None for memory only.
            timeout_seconds: Upper bound for a single store call.

        Raises:
            StoreError: If an existing repository file cannot be read.
        """
        super().__init__(timeout_seconds)
        self.path = Path(path) if path is not None else None
        self.state = HealthStoreState()
        self._load()

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            with open(self.path, encoding="utf-8") as f:
                self.state = HealthStoreState.model_validate(json.load(f))
            logger.info(
                f"Loaded health store with {len(self.state.samples)} samples "
                f"and {len(self.state.correlations)} correlations"
            )
        except (OSError, ValueError) as e:
            raise StoreError(f"Failed to load health store {self.path}: {e}") from e

    def _commit(self, previous: HealthStoreState) -> None:
        """Persist the current state, restoring ``previous`` if that fails."""
        try:
            self._save()
        except StoreError:
            self.state = previous
            raise

    def _save(self) -> None:
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self.state.model_dump(mode="json"), f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StoreError(f"Failed to save health store {self.path}: {e}") from e

    def _permission(self, quantity_type: QuantityType) -> AuthorizationStatus:
        return self.state.permissions.get(quantity_type, AuthorizationStatus.NOT_DETERMINED)

    def authorization_state(self, category: HealthCategory) -> AuthorizationStatus:
        return combine_authorization(
            self._permission(qt) for qt in CATEGORY_QUANTITY_TYPES[category]
        )

    def _set_permission(
        self, categories: Iterable[HealthCategory], status: AuthorizationStatus
    ) -> None:
        previous = self.state.model_copy(deep=True)
        for category in categories:
            for quantity_type in CATEGORY_QUANTITY_TYPES[category]:
                self.state.permissions[quantity_type] = status
        self._commit(previous)

    async def request_authorization(self, categories: Iterable[HealthCategory]) -> None:
        # No consent dialog here: requesting grants sharing permission.
        self._set_permission(categories, AuthorizationStatus.AUTHORIZED)

    def revoke(self, categories: Iterable[HealthCategory]) -> None:
        """Deny sharing permission, as a user would in the platform settings."""
        self._set_permission(categories, AuthorizationStatus.DENIED)

    async def write(self, record: HealthRecord) -> str:
        return await self._with_timeout(self._write(record), f"Writing {record.category.value}")

    async def _write(self, record: HealthRecord) -> str:
        status = self.authorization_state(record.category)
        if status != AuthorizationStatus.AUTHORIZED:
            raise AuthorizationError(
                f"Sharing {record.category.value} is not authorized ({status.value})"
            )

        previous = self.state.model_copy(deep=True)
        if record.category == HealthCategory.BLOOD_PRESSURE:
            if record.systolic is None or record.diastolic is None:
                raise ValidationError("Blood pressure requires both systolic and diastolic")
            systolic = self._sample(QuantityType.BLOOD_PRESSURE_SYSTOLIC, record.systolic, record)
            diastolic = self._sample(
                QuantityType.BLOOD_PRESSURE_DIASTOLIC, record.diastolic, record
            )
            correlation = StoredCorrelation(
                correlation_type=BLOOD_PRESSURE_CORRELATION,
                start=record.timestamp,
                sample_ids=[systolic.uuid, diastolic.uuid],
            )
            self.state.samples.extend([systolic, diastolic])
            self.state.correlations.append(correlation)
            handle = correlation.uuid
            logger.info(
                f"Saved blood pressure {record.systolic}/{record.diastolic} at {record.timestamp}"
            )
        else:
            (quantity_type,) = CATEGORY_QUANTITY_TYPES[record.category]
            sample = self._sample(quantity_type, record.primary_value, record)
            self.state.samples.append(sample)
            handle = sample.uuid
            logger.info(f"Saved {quantity_type.value}={record.primary_value} at {record.timestamp}")

        self._commit(previous)
        return handle

    @staticmethod
    def _sample(quantity_type: QuantityType, value: float, record: HealthRecord) -> StoredSample:
        return StoredSample(
            quantity_type=quantity_type,
            value=value,
            unit=QUANTITY_UNITS[quantity_type],
            start=record.timestamp,
        )

    def _matching_correlations(self, window: TimeWindow) -> list[StoredCorrelation]:
        return [
            c
            for c in self.state.correlations
            if c.correlation_type == BLOOD_PRESSURE_CORRELATION and window.contains(c.start)
        ]

    def _matching_samples(self, quantity_type: QuantityType, window: TimeWindow) -> list[StoredSample]:
        return [
            s
            for s in self.state.samples
            if s.quantity_type == quantity_type and window.contains(s.start)
        ]

    async def delete_entry(self, handle: str) -> bool:
        return await self._with_timeout(self._delete_entry(handle), f"Deleting entry {handle}")

    async def _delete_entry(self, handle: str) -> bool:
        previous = self.state.model_copy(deep=True)
        correlation = next((c for c in self.state.correlations if c.uuid == handle), None)
        removed_ids = set(correlation.sample_ids) if correlation else {handle}
        if correlation is not None:
            self.state.correlations.remove(correlation)
        remaining = [s for s in self.state.samples if s.uuid not in removed_ids]
        if correlation is None and len(remaining) == len(self.state.samples):
            logger.warning(f"No entry with handle {handle}")
            return False
        self.state.samples = remaining
        self._commit(previous)
        logger.info(f"Deleted entry {handle}")
        return True

    async def delete(self, category: HealthCategory, window: TimeWindow) -> int:
        return await self._with_timeout(
            self._delete(category, window), f"Deleting {category.value}"
        )

    async def _delete(self, category: HealthCategory, window: TimeWindow) -> int:
        previous = self.state.model_copy(deep=True)
        if category == HealthCategory.BLOOD_PRESSURE:
            correlations = self._matching_correlations(window)
            if not correlations:
                logger.warning(f"No blood pressure correlation found around {window.center}")
                return 0
            member_ids = {sid for c in correlations for sid in c.sample_ids}
            correlation_ids = {c.uuid for c in correlations}
            self.state.samples = [s for s in self.state.samples if s.uuid not in member_ids]
            self.state.correlations = [
                c for c in self.state.correlations if c.uuid not in correlation_ids
            ]
            removed = len(correlations)
        else:
            (quantity_type,) = CATEGORY_QUANTITY_TYPES[category]
            sample_ids = {s.uuid for s in self._matching_samples(quantity_type, window)}
            self.state.samples = [s for s in self.state.samples if s.uuid not in sample_ids]
            removed = len(sample_ids)

        if removed:
            self._commit(previous)
        logger.info(f"Deleted {removed} {category.value} entries around {window.center}")
        return removed

    async def exists(self, category: HealthCategory, window: TimeWindow) -> bool:
        return await self._with_timeout(
            self._exists(category, window), f"Querying {category.value}"
        )

    async def _exists(self, category: HealthCategory, window: TimeWindow) -> bool:
        if category == HealthCategory.BLOOD_PRESSURE:
            return bool(self._matching_correlations(window))
        (quantity_type,) = CATEGORY_QUANTITY_TYPES[category]
        return bool(self._matching_samples(quantity_type, window))

    def summary(self) -> dict[str, Any]:
        """Counts of stored entries, for diagnostics."""
        return {
            "samples": len(self.state.samples),
            "correlations": len(self.state.correlations),
        }
