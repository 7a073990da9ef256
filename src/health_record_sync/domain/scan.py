"""
Scan result models.

Structured form of the OCR service response. The service itself is opaque;
these models only describe the payload the confirmation flow hands over.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from health_record_sync.utils.timezone_utils import now_in, parse_datetime


class BloodPressureReading(BaseModel):
    """Blood pressure monitor reading."""

    systolic: float | None = None
    diastolic: float | None = None
    pulse: float | None = None


class BodyMeasurementReading(BaseModel):
    """Scale / stadiometer reading with the units shown on the device."""

    height: float | None = None
    height_unit: str | None = Field(None, alias="heightUnit")
    weight: float | None = None
    weight_unit: str | None = Field(None, alias="weightUnit")

    model_config = ConfigDict(populate_by_name=True)


class BloodGlucoseReading(BaseModel):
    """Glucose meter reading."""

    glucose: float | None = None
    unit: str | None = None


class ScanResult(BaseModel):
    """
    OCR response for one photographed device display.

    ``year`` may be missing (the display rarely shows it); ``monthday`` is
    ``MM-DD`` and ``time`` is ``HH:MM``.
    """

    success: bool = True
    device_type: str = Field("unknown", alias="deviceType")
    blood_pressure: BloodPressureReading | None = Field(None, alias="bloodPressure")
    body_measurement: BodyMeasurementReading | None = Field(None, alias="bodyMeasurement")
    blood_glucose: BloodGlucoseReading | None = Field(None, alias="bloodGlucose")
    year: str | None = None
    monthday: str | None = None
    time: str | None = None
    image_url: str | None = None
    raw_text: str | None = Field(None, alias="rawText")
    error: str | None = None
    message: str | None = None

    model_config = ConfigDict(populate_by_name=True)

    def measurement_timestamp(
        self, timezone_str: str = "UTC", now: datetime | None = None
    ) -> datetime | None:
        """
        Combine year, month-day and time into the measurement instant.

        Args:
            timezone_str: Timezone the device display is read in.
            now: Reference instant used for the default year.

        Returns:
            Timezone-aware datetime, or None when no month-day was read or
            the pieces do not form a valid date.
        """
        if not self.monthday:
            return None

        reference = now or now_in(timezone_str)
        year = self.year or str(reference.year)

        time_str = None
        if self.time:
            parts = self.time.split(":")
            if len(parts) >= 2 and all(p.strip().isdigit() for p in parts[:2]):
                time_str = f"{int(parts[0]):02d}:{int(parts[1]):02d}"

        try:
            return parse_datetime(f"{year}-{self.monthday}", time_str, timezone_str)
        except (ValueError, OverflowError):
            return None
