"""
Candidate record builder.

Turns a confirmed scan result into unit-normalized HealthRecord candidates
that the sync coordinator writes as one batch.
"""

import logging
from datetime import datetime

from health_record_sync.domain.health_record import HealthCategory, HealthRecord
from health_record_sync.domain.scan import ScanResult

logger = logging.getLogger(__name__)

CM_PER_FOOT = 30.48
CM_PER_INCH = 2.54
KG_PER_POUND = 0.453592
MG_DL_PER_MMOL_L = 18.0182


def height_to_cm(value: float, unit: str | None) -> float:
    """Convert a height reading to centimeters (default unit: cm)."""
    unit = (unit or "").strip().lower()
    if unit == "ft":
        return value * CM_PER_FOOT
    if unit == "in":
        return value * CM_PER_INCH
    return value


def weight_to_kg(value: float, unit: str | None) -> float:
    """Convert a weight reading to kilograms (default unit: kg)."""
    if (unit or "").strip().lower() in ("lbs", "lb"):
        return value * KG_PER_POUND
    return value


def glucose_to_mg_dl(value: float, unit: str | None) -> float:
    """Convert a glucose reading to mg/dL (default unit: mg/dL)."""
    if (unit or "").strip().lower() == "mmol/l":
        return value * MG_DL_PER_MMOL_L
    return value


def build_candidates(
    scan: ScanResult, timestamp: datetime, notes: str | None = None
) -> list[HealthRecord]:
    """
    Build candidate records from a scan result.

    Args:
        scan: Parsed OCR response, as confirmed by the user.
        timestamp: User-confirmed measurement instant shared by all candidates.
        notes: Optional notes attached to every candidate.

    Returns:
        Candidates in write order: blood pressure, pulse, height, weight, glucose.
    """
    common = {"timestamp": timestamp, "source_image_url": scan.image_url, "notes": notes}
    candidates: list[HealthRecord] = []

    bp = scan.blood_pressure
    if bp is not None:
        if bp.systolic is not None and bp.diastolic is not None:
            candidates.append(
                HealthRecord.create(
                    category=HealthCategory.BLOOD_PRESSURE,
                    primary_value=bp.systolic,
                    systolic=bp.systolic,
                    diastolic=bp.diastolic,
                    **common,
                )
            )
        elif bp.systolic is not None or bp.diastolic is not None:
            logger.warning("Skipping incomplete blood pressure reading")
        if bp.pulse is not None:
            candidates.append(
                HealthRecord.create(
                    category=HealthCategory.HEART_RATE, primary_value=bp.pulse, **common
                )
            )

    body = scan.body_measurement
    if body is not None:
        if body.height is not None:
            candidates.append(
                HealthRecord.create(
                    category=HealthCategory.HEIGHT,
                    primary_value=height_to_cm(body.height, body.height_unit),
                    **common,
                )
            )
        if body.weight is not None:
            candidates.append(
                HealthRecord.create(
                    category=HealthCategory.WEIGHT,
                    primary_value=weight_to_kg(body.weight, body.weight_unit),
                    **common,
                )
            )

    glucose = scan.blood_glucose
    if glucose is not None and glucose.glucose is not None:
        candidates.append(
            HealthRecord.create(
                category=HealthCategory.BLOOD_GLUCOSE,
                primary_value=glucose_to_mg_dl(glucose.glucose, glucose.unit),
                **common,
            )
        )

    logger.info(f"Built {len(candidates)} candidates from {scan.device_type} scan")
    return candidates
