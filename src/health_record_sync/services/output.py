"""
Output service for exporting the local record history.

Writes records to CSV with blood-pressure components in their own columns.
"""

import logging
from pathlib import Path

import pandas as pd

from health_record_sync.domain.health_record import HealthRecord
from health_record_sync.utils.parameters import ExportConfig

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    "id",
    "timestamp",
    "category",
    "primary_value",
    "unit",
    "systolic",
    "diastolic",
    "formatted_value",
    "sync_state",
    "source_image_url",
    "notes",
]


class OutputService:
    """
    Service for writing records to output files.
    """

    def __init__(self, config: ExportConfig) -> None:
        """
        Initialize output service.

        Args:
            config: Export configuration.
        """
        self.config = config
        self.output_dir = Path(config.dir)

    def write_records_csv(
        self, records: list[HealthRecord], file_name: str | None = None
    ) -> Path | None:
        """
        Write records to a CSV file, oldest first.

        Args:
            records: Records to export.
            file_name: Override for the configured CSV file name.

        Returns:
            Path of the written file, or None when there was nothing to write.
        """
        if not records:
            logger.warning("No records to export")
            return None

        self.output_dir.mkdir(parents=True, exist_ok=True)
        csv_path = self.output_dir / (file_name or self.config.records_csv)

        rows = []
        for record in sorted(records, key=lambda r: r.timestamp):
            row = record.to_dict()
            row["unit"] = record.category.unit
            row["formatted_value"] = record.formatted_value
            rows.append(row)

        df = pd.DataFrame(rows, columns=EXPORT_COLUMNS)

        df.to_csv(csv_path, index=False, encoding="utf-8")
        logger.info(f"Exported {len(records)} records to {csv_path}")
        return csv_path
