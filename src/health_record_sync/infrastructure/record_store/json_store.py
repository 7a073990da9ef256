"""
Local record store.

Durable JSON persistence of health records, independent of the external
health store. Every mutation rewrites the document atomically; a failed write
leaves the in-memory records untouched.
"""

import json
import logging
import os
from pathlib import Path

from health_record_sync.domain.health_record import HealthRecord, SyncState
from health_record_sync.utils.exceptions import RecordStoreError

logger = logging.getLogger(__name__)


class LocalRecordStore:
    """
    JSON-file backed record store.

    Records are keyed by ``id``. With ``path=None`` nothing is written to
    disk, which keeps tests and dry runs self-contained.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        """
        Initialize the record store.

        Args:
            path: JSON file holding the records, None for memory only.

        Raises:
            RecordStoreError: If an existing records file cannot be read.
        """
        self.path = Path(path) if path is not None else None
        self._records: dict[str, HealthRecord] = {}
        self._load()

    def _load(self) -> None:
        """Load records from disk."""
        if self.path is None or not self.path.exists():
            return
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")
            records = [HealthRecord.model_validate(item) for item in data.get("records", [])]
        except (OSError, TypeError, ValueError) as e:
            raise RecordStoreError(f"Failed to load records from {self.path}: {e}") from e

        self._records = {r.id: r for r in records}
        logger.info(f"Loaded {len(self._records)} records from {self.path}")

    def _save(self, records: dict[str, HealthRecord]) -> None:
        """Write records to disk, then adopt them as the current state."""
        if self.path is not None:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
                with open(tmp_path, "w", encoding="utf-8") as f:
                    json.dump({"records": [r.to_dict() for r in records.values()]}, f, indent=2)
                os.replace(tmp_path, self.path)
            except OSError as e:
                raise RecordStoreError(f"Failed to save records to {self.path}: {e}") from e
            logger.debug(f"Saved {len(records)} records")
        self._records = records

    def _require(self, record_id: str) -> HealthRecord:
        try:
            return self._records[record_id]
        except KeyError as e:
            raise RecordStoreError(f"Record not found: {record_id}") from e

    def insert(self, record: HealthRecord) -> None:
        """
        Insert a new record.

        Raises:
            RecordStoreError: If the id already exists or persisting fails.
        """
        if record.id in self._records:
            raise RecordStoreError(f"Record already exists: {record.id}")
        records = dict(self._records)
        records[record.id] = record.model_copy()
        self._save(records)

    def update_sync_state(self, record_id: str, state: SyncState) -> HealthRecord:
        """Persist a new sync state and return the updated record."""
        updated = self._require(record_id).model_copy(update={"sync_state": state})
        records = dict(self._records)
        records[record_id] = updated
        self._save(records)
        return updated.model_copy()

    def update_notes(self, record_id: str, notes: str | None) -> HealthRecord:
        """Persist new notes and return the updated record."""
        updated = self._require(record_id).model_copy(update={"notes": notes})
        records = dict(self._records)
        records[record_id] = updated
        self._save(records)
        return updated.model_copy()

    def delete(self, record_id: str) -> None:
        """
        Delete a record.

        Raises:
            RecordStoreError: If the record does not exist or persisting fails.
        """
        self._require(record_id)
        records = {k: v for k, v in self._records.items() if k != record_id}
        self._save(records)

    def get(self, record_id: str) -> HealthRecord | None:
        record = self._records.get(record_id)
        return record.model_copy() if record else None

    def list_all(self) -> list[HealthRecord]:
        """All records, newest measurement first."""
        return [
            r.model_copy()
            for r in sorted(self._records.values(), key=lambda r: r.timestamp, reverse=True)
        ]

    def __len__(self) -> int:
        return len(self._records)
