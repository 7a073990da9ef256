"""
Sync coordinator for the local record store and the external health store.

Owns the dual-write protocol (external first, then local), the reconciliation
sweep that demotes records whose external copy disappeared, user-initiated
resync, and the deletion fan-out. Nothing is retried automatically; the only
automatic corrective action is demoting a record to ``not_synced``.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Coroutine, Sequence
from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel, Field

from health_record_sync.domain.health_record import HealthCategory, HealthRecord, SyncState
from health_record_sync.infrastructure.health_store.base import (
    AuthorizationStatus,
    ExternalHealthStore,
    TimeWindow,
)
from health_record_sync.infrastructure.record_store.json_store import LocalRecordStore
from health_record_sync.utils.exceptions import (
    AuthorizationError,
    HealthRecordSyncError,
    RecordStoreError,
    StoreError,
    ValidationError,
)
from health_record_sync.utils.parameters import SyncConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SyncErrorKind(str, Enum):
    """Failure kinds surfaced to callers."""

    AUTHORIZATION = "authorization"
    VALIDATION = "validation"
    STORE = "store"


def classify_error(error: Exception) -> SyncErrorKind:
    """Map an exception onto the kind the UI branches on."""
    if isinstance(error, AuthorizationError):
        return SyncErrorKind.AUTHORIZATION
    if isinstance(error, ValidationError):
        return SyncErrorKind.VALIDATION
    return SyncErrorKind.STORE


class SyncOutcome(BaseModel):
    """Result of a batch write, resync or deletion."""

    success: bool
    error_kind: SyncErrorKind | None = None
    message: str | None = None
    record_ids: list[str] = Field(default_factory=list)

    @classmethod
    def ok(cls, record_ids: Sequence[str], message: str | None = None) -> "SyncOutcome":
        return cls(success=True, record_ids=list(record_ids), message=message)

    @classmethod
    def failure(
        cls, error: Exception, record_ids: Sequence[str] = (), message: str | None = None
    ) -> "SyncOutcome":
        return cls(
            success=False,
            error_kind=classify_error(error),
            message=message or str(error),
            record_ids=list(record_ids),
        )

    @property
    def needs_authorization(self) -> bool:
        return self.error_kind == SyncErrorKind.AUTHORIZATION


class ReconciliationReport(BaseModel):
    """Summary of one reconciliation sweep."""

    skipped: bool = False
    checked: int = 0
    excluded: int = 0
    demoted: list[str] = Field(default_factory=list)
    errors: int = 0


class RecentlySyncedRegistry:
    """
    Map of record id to expiry instant.

    Records resynced moments ago are excluded from reconciliation until the
    grace period ends, since the external store may not yet show the write.
    Expiry is evaluated against ``clock`` whenever the registry is read.
    """

    def __init__(self, grace_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.grace_seconds = grace_seconds
        self._clock = clock
        self._expiry: dict[str, float] = {}

    def add(self, record_id: str) -> None:
        self._expiry[record_id] = self._clock() + self.grace_seconds

    def discard(self, record_id: str) -> None:
        self._expiry.pop(record_id, None)

    def active_ids(self) -> set[str]:
        """Ids still inside their grace period; expired entries are dropped."""
        now = self._clock()
        self._expiry = {rid: exp for rid, exp in self._expiry.items() if exp > now}
        return set(self._expiry)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self.active_ids()


class SyncCoordinator:
    """
    Coordinates writes, deletions and verification across both stores.

    The external store is borrowed, not owned: its lifecycle belongs to the
    application shell that constructs the coordinator. All mutations of the
    local view happen on the event loop running the coordinator.
    """

    def __init__(
        self,
        external_store: ExternalHealthStore,
        record_store: LocalRecordStore,
        config: SyncConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the coordinator.

        Args:
            external_store: Adapter for the platform health repository.
            record_store: Durable local record store.
            config: Sync policy (window tolerance, grace period).
            clock: Monotonic clock used for the recently-synced grace period.
        """
        self._external = external_store
        self._store = record_store
        self.config = config
        self._recently_synced = RecentlySyncedRegistry(config.recently_synced_grace_seconds, clock)
        self._sweep_lock = asyncio.Lock()
        self._syncing: set[str] = set()
        self._background: set[asyncio.Task[Any]] = set()
        self.records: list[HealthRecord] = []
        self.refresh()

    def refresh(self) -> list[HealthRecord]:
        """Reload the in-memory view from the local store."""
        self.records = self._store.list_all()
        return self.records

    def is_syncing(self, record_id: str) -> bool:
        return record_id in self._syncing

    def records_of_category(self, category: HealthCategory) -> list[HealthRecord]:
        return [r for r in self.records if r.category == category]

    def _window(self, record: HealthRecord) -> TimeWindow:
        return TimeWindow.around(record.timestamp, self.config.timestamp_tolerance_seconds)

    async def _external_call(self, operation: Awaitable[T], description: str) -> T:
        """Await an adapter call; timeouts and unknown failures become StoreError."""
        try:
            return await operation
        except HealthRecordSyncError:
            raise
        except asyncio.TimeoutError as e:
            raise StoreError(f"{description} timed out") from e
        except Exception as e:
            raise StoreError(f"{description} failed: {e}") from e

    @staticmethod
    def _validate(record: HealthRecord) -> None:
        if record.category == HealthCategory.BLOOD_PRESSURE:
            if record.systolic is None or record.diastolic is None:
                raise ValidationError(
                    f"Blood pressure record {record.id} must carry both systolic and diastolic"
                )
        elif record.systolic is not None or record.diastolic is not None:
            raise ValidationError(
                f"Record {record.id} of category {record.category.value} carries blood pressure fields"
            )

    async def _remove_external(self, record: HealthRecord, reason: str) -> bool:
        """Best-effort external delete; failures are logged, never raised."""
        try:
            await self._external_call(
                self._external.delete(record.category, self._window(record)),
                f"Deleting {record.category.value} {record.id}",
            )
            return True
        except HealthRecordSyncError as e:
            logger.warning(f"External delete for {record.id} ({reason}) failed: {e}")
            return False

    async def _discard_written(self, record: HealthRecord, handle: str, reason: str) -> None:
        """Best-effort removal of the one external entry this coordinator wrote."""
        try:
            await self._external_call(
                self._external.delete_entry(handle),
                f"Removing {record.category.value} {record.id}",
            )
        except HealthRecordSyncError as e:
            logger.warning(f"Removing external entry for {record.id} ({reason}) failed: {e}")

    async def save_batch(self, candidates: Sequence[HealthRecord]) -> SyncOutcome:
        """
        Dual-write the candidates of one confirmed scan.

        Every candidate is written to the external store, sequentially. If any
        write fails, the entries this batch created are removed externally
        again by their write handles, leaving older entries in the same time
        window alone, and nothing is stored locally. Only after all external
        writes succeed are the records marked synced and inserted locally.

        Args:
            candidates: Records derived from one scan result.

        Returns:
            Outcome listing the ids persisted locally.
        """
        if not candidates:
            return SyncOutcome.ok([], message="Nothing to save")

        try:
            seen: set[str] = set()
            for candidate in candidates:
                self._validate(candidate)
                if candidate.id in seen or self._store.get(candidate.id) is not None:
                    raise ValidationError(f"Record {candidate.id} is already stored")
                seen.add(candidate.id)
        except ValidationError as e:
            logger.error(f"Rejected batch of {len(candidates)} records: {e}")
            return SyncOutcome.failure(e)

        batch_ids = [c.id for c in candidates]
        self._syncing.update(batch_ids)
        written: list[tuple[HealthRecord, str]] = []
        try:
            for candidate in candidates:
                try:
                    handle = await self._external_call(
                        self._external.write(candidate),
                        f"Writing {candidate.category.value} {candidate.id}",
                    )
                except HealthRecordSyncError as e:
                    logger.error(
                        f"External write failed for {candidate.category.value} "
                        f"{candidate.id}, aborting batch: {e}"
                    )
                    for record, record_handle in written:
                        await self._discard_written(record, record_handle, "batch rollback")
                    return SyncOutcome.failure(e)
                written.append((candidate, handle))

            persisted: list[str] = []
            failed: list[str] = []
            for candidate, handle in written:
                record = candidate.model_copy(update={"sync_state": SyncState.SYNCED})
                try:
                    self._store.insert(record)
                    persisted.append(record.id)
                except RecordStoreError as e:
                    logger.error(f"Local insert failed for {record.id} after external write: {e}")
                    await self._discard_written(record, handle, "local insert failed")
                    failed.append(record.id)
        finally:
            self._syncing.difference_update(batch_ids)

        self.refresh()

        if failed:
            return SyncOutcome.failure(
                RecordStoreError(f"Local insert failed for {', '.join(failed)}"),
                record_ids=persisted,
            )

        logger.info(f"Saved batch of {len(persisted)} records to both stores")
        return SyncOutcome.ok(persisted)

    async def delete_record(self, record_id: str) -> SyncOutcome:
        """
        Delete a record locally, cleaning up its external copy when synced.

        The external delete is best effort; the local record is removed
        whether or not it succeeds.
        """
        record = self._store.get(record_id)
        if record is None:
            return SyncOutcome.failure(RecordStoreError(f"Record not found: {record_id}"))

        external_removed = False
        if record.is_synced:
            external_removed = await self._remove_external(record, "user deletion")

        try:
            self._store.delete(record_id)
        except RecordStoreError as e:
            logger.error(f"Failed to delete record {record_id} locally: {e}")
            return SyncOutcome.failure(e, record_ids=[record_id])
        finally:
            self.refresh()

        self._recently_synced.discard(record_id)
        message = None
        if record.is_synced and not external_removed:
            message = "Deleted locally; external copy could not be removed"
        logger.info(f"Deleted record {record_id}")
        return SyncOutcome.ok([record_id], message=message)

    async def verify_sync_status(self) -> ReconciliationReport:
        """
        Re-verify every synced record against the external store.

        Records missing externally are demoted to ``not_synced``. Records in
        their post-resync grace period are skipped. A sweep that starts while
        another is running does nothing.
        """
        if self._sweep_lock.locked():
            logger.info("Reconciliation sweep already running, skipping")
            return ReconciliationReport(skipped=True)

        async with self._sweep_lock:
            report = ReconciliationReport()
            excluded = self._recently_synced.active_ids()

            for record in self._store.list_all():
                if not record.is_synced:
                    continue
                if record.id in excluded:
                    logger.debug(f"Skipping recently synced record {record.id}")
                    report.excluded += 1
                    continue

                report.checked += 1
                try:
                    present = await self._external_call(
                        self._external.exists(record.category, self._window(record)),
                        f"Checking {record.category.value} {record.id}",
                    )
                except HealthRecordSyncError as e:
                    logger.warning(f"Could not verify record {record.id}, leaving as is: {e}")
                    report.errors += 1
                    continue

                if present:
                    continue

                current = self._store.get(record.id)
                if current is None or not current.is_synced:
                    continue

                try:
                    self._store.update_sync_state(record.id, SyncState.NOT_SYNCED)
                except RecordStoreError as e:
                    logger.error(f"Failed to demote record {record.id}: {e}")
                    report.errors += 1
                    continue
                logger.info(f"Record {record.id} no longer exists externally, marked not synced")
                report.demoted.append(record.id)

            if report.demoted:
                self.refresh()

        logger.info(
            f"Reconciliation checked {report.checked} records, "
            f"demoted {len(report.demoted)}, excluded {report.excluded}"
        )
        return report

    async def resync_record(self, record_id: str) -> SyncOutcome:
        """
        Retry the external write for a record that is not synced.

        Already-synced records are left alone. On success the record enters
        the recently-synced grace period before it is persisted as synced.
        """
        record = self._store.get(record_id)
        if record is None:
            return SyncOutcome.failure(RecordStoreError(f"Record not found: {record_id}"))
        if record.is_synced:
            return SyncOutcome.ok([record_id], message="Record is already synced")
        if record_id in self._syncing:
            return SyncOutcome(
                success=False, message="Resync already in progress", record_ids=[record_id]
            )

        try:
            self._validate(record)
        except ValidationError as e:
            return SyncOutcome.failure(e, record_ids=[record_id])

        self._syncing.add(record_id)
        try:
            try:
                handle = await self._external_call(
                    self._external.write(record), f"Resyncing {record.category.value} {record_id}"
                )
            except HealthRecordSyncError as e:
                logger.error(f"Resync failed for {record_id}: {e}")
                return SyncOutcome.failure(e, record_ids=[record_id])

            self._recently_synced.add(record_id)
            try:
                self._store.update_sync_state(record_id, SyncState.SYNCED)
            except RecordStoreError as e:
                logger.error(f"Failed to persist synced state for {record_id}: {e}")
                self._recently_synced.discard(record_id)
                await self._discard_written(record, handle, "local update failed")
                return SyncOutcome.failure(e, record_ids=[record_id])
        finally:
            self._syncing.discard(record_id)

        self.refresh()
        logger.info(f"Resynced record {record_id}")
        return SyncOutcome.ok([record_id])

    def update_notes(self, record_id: str, notes: str | None) -> HealthRecord:
        """
        Change a record's notes. Local only; the external copy has no notes.

        Raises:
            RecordStoreError: If the record is missing or cannot be persisted.
        """
        updated = self._store.update_notes(record_id, notes)
        self.refresh()
        return updated

    def get_unauthorized_categories(self) -> list[HealthCategory]:
        """Categories whose sharing permission is not granted, for permission repair."""
        return [
            category
            for category in HealthCategory
            if self._external.authorization_state(category) != AuthorizationStatus.AUTHORIZED
        ]

    def run_in_background(self, coro: Coroutine[Any, Any, T]) -> "asyncio.Future[T]":
        """
        Run work that must outlive its caller.

        The task is referenced until it finishes, and the returned future is
        shielded so cancelling the caller does not cancel the work.
        """
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return asyncio.shield(task)

    def _on_background_done(self, task: "asyncio.Task[Any]") -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background sync task failed: {task.exception()}")

    async def drain(self) -> None:
        """Wait for all background work to finish."""
        while True:
            pending = [task for task in self._background if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)
