"""Shared fixtures and an in-memory external health store for sync tests."""

import asyncio
import uuid
from collections.abc import Iterable
from datetime import datetime

import pytest
import pytz

from health_record_sync.domain.health_record import HealthCategory, HealthRecord
from health_record_sync.infrastructure.health_store.base import (
    AuthorizationStatus,
    ExternalHealthStore,
    TimeWindow,
)
from health_record_sync.infrastructure.record_store.json_store import LocalRecordStore
from health_record_sync.services.sync_coordinator import SyncCoordinator
from health_record_sync.utils.parameters import SyncConfig

BASE_TS = datetime(2025, 10, 16, 8, 30, 0, tzinfo=pytz.UTC)


class FakeHealthStore(ExternalHealthStore):
    """External store double with failure injection and call recording."""

    def __init__(self) -> None:
        super().__init__(timeout_seconds=None)
        self.stored: dict[str, tuple[HealthCategory, datetime]] = {}
        self.statuses: dict[HealthCategory, AuthorizationStatus] = {}
        self.fail_writes: dict[int, Exception] = {}
        self.write_error: Exception | None = None
        self.delete_error: Exception | None = None
        self.exists_error: Exception | None = None
        self.exists_override: bool | None = None
        self.write_gate: asyncio.Event | None = None
        self.exists_gate: asyncio.Event | None = None
        self.write_calls = 0
        self.delete_calls: list[tuple[HealthCategory, TimeWindow]] = []
        self.delete_entry_calls: list[str] = []
        self.exists_calls: list[tuple[HealthCategory, TimeWindow]] = []

    @property
    def entries(self) -> list[tuple[HealthCategory, datetime]]:
        return list(self.stored.values())

    async def write(self, record: HealthRecord) -> str:
        index = self.write_calls
        self.write_calls += 1
        if self.write_gate is not None:
            await self.write_gate.wait()
        if index in self.fail_writes:
            raise self.fail_writes[index]
        if self.write_error is not None:
            raise self.write_error
        handle = str(uuid.uuid4())
        self.stored[handle] = (record.category, record.timestamp)
        return handle

    async def delete_entry(self, handle: str) -> bool:
        self.delete_entry_calls.append(handle)
        if self.delete_error is not None:
            raise self.delete_error
        return self.stored.pop(handle, None) is not None

    async def delete(self, category: HealthCategory, window: TimeWindow) -> int:
        self.delete_calls.append((category, window))
        if self.delete_error is not None:
            raise self.delete_error
        before = len(self.stored)
        self.stored = {
            handle: (c, ts)
            for handle, (c, ts) in self.stored.items()
            if not (c == category and window.contains(ts))
        }
        return before - len(self.stored)

    async def exists(self, category: HealthCategory, window: TimeWindow) -> bool:
        self.exists_calls.append((category, window))
        if self.exists_gate is not None:
            await self.exists_gate.wait()
        if self.exists_error is not None:
            raise self.exists_error
        if self.exists_override is not None:
            return self.exists_override
        return any(c == category and window.contains(ts) for c, ts in self.entries)

    def authorization_state(self, category: HealthCategory) -> AuthorizationStatus:
        return self.statuses.get(category, AuthorizationStatus.AUTHORIZED)

    async def request_authorization(self, categories: Iterable[HealthCategory]) -> None:
        for category in categories:
            self.statuses[category] = AuthorizationStatus.AUTHORIZED

    def remove_externally(self, record: HealthRecord) -> None:
        """Simulate the user deleting the entry in the platform's own app."""
        self.stored = {
            handle: (c, ts)
            for handle, (c, ts) in self.stored.items()
            if not (c == record.category and ts == record.timestamp)
        }


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_blood_pressure(
    systolic: float = 120, diastolic: float = 80, timestamp: datetime = BASE_TS
) -> HealthRecord:
    return HealthRecord(
        category=HealthCategory.BLOOD_PRESSURE,
        primary_value=systolic,
        systolic=systolic,
        diastolic=diastolic,
        timestamp=timestamp,
    )


def make_record(
    category: HealthCategory, value: float, timestamp: datetime = BASE_TS
) -> HealthRecord:
    return HealthRecord(category=category, primary_value=value, timestamp=timestamp)


@pytest.fixture
def fake_store() -> FakeHealthStore:
    return FakeHealthStore()


@pytest.fixture
def record_store() -> LocalRecordStore:
    return LocalRecordStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sync_config() -> SyncConfig:
    return SyncConfig(
        timestamp_tolerance_seconds=2,
        recently_synced_grace_seconds=5,
        external_timeout_seconds=None,
    )


@pytest.fixture
def coordinator(
    fake_store: FakeHealthStore,
    record_store: LocalRecordStore,
    sync_config: SyncConfig,
    clock: FakeClock,
) -> SyncCoordinator:
    return SyncCoordinator(fake_store, record_store, sync_config, clock=clock)
