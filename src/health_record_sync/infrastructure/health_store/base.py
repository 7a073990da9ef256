"""
External health store contract.

The platform health repository is authoritative and mutable outside this
application. Adapters expose asynchronous, independently fallible operations
keyed by ``(category, time window)``, since no identifier is shared with the
local record store.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import TypeVar

from health_record_sync.domain.health_record import HealthCategory, HealthRecord
from health_record_sync.utils.exceptions import StoreError
from health_record_sync.utils.timezone_utils import timestamps_match

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TOLERANCE_SECONDS = 2.0


class AuthorizationStatus(str, Enum):
    """Sharing permission state for a category."""

    NOT_DETERMINED = "not_determined"
    AUTHORIZED = "authorized"
    DENIED = "denied"


def combine_authorization(statuses: Iterable[AuthorizationStatus]) -> AuthorizationStatus:
    """
    Fold sub-permissions into one status.

    Authorized only when every part is authorized; not determined when any
    part is undetermined; denied otherwise.
    """
    statuses = list(statuses)
    if statuses and all(s == AuthorizationStatus.AUTHORIZED for s in statuses):
        return AuthorizationStatus.AUTHORIZED
    if not statuses or any(s == AuthorizationStatus.NOT_DETERMINED for s in statuses):
        return AuthorizationStatus.NOT_DETERMINED
    return AuthorizationStatus.DENIED


@dataclass(frozen=True)
class TimeWindow:
    """Symmetric window around a record timestamp, bounds inclusive."""

    center: datetime
    tolerance_seconds: float = DEFAULT_TOLERANCE_SECONDS

    @classmethod
    def around(
        cls, timestamp: datetime, tolerance_seconds: float = DEFAULT_TOLERANCE_SECONDS
    ) -> "TimeWindow":
        return cls(center=timestamp, tolerance_seconds=tolerance_seconds)

    @property
    def start(self) -> datetime:
        return self.center - timedelta(seconds=self.tolerance_seconds)

    @property
    def end(self) -> datetime:
        return self.center + timedelta(seconds=self.tolerance_seconds)

    def contains(self, timestamp: datetime) -> bool:
        return timestamps_match(self.center, timestamp, self.tolerance_seconds)


class ExternalHealthStore(ABC):
    """
    Capability the sync coordinator calls to mirror records externally.

    Implementations raise ``AuthorizationError``, ``ValidationError`` or
    ``StoreError``; timeouts surface as ``StoreError``.
    """

    def __init__(self, timeout_seconds: float | None = None) -> None:
        """
        Initialize the adapter.

        Args:
            timeout_seconds: Upper bound for a single store call, None for no limit.
        """
        self.timeout_seconds = timeout_seconds

    async def _with_timeout(self, operation: Awaitable[T], description: str) -> T:
        """Await an operation, converting a timeout into StoreError."""
        if self.timeout_seconds is None:
            return await operation
        try:
            return await asyncio.wait_for(operation, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.warning(f"{description} timed out after {self.timeout_seconds}s")
            raise StoreError(f"{description} timed out") from e

    @abstractmethod
    async def write(self, record: HealthRecord) -> str:
        """
        Write one measurement.

        Blood pressure must be saved as a single linked grouping of the
        systolic and diastolic samples.

        Returns:
            Handle of the created top-level entry, accepted by ``delete_entry``.
        """

    @abstractmethod
    async def delete_entry(self, handle: str) -> bool:
        """Delete exactly the entry a ``write`` created; False if it is already gone."""

    @abstractmethod
    async def delete(self, category: HealthCategory, window: TimeWindow) -> int:
        """Delete matching measurements; returns how many top-level entries were removed."""

    @abstractmethod
    async def exists(self, category: HealthCategory, window: TimeWindow) -> bool:
        """Whether a measurement of the category exists inside the window."""

    @abstractmethod
    def authorization_state(self, category: HealthCategory) -> AuthorizationStatus:
        """Current sharing permission for the category."""

    @abstractmethod
    async def request_authorization(self, categories: Iterable[HealthCategory]) -> None:
        """Ask the platform for sharing permission."""
