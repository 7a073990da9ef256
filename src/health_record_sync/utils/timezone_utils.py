"""
Timezone helpers for measurement timestamps.

Device displays and user input carry wall-clock times without an offset;
they are read in the configured processing timezone.
"""

from datetime import datetime

import pytz
from dateutil import parser


def now_in(timezone_str: str = "UTC") -> datetime:
    """Current instant in the given timezone."""
    return datetime.now(pytz.timezone(timezone_str))


def parse_datetime(
    date_str: str, time_str: str | None = None, timezone_str: str = "UTC"
) -> datetime:
    """
    Parse a measurement date and optional wall-clock time.

    An explicit offset in the input is kept; otherwise the time is localized
    to ``timezone_str``.

    Raises:
        ValueError: If the input is not a valid date.
    """
    combined = f"{date_str} {time_str}" if time_str else date_str
    dt = parser.parse(combined)
    if dt.tzinfo is not None:
        return dt
    return pytz.timezone(timezone_str).localize(dt)


def timestamps_match(ts1: datetime, ts2: datetime, tolerance_seconds: float) -> bool:
    """Whether two instants lie within ``tolerance_seconds`` of each other, bounds inclusive."""
    return abs((ts1 - ts2).total_seconds()) <= tolerance_seconds
