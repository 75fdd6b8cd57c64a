"""Date and clock utilities"""

import time
from datetime import datetime, timezone
from typing import Callable

MS_PER_DAY = 24 * 60 * 60 * 1000

# Returns the current time in epoch milliseconds. Injected wherever tests need to move time.
Clock = Callable[[], int]


def system_clock() -> int:
    """Current wall-clock time in epoch milliseconds"""
    return int(time.time() * 1000)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are treated as UTC"""
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def days_between(start: datetime, end: datetime) -> float:
    """Fractional days from start to end (negative if end precedes start)"""
    return (parse_timestamp(end) - parse_timestamp(start)).total_seconds() / 86400
