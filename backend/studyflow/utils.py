"""
Shared helpers for time handling and rounding.

All timestamps in the system are timezone-aware UTC. Services take an
injectable clock (any zero-argument callable returning a datetime) so tests
can pin "now".
"""

import math
from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (some drivers drop tzinfo on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def round_half_up(value: float, digits: int = 0) -> float:
    """
    Round half away from zero for non-negative values.

    Python's round() uses banker's rounding (round(2.5) == 2); scores and
    percentages shown to users round .5 upward.
    """
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def hours_between(start: datetime, end: datetime) -> float:
    """Signed hours from start to end."""
    return (end - start).total_seconds() / 3600
