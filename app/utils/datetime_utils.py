"""UTC time helpers shared by the coordinator services."""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_utc(value: datetime) -> str:
    """Human-readable timestamp for audit details."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
