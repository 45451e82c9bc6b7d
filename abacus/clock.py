"""Clock and identifier helpers."""

import secrets
import time
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock returning timezone-aware UTC datetimes."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def new_id() -> str:
    """Return a time-ordered identifier.

    The first 12 hex digits are the creation time in milliseconds, so ids
    sort in creation order; the remaining 20 are random.
    """
    millis = time.time_ns() // 1_000_000
    return f"{millis:012x}{secrets.token_hex(10)}"


def new_private_url() -> str:
    """Return an unguessable token for participant private URLs."""
    return secrets.token_urlsafe(24)
