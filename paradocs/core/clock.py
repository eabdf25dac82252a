"""Time helpers: UTC normalisation and the per-invocation deadline."""

import time
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes (as Mongo returns them) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_between(earlier: datetime, later: datetime) -> float:
    """Fractional days from `earlier` to `later` (negative if reversed)."""
    return (as_utc(later) - as_utc(earlier)).total_seconds() / 86400.0


class Deadline:
    """Wall-clock budget for one invocation. `None` seconds means unlimited."""

    def __init__(self, seconds: float | None):
        self.seconds = seconds
        self._started = time.monotonic()

    def exhausted(self) -> bool:
        if self.seconds is None:
            return False
        return time.monotonic() - self._started >= self.seconds

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._started) * 1000)
