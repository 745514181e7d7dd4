"""
Injectable time source.

The ledger, link store, registry and queue stamp ``recorded_at`` /
``linked_at`` / ``created_at`` from a Clock they are handed, never from
the wall clock, so tests and replays see exactly the timestamps they set.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current instant, timezone-aware, in UTC."""


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    Starts at ``start`` (noon, 2024-01-01 UTC by default); ``advance``
    moves it forward by whole or fractional seconds and ``set_time``
    jumps to an absolute instant.
    """

    DEFAULT_START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __init__(self, start: datetime | None = None):
        self._current = ensure_utc(start) or self.DEFAULT_START

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float = 1) -> datetime:
        self._current += timedelta(seconds=seconds)
        return self._current

    def set_time(self, instant: datetime) -> None:
        self._current = ensure_utc(instant)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes (SQLite reads them back that way) as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
