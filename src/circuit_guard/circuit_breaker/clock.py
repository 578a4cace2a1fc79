"""Time sources for circuit breakers."""

from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Time provider returning timezone-aware UTC timestamps."""

    def now(self) -> datetime:
        """Return the current instant."""


class SystemClock:
    """Wall clock backed by ``datetime.now(UTC)``."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class ManualClock:
    """Deterministic clock that only moves when told to.

    Useful for tests and simulations of reset-timeout behavior without real
    delays.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = datetime(2020, 1, 1, tzinfo=UTC) if start is None else start

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        """Move the clock forward by ``seconds``."""
        if seconds < 0:
            raise ValueError("seconds must be >= 0")
        self._now = self._now + timedelta(seconds=seconds)

    def set(self, value: datetime) -> None:
        """Jump to an explicit timezone-aware instant."""
        if value.tzinfo is None:
            raise ValueError("value must be timezone-aware")
        self._now = value
