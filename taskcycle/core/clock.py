"""Time sources for the lifecycle engine."""

from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Supplies the current time as an aware UTC datetime."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class FrozenClock:
    """Manually advanced clock for deterministic runs."""

    def __init__(self, start: datetime | None = None) -> None:
        current = start or datetime.now(UTC)
        if current.tzinfo is None:
            current = current.replace(tzinfo=UTC)
        self._current = current

    def now(self) -> datetime:
        return self._current

    def advance(self, delta: timedelta | None = None, **kwargs: float) -> datetime:
        """Move the clock forward by ``delta`` or by timedelta keyword arguments."""
        self._current += delta if delta is not None else timedelta(**kwargs)
        return self._current

    def set(self, value: datetime) -> None:
        self._current = value if value.tzinfo else value.replace(tzinfo=UTC)


system_clock = SystemClock()
