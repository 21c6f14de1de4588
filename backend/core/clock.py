"""Time sources for the engine and supervisor.

Every deadline (step ``timeout_at``, instance ``timeout_at``) is computed
from an injected clock so tests can move time forward instead of sleeping.
Timestamps are naive UTC, matching what the database columns store.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock:
    """Source of the current time."""

    def now(self) -> datetime:
        raise NotImplementedError

    def after(self, minutes: Optional[int]) -> Optional[datetime]:
        """Deadline ``minutes`` from now, or None when no limit applies."""
        if minutes is None:
            return None
        return self.now() + timedelta(minutes=minutes)


class SystemClock(Clock):
    """Wall clock, naive UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FrozenClock(Clock):
    """Manually advanced clock for tests and simulations."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2024, 1, 1, 9, 0, 0)

    def now(self) -> datetime:
        return self._now

    def advance(self, **delta) -> datetime:
        """Move time forward, e.g. ``clock.advance(minutes=5)``."""
        self._now = self._now + timedelta(**delta)
        return self._now

    def set(self, moment: datetime) -> None:
        self._now = moment
