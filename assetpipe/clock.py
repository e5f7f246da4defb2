"""
Time sources.

Every time-dependent component takes a Clock so that visibility timeouts,
retry delays and ledger retention can be driven deterministically in tests.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    """Source of the current time and of suspension."""

    def time(self) -> float:
        """Current time as epoch seconds."""
        ...

    def utcnow(self) -> datetime:
        """Current time as an aware UTC datetime."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend the caller for ``seconds``."""
        ...


class SystemClock:
    """Wall-clock time with real asyncio sleeps."""

    def time(self) -> float:
        return time.time()

    def utcnow(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class ManualClock:
    """
    Controllable clock for tests.

    Time only moves when ``advance``/``set`` is called. ``sleep`` parks the
    caller until the clock reaches its wake time; a non-positive duration
    just yields to the event loop once.
    """

    def __init__(self, start: float = 1_700_000_000.0):
        self._now = start
        self._sleepers: list[tuple[float, asyncio.Future[None]]] = []

    def time(self) -> float:
        return self._now

    def utcnow(self) -> datetime:
        return datetime.fromtimestamp(self._now, tz=timezone.utc)

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("Cannot move a clock backwards")
        self._now += seconds
        self._wake_due()

    def set(self, now: float) -> None:
        if now < self._now:
            raise ValueError("Cannot move a clock backwards")
        self._now = now
        self._wake_due()

    def next_wakeup(self) -> float | None:
        """Earliest wake time of a parked sleeper, if any."""
        pending = [wake_at for wake_at, future in self._sleepers if not future.done()]
        return min(pending) if pending else None

    def advance_to_next_wakeup(self) -> bool:
        """Move the clock to the earliest parked sleeper's wake time."""
        wake_at = self.next_wakeup()
        if wake_at is None:
            return False
        self.set(max(self._now, wake_at))
        return True

    @property
    def sleeper_count(self) -> int:
        return sum(1 for _, future in self._sleepers if not future.done())

    def _wake_due(self) -> None:
        for wake_at, future in self._sleepers:
            if wake_at <= self._now and not future.done():
                future.set_result(None)

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return

        entry = (self._now + seconds, asyncio.get_running_loop().create_future())
        self._sleepers.append(entry)
        try:
            await entry[1]
        finally:
            self._sleepers.remove(entry)


def to_datetime(timestamp: float) -> datetime:
    """Convert epoch seconds to an aware UTC datetime."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)
