"""
afriflow/core/time.py

All time in AfriFlow comes from here.

Journal wire format: YYYY-MM-DDTHH:MM:SS.mmmZ
                     (milliseconds, explicit Z, no +00:00, no microseconds)

Records (payments, escrows, authorizations) carry integer UNIX seconds
read from a Clock. Components take a Clock so tests can move time.
"""

import time
from datetime import datetime, timezone
from typing import Optional


def wire_timestamp() -> str:
    """
    Return current UTC time in journal wire format.
    Format: YYYY-MM-DDTHH:MM:SS.mmmZ  (exactly 3 fractional digits, Z suffix)
    """
    now = datetime.now(timezone.utc)
    ms  = now.microsecond // 1000
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ms:03d}Z"


class Clock:
    """Wall clock in integer UNIX seconds."""

    def now(self) -> int:
        return int(time.time())

    def monotonic(self) -> float:
        return time.monotonic()


class FrozenClock(Clock):
    """
    Manually advanced clock.

        clock = FrozenClock(1_700_000_000)
        clock.advance(3600)
    """

    def __init__(self, start: int = 1_700_000_000) -> None:
        self._now = int(start)
        self._mono = 0.0

    def now(self) -> int:
        return self._now

    def monotonic(self) -> float:
        return self._mono

    def advance(self, seconds: int) -> int:
        self._now  += int(seconds)
        self._mono += float(seconds)
        return self._now

    def set(self, timestamp: int) -> None:
        if timestamp < self._now:
            raise ValueError("FrozenClock cannot move backwards")
        self._mono += float(timestamp - self._now)
        self._now = int(timestamp)


class Deadline:
    """
    Absolute deadline passed down the settlement call chain.

    Deadline.after(5.0) expires five seconds from now on the given clock.
    Deadline.never() has no bound; remaining() returns None.
    """

    def __init__(self, expires_at: Optional[float], clock: Optional[Clock] = None) -> None:
        self._clock      = clock or Clock()
        self._expires_at = expires_at

    @classmethod
    def after(cls, seconds: float, clock: Optional[Clock] = None) -> "Deadline":
        clock = clock or Clock()
        return cls(clock.monotonic() + seconds, clock)

    @classmethod
    def never(cls) -> "Deadline":
        return cls(None)

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock.monotonic())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0.0

    def bound(self, timeout: float) -> float:
        """Return timeout clipped to the time left before the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return timeout
        return min(timeout, remaining)

    def __repr__(self) -> str:
        return f"Deadline(remaining={self.remaining()!r})"
