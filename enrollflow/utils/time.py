import time
from datetime import datetime, timedelta
from typing import Optional, Protocol

MINUTE_MS = 60 * 1000


def now_ms() -> int:
    return int(time.time() * 1000)


class Clock(Protocol):
    def now_ms(self) -> int:
        ...


class SystemClock:
    """Wall-clock milliseconds. Not monotonic: a clock rolled backward extends perceived validity."""

    def now_ms(self) -> int:
        return now_ms()


class ManualClock:
    """Deterministic clock for tests and replays."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self._now = int(start_ms)

    def now_ms(self) -> int:
        return self._now

    def advance(self, ms: int) -> int:
        self._now += int(ms)
        return self._now

    def set(self, ms: int) -> None:
        self._now = int(ms)


def minutes_to_ms(minutes: float) -> int:
    return int(float(minutes) * MINUTE_MS)


def to_datetime(ms: Optional[int]) -> Optional[datetime]:
    """Epoch ms -> naive local datetime (None passes through)."""
    if ms is None:
        return None
    return datetime.fromtimestamp(int(ms) / 1000.0)


def to_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def next_monday_at(now: datetime, hour: int = 6, minute: int = 0) -> datetime:
    """
    Next Monday strictly after today's date, at hour:minute local time.
    On a Monday this returns the following week's Monday.
    """
    days_until_monday = (7 - now.weekday()) % 7 or 7
    target = now + timedelta(days=days_until_monday)
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0)
