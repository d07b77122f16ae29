"""
Timer scheduling used by the autosave debounce, the session timeout supervisor
and anything else that needs "call this later".

ManualScheduler is the reference model for the single-threaded, cooperative
execution the workflow assumes: nothing fires until advance() is called, and
callbacks run in deadline order on the caller's thread.
"""
from __future__ import annotations

import heapq
import itertools
import threading
from typing import Callable, List, Optional, Protocol, Tuple

from enrollflow.utils.time import ManualClock


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    def call_later(self, delay_ms: int, fn: Callable[[], None]) -> TimerHandle:
        ...


class _ThreadTimerHandle:
    def __init__(self, timer: threading.Timer):
        self._timer = timer

    def cancel(self) -> None:
        self._timer.cancel()


class ThreadingScheduler:
    """Live scheduler backed by threading.Timer (callbacks run on timer threads)."""

    def call_later(self, delay_ms: int, fn: Callable[[], None]) -> TimerHandle:
        t = threading.Timer(max(0, int(delay_ms)) / 1000.0, fn)
        t.daemon = True
        t.start()
        return _ThreadTimerHandle(t)


class ManualTimerHandle:
    def __init__(self, deadline_ms: int, fn: Callable[[], None]):
        self.deadline_ms = deadline_ms
        self.fn = fn
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    def __init__(self, clock: Optional[ManualClock] = None):
        self.clock = clock or ManualClock()
        self._heap: List[Tuple[int, int, ManualTimerHandle]] = []
        self._seq = itertools.count()

    def call_later(self, delay_ms: int, fn: Callable[[], None]) -> ManualTimerHandle:
        handle = ManualTimerHandle(self.clock.now_ms() + max(0, int(delay_ms)), fn)
        heapq.heappush(self._heap, (handle.deadline_ms, next(self._seq), handle))
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for _, _, h in self._heap if not h.cancelled and not h.fired)

    def advance(self, ms: int) -> int:
        """Move time forward, firing every due timer in order. Returns the number fired."""
        target = self.clock.now_ms() + int(ms)
        fired = 0
        while self._heap and self._heap[0][0] <= target:
            deadline, _, handle = heapq.heappop(self._heap)
            if handle.cancelled:
                continue
            if deadline > self.clock.now_ms():
                self.clock.set(deadline)
            handle.fired = True
            handle.fn()
            fired += 1
        self.clock.set(target)
        return fired

    def run_all(self, limit: int = 10_000) -> int:
        """Drain every pending timer regardless of deadline (bounded for repeating timers)."""
        fired = 0
        while self._heap and fired < limit:
            deadline = self._heap[0][0]
            fired += self.advance(max(0, deadline - self.clock.now_ms()))
        return fired
