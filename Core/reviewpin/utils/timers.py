from __future__ import annotations

import heapq
import itertools
import time
from typing import Callable


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class TimerHandle:
    __slots__ = ("due", "seq", "callback", "interval", "cancelled")

    def __init__(self, due: float, seq: int, callback: Callable[[], None], interval: float | None) -> None:
        self.due = due
        self.seq = seq
        self.callback = callback
        self.interval = interval
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def active(self) -> bool:
        return not self.cancelled

    def __lt__(self, other: TimerHandle) -> bool:
        return (self.due, self.seq) < (other.due, other.seq)


class Scheduler:
    """Single-threaded timer queue; callbacks fire from ``run_due``.

    Timers due at the same instant fire in the order they were scheduled.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self.clock = clock
        self._queue: list[TimerHandle] = []
        self._counter = itertools.count()

    def now(self) -> float:
        return self.clock()

    def call_at(self, due: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(due, next(self._counter), callback, None)
        heapq.heappush(self._queue, handle)
        return handle

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return self.call_at(self.now() + max(delay, 0.0), callback)

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")
        handle = TimerHandle(self.now() + interval, next(self._counter), callback, interval)
        heapq.heappush(self._queue, handle)
        return handle

    def run_due(self) -> int:
        now = self.now()
        fired = 0
        while self._queue and self._queue[0].due <= now:
            handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            if handle.interval is not None:
                # Missed ticks collapse into one.
                handle.due += handle.interval
                if handle.due <= now:
                    handle.due = now + handle.interval
                handle.seq = next(self._counter)
                heapq.heappush(self._queue, handle)
            else:
                handle.cancelled = True
            handle.callback()
            fired += 1
        return fired

    def next_due(self) -> float | None:
        while self._queue and self._queue[0].cancelled:
            heapq.heappop(self._queue)
        return self._queue[0].due if self._queue else None

    @property
    def pending(self) -> int:
        return sum(1 for handle in self._queue if not handle.cancelled)


def wait_until(
    predicate,
    timeout: float,
    interval: float = 0.2,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
):
    """Waits for a predicate to return a truthy value."""

    deadline = clock() + timeout
    while clock() < deadline:
        result = predicate()
        if result:
            return result
        sleep(interval)
    return predicate()
