from __future__ import annotations

import heapq
import itertools
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol


class Clock(Protocol):
    """Monotonic clock abstraction.

    Core logic depends on this interface rather than calling real time directly.
    """

    def now(self) -> float:
        """Return monotonic seconds."""


class RealClock:
    """Production clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


def now_ms(clock: Clock) -> float:
    # Rounded to the microsecond so simulated steps do not accumulate float noise.
    return round(float(clock.now()) * 1000.0, 3)


@dataclass(eq=False, slots=True)
class TimerHandle:
    due_ms: float
    callback: Callable[[], None]
    interval_ms: float | None = None
    runs_left: int | None = None
    cancelled: bool = False

    @property
    def active(self) -> bool:
        return not self.cancelled


class Scheduler(Protocol):
    """Deferred-callback services of the presentation host."""

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle: ...

    def call_every(
        self,
        interval_ms: float,
        callback: Callable[[], None],
        *,
        count: int | None = None,
    ) -> TimerHandle: ...

    def cancel(self, handle: TimerHandle | None) -> None: ...


class TimerQueue:
    """Single-threaded timer queue pumped by ``update()`` once per frame.

    - Due callbacks fire in (due time, scheduling order).
    - A repeating timer fires once for every interval that elapsed, in order.
    - A cancelled handle never fires, even when cancelled from inside another
      callback during the same ``update()``.
    """

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._heap: list[tuple[float, int, TimerHandle]] = []
        self._seq = itertools.count()

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        delay = max(0.0, float(delay_ms))
        handle = TimerHandle(due_ms=now_ms(self._clock) + delay, callback=callback, runs_left=1)
        self._push(handle)
        return handle

    def call_every(
        self,
        interval_ms: float,
        callback: Callable[[], None],
        *,
        count: int | None = None,
    ) -> TimerHandle:
        interval = float(interval_ms)
        if interval <= 0.0:
            raise ValueError("interval_ms must be > 0")
        if count is not None and count <= 0:
            raise ValueError("count must be > 0")
        handle = TimerHandle(
            due_ms=now_ms(self._clock) + interval,
            callback=callback,
            interval_ms=interval,
            runs_left=count,
        )
        self._push(handle)
        return handle

    def cancel(self, handle: TimerHandle | None) -> None:
        if handle is not None:
            handle.cancelled = True

    def pending(self) -> int:
        return sum(1 for _, _, h in self._heap if not h.cancelled)

    def clear(self) -> None:
        for _, _, handle in self._heap:
            handle.cancelled = True
        self._heap.clear()

    def update(self) -> int:
        """Fire every callback due at the current clock time. Returns the count fired."""

        now = now_ms(self._clock)
        fired = 0
        while self._heap and self._heap[0][0] <= now:
            _, _, handle = heapq.heappop(self._heap)
            if handle.cancelled:
                continue

            if handle.runs_left is not None:
                handle.runs_left -= 1
            if handle.interval_ms is not None and (handle.runs_left is None or handle.runs_left > 0):
                # Re-arm before firing so the callback may cancel its own handle.
                handle.due_ms += handle.interval_ms
                self._push(handle)
            else:
                handle.cancelled = True

            handle.callback()
            fired += 1
        return fired

    def _push(self, handle: TimerHandle) -> None:
        heapq.heappush(self._heap, (handle.due_ms, next(self._seq), handle))
