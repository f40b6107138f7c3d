"""
Timer scheduling for the calibration state machine.

Calibration needs non-blocking, cancellable delays (warm-up, collection
window, inter-target pauses). The pipeline depends only on the small
`Scheduler` interface so the same code runs on an asyncio event loop in
production and on a virtual clock in tests and offline replay.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Tuple


class TimerHandle(ABC):
    """A scheduled callback that can be cancelled."""

    @abstractmethod
    def cancel(self) -> None:
        ...

    @abstractmethod
    def cancelled(self) -> bool:
        ...


class Scheduler(ABC):
    """Cooperative scheduler: all callbacks run on one logical thread."""

    @abstractmethod
    def now(self) -> float:
        """Current time in seconds on this scheduler's clock."""

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run `callback` after `delay` seconds."""


class _AsyncioTimer(TimerHandle):
    def __init__(self, handle: asyncio.TimerHandle):
        self._handle = handle

    def cancel(self) -> None:
        self._handle.cancel()

    def cancelled(self) -> bool:
        return self._handle.cancelled()


class AsyncioScheduler(Scheduler):
    """
    Scheduler backed by an asyncio event loop.

    Pose delivery and timers then share the loop thread, which serializes
    them without extra locking.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return _AsyncioTimer(self.loop.call_later(max(0.0, delay), callback))


class _VirtualTimer(TimerHandle):
    def __init__(self, due: float, callback: Callable[[], None]):
        self.due = due
        self.callback = callback
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled


class VirtualScheduler(Scheduler):
    """
    Deterministic scheduler driven by an explicit virtual clock.

    Nothing runs until `advance()` (or `run_pending()`) is called. Timers
    scheduled by a callback are honoured within the same `advance()` call
    if they fall due before its end.
    """

    def __init__(self, start_time: float = 0.0):
        self._time = float(start_time)
        self._queue: List[Tuple[float, int, _VirtualTimer]] = []
        self._counter = itertools.count()
        self.logger = logging.getLogger(__name__)

    def now(self) -> float:
        return self._time

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = _VirtualTimer(self._time + max(0.0, delay), callback)
        heapq.heappush(self._queue, (timer.due, next(self._counter), timer))
        return timer

    @property
    def pending(self) -> int:
        """Number of scheduled, not-cancelled timers."""
        return sum(1 for _, _, t in self._queue if not t.cancelled())

    def advance(self, seconds: float) -> int:
        """
        Move the clock forward, running every timer that falls due.

        Args:
            seconds: Amount of virtual time to advance

        Returns:
            Number of callbacks executed
        """
        if seconds < 0:
            raise ValueError("Cannot move the virtual clock backwards")
        end = self._time + seconds
        executed = 0
        while self._queue and self._queue[0][0] <= end:
            due, _, timer = heapq.heappop(self._queue)
            if timer.cancelled():
                continue
            self._time = max(self._time, due)
            timer.callback()
            executed += 1
        self._time = end
        return executed

    def run_pending(self) -> int:
        """Run callbacks that are already due without moving the clock."""
        return self.advance(0.0)

    def run_until_idle(self, max_time: float = 3600.0) -> int:
        """Advance until no timers remain (bounded by `max_time` seconds)."""
        executed = 0
        deadline = self._time + max_time
        while True:
            live = [entry for entry in self._queue if not entry[2].cancelled()]
            if not live:
                break
            next_due = min(entry[0] for entry in live)
            if next_due > deadline:
                self.logger.warning(f"Virtual scheduler still busy after {max_time:.1f}s")
                break
            executed += self.advance(max(0.0, next_due - self._time))
        return executed
