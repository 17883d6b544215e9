"""
Scheduler Abstraction

All timing-based transitions of the pipeline (delayed bucket flush,
periodic prune/summary, inter-message delay, rate-limit backoff) are
expressed through this interface instead of ad-hoc timers, so tests can
swap in a virtual clock.

Implementations:
- ThreadedScheduler: one daemon timer thread draining a deadline heap.
  Callbacks run on that thread, one at a time.
- VirtualScheduler: manual clock. Nothing fires until advance() is called,
  which runs every due callback in deadline order.

Usage:
    scheduler = ThreadedScheduler()
    handle = scheduler.call_later(30.0, flush)
    handle.cancel()
    scheduler.shutdown()
"""

import heapq
import itertools
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class ScheduledCall:
    """Handle for a scheduled (one-shot or repeating) callback."""

    def __init__(self, callback: Callable[[], None], interval: Optional[float] = None):
        self.callback = callback
        self.interval = interval
        self.cancelled = False

    @property
    def repeating(self) -> bool:
        return self.interval is not None

    def cancel(self) -> None:
        self.cancelled = True


class Scheduler(ABC):
    """Timer/scheduler interface. Delays and intervals are in seconds."""

    @abstractmethod
    def now(self) -> float:
        """Current time as epoch seconds."""

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall:
        """Run callback once after delay seconds."""

    @abstractmethod
    def call_every(self, interval: float, callback: Callable[[], None]) -> ScheduledCall:
        """Run callback every interval seconds until cancelled."""

    def shutdown(self) -> None:
        """Stop firing callbacks. Pending calls are dropped."""


def _run_callback(call: ScheduledCall) -> None:
    try:
        call.callback()
    except Exception as e:
        logger.error(f"Scheduled callback {call.callback!r} failed: {e}", exc_info=True)


class ThreadedScheduler(Scheduler):
    """Single daemon thread running callbacks at their deadlines."""

    def __init__(self, name: str = "error-monitor-scheduler", clock: Callable[[], float] = time.time):
        self._clock = clock
        self._heap: List[Tuple[float, int, ScheduledCall]] = []
        self._counter = itertools.count()
        self._condition = threading.Condition()
        self._stopped = False
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    def now(self) -> float:
        return self._clock()

    def _push(self, delay: float, call: ScheduledCall) -> ScheduledCall:
        with self._condition:
            if self._stopped:
                call.cancel()
                return call
            heapq.heappush(self._heap, (self._clock() + max(0.0, delay), next(self._counter), call))
            self._condition.notify()
        return call

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall:
        return self._push(delay, ScheduledCall(callback))

    def call_every(self, interval: float, callback: Callable[[], None]) -> ScheduledCall:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        return self._push(interval, ScheduledCall(callback, interval))

    def _run(self) -> None:
        while True:
            with self._condition:
                while not self._stopped:
                    if not self._heap:
                        self._condition.wait()
                        continue
                    deadline, _, call = self._heap[0]
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        heapq.heappop(self._heap)
                        break
                    self._condition.wait(timeout=remaining)
                if self._stopped:
                    return

            if call.cancelled:
                continue
            _run_callback(call)
            if call.repeating and not call.cancelled:
                self._push(call.interval, call)

    def shutdown(self, timeout: float = 5.0) -> None:
        with self._condition:
            self._stopped = True
            for _, _, call in self._heap:
                call.cancel()
            self._heap.clear()
            self._condition.notify_all()
        if threading.current_thread() is not self._thread:
            self._thread.join(timeout=timeout)


class SerializedScheduler(Scheduler):
    """
    Wraps another scheduler so every callback runs while holding ``lock``.

    Lets timer callbacks share state with synchronous callers (ingestion)
    without each callback taking the lock itself.
    """

    def __init__(self, inner: Scheduler, lock):
        self._inner = inner
        self._lock = lock

    def now(self) -> float:
        return self._inner.now()

    def _wrap(self, callback: Callable[[], None]) -> Callable[[], None]:
        def run():
            with self._lock:
                callback()
        return run

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall:
        return self._inner.call_later(delay, self._wrap(callback))

    def call_every(self, interval: float, callback: Callable[[], None]) -> ScheduledCall:
        return self._inner.call_every(interval, self._wrap(callback))

    def shutdown(self) -> None:
        self._inner.shutdown()


class VirtualScheduler(Scheduler):
    """
    Deterministic scheduler driven by a manual clock.

    Example:
        scheduler = VirtualScheduler()
        scheduler.call_later(30.0, flush)
        scheduler.advance(30.0)  # flush runs here
    """

    def __init__(self, start: float = 1_700_000_000.0):
        self._now = start
        self._heap: List[Tuple[float, int, ScheduledCall]] = []
        self._counter = itertools.count()
        self._stopped = False

    def now(self) -> float:
        return self._now

    def _push(self, deadline: float, call: ScheduledCall) -> ScheduledCall:
        if self._stopped:
            call.cancel()
        else:
            heapq.heappush(self._heap, (deadline, next(self._counter), call))
        return call

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall:
        return self._push(self._now + max(0.0, delay), ScheduledCall(callback))

    def call_every(self, interval: float, callback: Callable[[], None]) -> ScheduledCall:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        return self._push(self._now + interval, ScheduledCall(callback, interval))

    @property
    def pending(self) -> int:
        """Number of live (not cancelled) scheduled calls."""
        return sum(1 for _, _, call in self._heap if not call.cancelled)

    def advance(self, seconds: float = 0.0) -> None:
        """Move the clock forward, firing everything that becomes due."""
        target = self._now + seconds
        while self._heap and self._heap[0][0] <= target:
            deadline, _, call = heapq.heappop(self._heap)
            if call.cancelled:
                continue
            self._now = max(self._now, deadline)
            _run_callback(call)
            if call.repeating and not call.cancelled:
                self._push(deadline + call.interval, call)
        self._now = target

    def run_pending(self) -> None:
        """Fire callbacks that are already due without moving the clock."""
        self.advance(0.0)

    def shutdown(self) -> None:
        self._stopped = True
        for _, _, call in self._heap:
            call.cancel()
        self._heap.clear()
