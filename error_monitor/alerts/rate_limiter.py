"""
Sliding Window Rate Limiter

Bounds outbound notification volume to ``max_messages`` per
``window_duration_ms`` using a true sliding window, so there is no burst at
fixed window boundaries.

Timestamps are appended in chronological order, so expiry only ever pops
from the front of the deque.
"""

import time
from collections import deque
from typing import Callable, Deque, Dict


class SlidingWindowRateLimiter:
    """
    Example:
        limiter = SlidingWindowRateLimiter(window_duration_ms=600_000, max_messages=15)
        if limiter.try_acquire():
            send(message)
    """

    def __init__(
        self,
        window_duration_ms: float,
        max_messages: int,
        clock: Callable[[], float] = time.time
    ):
        """
        Args:
            window_duration_ms: Length of the sliding window in milliseconds
            max_messages: Accepted sends allowed within one window
            clock: Returns current time in epoch seconds
        """
        if window_duration_ms <= 0:
            raise ValueError(f"window_duration_ms must be positive, got {window_duration_ms}")
        if max_messages < 1:
            raise ValueError(f"max_messages must be >= 1, got {max_messages}")

        self.window_duration_ms = window_duration_ms
        self.max_messages = max_messages
        self._window_seconds = window_duration_ms / 1000.0
        self._clock = clock
        self._timestamps: Deque[float] = deque()

    def _prune_expired(self, now: float) -> None:
        cutoff = now - self._window_seconds
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    def try_acquire(self) -> bool:
        """Record a send and return True if under the limit, else False without recording."""
        now = self._clock()
        self._prune_expired(now)

        if len(self._timestamps) >= self.max_messages:
            return False

        self._record(now)
        return True

    def force_acquire(self) -> None:
        """Record a send even when over the limit (CRITICAL bypass)."""
        self._record(self._clock())

    def _record(self, now: float) -> None:
        # Keep the deque non-decreasing even if the clock stepped backwards
        if self._timestamps and now < self._timestamps[-1]:
            now = self._timestamps[-1]
        self._timestamps.append(now)

    def can_send(self) -> bool:
        """Read-only check: would try_acquire() succeed right now?"""
        self._prune_expired(self._clock())
        return len(self._timestamps) < self.max_messages

    def get_remaining_quota(self) -> int:
        self._prune_expired(self._clock())
        return max(0, self.max_messages - len(self._timestamps))

    def get_time_until_next_slot(self) -> float:
        """Milliseconds until a slot frees up (0 if one is available now)."""
        if not self._timestamps:
            return 0.0

        now = self._clock()
        self._prune_expired(now)

        if len(self._timestamps) < self.max_messages:
            return 0.0

        oldest = self._timestamps[0]
        return max(0.0, (oldest + self._window_seconds - now) * 1000.0)

    def get_stats(self) -> Dict[str, float]:
        self._prune_expired(self._clock())
        return {
            'used': len(self._timestamps),
            'max': self.max_messages,
            'window_ms': self.window_duration_ms,
        }

    def reset(self) -> None:
        self._timestamps.clear()
