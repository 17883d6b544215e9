"""
Circuit Breaker for Notification Sinks

Stops hammering a delivery endpoint that keeps failing. After
``threshold`` consecutive failures the circuit opens and deliveries fail
fast (the pipeline logs and drops them). After ``timeout_seconds`` the
circuit half-opens and lets a test delivery through.

States:
- CLOSED: Normal operation (all deliveries attempted)
- OPEN: Endpoint considered down (deliveries fail fast)
- HALF_OPEN: Testing if the endpoint recovered

Transitions:
- CLOSED -> OPEN: consecutive_failures >= threshold
- OPEN -> HALF_OPEN: after timeout_seconds
- HALF_OPEN -> CLOSED: after half_open_attempts successes
- HALF_OPEN -> OPEN: on any failure
"""

import logging
import os
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, TypeVar

from error_monitor.constants.resilience import (
    CIRCUIT_BREAKER_HALF_OPEN_ATTEMPTS,
    CIRCUIT_BREAKER_THRESHOLD,
    CIRCUIT_BREAKER_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"          # Normal operation
    OPEN = "open"              # Blocking all calls
    HALF_OPEN = "half_open"    # Testing recovery


class CircuitBreakerOpenError(Exception):
    """Raised when the circuit is open and the call was not attempted."""

    def __init__(self, name: str, opened_at: datetime, timeout_remaining: float):
        self.name = name
        self.opened_at = opened_at
        self.timeout_remaining = timeout_remaining
        super().__init__(
            f"Circuit breaker OPEN for '{name}'. "
            f"Opened at {opened_at.isoformat()}. "
            f"Timeout remaining: {timeout_remaining:.1f}s"
        )


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior."""
    threshold: int = field(
        default_factory=lambda: int(os.getenv('ERROR_MONITOR_CB_THRESHOLD', str(CIRCUIT_BREAKER_THRESHOLD)))
    )
    timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv('ERROR_MONITOR_CB_TIMEOUT_SECONDS', str(CIRCUIT_BREAKER_TIMEOUT_SECONDS)))
    )
    half_open_attempts: int = CIRCUIT_BREAKER_HALF_OPEN_ATTEMPTS


class CircuitBreaker:
    """
    Example:
        breaker = CircuitBreaker("discord_webhook")

        try:
            response = breaker.call(requests.post, url, json=payload)
        except CircuitBreakerOpenError:
            return DeliveryResult.failed("circuit open")
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.time
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._half_open_successes = 0
        self._opened_at: Optional[float] = None
        self._last_error: Optional[str] = None
        self.total_failures = 0
        self.total_successes = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._current_state()

    def _current_state(self) -> CircuitState:
        """Must be called with lock held."""
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            elapsed = self._clock() - self._opened_at
            if elapsed >= self.config.timeout_seconds:
                logger.info(
                    f"🔄 Circuit breaker '{self.name}' entering HALF_OPEN state "
                    f"after {int(elapsed)}s. Testing recovery..."
                )
                self._state = CircuitState.HALF_OPEN
                self._half_open_successes = 0
        return self._state

    def is_available(self) -> bool:
        return self.state != CircuitState.OPEN

    def _timeout_remaining(self) -> float:
        if self._opened_at is None:
            return 0.0
        return max(0.0, self.config.timeout_seconds - (self._clock() - self._opened_at))

    def call(self, func: Callable[..., T], *args, **kwargs) -> T:
        """
        Run func with circuit breaker protection.

        Raises:
            CircuitBreakerOpenError: If the circuit is open
        """
        if not self.is_available():
            opened_at = datetime.fromtimestamp(self._opened_at or self._clock(), tz=timezone.utc)
            raise CircuitBreakerOpenError(self.name, opened_at, self._timeout_remaining())

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self.record_failure(e)
            raise
        self.record_success()
        return result

    def record_success(self) -> None:
        with self._lock:
            self.total_successes += 1
            state = self._current_state()
            if state == CircuitState.HALF_OPEN:
                self._half_open_successes += 1
                if self._half_open_successes >= self.config.half_open_attempts:
                    self._state = CircuitState.CLOSED
                    self._consecutive_failures = 0
                    self._opened_at = None
                    logger.info(f"🟢 Circuit breaker '{self.name}' CLOSED after successful recovery")
            else:
                self._consecutive_failures = 0

    def record_failure(self, error: Optional[BaseException] = None) -> None:
        with self._lock:
            self.total_failures += 1
            self._consecutive_failures += 1
            self._last_error = str(error) if error else None
            state = self._current_state()

            if state == CircuitState.HALF_OPEN or (
                state == CircuitState.CLOSED and self._consecutive_failures >= self.config.threshold
            ):
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()
                logger.warning(
                    f"🔴 Circuit breaker '{self.name}' OPEN after "
                    f"{self._consecutive_failures} consecutive failures: {self._last_error}"
                )

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            state = self._current_state()
            return {
                'name': self.name,
                'state': state.value,
                'consecutive_failures': self._consecutive_failures,
                'total_failures': self.total_failures,
                'total_successes': self.total_successes,
                'last_error': self._last_error,
                'timeout_remaining': self._timeout_remaining() if state == CircuitState.OPEN else 0.0,
            }

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._half_open_successes = 0
            self._opened_at = None
            self._last_error = None
