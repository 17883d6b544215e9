"""
Tests for the sink circuit breaker.

Circuit Breaker States:
- CLOSED: Normal operation
- OPEN: Too many failures, fast-fail for timeout period
- HALF_OPEN: Testing recovery

Reference:
- error_monitor/utils/circuit_breaker.py
"""

import pytest

from error_monitor.utils.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerOpenError,
    CircuitState,
)


class FakeClock:
    def __init__(self):
        self.now = 1_700_000_000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker("discord_webhook", CircuitBreakerConfig(threshold=3, timeout_seconds=300), clock=clock)


class TestCircuitBreakerStates:

    def test_opens_after_threshold_failures(self, breaker):
        for _ in range(2):
            breaker.record_failure(ConnectionError("webhook unavailable"))
            assert breaker.state == CircuitState.CLOSED

        breaker.record_failure(ConnectionError("webhook unavailable"))
        assert breaker.state == CircuitState.OPEN
        assert breaker.is_available() is False

    def test_success_resets_failure_count(self, breaker):
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_after_timeout(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()

        clock.now += 299
        assert breaker.state == CircuitState.OPEN
        clock.now += 1
        assert breaker.state == CircuitState.HALF_OPEN

    def test_half_open_success_closes(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()
        clock.now += 300

        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_failure_reopens(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()
        clock.now += 300
        assert breaker.state == CircuitState.HALF_OPEN

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN


class TestCircuitBreakerCall:

    def test_call_passes_through_result(self, breaker):
        assert breaker.call(lambda x: x * 2, 21) == 42
        assert breaker.total_successes == 1

    def test_call_records_and_reraises(self, breaker):
        def fail():
            raise TimeoutError("slow webhook")

        with pytest.raises(TimeoutError):
            breaker.call(fail)
        assert breaker.get_status()['consecutive_failures'] == 1

    def test_call_fast_fails_when_open(self, breaker):
        for _ in range(3):
            breaker.record_failure()

        with pytest.raises(CircuitBreakerOpenError) as exc_info:
            breaker.call(lambda: "never")
        assert exc_info.value.name == "discord_webhook"
        assert exc_info.value.timeout_remaining == pytest.approx(300)


class TestCircuitBreakerStatus:

    def test_status(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure(ValueError("HTTP 503"))
        clock.now += 100

        status = breaker.get_status()
        assert status['state'] == 'open'
        assert status['last_error'] == "HTTP 503"
        assert status['timeout_remaining'] == pytest.approx(200)

    def test_reset(self, breaker):
        for _ in range(3):
            breaker.record_failure()
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED

    def test_config_from_env(self, monkeypatch):
        monkeypatch.setenv('ERROR_MONITOR_CB_THRESHOLD', '7')
        monkeypatch.setenv('ERROR_MONITOR_CB_TIMEOUT_SECONDS', '45')
        config = CircuitBreakerConfig()
        assert config.threshold == 7
        assert config.timeout_seconds == 45.0
