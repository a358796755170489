"""
Unit Tests for Remote Resilience
================================

Test Coverage
-------------
- RetryPolicy: bounded attempts, capped backoff, permanent errors
- CircuitBreaker: opening, half-open probe, recovery
- RemoteResilience: rejections count as reachability
"""

import pytest

from src.core.config import ConfigManager
from src.core.resilience import (
    CircuitBreaker,
    CircuitBreakerOpenError,
    CircuitState,
    RemoteResilience,
    RetryPolicy,
)
from src.modules.persistence import RemoteErrorCode, RemoteStoreError, RemoteUnavailableError
from tests.fakes import FakeClock


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class Flaky:
    """Fails ``failures`` times with ``error`` before returning ``value``."""

    def __init__(self, failures: int, error: Exception, value="ok"):
        self.failures = failures
        self.error = error
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.value


# ============================================================================
# RETRY POLICY
# ============================================================================


@pytest.mark.unit
class TestRetryPolicy:
    async def test_transient_failure_retried_once(self):
        # Arrange
        sleep = RecordingSleep()
        policy = RetryPolicy(sleep=sleep)
        operation = Flaky(1, RemoteUnavailableError("fetch"))

        # Act
        result = await policy.execute(operation, "fetch")

        # Assert
        assert result == "ok"
        assert operation.calls == 2
        assert len(sleep.delays) == 1
        assert 0.18 <= sleep.delays[0] <= 0.22

    async def test_gives_up_after_max_attempts(self):
        sleep = RecordingSleep()
        policy = RetryPolicy(sleep=sleep)
        operation = Flaky(10, ConnectionError("refused"))

        with pytest.raises(ConnectionError):
            await policy.execute(operation, "fetch")

        assert operation.calls == policy.max_attempts == 2

    async def test_permanent_error_not_retried(self):
        policy = RetryPolicy(sleep=RecordingSleep())
        operation = Flaky(1, RemoteStoreError(RemoteErrorCode.UNKNOWN_FIELD, "no column"))

        with pytest.raises(RemoteStoreError):
            await policy.execute(operation, "upsert")

        assert operation.calls == 1

    def test_backoff_is_capped(self):
        ConfigManager.set("remote.retry.jitter", False)
        policy = RetryPolicy()

        assert policy.calculate_delay(1) == pytest.approx(0.2)
        assert policy.calculate_delay(2) == pytest.approx(0.4)
        assert policy.calculate_delay(20) == pytest.approx(5.0)


# ============================================================================
# CIRCUIT BREAKER
# ============================================================================


@pytest.mark.unit
class TestCircuitBreaker:
    async def test_opens_after_threshold_and_recovers(self):
        # Arrange
        ConfigManager.set("remote.circuit_breaker.failure_threshold", 2)
        clock = FakeClock()
        breaker = CircuitBreaker(name="test", clock=clock)

        # Act
        await breaker.record_failure()
        await breaker.record_failure()

        # Assert
        assert breaker.state is CircuitState.OPEN
        assert await breaker.can_execute() is False

        # Act: cool-down elapses, probe succeeds
        clock.advance(31)
        assert await breaker.can_execute() is True
        assert breaker.state is CircuitState.HALF_OPEN
        await breaker.record_success()

        # Assert
        assert breaker.state is CircuitState.CLOSED

    async def test_failed_probe_reopens(self):
        ConfigManager.set("remote.circuit_breaker.failure_threshold", 1)
        clock = FakeClock()
        breaker = CircuitBreaker(name="test", clock=clock)
        await breaker.record_failure()
        clock.advance(31)
        await breaker.can_execute()

        await breaker.record_failure()

        assert breaker.state is CircuitState.OPEN
        assert breaker.get_status()["time_until_half_open"] == pytest.approx(30.0)


# ============================================================================
# REMOTE RESILIENCE
# ============================================================================


@pytest.mark.unit
class TestRemoteResilience:
    async def test_open_circuit_fails_fast(self):
        # Arrange
        ConfigManager.set("remote.circuit_breaker.failure_threshold", 2)
        resilience = RemoteResilience(
            breaker=CircuitBreaker(name="test", clock=FakeClock()),
            retry_policy=RetryPolicy(sleep=RecordingSleep()),
        )
        down = Flaky(100, RemoteUnavailableError("fetch"))

        # Act
        with pytest.raises(RemoteUnavailableError):
            await resilience.execute(down, "fetch")
        calls_before = down.calls
        with pytest.raises(CircuitBreakerOpenError) as exc_info:
            await resilience.execute(down, "fetch")

        # Assert
        assert down.calls == calls_before == 2
        assert exc_info.value.retry_after == pytest.approx(30.0)

    async def test_rejection_proves_remote_reachable(self):
        ConfigManager.set("remote.circuit_breaker.failure_threshold", 1)
        resilience = RemoteResilience(
            breaker=CircuitBreaker(name="test"),
            retry_policy=RetryPolicy(sleep=RecordingSleep()),
        )
        rejecting = Flaky(1, RemoteStoreError(RemoteErrorCode.NUMERIC_OUT_OF_RANGE, "out of range"))

        with pytest.raises(RemoteStoreError):
            await resilience.execute(rejecting, "upsert")

        assert resilience.breaker.state is CircuitState.CLOSED
        assert resilience.get_status()["retry_max_attempts"] == 2
