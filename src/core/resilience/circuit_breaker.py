"""
Circuit breaker for the remote progress store (Waypoint).

States
------
- CLOSED: normal operation, calls pass through
- OPEN: the remote keeps failing, calls are rejected immediately
- HALF_OPEN: the cool-down elapsed, probe calls test recovery

While OPEN the persistence layer serves reads from its caches and keeps
writes locally; the autosave scheduler retries later.

Configuration Keys
------------------
- remote.circuit_breaker.failure_threshold : int (default 5)
- remote.circuit_breaker.success_threshold : int (default 1)
- remote.circuit_breaker.timeout_seconds   : float (default 30)

Architecture Notes
------------------
- asyncio.Lock guards state transitions
- Consecutive failures open the circuit; any HALF_OPEN failure re-opens it
- The clock is injectable so tests can advance time without sleeping
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

from src.core.config import config_float, config_int
from src.core.logging.logger import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreakerOpenError(Exception):
    """Raised when the circuit is OPEN and a call is rejected."""

    is_retryable = False

    def __init__(self, name: str, retry_after: Optional[float] = None) -> None:
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit '{name}' is open")


class CircuitBreaker:
    """Consecutive-failure circuit breaker."""

    def __init__(
        self,
        name: str = "remote",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self._clock = clock
        self._state: CircuitState = CircuitState.CLOSED
        self._failure_count: int = 0
        self._success_count: int = 0
        self._opened_at: Optional[float] = None
        self._lock = asyncio.Lock()

        self._failure_threshold = config_int("remote.circuit_breaker.failure_threshold", 5)
        self._success_threshold = config_int("remote.circuit_breaker.success_threshold", 1)
        self._timeout_seconds = config_float("remote.circuit_breaker.timeout_seconds", 30.0)

        logger.debug(
            "CircuitBreaker initialized",
            extra={
                "breaker": name,
                "failure_threshold": self._failure_threshold,
                "success_threshold": self._success_threshold,
                "timeout_seconds": self._timeout_seconds,
            },
        )

    # ═══════════════════════════════════════════════════════════════════════
    # STATE
    # ═══════════════════════════════════════════════════════════════════════

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    def time_until_half_open(self) -> Optional[float]:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return None
        return max(0.0, self._timeout_seconds - (self._clock() - self._opened_at))

    async def can_execute(self) -> bool:
        """True when a call may proceed; moves OPEN to HALF_OPEN after cool-down."""
        async with self._lock:
            if self._state == CircuitState.OPEN:
                remaining = self.time_until_half_open()
                if remaining is not None and remaining > 0:
                    return False
                self._transition(CircuitState.HALF_OPEN)
            return True

    # ═══════════════════════════════════════════════════════════════════════
    # RECORDING RESULTS
    # ═══════════════════════════════════════════════════════════════════════

    async def record_success(self) -> None:
        async with self._lock:
            self._failure_count = 0
            self._success_count += 1
            if (
                self._state == CircuitState.HALF_OPEN
                and self._success_count >= self._success_threshold
            ):
                self._transition(CircuitState.CLOSED)

    async def record_failure(self) -> None:
        async with self._lock:
            self._success_count = 0
            self._failure_count += 1
            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self._failure_threshold
            ):
                self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        self._success_count = 0
        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
        elif new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._opened_at = None

        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(
            f"Circuit breaker transitioned to {new_state.value}",
            extra={
                "breaker": self.name,
                "previous_state": old_state.value,
                "failure_count": self._failure_count,
            },
        )

    # ═══════════════════════════════════════════════════════════════════════
    # STATUS
    # ═══════════════════════════════════════════════════════════════════════

    def get_status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "failure_threshold": self._failure_threshold,
            "timeout_seconds": self._timeout_seconds,
            "time_until_half_open": self.time_until_half_open(),
        }
