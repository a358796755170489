"""
Unified resilience layer for remote store calls (Waypoint).

Purpose
-------
Single entry point combining the circuit breaker and the retry policy so
every remote call gets the same failure handling.

Architecture Notes
------------------
- The circuit is checked BEFORE any attempt; an OPEN circuit fails fast
  with CircuitBreakerOpenError
- Each transient failure is recorded on the breaker; once it opens,
  remaining retries are abandoned
- A permanent rejection (unknown column, value out of range) proves the
  remote is reachable, so it counts as a success for the breaker and is
  re-raised untouched for the caller to interpret
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from src.core.logging.logger import get_logger
from src.core.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from src.core.resilience.retry_policy import RetryPolicy

logger = get_logger(__name__)

T = TypeVar("T")


class RemoteResilience:
    """
    Circuit breaker plus bounded retry around remote operations.

    Example
    -------
    >>> resilience = RemoteResilience()
    >>> row = await resilience.execute(lambda: store.fetch("u1"), "fetch")
    """

    def __init__(
        self,
        breaker: Optional[CircuitBreaker] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        self.breaker = breaker or CircuitBreaker()
        self.retry_policy = retry_policy or RetryPolicy()

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str,
        max_attempts: Optional[int] = None,
    ) -> T:
        """
        Raises
        ------
        CircuitBreakerOpenError
            If the circuit is OPEN
        Exception
            The last transient error once retries are exhausted, or the first
            permanent error
        """
        if not await self.breaker.can_execute():
            raise CircuitBreakerOpenError(
                self.breaker.name, retry_after=self.breaker.time_until_half_open()
            )

        async def guarded() -> T:
            if self.breaker.is_open:
                raise CircuitBreakerOpenError(self.breaker.name)
            try:
                result = await operation()
            except Exception as exc:
                if self.retry_policy.is_retryable(exc):
                    await self.breaker.record_failure()
                else:
                    await self.breaker.record_success()
                raise
            await self.breaker.record_success()
            return result

        return await self.retry_policy.execute(guarded, operation_name, max_attempts)

    def get_status(self) -> Dict[str, Any]:
        return {
            "circuit": self.breaker.get_status(),
            "retry_max_attempts": self.retry_policy.max_attempts,
        }
