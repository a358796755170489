"""
Retry policy for remote store calls (Waypoint).

Purpose
-------
Retry transient remote failures a bounded number of times with capped
exponential backoff, then give up and let the caller degrade to its caches.

Responsibilities
----------------
- Execute an awaitable factory with automatic retry on transient failures
- Apply exponential backoff with optional jitter between attempts
- Distinguish transient failures from permanent rejections
- Log every retry and the final outcome

Non-Responsibilities
--------------------
- No circuit breaking (handled by circuit_breaker.py)
- No fallback decisions (handled by the reconciler)

Configuration Keys
------------------
- remote.retry.max_attempts          : int (default 2)
- remote.retry.initial_delay_seconds : float (default 0.2)
- remote.retry.max_delay_seconds     : float (default 5.0)
- remote.retry.backoff_multiplier    : float (default 2.0)
- remote.retry.jitter                : bool (default True)

Architecture Notes
------------------
- delay = min(initial * multiplier ** (attempt - 1), max_delay), +/- 10% jitter
- An exception is transient when it is one of ``retryable`` or carries a
  truthy ``is_retryable`` attribute (domain exceptions do)
- Permanent errors propagate on the first attempt
"""

from __future__ import annotations

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from src.core.config import config_bool, config_float, config_int
from src.core.logging.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE: Tuple[Type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)


class RetryPolicy:
    """
    Bounded retry with capped exponential backoff.

    Example
    -------
    >>> policy = RetryPolicy()
    >>> row = await policy.execute(lambda: store.fetch(user_id), "fetch")
    """

    def __init__(
        self,
        retryable: Tuple[Type[BaseException], ...] = DEFAULT_RETRYABLE,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._retryable = retryable
        self._sleep = sleep
        self._max_attempts = max(1, config_int("remote.retry.max_attempts", 2))
        self._initial_delay = config_float("remote.retry.initial_delay_seconds", 0.2)
        self._max_delay = config_float("remote.retry.max_delay_seconds", 5.0)
        self._backoff_multiplier = config_float("remote.retry.backoff_multiplier", 2.0)
        self._jitter = config_bool("remote.retry.jitter", True)

        logger.debug(
            "RetryPolicy initialized",
            extra={
                "max_attempts": self._max_attempts,
                "initial_delay_seconds": self._initial_delay,
                "max_delay_seconds": self._max_delay,
                "jitter_enabled": self._jitter,
            },
        )

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, self._retryable):
            return True
        return bool(getattr(exc, "is_retryable", False))

    # ═══════════════════════════════════════════════════════════════════════
    # RETRY EXECUTION
    # ═══════════════════════════════════════════════════════════════════════

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str,
        max_attempts: Optional[int] = None,
    ) -> T:
        """
        Execute operation with retry logic.

        Parameters
        ----------
        operation : Callable
            Zero-argument factory returning a fresh awaitable per attempt
        operation_name : str
            Human-readable operation name for logging
        max_attempts : Optional[int]
            Override default max attempts

        Raises
        ------
        Exception
            The last exception once all attempts are exhausted, or the first
            non-retryable exception
        """
        attempts = max_attempts if max_attempts is not None else self._max_attempts

        for attempt in range(1, attempts + 1):
            try:
                result = await operation()
            except Exception as exc:
                if not self.is_retryable(exc):
                    raise

                if attempt >= attempts:
                    logger.warning(
                        "Remote operation failed after all retries",
                        extra={
                            "operation": operation_name,
                            "attempts": attempt,
                            "error": str(exc),
                            "error_type": type(exc).__name__,
                        },
                    )
                    raise

                delay = self.calculate_delay(attempt)
                logger.info(
                    "Remote operation failed, retrying",
                    extra={
                        "operation": operation_name,
                        "attempt": attempt,
                        "total_attempts": attempts,
                        "error_type": type(exc).__name__,
                        "retry_delay_seconds": round(delay, 3),
                    },
                )
                await self._sleep(delay)
                continue

            if attempt > 1:
                logger.info(
                    "Remote operation succeeded after retry",
                    extra={"operation": operation_name, "attempt": attempt},
                )
            return result

        raise RuntimeError(f"Remote operation '{operation_name}' ran zero attempts")

    # ═══════════════════════════════════════════════════════════════════════
    # BACKOFF CALCULATION
    # ═══════════════════════════════════════════════════════════════════════

    def calculate_delay(self, attempt: int) -> float:
        """Delay in seconds before retrying after ``attempt`` (1-indexed)."""
        delay = self._initial_delay * (self._backoff_multiplier ** (attempt - 1))
        delay = min(delay, self._max_delay)

        if self._jitter:
            jitter_amount = delay * 0.1
            delay += random.uniform(-jitter_amount, jitter_amount)

        return max(0.0, delay)
