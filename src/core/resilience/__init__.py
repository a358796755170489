"""
Resilience primitives for remote calls: retry with backoff and a circuit
breaker, combined behind RemoteResilience.
"""

from src.core.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerOpenError,
    CircuitState,
)
from src.core.resilience.resilience import RemoteResilience
from src.core.resilience.retry_policy import RetryPolicy

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerOpenError",
    "CircuitState",
    "RemoteResilience",
    "RetryPolicy",
]
