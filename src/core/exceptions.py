"""
Infrastructure exceptions for Waypoint.

Purpose
-------
Define the structured exception hierarchy for infrastructure-level concerns:
remote store failures and cache (Redis) failures. Domain-level errors live in
``src.modules.shared.exceptions``.

Design Notes
------------
- All infrastructure exceptions inherit from
  `WaypointInfrastructureException` and carry message, details, severity,
  is_retryable and error_code.
- The persistence layer catches these and degrades instead of surfacing
  them to callers.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """Error severity levels for logging and alerting."""

    DEBUG = "debug"  # Expected, not concerning
    INFO = "info"  # Caller mistakes (unknown ids, bad input)
    WARNING = "warning"  # Degraded but handled (remote unreachable)
    ERROR = "error"  # Unexpected errors requiring attention
    CRITICAL = "critical"  # Data integrity at risk


class WaypointInfrastructureException(Exception):
    """Base exception for infrastructure failures."""

    DEFAULT_SEVERITY: ErrorSeverity = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[ErrorSeverity] = None,
        is_retryable: Optional[bool] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.message = message
        self.details: Dict[str, Any] = details or {}
        self.severity = severity or self.DEFAULT_SEVERITY
        self.is_retryable = (
            is_retryable if is_retryable is not None else self.DEFAULT_RETRYABLE
        )
        self.error_code = error_code or self.__class__.__name__
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
        }

    def __str__(self) -> str:
        details_str = f" | Details: {self.details}" if self.details else ""
        return f"[{self.error_code}] {self.message}{details_str}"


class CacheError(WaypointInfrastructureException):
    """Raised when the tier-2 cache (Redis) cannot serve a request."""

    DEFAULT_SEVERITY = ErrorSeverity.WARNING
    DEFAULT_RETRYABLE = True

    def __init__(
        self,
        operation: str,
        key: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        self.operation = operation
        self.key = key
        self.original_error = original_error
        super().__init__(
            f"Cache {operation} failed" + (f" for key {key}" if key else ""),
            details={
                "operation": operation,
                "key": key,
                "original_error": str(original_error) if original_error else None,
            },
            error_code="CACHE_ERROR",
        )
