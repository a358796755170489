"""
Domain exceptions for the Waypoint progression engine.

Purpose
-------
Define the structured exception hierarchy raised by services when a caller
breaks a contract (closed session, malformed reward amount, corrupt quest data) or when
infrastructure fails in a way the caller must know about.

Expected conditions are NOT exceptions here: a cache miss, a pool that is
not yet renewable, or completing a locked module are ordinary return
values. Exceptions are for contract violations and infrastructure faults.

Design Notes
------------
- All domain exceptions inherit from `WaypointDomainException`.
- Each exception carries:
  - `message`: human-readable description
  - `details`: additional structured context (dict-like)
  - `severity`: `ErrorSeverity` value for logging/alerting
  - `is_retryable`: whether the operation can be retried
  - `error_code`: short, stable identifier for programmatic use
- `SessionClosedError` specializes `InvalidOperationError` for signed-out
  sessions so callers can catch lifecycle misuse separately.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from src.core.exceptions import ErrorSeverity


class WaypointDomainException(Exception):
    """
    Base exception for all Waypoint domain-level errors.

    Example:
        >>> raise WaypointDomainException(
        ...     "Quest claim failed",
        ...     {"quest_id": "daily-time-1a2b"}
        ... )
    """

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
        self.message: str = message
        self.details: Dict[str, Any] = details or {}
        self.severity: ErrorSeverity = severity or self.DEFAULT_SEVERITY
        self.is_retryable: bool = (
            is_retryable if is_retryable is not None else self.DEFAULT_RETRYABLE
        )
        self.error_code: str = error_code or self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
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


class ValidationError(WaypointDomainException):
    """
    Raised when caller input fails validation (negative rewards, bad slot index).

    Args:
        field: Name of the field that failed validation
        message: Explanation of why validation failed
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.validation_message = message
        super().__init__(
            f"Validation error for {field}: {message}",
            details={"field": field, "validation_message": message},
            error_code=f"VALIDATION_{field.upper()}",
        )


class InvalidOperationError(WaypointDomainException):
    """
    Raised when an operation is attempted in a state that forbids it.

    Used for lifecycle misuse such as mutating a signed-out session.

    Example:
        >>> raise InvalidOperationError("grant_rewards", "session is closed")
    """

    DEFAULT_SEVERITY = ErrorSeverity.WARNING

    def __init__(self, action: str, reason: str) -> None:
        self.action = action
        self.reason = reason
        super().__init__(
            f"Invalid operation '{action}': {reason}",
            details={"action": action, "reason": reason},
            error_code=f"INVALID_{action.upper()}",
        )


class SessionClosedError(InvalidOperationError):
    """Raised when a signed-out progression session is used again."""

    def __init__(self, action: str, user_id: str) -> None:
        super().__init__(action, f"session for user {user_id} is closed")
        self.details["user_id"] = user_id
        self.error_code = "SESSION_CLOSED"
