"""
Base domain model classes for Waypoint.

Purpose
-------
Provide the foundational abstractions for rich domain models: identity,
domain event collection and validation helpers. Domain models own business
rules and state transitions; they never touch caches, the database or the
event bus directly.

Responsibilities
----------------
- Define base Entity class with identity and equality semantics
- Define base AggregateRoot class for consistency boundaries
- Collect domain events for services to publish after a successful write
- Provide validation helpers raising DomainValidationError

Non-Responsibilities
--------------------
- Persistence (handled by the reconciler in modules/persistence)
- Database schema (handled by SQLAlchemy models)
- Event delivery (handled by core/event)

Usage Example
-------------
>>> class Learner(AggregateRoot):
...     def __init__(self, user_id: str, experience: int):
...         super().__init__(user_id)
...         self.experience = experience
...
...     def gain(self, amount: int) -> None:
...         validate_non_negative(amount, "amount")
...         self.experience += amount
...         self.add_domain_event("learner.gained", {"amount": amount})
"""

from __future__ import annotations

from abc import ABC
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


# ============================================================================
# DOMAIN EVENTS
# ============================================================================


@dataclass
class DomainEvent:
    """
    A state change worth telling the rest of the system about.

    Attributes
    ----------
    event_name : str
        Dotted event name (e.g., "progression.level_up")
    payload : Dict[str, Any]
        Event payload with relevant data
    occurred_at : datetime
        When the event occurred (UTC)
    """

    event_name: str
    payload: Dict[str, Any]
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ============================================================================
# ENTITY
# ============================================================================


class Entity(ABC):
    """
    Base class for entities with identity.

    Two entities with the same id are the same entity even when their
    attributes differ.
    """

    def __init__(self, entity_id: str) -> None:
        self._id = entity_id
        self._domain_events: List[DomainEvent] = []

    @property
    def id(self) -> str:
        return self._id

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Entity):
            return False
        return type(self) is type(other) and self.id == other.id

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.id))

    def add_domain_event(self, event_name: str, payload: Dict[str, Any]) -> None:
        """
        Record a domain event to be published by the owning service.

        Examples
        --------
        >>> self.add_domain_event("progression.level_up", {
        ...     "user_id": self.id,
        ...     "old_level": 3,
        ...     "new_level": 4,
        ... })
        """
        self._domain_events.append(DomainEvent(event_name=event_name, payload=payload))

    def clear_domain_events(self) -> List[DomainEvent]:
        """Clear and return all pending domain events."""
        events = self._domain_events.copy()
        self._domain_events.clear()
        return events

    def get_pending_events(self) -> List[DomainEvent]:
        return self._domain_events.copy()


# ============================================================================
# AGGREGATE ROOT
# ============================================================================


class AggregateRoot(Entity):
    """
    Entry point for all changes to a cluster of domain objects.

    External code references aggregates by id and mutates them only through
    their business methods, which keep the aggregate's invariants intact.
    """

    pass


# ============================================================================
# DOMAIN MODEL VALIDATION
# ============================================================================


class DomainValidationError(Exception):
    """Raised when a domain model is asked to hold an invalid value."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


def validate_non_negative(value: int, field_name: str) -> None:
    """
    Raises
    ------
    DomainValidationError
        If value is negative
    """
    if value < 0:
        raise DomainValidationError(
            f"{field_name} must be non-negative, got {value}",
            field=field_name,
        )


def validate_positive(value: int, field_name: str) -> None:
    if value <= 0:
        raise DomainValidationError(
            f"{field_name} must be positive, got {value}",
            field=field_name,
        )
