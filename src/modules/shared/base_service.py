"""
Base Service Foundation

Purpose
-------
Common base for Waypoint services (progression, quests, session). Services
orchestrate domain models, talk to the persistence layer and publish
domain events once a write has landed.

Design Notes
------------
This base class provides:
- Structured logging with operation context
- Config access with a ``required`` guard
- Domain event publication through the session's EventBus
- Input validation raising ``ValidationError``

What this class does NOT do:
- Persist anything (the reconciler owns persistence)
- Hold global state (one service instance per session context)

Usage
-----
    class ProgressionService(BaseService):
        def __init__(self, reconciler, event_bus):
            super().__init__(event_bus, get_logger(__name__))
            self.reconciler = reconciler
"""

from __future__ import annotations

from logging import Logger
from typing import Any, Dict, Iterable, Optional, Type

from src.core.config.manager import ConfigManager
from src.core.event.bus import EventBus
from src.domain.models.base import DomainEvent

from .exceptions import ValidationError


class BaseService:
    """
    Base class for all domain services.

    Args:
        event_bus: Event bus for cross-module communication
        logger: Structured logger instance
        config_manager: Tunables source (class-level ConfigManager by default)
    """

    def __init__(
        self,
        event_bus: EventBus,
        logger: Logger,
        config_manager: Type[ConfigManager] = ConfigManager,
    ) -> None:
        self._config = config_manager
        self._events = event_bus
        self.log = logger

    @property
    def events(self) -> EventBus:
        return self._events

    def get_config(self, key: str, default: Optional[Any] = None, required: bool = False) -> Any:
        """
        Raises:
            ValidationError: If required=True and the key is missing
        """
        value = self._config.get(key, default)
        if required and value is None:
            raise ValidationError(key, f"required configuration key '{key}' is missing")
        return value

    async def emit_event(self, event_type: str, data: Dict[str, Any]) -> None:
        await self._events.publish(event_type, data)

    async def publish_domain_events(self, events: Iterable[DomainEvent]) -> int:
        """Publish events collected by an aggregate, in occurrence order."""
        return await self._events.publish_all(events)

    def log_operation(self, operation: str, **context: Any) -> None:
        self.log.info(
            f"Service operation: {operation}",
            extra={"operation": operation, **context},
        )

    def validate_non_negative_int(self, value: Any, name: str) -> None:
        """
        Raises:
            ValidationError: If value is not an int or is negative
        """
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(name, f"{name} must be a non-negative integer, got {value!r}")
