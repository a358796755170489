"""
Waypoint EventBus: in-process async publish/subscribe.

Purpose
-------
Decouple progression services from whoever reacts to their domain events
(reward animations, analytics, notifications). Services publish only after
a write has been merged and cached.

Responsibilities
----------------
- Register/unregister listeners for exact names or wildcard patterns
  (``"progression.*"``, ``"*"``)
- Deliver an event to every matching listener in subscription order
- Isolate listener failures: one failing listener never blocks others and
  never fails the publisher

Design Decisions
----------------
- **Instance-based**: one bus per session context, no module globals
- **Sequential delivery**: listeners are awaited in order, keeping reward
  side effects deterministic
- Sync and async callbacks are both accepted
"""

from __future__ import annotations

import inspect
import itertools
from dataclasses import dataclass
from datetime import datetime, timezone
from fnmatch import fnmatchcase
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from src.core.logging.logger import LogContext, get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class EventPayload:
    """What a listener receives."""

    event_name: str
    data: Dict[str, Any]
    occurred_at: datetime


CallbackType = Callable[[EventPayload], Union[None, Awaitable[None]]]


@dataclass
class _Listener:
    pattern: str
    callback: CallbackType
    identifier: str
    once: bool = False


class EventBus:
    """
    Examples
    --------
    >>> bus = EventBus()
    >>> bus.subscribe("progression.level_up", on_level_up)
    >>> await bus.publish("progression.level_up", {"user_id": "u1", "new_level": 4})
    1
    """

    def __init__(self) -> None:
        self._listeners: List[_Listener] = []
        self._ids = itertools.count(1)
        self.published_count = 0
        self.failed_listener_count = 0

    # ------------------------------------------------------------------ #
    # Subscription API
    # ------------------------------------------------------------------ #

    def subscribe(
        self,
        event_name: str,
        callback: CallbackType,
        *,
        identifier: Optional[str] = None,
        once: bool = False,
    ) -> str:
        """
        Subscribe a callback to an event name or wildcard pattern.

        Returns
        -------
        str:
            The listener identifier (for unsubscribing later).
        """
        if not event_name:
            raise ValueError("event_name must be a non-empty string")
        listener_id = identifier or f"listener-{next(self._ids)}"
        self._listeners.append(
            _Listener(pattern=event_name, callback=callback, identifier=listener_id, once=once)
        )
        logger.debug(
            "EventBus: subscribed listener",
            extra={"event_name": event_name, "listener_id": listener_id, "once": once},
        )
        return listener_id

    def unsubscribe(self, event_name: str, identifier: str) -> bool:
        before = len(self._listeners)
        self._listeners = [
            listener
            for listener in self._listeners
            if not (listener.pattern == event_name and listener.identifier == identifier)
        ]
        return len(self._listeners) < before

    def clear(self) -> None:
        self._listeners.clear()

    def listener_count(self, event_name: Optional[str] = None) -> int:
        if event_name is None:
            return len(self._listeners)
        return sum(1 for listener in self._listeners if self._matches(event_name, listener.pattern))

    @staticmethod
    def _matches(event_name: str, pattern: str) -> bool:
        if pattern == event_name or pattern == "*":
            return True
        return "*" in pattern and fnmatchcase(event_name, pattern)

    # ------------------------------------------------------------------ #
    # Publishing
    # ------------------------------------------------------------------ #

    async def publish(
        self,
        event_name: str,
        data: Optional[Dict[str, Any]] = None,
        occurred_at: Optional[datetime] = None,
    ) -> int:
        """
        Deliver an event to all matching listeners.

        Returns the number of listeners that completed without raising.
        """
        payload = EventPayload(
            event_name=event_name,
            data=dict(data or {}),
            occurred_at=occurred_at or datetime.now(timezone.utc),
        )
        matching = [l for l in self._listeners if self._matches(event_name, l.pattern)]
        once_ids = {id(l) for l in matching if l.once}
        if once_ids:
            self._listeners = [l for l in self._listeners if id(l) not in once_ids]

        self.published_count += 1
        delivered = 0
        async with LogContext(operation=f"event:{event_name}"):
            for listener in matching:
                try:
                    result = listener.callback(payload)
                    if inspect.isawaitable(result):
                        await result
                    delivered += 1
                except Exception as exc:
                    self.failed_listener_count += 1
                    logger.error(
                        "EventBus: listener failed",
                        extra={
                            "event_name": event_name,
                            "listener_id": listener.identifier,
                            "error": str(exc),
                            "error_type": type(exc).__name__,
                        },
                        exc_info=True,
                    )
        return delivered

    async def publish_all(self, events: Iterable[Any]) -> int:
        """Publish collected domain events (objects with event_name/payload/occurred_at)."""
        delivered = 0
        for event in events:
            delivered += await self.publish(
                event.event_name, event.payload, getattr(event, "occurred_at", None)
            )
        return delivered
