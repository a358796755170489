"""
In-process event bus for Waypoint domain events.
"""

from src.core.event.bus import CallbackType, EventBus, EventPayload

__all__ = ["EventBus", "EventPayload", "CallbackType"]
