"""Event registry and built-in notification handlers."""

from renewal_engine.events.bus import EventBus, EventHandler, EventPayload, EventType

__all__ = ["EventBus", "EventHandler", "EventPayload", "EventType"]
