"""In-process event bus for cross-module communication."""

from tinglebot.core.event.bus import EventBus
from tinglebot.core.event.types import EventListener, EventPayload, ListenerPriority

__all__ = ["EventBus", "EventListener", "EventPayload", "ListenerPriority"]
