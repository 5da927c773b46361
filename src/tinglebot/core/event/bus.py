"""
Tinglebot EventBus: async pub/sub with tiered concurrency.

Responsibilities
----------------
- Register/unregister event listeners with priorities
- Publish events to all matching listeners (exact + wildcard)
- Execute listeners according to tiered concurrency model:
  * CRITICAL: sequential, ordered, awaited with timeout
  * HIGH: sequential, ordered, awaited with timeout
  * NORMAL: concurrent (gather), awaited
  * LOW: fire-and-forget background tasks
- Error isolation (one failing listener never blocks others)

Services publish domain events here (``raid.completed``,
``quest.participant_disqualified``); cogs and background tasks subscribe.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from typing import Any, Dict, List, Optional, Set

from tinglebot.core.event.types import (
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
)
from tinglebot.core.logging.logger import get_logger

logger = get_logger(__name__)


def matches(event_name: str, pattern: str) -> bool:
    """
    Match an event name against a subscription pattern.

    ``"*"`` matches everything and ``"raid.*"`` matches ``"raid.completed"``.
    """
    if pattern == "*":
        return True
    if "*" not in pattern:
        return event_name == pattern

    parts = pattern.split("*")
    if not event_name.startswith(parts[0]):
        return False
    if parts[-1] and not event_name.endswith(parts[-1]):
        return False

    position = len(parts[0])
    for middle in parts[1:-1]:
        found = event_name.find(middle, position)
        if found == -1:
            return False
        position = found + len(middle)

    return True


class EventBus:
    """
    In-process event bus.

    Examples
    --------
    >>> bus = EventBus()
    >>> bus.subscribe("raid.completed", on_raid_completed, priority=ListenerPriority.HIGH)
    >>> await bus.publish("raid.completed", {"raid_id": "R123456", "success": True})
    """

    def __init__(
        self,
        *,
        critical_timeout_seconds: float = 5.0,
        high_timeout_seconds: float = 5.0,
    ) -> None:
        self._listeners: Dict[str, List[EventListener]] = defaultdict(list)
        self._background_tasks: Set[asyncio.Task[Any]] = set()
        self._critical_timeout = critical_timeout_seconds
        self._high_timeout = high_timeout_seconds
        self.published_count: int = 0

    # ------------------------------------------------------------------ #
    # Subscription API
    # ------------------------------------------------------------------ #

    @staticmethod
    def _validate_callback_signature(callback: CallbackType) -> None:
        try:
            sig = inspect.signature(callback)
        except (TypeError, ValueError):
            return

        params = list(sig.parameters.values())
        if len(params) != 1:
            callback_name = getattr(callback, "__qualname__", repr(callback))
            raise ValueError(
                f"Event listener must accept exactly 1 parameter (EventPayload), "
                f"got {len(params)} parameters for '{callback_name}'"
            )

    def subscribe(
        self,
        event_name: str,
        callback: CallbackType,
        *,
        priority: ListenerPriority = ListenerPriority.NORMAL,
        identifier: Optional[str] = None,
        once: bool = False,
    ) -> str:
        """
        Subscribe a callback to an event name or wildcard pattern.

        Returns the listener identifier for ``unsubscribe``. Re-subscribing
        the same identifier is a no-op.
        """
        self._validate_callback_signature(callback)
        listener = EventListener.from_callback(
            event_name=event_name,
            callback=callback,
            priority=priority,
            identifier=identifier,
            once=once,
        )

        existing = self._listeners[event_name]
        if any(item.identifier == listener.identifier for item in existing):
            logger.warning(
                "EventBus: duplicate listener prevented",
                extra={"event_name": event_name, "listener_id": listener.identifier},
            )
            return listener.identifier

        existing.append(listener)
        existing.sort(key=lambda item: item.priority.value)

        logger.debug(
            "EventBus: subscribed listener",
            extra={
                "event_name": event_name,
                "listener_id": listener.identifier,
                "priority": listener.priority.name,
            },
        )
        return listener.identifier

    def unsubscribe(self, event_name: str, identifier: str) -> bool:
        listeners = self._listeners.get(event_name, [])
        remaining = [item for item in listeners if item.identifier != identifier]
        removed = len(remaining) != len(listeners)
        self._listeners[event_name] = remaining
        return removed

    def clear(self) -> None:
        total = sum(len(items) for items in self._listeners.values())
        self._listeners.clear()
        logger.info("EventBus: cleared all listeners", extra={"previous_listener_count": total})

    def listener_count(self, event_name: Optional[str] = None) -> int:
        if event_name is None:
            return sum(len(items) for items in self._listeners.values())
        return len(self._listeners.get(event_name, []))

    def _extract_listeners(self, event_name: str) -> List[EventListener]:
        selected: List[EventListener] = []
        for pattern, listeners in list(self._listeners.items()):
            if not matches(event_name, pattern):
                continue
            selected.extend(listeners)
            if any(item.once for item in listeners):
                self._listeners[pattern] = [item for item in listeners if not item.once]

        selected.sort(key=lambda item: item.priority.value)
        return selected

    # ------------------------------------------------------------------ #
    # Publish API
    # ------------------------------------------------------------------ #

    async def publish(self, event_name: str, data: EventPayload) -> list[Any]:
        """
        Publish an event to all subscribed listeners.

        Returns results from CRITICAL/HIGH/NORMAL listeners. LOW listeners run
        in the background and are not included.
        """
        self.published_count += 1
        listeners = self._extract_listeners(event_name)

        logger.debug(
            "EventBus: publishing event",
            extra={
                "event_name": event_name,
                "payload_keys": list(data.keys()),
                "listener_count": len(listeners),
            },
        )
        if not listeners:
            return []

        results: list[Any] = []

        for listener in listeners:
            if listener.priority is ListenerPriority.CRITICAL:
                results.append(await self._run_with_timeout(event_name, data, listener, self._critical_timeout))
            elif listener.priority is ListenerPriority.HIGH:
                results.append(await self._run_with_timeout(event_name, data, listener, self._high_timeout))

        normal = [item for item in listeners if item.priority is ListenerPriority.NORMAL]
        if normal:
            results.extend(
                await asyncio.gather(*(self._run_listener(event_name, data, item) for item in normal))
            )

        for listener in listeners:
            if listener.priority is ListenerPriority.LOW:
                task = asyncio.create_task(self._run_listener(event_name, data, listener))
                self._background_tasks.add(task)
                task.add_done_callback(self._background_tasks.discard)

        return results

    async def _run_with_timeout(
        self,
        event_name: str,
        data: EventPayload,
        listener: EventListener,
        timeout: float,
    ) -> Any:
        try:
            return await asyncio.wait_for(self._run_listener(event_name, data, listener), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(
                "EventBus: listener timed out",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "timeout_seconds": timeout,
                },
            )
            return None

    async def _run_listener(self, event_name: str, data: EventPayload, listener: EventListener) -> Any:
        try:
            result = listener.callback(data)
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception as exc:
            logger.error(
                "EventBus: listener raised",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )
            return None

    async def drain(self) -> None:
        """Wait for outstanding LOW-priority listeners (used on shutdown and in tests)."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)
