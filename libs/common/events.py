"""In-process change feed used to invalidate caches when admin data changes."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

Handler = Callable[["Event"], Awaitable[None]]


@dataclass
class Event:
    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)


class EventBus:
    """Fan-out of change events to async subscribers."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._lock = asyncio.Lock()

    async def subscribe(self, event_type: str, handler: Handler) -> None:
        async with self._lock:
            handlers = self._handlers.setdefault(event_type, [])
            if handler not in handlers:
                handlers.append(handler)
                logger.debug(f"Subscribed handler to event type: {event_type}")

    async def unsubscribe(self, event_type: str, handler: Handler) -> None:
        async with self._lock:
            try:
                self._handlers.get(event_type, []).remove(handler)
            except ValueError:
                logger.warning(f"Handler not found for event type: {event_type}")

    async def publish(self, event: Event) -> None:
        """Deliver ``event`` to every subscriber; a failing handler does not stop the rest."""
        handlers = list(self._handlers.get(event.event_type, []))
        if not handlers:
            logger.debug(f"No handlers registered for event type: {event.event_type}")
            return

        logger.info(f"Publishing event: {event.event_type} to {len(handlers)} handler(s)")
        for handler in handlers:
            try:
                await handler(event)
            except Exception as e:
                logger.error(
                    f"Error in event handler for {event.event_type}: {type(e).__name__}: {str(e)}",
                    exc_info=True,
                )


_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Get the process-wide event bus instance."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


EVENT_CATEGORIES_CHANGED = "catalog.categories.changed"
EVENT_SUBCATEGORIES_CHANGED = "catalog.subcategories.changed"
