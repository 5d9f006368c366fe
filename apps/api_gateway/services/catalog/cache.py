from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Generic, TypeVar

from libs.common.events import EVENT_CATEGORIES_CHANGED, EVENT_SUBCATEGORIES_CHANGED, Event, EventBus

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CategoryCache(Generic[T]):
    """
    Process-wide copy of the category tree.

    Filled by the first ``get`` and dropped whenever a categories or
    subcategories change event arrives; there is no time-based expiry.
    """

    def __init__(self) -> None:
        self._value: T | None = None
        self._loaded = False
        self._version = 0
        self._lock = asyncio.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    async def get(self, loader: Callable[[], Awaitable[T]]) -> T:
        if self._loaded:
            return self._value  # type: ignore[return-value]
        async with self._lock:
            if self._loaded:
                return self._value  # type: ignore[return-value]
            version = self._version
            value = await loader()
            # An invalidation that raced the load wins; serve the fresh value but don't keep it
            if version == self._version:
                self._value = value
                self._loaded = True
            return value

    def invalidate(self) -> None:
        self._version += 1
        self._value = None
        self._loaded = False
        logger.debug("Category cache invalidated")

    async def on_change(self, event: Event) -> None:
        logger.info(f"Invalidating category cache on {event.event_type}")
        self.invalidate()

    async def attach(self, bus: EventBus) -> None:
        for event_type in (EVENT_CATEGORIES_CHANGED, EVENT_SUBCATEGORIES_CHANGED):
            await bus.subscribe(event_type, self.on_change)

    async def detach(self, bus: EventBus) -> None:
        for event_type in (EVENT_CATEGORIES_CHANGED, EVENT_SUBCATEGORIES_CHANGED):
            await bus.unsubscribe(event_type, self.on_change)
