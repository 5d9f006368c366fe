from __future__ import annotations

import logging

from libs.common import AppSettings
from libs.common.events import get_event_bus
from libs.data.models import Order

from .services.catalog.cache import CategoryCache
from .services.telegram_notifier import TelegramNotifier

logger = logging.getLogger(__name__)


async def notify_new_order(order: Order, settings: AppSettings) -> None:
    """BackgroundTasks hook: tell the shop chat about a freshly placed order."""
    notifier = TelegramNotifier(settings)
    try:
        if not await notifier.notify_new_order(order):
            logger.warning(f"Order {order.id} notification was not delivered")
    finally:
        await notifier.close()


async def start_category_cache_listener(cache: CategoryCache) -> None:
    """Subscribe the category cache to catalog change events."""
    await cache.attach(get_event_bus())
    logger.info("Category cache subscribed to catalog change events")


async def stop_category_cache_listener(cache: CategoryCache) -> None:
    await cache.detach(get_event_bus())
