from __future__ import annotations

import html
import logging
from typing import Any

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential
from tenacity.wait import wait_base

from libs.common import AppSettings
from libs.common.phone import pretty_phone
from libs.data.models import Order

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Posts new-order summaries to the shop's Telegram chat via the Bot API."""

    def __init__(
        self,
        settings: AppSettings,
        client: httpx.AsyncClient | None = None,
        wait: wait_base | None = None,
    ) -> None:
        self.settings = settings
        self.base_url = f"https://api.telegram.org/bot{settings.telegram_bot_token}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=10.0)
        self._wait = wait or wait_exponential(multiplier=1, min=1, max=8)

    @property
    def enabled(self) -> bool:
        return self.settings.telegram_enabled

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._owns_client:
            await self._client.aclose()

    async def send_message(self, text: str, parse_mode: str | None = "HTML") -> bool:
        """
        Send ``text`` to the configured chat.

        Transport errors are retried; anything still failing is logged and
        reported as False. Notifications never raise into the order flow.
        """
        if not self.enabled:
            logger.debug("Telegram notifications disabled, skipping message")
            return False

        payload: dict[str, Any] = {"chat_id": self.settings.telegram_chat_id, "text": text}
        if parse_mode:
            payload["parse_mode"] = parse_mode

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(httpx.TransportError),
                wait=self._wait,
                stop=stop_after_attempt(3),
                reraise=True,
            ):
                with attempt:
                    response = await self._client.post(f"{self.base_url}/sendMessage", json=payload)
                    response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Failed to send Telegram message: HTTP {e.response.status_code}: {e.response.text}"
            )
            return False
        except httpx.RequestError as e:
            logger.error(f"Request error while sending Telegram message: {e}")
            return False

        logger.info("Successfully sent Telegram message")
        return True

    async def notify_new_order(self, order: Order) -> bool:
        # Customer input goes into an HTML message and must not break its markup
        esc = html.escape
        lines = [
            f"🌷 <b>New order #{order.id}</b>",
            "",
            f"Customer: {esc(order.contact_name)} ({pretty_phone(order.phone)})",
            f"Recipient: {esc(order.recipient)} ({esc(pretty_phone(order.recipient_phone))})",
            f"Address: {esc(order.address)}",
        ]
        if order.delivery_date:
            lines.append(f"Delivery: {order.delivery_date.isoformat()} {esc(order.delivery_time or '')}".rstrip())
        if order.delivery_instructions:
            lines.append(f"Instructions: {esc(order.delivery_instructions)}")
        lines.append("")
        for item in order.items:
            lines.append(f"• {esc(item.title)} × {item.quantity} = {item.price * item.quantity} ₽")
        if order.promo_discount:
            lines.append(f"Promo discount: −{order.promo_discount} ₽")
        if order.bonuses_used:
            lines.append(f"Bonuses used: −{order.bonuses_used}")
        lines.append(f"<b>Total: {order.total} ₽</b>")
        if order.anonymous:
            lines.append("Anonymous delivery")
        if order.postcard_text:
            lines.append(f"Postcard: {esc(order.postcard_text)}")
        return await self.send_message("\n".join(lines))
