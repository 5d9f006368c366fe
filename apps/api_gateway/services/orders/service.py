from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_FLOOR, Decimal
from typing import Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from libs.common import AppSettings, get_settings
from libs.common.constants import ORDER_DELIVERED, ORDER_PENDING, ORDER_STATUSES
from libs.common.phone import PhoneFormatError, build_phone_variants, require_phone
from libs.data.models import Order, OrderItem, PromoCode
from libs.data.models.base import as_utc, utcnow
from libs.data.repositories import CatalogRepository, OrderRepository, PromoCodeRepository

from ...exceptions import BonusCreditFailed, NotFound, StorefrontError, ValidationError
from ...schemas import OrderCreateRequest
from ..bonus.service import BonusLedger

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    order: Order
    bonus_added: int


def _percent_of(amount: int, percent: int) -> int:
    value = Decimal(amount) * Decimal(percent) / Decimal(100)
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


class OrderService:
    def __init__(self, session: AsyncSession, settings: AppSettings | None = None) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.orders = OrderRepository(session)
        self.promos = PromoCodeRepository(session)
        self.catalog = CatalogRepository(session)
        self.ledger = BonusLedger(session, self.settings)

    async def check_promo(self, code: str, now: datetime | None = None) -> PromoCode:
        """Usable promo code for ``code`` (case-insensitive) or ValidationError."""
        if not code or not code.strip():
            raise ValidationError("Promo code is required")
        promo = await self.promos.get_by_code(code)
        if promo is None or not promo.is_active:
            raise ValidationError("Promo code not found")
        now = now or utcnow()
        if promo.expires_at is not None and as_utc(promo.expires_at) < now:
            raise ValidationError("Promo code has expired")
        if promo.max_uses is not None and promo.used_count >= promo.max_uses:
            raise ValidationError("Promo code has been used up")
        return promo

    async def place_order(self, phone: str, payload: OrderCreateRequest) -> CheckoutResult:
        """
        Create the order and settle its bonuses.

        The order insert, the bonus debit and the promo usage share one
        transaction: any failure there leaves no trace. The cashback credit
        runs after that commit; if it fails the order stays and
        BonusCreditFailed carries its id for manual reconciliation.
        """
        try:
            phone = require_phone(phone)
            recipient_phone = require_phone(payload.recipient_phone)
        except PhoneFormatError as exc:
            raise ValidationError(str(exc)) from exc

        promo = await self.check_promo(payload.promo_code) if payload.promo_code else None

        products = await self.catalog.products_by_id(item.product_id for item in payload.items)
        items: list[OrderItem] = []
        subtotal = 0
        for line in payload.items:
            product = products.get(line.product_id)
            if product is None or not product.is_visible:
                raise ValidationError(f"Unknown product: {line.product_id}")
            if not product.in_stock:
                raise ValidationError(f"Product is out of stock: {product.title}")
            items.append(
                OrderItem(product_id=product.id, title=product.title, quantity=line.quantity, price=product.price)
            )
            subtotal += product.price * line.quantity

        promo_discount = _percent_of(subtotal, promo.discount) if promo else 0
        payable = subtotal - promo_discount
        if payload.bonuses_used > payable:
            raise ValidationError("Bonuses cannot cover more than the order total")

        order = Order(
            phone=phone,
            contact_name=payload.contact_name.strip(),
            recipient=payload.recipient.strip(),
            recipient_phone=recipient_phone,
            address=payload.address.strip(),
            delivery_method=payload.delivery_method,
            delivery_date=payload.delivery_date,
            delivery_time=payload.delivery_time,
            payment_method=payload.payment_method,
            delivery_instructions=payload.delivery_instructions,
            postcard_text=payload.postcard_text,
            anonymous=payload.anonymous,
            whatsapp=payload.whatsapp,
            upsell_details=payload.upsell_details,
            total=payable - payload.bonuses_used,
            bonuses_used=payload.bonuses_used,
            bonus=0,
            promo_code_id=promo.id if promo else None,
            promo_discount=promo_discount,
            status=ORDER_PENDING,
        )

        try:
            await self.orders.create(order, items)
            if payload.bonuses_used:
                await self.ledger.debit(phone, payload.bonuses_used, order_id=order.id)
            if promo and not await self.promos.register_use(promo.id):
                raise ValidationError("Promo code has been used up")
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        order_id = order.id
        logger.info(f"Order {order_id} created for {phone}: total={order.total}, bonuses_used={order.bonuses_used}")

        try:
            bonus_added = await self.ledger.credit(phone, order.total, order_id)
            await self.session.commit()
        except (StorefrontError, SQLAlchemyError) as exc:
            await self.session.rollback()
            logger.error(f"Bonus credit failed for order {order_id}: {exc}", exc_info=True)
            raise BonusCreditFailed(order_id, str(exc)) from exc

        order.bonus = bonus_added
        return CheckoutResult(order=order, bonus_added=bonus_added)

    async def list_for_phone(self, phone: str) -> Sequence[Order]:
        return await self.orders.list_for_phones(build_phone_variants(phone))

    async def update_status(self, order_id: int, status: str) -> Order:
        if status not in ORDER_STATUSES:
            raise ValidationError(f"Invalid order status: {status}")
        order = await self.orders.get(order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found")

        order.status = status
        order.updated_at = utcnow()
        await self.session.flush()
        if status == ORDER_DELIVERED:
            account = await self.ledger.refresh_level(order.phone)
            logger.info(f"Order {order_id} delivered; {order.phone} is now {account.level}")
        await self.session.commit()
        return order
