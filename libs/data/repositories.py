from __future__ import annotations

from datetime import datetime
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import Select, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from libs.common.call_check import CheckStatus
from libs.common.constants import LEVEL_BRONZE, ORDER_DELIVERED
from libs.data.models.base import utcnow
from .models import (
    BonusAccount,
    BonusHistoryEntry,
    Category,
    Order,
    OrderItem,
    Product,
    PromoCode,
    Subcategory,
    VerificationCheck,
)


class BonusRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_phone(self, phone: str) -> BonusAccount | None:
        # Balance moves through UPDATE statements, so never trust the identity map copy
        stmt = (
            select(BonusAccount)
            .where(BonusAccount.phone == phone)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create(self, phone: str, level: str = LEVEL_BRONZE) -> BonusAccount:
        account = await self.get_by_phone(phone)
        if account:
            return account
        # A concurrent insert for the same phone surfaces as IntegrityError on flush
        account = BonusAccount(phone=phone, bonus_balance=0, level=level, total_spent=0)
        self.session.add(account)
        await self.session.flush()
        return account

    async def apply_delta(
        self,
        account_id: UUID,
        delta: int,
        *,
        reason: str,
        kind: str,
        order_id: int | None = None,
    ) -> int | None:
        """
        Atomically move the cached balance by ``delta`` and append the ledger row.

        The balance guard lives in the UPDATE itself, so concurrent debits
        serialize on the row lock and can never push the balance below zero.
        Returns the new balance, or None when the guard rejected the change.
        """
        stmt = (
            update(BonusAccount)
            .where(BonusAccount.id == account_id, BonusAccount.bonus_balance + delta >= 0)
            .values(bonus_balance=BonusAccount.bonus_balance + delta, updated_at=utcnow())
            .returning(BonusAccount.bonus_balance)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        new_balance = result.scalar_one_or_none()
        if new_balance is None:
            return None
        self.session.add(
            BonusHistoryEntry(
                account_id=account_id,
                amount=delta,
                reason=reason,
                kind=kind,
                order_id=order_id,
            )
        )
        await self.session.flush()
        return new_balance

    async def has_entry(self, order_id: int, kind: str) -> bool:
        stmt = select(func.count(BonusHistoryEntry.id)).where(
            BonusHistoryEntry.order_id == order_id, BonusHistoryEntry.kind == kind
        )
        return (await self.session.execute(stmt)).scalar_one() > 0

    async def history(self, account_id: UUID, *, newest_first: bool = True) -> Sequence[BonusHistoryEntry]:
        if newest_first:
            order = (BonusHistoryEntry.created_at.desc(), BonusHistoryEntry.id.desc())
        else:
            order = (BonusHistoryEntry.created_at.asc(), BonusHistoryEntry.id.asc())
        stmt = select(BonusHistoryEntry).where(BonusHistoryEntry.account_id == account_id).order_by(*order)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def ledger_sum(self, account_id: UUID) -> int:
        stmt = select(func.coalesce(func.sum(BonusHistoryEntry.amount), 0)).where(
            BonusHistoryEntry.account_id == account_id
        )
        return int((await self.session.execute(stmt)).scalar_one())

    async def has_activity_since(self, account_id: UUID, since: datetime) -> bool:
        stmt = select(func.count(BonusHistoryEntry.id)).where(
            BonusHistoryEntry.account_id == account_id, BonusHistoryEntry.created_at >= since
        )
        return (await self.session.execute(stmt)).scalar_one() > 0

    async def update_tier(self, account_id: UUID, *, level: str, total_spent: int | None = None) -> None:
        values: dict = {"level": level, "updated_at": utcnow()}
        if total_spent is not None:
            values["total_spent"] = total_spent
        stmt = (
            update(BonusAccount)
            .where(BonusAccount.id == account_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)


class VerificationRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        *,
        check_id: str,
        phone: str,
        call_phone: str,
        call_phone_pretty: str,
        issued_at: datetime,
        expires_at: datetime,
    ) -> VerificationCheck:
        check = VerificationCheck(
            check_id=check_id,
            phone=phone,
            status=CheckStatus.PENDING.value,
            call_phone=call_phone,
            call_phone_pretty=call_phone_pretty,
            issued_at=issued_at,
            expires_at=expires_at,
        )
        self.session.add(check)
        await self.session.flush()
        return check

    async def get_by_check_id(self, check_id: str) -> VerificationCheck | None:
        stmt = select(VerificationCheck).where(VerificationCheck.check_id == check_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def set_status(self, check: VerificationCheck, status: CheckStatus) -> None:
        check.status = status.value
        check.updated_at = utcnow()
        await self.session.flush()


class OrderRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(self, order: Order, items: Iterable[OrderItem]) -> Order:
        order.items = list(items)
        self.session.add(order)
        await self.session.flush()
        return order

    async def get(self, order_id: int) -> Order | None:
        stmt = select(Order).options(selectinload(Order.items)).where(Order.id == order_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_phones(self, phones: Sequence[str], limit: int = 50) -> Sequence[Order]:
        stmt = (
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.phone.in_(phones))
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def set_bonus(self, order_id: int, amount: int) -> None:
        stmt = (
            update(Order)
            .where(Order.id == order_id)
            .values(bonus=amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)

    async def delivered_total(self, phones: Sequence[str]) -> int:
        stmt = select(func.coalesce(func.sum(Order.total), 0)).where(
            Order.status == ORDER_DELIVERED, Order.phone.in_(phones)
        )
        return int((await self.session.execute(stmt)).scalar_one())


class PromoCodeRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_code(self, code: str) -> PromoCode | None:
        stmt = select(PromoCode).where(PromoCode.code == code.strip().upper())
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_all(self) -> Sequence[PromoCode]:
        result = await self.session.execute(select(PromoCode).order_by(PromoCode.id))
        return result.scalars().all()

    async def create(
        self,
        *,
        code: str,
        discount: int,
        expires_at: datetime | None = None,
        max_uses: int | None = None,
    ) -> PromoCode:
        promo = PromoCode(
            code=code.strip().upper(),
            discount=discount,
            expires_at=expires_at,
            max_uses=max_uses,
            used_count=0,
            is_active=True,
        )
        self.session.add(promo)
        await self.session.flush()
        return promo

    async def set_active(self, promo_id: int, active: bool) -> PromoCode | None:
        promo = await self.session.get(PromoCode, promo_id)
        if promo:
            promo.is_active = active
            await self.session.flush()
        return promo

    async def register_use(self, promo_id: int) -> bool:
        """Bump ``used_count`` unless that would exceed ``max_uses``."""
        stmt = (
            update(PromoCode)
            .where(
                PromoCode.id == promo_id,
                or_(PromoCode.max_uses.is_(None), PromoCode.used_count < PromoCode.max_uses),
            )
            .values(used_count=PromoCode.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0


class CatalogRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_tree(self) -> Sequence[Category]:
        stmt: Select[tuple[Category]] = (
            select(Category)
            .options(selectinload(Category.subcategories))
            .order_by(Category.sort_order, Category.name)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def create_category(self, *, name: str, slug: str, sort_order: int = 0) -> Category:
        category = Category(name=name, slug=slug, sort_order=sort_order)
        self.session.add(category)
        await self.session.flush()
        return category

    async def delete_category(self, category_id: int) -> bool:
        category = await self.session.get(
            Category, category_id, options=[selectinload(Category.subcategories)]
        )
        if not category:
            return False
        await self.session.delete(category)
        await self.session.flush()
        return True

    async def create_subcategory(self, *, category_id: int, name: str, slug: str) -> Subcategory:
        subcategory = Subcategory(category_id=category_id, name=name, slug=slug)
        self.session.add(subcategory)
        await self.session.flush()
        return subcategory

    async def delete_subcategory(self, subcategory_id: int) -> bool:
        result = await self.session.execute(delete(Subcategory).where(Subcategory.id == subcategory_id))
        return result.rowcount > 0

    async def products_by_id(self, product_ids: Iterable[int]) -> dict[int, Product]:
        ids = set(product_ids)
        if not ids:
            return {}
        stmt = select(Product).where(Product.id.in_(ids))
        result = await self.session.execute(stmt)
        return {product.id: product for product in result.scalars().all()}
