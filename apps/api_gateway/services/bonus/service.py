from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_FLOOR, Decimal
from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from libs.common import AppSettings, get_settings
from libs.common.constants import EXPIRED_REASON, LEVELS, LOYALTY_TIERS
from libs.common.phone import PhoneFormatError, build_phone_variants, require_phone
from libs.data.models import BonusAccount, BonusEntryKind, BonusHistoryEntry
from libs.data.models.base import as_utc, utcnow
from libs.data.repositories import BonusRepository, OrderRepository

from ...exceptions import (
    BonusAccountNotFound,
    BonusAlreadyCredited,
    InsufficientBalance,
    ValidationError,
)

logger = logging.getLogger(__name__)

_PERCENTS = {level: percent for level, percent, _ in LOYALTY_TIERS}


def level_for_spend(total_spent: int) -> str:
    """Highest tier whose threshold ``total_spent`` has reached."""
    current = LOYALTY_TIERS[0][0]
    for level, _, threshold in LOYALTY_TIERS:
        if total_spent >= threshold:
            current = level
    return current


def percent_for_level(level: str) -> Decimal:
    try:
        return _PERCENTS[level]
    except KeyError:
        raise ValidationError(f"Unknown loyalty level: {level}") from None


def compute_bonus(order_total: int, level: str) -> int:
    amount = Decimal(order_total) * percent_for_level(level) / Decimal(100)
    return int(amount.to_integral_value(rounding=ROUND_FLOOR))


def higher_level(first: str, second: str) -> str:
    return first if LEVELS.index(first) >= LEVELS.index(second) else second


@dataclass
class ExpiryResult:
    expired: int = 0
    entries: int = 0
    new_balance: int = 0


@dataclass
class BonusSummary:
    phone: str
    bonus_balance: int
    level: str
    total_spent: int
    history: Sequence[BonusHistoryEntry] = field(default_factory=list)


def _phone(raw: str) -> str:
    try:
        return require_phone(raw)
    except PhoneFormatError as exc:
        raise ValidationError(str(exc)) from exc


class BonusLedger:
    """
    Credit/debit/expiry operations over the bonus ledger.

    Every balance change goes through ``BonusRepository.apply_delta`` so the
    cached ``bonus_balance`` and the history rows move together. Methods only
    flush; committing is left to the caller so several ledger operations can
    share one transaction.
    """

    def __init__(self, session: AsyncSession, settings: AppSettings | None = None) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.repo = BonusRepository(session)
        self.orders = OrderRepository(session)

    async def credit(self, phone: str, order_total: int, order_id: int) -> int:
        """Add cashback for ``order_id`` at the account's current tier; returns the amount added."""
        phone = _phone(phone)
        if order_total < 0:
            raise ValidationError("Order total cannot be negative")

        account = await self.repo.get_or_create(phone)
        if await self.repo.has_entry(order_id, BonusEntryKind.ORDER_CREDIT):
            raise BonusAlreadyCredited(order_id)

        amount = compute_bonus(order_total, account.level)
        if amount > 0:
            new_balance = await self.repo.apply_delta(
                account.id,
                amount,
                reason=f"Credit for order #{order_id}",
                kind=BonusEntryKind.ORDER_CREDIT,
                order_id=order_id,
            )
            logger.info(
                f"Credited {amount} bonuses to {phone} for order {order_id} "
                f"(level={account.level}, balance={new_balance})"
            )
        await self.orders.set_bonus(order_id, amount)
        return amount

    async def debit(self, phone: str, amount: int, order_id: int | None = None) -> int:
        """Redeem ``amount`` bonuses; returns the new balance. Never overdraws."""
        phone = _phone(phone)
        if amount <= 0:
            raise ValidationError("Bonus amount must be positive")

        account = await self.repo.get_by_phone(phone)
        if account is None:
            raise InsufficientBalance(phone, amount, 0)
        if order_id is not None and await self.repo.has_entry(order_id, BonusEntryKind.ORDER_DEBIT):
            raise ValidationError(f"Bonuses for order {order_id} have already been redeemed")

        reason = f"Redeemed on order #{order_id}" if order_id is not None else "Redeemed"
        new_balance = await self.repo.apply_delta(
            account.id, -amount, reason=reason, kind=BonusEntryKind.ORDER_DEBIT, order_id=order_id
        )
        if new_balance is None:
            await self.session.refresh(account)
            logger.info(f"Debit of {amount} refused for {phone}: balance {account.bonus_balance}")
            raise InsufficientBalance(phone, amount, account.bonus_balance)
        logger.info(f"Debited {amount} bonuses from {phone} (order={order_id}, balance={new_balance})")
        return new_balance

    async def adjust(self, phone: str, delta: int, reason: str) -> int:
        """Manual correction by an operator, in either direction."""
        phone = _phone(phone)
        if delta == 0:
            raise ValidationError("Adjustment must be non-zero")
        if not reason or not reason.strip():
            raise ValidationError("Adjustment reason is required")

        account = await self.repo.get_or_create(phone)
        new_balance = await self.repo.apply_delta(
            account.id, delta, reason=reason.strip(), kind=BonusEntryKind.ADJUSTMENT
        )
        if new_balance is None:
            await self.session.refresh(account)
            raise InsufficientBalance(phone, -delta, account.bonus_balance)
        return new_balance

    async def expire_stale(self, phone: str, now: datetime | None = None) -> ExpiryResult:
        """
        Reverse the unused remainder of every credit older than the expiry window.

        Debits (including earlier expiry rows) consume credits oldest-first, so
        a second run over the same ledger finds nothing left to expire.
        """
        phone = _phone(phone)
        now = now or utcnow()
        account = await self.repo.get_by_phone(phone)
        if account is None:
            return ExpiryResult()

        cutoff = now - timedelta(days=self.settings.bonus_expire_days)
        if self.settings.bonus_expiry_skip_if_active and await self.repo.has_activity_since(account.id, cutoff):
            return ExpiryResult(new_balance=account.bonus_balance)

        remaining: list[list] = []
        for entry in await self.repo.history(account.id, newest_first=False):
            if entry.amount > 0:
                remaining.append([entry, entry.amount])
                continue
            to_spend = -entry.amount
            for accrual in remaining:
                if to_spend <= 0:
                    break
                taken = min(accrual[1], to_spend)
                accrual[1] -= taken
                to_spend -= taken

        result = ExpiryResult(new_balance=account.bonus_balance)
        for entry, left in remaining:
            if left <= 0 or as_utc(entry.created_at) >= cutoff:
                continue
            new_balance = await self.repo.apply_delta(
                account.id, -left, reason=EXPIRED_REASON, kind=BonusEntryKind.EXPIRY
            )
            if new_balance is None:
                logger.warning(
                    f"Ledger for {phone} does not cover expiry of {left}; balance and history disagree"
                )
                break
            result.expired += left
            result.entries += 1
            result.new_balance = new_balance

        if result.expired:
            logger.info(f"Expired {result.expired} bonuses for {phone} in {result.entries} entr(y/ies)")
        return result

    async def set_level(self, phone: str, level: str) -> BonusAccount:
        phone = _phone(phone)
        if level not in LEVELS:
            raise ValidationError(f"Invalid level value: {level}")
        account = await self.repo.get_by_phone(phone)
        if account is None:
            raise BonusAccountNotFound(phone)
        await self.repo.update_tier(account.id, level=level)
        await self.session.refresh(account)
        return account

    async def refresh_level(self, phone: str) -> BonusAccount:
        """Recompute lifetime spend from delivered orders; tiers only ever go up."""
        phone = _phone(phone)
        account = await self.repo.get_or_create(phone)
        total_spent = await self.orders.delivered_total(build_phone_variants(phone))
        level = higher_level(account.level, level_for_spend(total_spent))
        await self.repo.update_tier(account.id, level=level, total_spent=total_spent)
        await self.session.refresh(account)
        return account

    async def summary(self, phone: str, now: datetime | None = None) -> BonusSummary:
        """Account view: sweep stale bonuses, refresh the tier, then read."""
        phone = _phone(phone)
        await self.expire_stale(phone, now=now)
        account = await self.refresh_level(phone)
        history = await self.repo.history(account.id)
        return BonusSummary(
            phone=account.phone,
            bonus_balance=account.bonus_balance,
            level=account.level,
            total_spent=account.total_spent,
            history=history,
        )
