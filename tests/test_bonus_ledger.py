import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select, update

from apps.api_gateway.exceptions import (
    BonusAccountNotFound,
    BonusAlreadyCredited,
    InsufficientBalance,
    ValidationError,
)
from apps.api_gateway.services.bonus.service import (
    BonusLedger,
    compute_bonus,
    level_for_spend,
)
from libs.common import get_settings
from libs.common.constants import EXPIRED_REASON, ORDER_DELIVERED, ORDER_PENDING
from libs.data.models import BonusEntryKind, BonusHistoryEntry, Order
from libs.data.models.base import utcnow
from libs.data.repositories import BonusRepository

PHONE = "+79991234567"


async def _account(session, phone=PHONE):
    return await BonusRepository(session).get_by_phone(phone)


async def _history_count(session) -> int:
    return (await session.execute(select(func.count(BonusHistoryEntry.id)))).scalar_one()


async def _age_last_entry(session, days: int) -> None:
    last_id = (await session.execute(select(func.max(BonusHistoryEntry.id)))).scalar_one()
    await session.execute(
        update(BonusHistoryEntry)
        .where(BonusHistoryEntry.id == last_id)
        .values(created_at=utcnow() - timedelta(days=days))
    )


async def _assert_ledger_consistent(session, phone=PHONE) -> None:
    account = await _account(session, phone)
    await session.refresh(account)
    assert account.bonus_balance == await BonusRepository(session).ledger_sum(account.id)
    assert account.bonus_balance >= 0


@pytest.mark.parametrize(
    "spent,level",
    [
        (0, "bronze"),
        (9_999, "bronze"),
        (10_000, "silver"),
        (19_999, "silver"),
        (20_000, "gold"),
        (29_999, "gold"),
        (30_000, "platinum"),
        (49_999, "platinum"),
        (50_000, "premium"),
        (1_000_000, "premium"),
    ],
)
def test_level_for_spend_boundaries(spent, level):
    assert level_for_spend(spent) == level


@pytest.mark.parametrize(
    "total,level,expected",
    [(1000, "gold", 75), (1000, "bronze", 25), (999, "bronze", 24), (1000, "premium", 150), (0, "silver", 0)],
)
def test_compute_bonus_floors(total, level, expected):
    assert compute_bonus(total, level) == expected


@pytest.mark.asyncio
async def test_credit_gold_account(session):
    ledger = BonusLedger(session, get_settings())
    await BonusRepository(session).get_or_create(PHONE)
    await ledger.set_level(PHONE, "gold")

    added = await ledger.credit(PHONE, 1000, order_id=1)

    assert added == 75
    account = await _account(session)
    await session.refresh(account)
    assert account.bonus_balance == 75
    history = await BonusRepository(session).history(account.id)
    assert [(e.amount, e.kind, e.order_id) for e in history] == [(75, BonusEntryKind.ORDER_CREDIT, 1)]


@pytest.mark.asyncio
async def test_credit_is_once_per_order(session):
    ledger = BonusLedger(session, get_settings())
    await ledger.credit(PHONE, 1000, order_id=7)
    with pytest.raises(BonusAlreadyCredited):
        await ledger.credit(PHONE, 1000, order_id=7)
    account = await _account(session)
    await session.refresh(account)
    assert account.bonus_balance == 25
    await _assert_ledger_consistent(session)


@pytest.mark.asyncio
async def test_overdraft_refused_without_side_effects(session):
    ledger = BonusLedger(session, get_settings())
    await ledger.adjust(PHONE, 100, "welcome bonus")

    with pytest.raises(InsufficientBalance) as exc_info:
        await ledger.debit(PHONE, 150, order_id=3)

    assert exc_info.value.available == 100
    assert exc_info.value.requested == 150
    account = await _account(session)
    assert account.bonus_balance == 100
    assert await _history_count(session) == 1


@pytest.mark.asyncio
async def test_debit_without_account_is_insufficient(session):
    with pytest.raises(InsufficientBalance):
        await BonusLedger(session, get_settings()).debit(PHONE, 1)
    assert await _account(session) is None


@pytest.mark.asyncio
async def test_debit_rejects_non_positive_amount(session):
    ledger = BonusLedger(session, get_settings())
    await ledger.adjust(PHONE, 100, "welcome bonus")
    with pytest.raises(ValidationError):
        await ledger.debit(PHONE, 0)
    with pytest.raises(ValidationError):
        await ledger.debit(PHONE, -5)


@pytest.mark.asyncio
async def test_credit_then_debit_round_trip(session):
    ledger = BonusLedger(session, get_settings())
    await ledger.adjust(PHONE, 40, "starting balance")

    added = await ledger.credit(PHONE, 2000, order_id=11)
    new_balance = await ledger.debit(PHONE, added, order_id=12)

    assert new_balance == 40
    await _assert_ledger_consistent(session)
    assert await _history_count(session) == 3


@pytest.mark.asyncio
async def test_sequential_debits_never_overdraw(session):
    ledger = BonusLedger(session, get_settings())
    await ledger.adjust(PHONE, 100, "starting balance")

    assert await ledger.debit(PHONE, 60) == 40
    with pytest.raises(InsufficientBalance):
        await ledger.debit(PHONE, 60)
    assert await ledger.debit(PHONE, 40) == 0
    await _assert_ledger_consistent(session)


@pytest.mark.asyncio
async def test_stale_in_memory_balance_does_not_allow_overdraft(session_factory):
    async with session_factory() as setup:
        await BonusLedger(setup, get_settings()).adjust(PHONE, 100, "starting balance")
        await setup.commit()

    async with session_factory() as first, session_factory() as second:
        stale = await _account(second)
        assert stale.bonus_balance == 100

        await BonusLedger(first, get_settings()).debit(PHONE, 60)
        await first.commit()

        with pytest.raises(InsufficientBalance) as exc_info:
            await BonusLedger(second, get_settings()).debit(PHONE, 60)
        assert exc_info.value.available == 40


@pytest.mark.asyncio
async def test_concurrent_debits_never_overdraw(file_session_factory):
    async with file_session_factory() as setup:
        await BonusLedger(setup, get_settings()).adjust(PHONE, 100, "starting balance")
        await setup.commit()

    async def redeem() -> bool:
        async with file_session_factory() as session:
            try:
                await BonusLedger(session, get_settings()).debit(PHONE, 30)
            except InsufficientBalance:
                await session.rollback()
                return False
            await session.commit()
            return True

    results = await asyncio.gather(*(redeem() for _ in range(8)), return_exceptions=True)

    assert [r for r in results if isinstance(r, BaseException)] == []
    assert results.count(True) == 100 // 30
    assert results.count(False) == 8 - 100 // 30
    async with file_session_factory() as check:
        account = await _account(check)
        assert account.bonus_balance == 100 % 30
        assert await BonusRepository(check).ledger_sum(account.id) == account.bonus_balance


@pytest.mark.asyncio
async def test_adjust_cannot_go_negative(session):
    ledger = BonusLedger(session, get_settings())
    await ledger.adjust(PHONE, 30, "gift")
    with pytest.raises(InsufficientBalance):
        await ledger.adjust(PHONE, -31, "correction")
    assert await ledger.adjust(PHONE, -30, "correction") == 0
    with pytest.raises(ValidationError):
        await ledger.adjust(PHONE, 0, "nothing")
    with pytest.raises(ValidationError):
        await ledger.adjust(PHONE, 5, "  ")


@pytest.mark.asyncio
async def test_expire_stale_uses_fifo_and_is_idempotent(session):
    ledger = BonusLedger(session, get_settings())
    await ledger.adjust(PHONE, 100, "old credit")
    await _age_last_entry(session, days=200)
    await ledger.adjust(PHONE, 50, "recent credit")
    await _age_last_entry(session, days=10)
    await ledger.debit(PHONE, 30)
    await _age_last_entry(session, days=5)

    result = await ledger.expire_stale(PHONE)

    # 30 of the old 100 were spent first, the other 70 lapse
    assert result.expired == 70
    assert result.entries == 1
    assert result.new_balance == 50
    account = await _account(session)
    history = await BonusRepository(session).history(account.id)
    assert history[0].amount == -70
    assert history[0].reason == EXPIRED_REASON
    assert history[0].kind == BonusEntryKind.EXPIRY
    await _assert_ledger_consistent(session)

    again = await ledger.expire_stale(PHONE)
    assert again.expired == 0
    assert await _history_count(session) == 4


@pytest.mark.asyncio
async def test_expire_stale_nothing_when_old_credit_spent(session):
    ledger = BonusLedger(session, get_settings())
    await ledger.adjust(PHONE, 100, "old credit")
    await _age_last_entry(session, days=365)
    await ledger.debit(PHONE, 100)

    result = await ledger.expire_stale(PHONE)
    assert result.expired == 0
    assert await _history_count(session) == 2


@pytest.mark.asyncio
async def test_expire_stale_keeps_recent_credit(session):
    ledger = BonusLedger(session, get_settings())
    await ledger.adjust(PHONE, 100, "credit")
    await _age_last_entry(session, days=179)

    assert (await ledger.expire_stale(PHONE)).expired == 0
    # Same ledger seen from a year later
    later = await ledger.expire_stale(PHONE, now=utcnow() + timedelta(days=365))
    assert later.expired == 100
    assert later.new_balance == 0


@pytest.mark.asyncio
async def test_expire_stale_skip_if_active(session, monkeypatch):
    monkeypatch.setenv("BONUS_EXPIRY_SKIP_IF_ACTIVE", "true")
    get_settings.cache_clear()  # type: ignore[attr-defined]
    ledger = BonusLedger(session, get_settings())
    await ledger.adjust(PHONE, 100, "old credit")
    await _age_last_entry(session, days=200)
    await ledger.adjust(PHONE, 10, "recent activity")

    assert (await ledger.expire_stale(PHONE)).expired == 0


@pytest.mark.asyncio
async def test_expire_stale_without_account(session):
    result = await BonusLedger(session, get_settings()).expire_stale(PHONE)
    assert result.expired == 0


def _order(phone: str, total: int, status: str) -> Order:
    return Order(
        phone=phone,
        contact_name="Anna",
        recipient="Maria",
        recipient_phone="+79990000000",
        address="Lenina 1",
        total=total,
        status=status,
    )


@pytest.mark.asyncio
async def test_refresh_level_counts_delivered_orders_under_every_phone_spelling(session):
    session.add_all(
        [
            _order("+79991234567", 4000, ORDER_DELIVERED),
            _order("89991234567", 3000, ORDER_DELIVERED),
            _order("9991234567", 3000, ORDER_DELIVERED),
            _order("+79991234567", 50000, ORDER_PENDING),
        ]
    )
    await session.flush()

    account = await BonusLedger(session, get_settings()).refresh_level(PHONE)

    assert account.total_spent == 10000
    assert account.level == "silver"


@pytest.mark.asyncio
async def test_refresh_level_never_downgrades(session):
    ledger = BonusLedger(session, get_settings())
    await BonusRepository(session).get_or_create(PHONE)
    await ledger.set_level(PHONE, "premium")

    account = await ledger.refresh_level(PHONE)
    assert account.level == "premium"
    assert account.total_spent == 0


@pytest.mark.asyncio
async def test_set_level_validation(session):
    ledger = BonusLedger(session, get_settings())
    with pytest.raises(BonusAccountNotFound):
        await ledger.set_level(PHONE, "gold")
    await BonusRepository(session).get_or_create(PHONE)
    with pytest.raises(ValidationError):
        await ledger.set_level(PHONE, "diamond")


@pytest.mark.asyncio
async def test_summary_expires_and_refreshes(session):
    ledger = BonusLedger(session, get_settings())
    await ledger.adjust(PHONE, 80, "old credit")
    await _age_last_entry(session, days=181)
    session.add(_order(PHONE, 20000, ORDER_DELIVERED))
    await session.flush()

    summary = await ledger.summary(PHONE)

    assert summary.bonus_balance == 0
    assert summary.level == "gold"
    assert summary.total_spent == 20000
    assert [e.amount for e in summary.history] == [-80, 80]


@pytest.mark.asyncio
async def test_invalid_phone_is_validation_error(session):
    with pytest.raises(ValidationError):
        await BonusLedger(session, get_settings()).credit("123", 1000, order_id=1)
