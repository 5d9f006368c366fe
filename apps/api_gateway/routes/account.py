from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from libs.common import AppSettings

from ..dependencies import get_session_dep, get_settings_dep, require_session_phone
from ..schemas import BonusAccountResponse, BonusHistoryItem, OrderResponse
from ..services.bonus.service import BonusLedger
from ..services.orders.service import OrderService

router = APIRouter()


@router.get("/bonuses", response_model=BonusAccountResponse)
async def my_bonuses(
    phone: str = Depends(require_session_phone),
    session: AsyncSession = Depends(get_session_dep),
    settings: AppSettings = Depends(get_settings_dep),
):
    summary = await BonusLedger(session, settings).summary(phone)
    await session.commit()
    return BonusAccountResponse(
        phone=summary.phone,
        bonus_balance=summary.bonus_balance,
        level=summary.level,
        total_spent=summary.total_spent,
        history=[BonusHistoryItem.model_validate(entry) for entry in summary.history],
    )


@router.get("/orders", response_model=list[OrderResponse])
async def my_orders(
    phone: str = Depends(require_session_phone),
    session: AsyncSession = Depends(get_session_dep),
    settings: AppSettings = Depends(get_settings_dep),
):
    orders = await OrderService(session, settings).list_for_phone(phone)
    data = [OrderResponse.model_validate(order) for order in orders]
    # Commit read-only transaction to avoid ROLLBACK log noise
    await session.commit()
    return data
