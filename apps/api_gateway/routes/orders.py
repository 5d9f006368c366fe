from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from libs.common import AppSettings
from libs.data.repositories import OrderRepository

from ..background import notify_new_order
from ..dependencies import get_session_dep, get_settings_dep, require_session_phone
from ..exceptions import BonusCreditFailed
from ..schemas import CheckoutResponse, OrderCreateRequest, OrderResponse
from ..services.orders.service import OrderService

router = APIRouter()


@router.post("", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreateRequest,
    background_tasks: BackgroundTasks,
    phone: str = Depends(require_session_phone),
    session: AsyncSession = Depends(get_session_dep),
    settings: AppSettings = Depends(get_settings_dep),
):
    try:
        result = await OrderService(session, settings).place_order(phone, payload)
    except BonusCreditFailed as exc:
        # The order row is committed; error responses drop background tasks, so notify inline
        if settings.telegram_enabled:
            order = await OrderRepository(session).get(exc.order_id)
            if order is not None:
                await notify_new_order(order, settings)
        raise
    if settings.telegram_enabled:
        background_tasks.add_task(notify_new_order, result.order, settings)
    return CheckoutResponse(order=OrderResponse.model_validate(result.order), bonus_added=result.bonus_added)
