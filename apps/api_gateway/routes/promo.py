from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies import get_session_dep
from ..schemas import PromoCheckRequest, PromoCheckResponse
from ..services.orders.service import OrderService

router = APIRouter()


@router.post("/check", response_model=PromoCheckResponse)
async def check_promo(payload: PromoCheckRequest, session: AsyncSession = Depends(get_session_dep)):
    promo = await OrderService(session).check_promo(payload.code)
    await session.commit()
    return PromoCheckResponse(code=promo.code, discount=promo.discount)
