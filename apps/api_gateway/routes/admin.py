from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from libs.common import AppSettings
from libs.common.constants import ADMIN_SESSION_COOKIE
from libs.common.events import EVENT_CATEGORIES_CHANGED, EVENT_SUBCATEGORIES_CHANGED, Event, get_event_bus
from libs.common.phone import PhoneFormatError, require_mobile_phone, require_phone
from libs.common.rate_limit import RateLimiter
from libs.common.security import JwtService
from libs.data.repositories import BonusRepository, CatalogRepository, PromoCodeRepository

from ..dependencies import get_jwt_service, get_session_dep, get_settings_dep, get_verification_limiter
from ..exceptions import AdminRequired, BonusAccountNotFound, NotFound, ValidationError
from ..schemas import (
    AdminLoginRequest,
    BonusAccountResponse,
    BonusAdjustRequest,
    BonusAdjustResponse,
    BonusHistoryItem,
    BonusLevelRequest,
    CategoryCreateRequest,
    CategoryResponse,
    OrderResponse,
    OrderStatusRequest,
    PromoCodeCreateRequest,
    PromoCodeResponse,
    ResetAttemptsRequest,
    SubcategoryCreateRequest,
    SubcategoryResponse,
)
from ..security import admin_guard, password_matches
from ..services.bonus.service import BonusLedger
from ..services.orders.service import OrderService

# Login/logout stay outside the guard
auth_router = APIRouter()
router = APIRouter(dependencies=[Depends(admin_guard)])


@auth_router.post("/login")
async def admin_login(
    payload: AdminLoginRequest,
    response: Response,
    settings: AppSettings = Depends(get_settings_dep),
    jwt_service: JwtService = Depends(get_jwt_service),
):
    if not password_matches(payload.password, settings):
        logger.warning("Admin login rejected")
        raise AdminRequired("Invalid password")
    response.set_cookie(
        key=ADMIN_SESSION_COOKIE,
        value=jwt_service.issue_admin(),
        max_age=settings.admin_session_hours * 60 * 60,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path="/",
    )
    logger.info("Admin logged in")
    return {"status": "ok"}


@auth_router.post("/logout")
async def admin_logout(response: Response):
    response.delete_cookie(ADMIN_SESSION_COOKIE, path="/")
    return {"status": "ok"}


def _phone(raw: str) -> str:
    try:
        return require_phone(raw)
    except PhoneFormatError as exc:
        raise ValidationError(str(exc)) from exc


@router.post("/bonuses/adjust", response_model=BonusAdjustResponse)
async def adjust_bonuses(
    payload: BonusAdjustRequest,
    session: AsyncSession = Depends(get_session_dep),
    settings: AppSettings = Depends(get_settings_dep),
):
    phone = _phone(payload.phone)
    new_balance = await BonusLedger(session, settings).adjust(phone, payload.delta, payload.reason)
    await session.commit()
    logger.info("Admin bonus adjustment", phone=phone, delta=payload.delta, balance=new_balance)
    return BonusAdjustResponse(phone=phone, bonus_balance=new_balance)


@router.post("/bonuses/level")
async def set_bonus_level(
    payload: BonusLevelRequest,
    session: AsyncSession = Depends(get_session_dep),
    settings: AppSettings = Depends(get_settings_dep),
):
    account = await BonusLedger(session, settings).set_level(payload.phone, payload.level)
    await session.commit()
    logger.info("Admin level override", phone=account.phone, level=account.level)
    return {"phone": account.phone, "level": account.level}


@router.get("/customers/{phone}/bonuses", response_model=BonusAccountResponse)
async def customer_bonuses(phone: str, session: AsyncSession = Depends(get_session_dep)):
    phone = _phone(phone)
    repo = BonusRepository(session)
    account = await repo.get_by_phone(phone)
    if account is None:
        raise BonusAccountNotFound(phone)
    history = await repo.history(account.id)
    data = BonusAccountResponse(
        phone=account.phone,
        bonus_balance=account.bonus_balance,
        level=account.level,
        total_spent=account.total_spent,
        history=[BonusHistoryItem.model_validate(entry) for entry in history],
    )
    # Commit read-only transaction to avoid ROLLBACK log noise
    await session.commit()
    return data


@router.post("/orders/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: int,
    payload: OrderStatusRequest,
    session: AsyncSession = Depends(get_session_dep),
    settings: AppSettings = Depends(get_settings_dep),
):
    order = await OrderService(session, settings).update_status(order_id, payload.status)
    logger.info("Admin order status change", order_id=order_id, status=payload.status)
    return OrderResponse.model_validate(order)


@router.post("/auth/reset-attempts")
async def reset_attempts(
    payload: ResetAttemptsRequest,
    limiter: RateLimiter = Depends(get_verification_limiter),
):
    try:
        phone = require_mobile_phone(payload.phone)
    except PhoneFormatError as exc:
        raise ValidationError(str(exc)) from exc
    await limiter.reset(phone)
    logger.info("Admin reset verification attempts", phone=phone)
    return {"phone": phone, "attempts_left": await limiter.tokens_left(phone)}


@router.get("/promo-codes", response_model=list[PromoCodeResponse])
async def list_promo_codes(session: AsyncSession = Depends(get_session_dep)):
    promos = await PromoCodeRepository(session).list_all()
    data = [PromoCodeResponse.model_validate(promo) for promo in promos]
    await session.commit()
    return data


@router.post("/promo-codes", response_model=PromoCodeResponse, status_code=201)
async def create_promo_code(payload: PromoCodeCreateRequest, session: AsyncSession = Depends(get_session_dep)):
    promo = await PromoCodeRepository(session).create(
        code=payload.code,
        discount=payload.discount,
        expires_at=payload.expires_at,
        max_uses=payload.max_uses,
    )
    await session.commit()
    logger.info("Admin created promo code", code=promo.code, discount=promo.discount)
    return PromoCodeResponse.model_validate(promo)


@router.post("/promo-codes/{promo_id}/deactivate", response_model=PromoCodeResponse)
async def deactivate_promo_code(promo_id: int, session: AsyncSession = Depends(get_session_dep)):
    promo = await PromoCodeRepository(session).set_active(promo_id, False)
    if promo is None:
        raise NotFound(f"Promo code {promo_id} not found")
    await session.commit()
    logger.info("Admin deactivated promo code", code=promo.code)
    return PromoCodeResponse.model_validate(promo)


@router.post("/categories", response_model=CategoryResponse, status_code=201)
async def create_category(payload: CategoryCreateRequest, session: AsyncSession = Depends(get_session_dep)):
    category = await CatalogRepository(session).create_category(
        name=payload.name, slug=payload.slug, sort_order=payload.sort_order
    )
    await session.commit()
    await get_event_bus().publish(Event(EVENT_CATEGORIES_CHANGED, {"category_id": category.id, "action": "create"}))
    logger.info("Admin created category", category_id=category.id, slug=category.slug)
    return CategoryResponse(
        id=category.id, name=category.name, slug=category.slug, sort_order=category.sort_order, subcategories=[]
    )


@router.delete("/categories/{category_id}")
async def delete_category(category_id: int, session: AsyncSession = Depends(get_session_dep)):
    if not await CatalogRepository(session).delete_category(category_id):
        raise NotFound(f"Category {category_id} not found")
    await session.commit()
    await get_event_bus().publish(Event(EVENT_CATEGORIES_CHANGED, {"category_id": category_id, "action": "delete"}))
    logger.info("Admin deleted category", category_id=category_id)
    return {"status": "deleted"}


@router.post("/subcategories", response_model=SubcategoryResponse, status_code=201)
async def create_subcategory(payload: SubcategoryCreateRequest, session: AsyncSession = Depends(get_session_dep)):
    subcategory = await CatalogRepository(session).create_subcategory(
        category_id=payload.category_id, name=payload.name, slug=payload.slug
    )
    await session.commit()
    await get_event_bus().publish(
        Event(EVENT_SUBCATEGORIES_CHANGED, {"subcategory_id": subcategory.id, "action": "create"})
    )
    logger.info("Admin created subcategory", subcategory_id=subcategory.id, category_id=payload.category_id)
    return SubcategoryResponse.model_validate(subcategory)


@router.delete("/subcategories/{subcategory_id}")
async def delete_subcategory(subcategory_id: int, session: AsyncSession = Depends(get_session_dep)):
    if not await CatalogRepository(session).delete_subcategory(subcategory_id):
        raise NotFound(f"Subcategory {subcategory_id} not found")
    await session.commit()
    await get_event_bus().publish(
        Event(EVENT_SUBCATEGORIES_CHANGED, {"subcategory_id": subcategory_id, "action": "delete"})
    )
    logger.info("Admin deleted subcategory", subcategory_id=subcategory_id)
    return {"status": "deleted"}
