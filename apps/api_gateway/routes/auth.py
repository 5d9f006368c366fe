from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from libs.common import AppSettings
from libs.common.call_check import CheckStatus
from libs.common.phone import PhoneFormatError, require_mobile_phone, require_phone
from libs.common.security import JwtService, TokenError
from libs.data.repositories import BonusRepository

from ..dependencies import (
    get_jwt_service,
    get_session_dep,
    get_settings_dep,
    get_verification_service,
)
from ..exceptions import VerificationExpired
from ..schemas import (
    CallStatusResponse,
    CallWebhookRequest,
    SendCallRequest,
    SendCallResponse,
    SessionResponse,
)
from ..security import webhook_guard
from ..services.verification.service import CallVerificationService

router = APIRouter()

logger = logging.getLogger(__name__)


def _set_session_cookie(response: Response, token: str, settings: AppSettings) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_ttl_days * 24 * 60 * 60,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path="/",
    )


@router.post("/send-call", response_model=SendCallResponse)
async def send_call(
    payload: SendCallRequest,
    session: AsyncSession = Depends(get_session_dep),
    service: CallVerificationService = Depends(get_verification_service),
    settings: AppSettings = Depends(get_settings_dep),
):
    check = await service.request_call(payload.phone)
    await session.commit()
    return SendCallResponse(
        check_id=check.check_id,
        call_phone=check.call_phone,
        call_phone_pretty=check.call_phone_pretty,
        expires_at=check.expires_at,
        poll_interval=settings.verification_poll_interval_seconds,
    )


@router.get("/status", response_model=CallStatusResponse)
async def call_status(
    check_id: str,
    phone: str,
    response: Response,
    session: AsyncSession = Depends(get_session_dep),
    service: CallVerificationService = Depends(get_verification_service),
    jwt_service: JwtService = Depends(get_jwt_service),
    settings: AppSettings = Depends(get_settings_dep),
):
    try:
        status = await service.poll_status(check_id, phone)
    except VerificationExpired:
        # Persist the EXPIRED transition before reporting it
        await session.commit()
        raise

    if status is CheckStatus.VERIFIED:
        verified_phone = require_mobile_phone(phone)
        await BonusRepository(session).get_or_create(verified_phone)
        await session.commit()
        _set_session_cookie(response, jwt_service.issue_session(verified_phone), settings)
        logger.info(f"Session established for {verified_phone} via check {check_id}")
    else:
        await session.commit()
    return CallStatusResponse(check_id=check_id, status=status.value)


@router.post("/call-webhook", dependencies=[Depends(webhook_guard)])
async def call_webhook(
    payload: CallWebhookRequest,
    session: AsyncSession = Depends(get_session_dep),
    service: CallVerificationService = Depends(get_verification_service),
):
    status = await service.handle_webhook(payload.check_id, payload.check_status)
    await session.commit()
    return {"check_id": payload.check_id, "status": status.value}


@router.get("/me", response_model=SessionResponse)
async def me(
    request: Request,
    settings: AppSettings = Depends(get_settings_dep),
    jwt_service: JwtService = Depends(get_jwt_service),
):
    token = request.cookies.get(settings.session_cookie_name)
    if not token:
        return SessionResponse(authenticated=False)
    try:
        phone = require_phone(jwt_service.session_phone(token))
    except (TokenError, PhoneFormatError):
        return SessionResponse(authenticated=False)
    return SessionResponse(authenticated=True, phone=phone)


@router.post("/logout")
async def logout(response: Response, settings: AppSettings = Depends(get_settings_dep)):
    response.delete_cookie(settings.session_cookie_name, path="/")
    return {"status": "ok"}
