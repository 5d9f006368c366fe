from __future__ import annotations

from functools import lru_cache
from typing import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from libs.common import AppSettings, get_settings
from libs.common.call_check import CallVerificationProvider, SmsRuCallCheckClient
from libs.common.phone import PhoneFormatError, require_phone
from libs.common.rate_limit import RateLimiter
from libs.common.security import JwtService, TokenError
from libs.data.database import get_async_session

from .exceptions import SessionRequired, UpstreamFailure
from .services.catalog.cache import CategoryCache
from .services.verification.service import CallVerificationService


async def get_settings_dep() -> AppSettings:
    return get_settings()


async def get_session_dep() -> AsyncIterator[AsyncSession]:
    """Dependency that provides database session."""
    async for session in get_async_session():
        yield session


def get_jwt_service(settings: AppSettings = Depends(get_settings_dep)) -> JwtService:
    return JwtService(settings)


@lru_cache(maxsize=1)
def _verification_limiter(limit: int, window_seconds: int) -> RateLimiter:
    return RateLimiter(prefix="callcheck", limit=limit, ttl_seconds=window_seconds)


def get_verification_limiter(settings: AppSettings = Depends(get_settings_dep)) -> RateLimiter:
    """Per-phone attempt quota shared by every request in this process."""
    return _verification_limiter(
        settings.verification_attempts_limit, settings.verification_attempts_window_seconds
    )


async def get_call_provider(
    settings: AppSettings = Depends(get_settings_dep),
) -> AsyncIterator[CallVerificationProvider]:
    try:
        client = SmsRuCallCheckClient(settings)
    except ValueError as exc:
        raise UpstreamFailure(str(exc)) from exc
    async with client:
        yield client


@lru_cache(maxsize=1)
def get_category_cache() -> CategoryCache:
    return CategoryCache()


async def require_session_phone(
    request: Request,
    settings: AppSettings = Depends(get_settings_dep),
    jwt_service: JwtService = Depends(get_jwt_service),
) -> str:
    """Verified phone from the session cookie; SessionRequired otherwise."""
    token = request.cookies.get(settings.session_cookie_name)
    if not token:
        raise SessionRequired("Not authenticated")
    try:
        return require_phone(jwt_service.session_phone(token))
    except (TokenError, PhoneFormatError) as exc:
        raise SessionRequired("Session is invalid or expired") from exc


def get_verification_service(
    session: AsyncSession = Depends(get_session_dep),
    provider: CallVerificationProvider = Depends(get_call_provider),
    limiter: RateLimiter = Depends(get_verification_limiter),
    settings: AppSettings = Depends(get_settings_dep),
) -> CallVerificationService:
    return CallVerificationService(session, provider, limiter, settings)
