from __future__ import annotations

import hmac

from fastapi import Depends, Header, Query, Request

from libs.common import AppSettings
from libs.common.constants import ADMIN_SESSION_COOKIE
from libs.common.security import JwtService

from .dependencies import get_jwt_service, get_settings_dep
from .exceptions import AdminRequired


def _key_matches(provided: str | None, expected: str | None) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


async def admin_guard(
    request: Request,
    x_service_key: str | None = Header(default=None),
    settings: AppSettings = Depends(get_settings_dep),
    jwt_service: JwtService = Depends(get_jwt_service),
) -> None:
    """Admin session cookie or the service key header."""
    if _key_matches(x_service_key, settings.service_key):
        return
    token = request.cookies.get(ADMIN_SESSION_COOKIE)
    if token and jwt_service.is_admin(token):
        return
    raise AdminRequired("Unauthorized")


async def webhook_guard(
    x_webhook_secret: str | None = Header(default=None),
    secret: str | None = Query(default=None),
    settings: AppSettings = Depends(get_settings_dep),
) -> None:
    """Shared secret for provider callbacks; closed when none is configured."""
    if _key_matches(x_webhook_secret or secret, settings.call_webhook_secret):
        return
    raise AdminRequired("Unauthorized")


def password_matches(password: str, settings: AppSettings) -> bool:
    return _key_matches(password, settings.admin_password)
