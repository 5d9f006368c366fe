from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from libs.common import AppSettings, get_settings


class TokenError(Exception):
    pass


class JwtService:
    def __init__(self, settings: AppSettings | None = None) -> None:
        self.settings = settings or get_settings()

    def issue(self, subject: str, *, expires_in_minutes: int = 30, extra: dict[str, Any] | None = None) -> str:
        payload: dict[str, Any] = {
            "sub": subject,
            "iat": datetime.now(timezone.utc),
            "exp": datetime.now(timezone.utc) + timedelta(minutes=expires_in_minutes),
        }
        if extra:
            payload.update(extra)
        return jwt.encode(payload, self.settings.jwt_secret, algorithm=self.settings.jwt_alg)

    def verify(self, token: str) -> dict[str, Any]:
        try:
            return jwt.decode(token, self.settings.jwt_secret, algorithms=[self.settings.jwt_alg])
        except jwt.ExpiredSignatureError as exc:
            raise TokenError("Token expired") from exc
        except jwt.InvalidTokenError as exc:
            raise TokenError("Invalid token") from exc

    # Customer sessions carry the verified phone as subject.

    def issue_session(self, phone: str) -> str:
        return self.issue(
            phone,
            expires_in_minutes=self.settings.session_ttl_days * 24 * 60,
            extra={"type": "session"},
        )

    def session_phone(self, token: str) -> str:
        payload = self.verify(token)
        if payload.get("type") != "session" or not payload.get("sub"):
            raise TokenError("Not a session token")
        return payload["sub"]

    def issue_admin(self) -> str:
        return self.issue(
            "admin",
            expires_in_minutes=self.settings.admin_session_hours * 60,
            extra={"role": "admin"},
        )

    def is_admin(self, token: str) -> bool:
        try:
            return self.verify(token).get("role") == "admin"
        except TokenError:
            return False
