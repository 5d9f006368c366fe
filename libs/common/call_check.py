"""Async client for the SMS.ru "callcheck" phone-ownership API.

The user dials ``call_phone``; the provider detects the inbound call from the
number under verification and flips the check to ``401``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

import httpx

from libs.common import AppSettings, get_settings
from libs.common.phone import provider_format


class CheckStatus(str, Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not CheckStatus.PENDING


# Provider check_status codes
_PROVIDER_STATUSES = {
    400: CheckStatus.PENDING,
    401: CheckStatus.VERIFIED,
    402: CheckStatus.EXPIRED,
}


def map_provider_status(code: Any) -> CheckStatus:
    try:
        return _PROVIDER_STATUSES.get(int(code), CheckStatus.FAILED)
    except (TypeError, ValueError):
        return CheckStatus.FAILED


@dataclass
class CallCheck:
    check_id: str
    call_phone: str
    call_phone_pretty: str


class CallCheckError(Exception):
    """Base error for the call-verification client."""


class CallCheckTransportError(CallCheckError):
    """Raised when the HTTP request never produced a usable response."""


class CallCheckResponseError(CallCheckError):
    """Raised when the provider answers with a non-OK status."""

    def __init__(self, payload: dict[str, Any]) -> None:
        self.payload = payload
        super().__init__(
            f"Call provider responded with status={payload.get('status')} "
            f"code={payload.get('status_code')} text={payload.get('status_text')}"
        )


class CallVerificationProvider(Protocol):
    async def add(self, phone: str) -> CallCheck: ...

    async def status(self, check_id: str) -> CheckStatus: ...


class SmsRuCallCheckClient:
    """Thin async wrapper around ``/callcheck/add`` and ``/callcheck/status``."""

    def __init__(
        self,
        settings: AppSettings | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        if not self.settings.sms_ru_api_id:
            raise ValueError("SMS_RU_API_ID is not configured")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.settings.sms_ru_api_base.rstrip("/"),
            timeout=timeout,
        )

    async def add(self, phone: str) -> CallCheck:
        payload = await self._get("/callcheck/add", phone=provider_format(phone))
        check_id = payload.get("check_id")
        if not check_id:
            raise CallCheckResponseError(payload)
        return CallCheck(
            check_id=str(check_id),
            call_phone=str(payload.get("call_phone", "")),
            call_phone_pretty=str(payload.get("call_phone_pretty", "")),
        )

    async def status(self, check_id: str) -> CheckStatus:
        payload = await self._get("/callcheck/status", check_id=check_id)
        return map_provider_status(payload.get("check_status"))

    async def _get(self, path: str, **params: Any) -> dict[str, Any]:
        query = {"api_id": self.settings.sms_ru_api_id, "json": 1, **params}
        try:
            response = await self._client.get(path, params=query)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise CallCheckTransportError(str(exc)) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise CallCheckTransportError(f"Malformed provider response: {response.text[:200]}") from exc

        if not isinstance(payload, dict) or payload.get("status") != "OK":
            raise CallCheckResponseError(payload if isinstance(payload, dict) else {"raw": payload})
        return payload

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "SmsRuCallCheckClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
