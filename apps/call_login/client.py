from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class RateLimitedError(Exception):
    """The API refused another verification attempt for this phone."""

    def __init__(self, retry_after: int | None = None) -> None:
        super().__init__("Too many verification attempts")
        self.retry_after = retry_after


class CheckExpiredError(Exception):
    """The server says the verification window has elapsed."""


class StorefrontApiClient:
    """HTTP client for the storefront's call-login endpoints.

    The underlying httpx client keeps cookies, so a successful status poll
    leaves the session cookie on this client for later requests.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    def session_token(self, cookie_name: str = "user_phone") -> str | None:
        return self._client.cookies.get(cookie_name)

    async def send_call(self, phone: str) -> dict[str, Any]:
        response = await self._request("POST", "/auth/send-call", json={"phone": phone})
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitedError(int(retry_after) if retry_after and retry_after.isdigit() else None)
        self._raise_for_status(response)
        return response.json()

    async def call_status(self, check_id: str, phone: str) -> str:
        response = await self._request("GET", "/auth/status", params={"check_id": check_id, "phone": phone})
        if response.status_code == 410:
            raise CheckExpiredError(check_id)
        self._raise_for_status(response)
        return response.json()["status"]

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.ConnectError as e:
            logger.error(f"Failed to connect to API at {self.base_url}: {e}")
            raise ConnectionError(f"API is unreachable at {self.base_url}") from e
        except httpx.TimeoutException as e:
            logger.error(f"Timeout talking to API: {e}")
            raise TimeoutError("The API did not answer in time") from e

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"API returned error status {e.response.status_code}: {e.response.text}")
            raise
