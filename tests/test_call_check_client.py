import httpx
import pytest

from libs.common.call_check import (
    CallCheckResponseError,
    CallCheckTransportError,
    CheckStatus,
    SmsRuCallCheckClient,
    map_provider_status,
)
from libs.common.config import AppSettings


def _settings() -> AppSettings:
    return AppSettings(sms_ru_api_id="test-api-id", sms_ru_api_base="https://mock/")


def _client(handler) -> tuple[SmsRuCallCheckClient, httpx.AsyncClient]:
    mock_http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://mock")
    return SmsRuCallCheckClient(settings=_settings(), client=mock_http), mock_http


@pytest.mark.asyncio
async def test_add_sends_digits_only_phone():
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/callcheck/add"
        assert request.url.params["phone"] == "79991234567"
        assert request.url.params["api_id"] == "test-api-id"
        assert request.url.params["json"] == "1"
        return httpx.Response(
            200,
            json={
                "status": "OK",
                "check_id": "abc123",
                "call_phone": "78005008275",
                "call_phone_pretty": "+7 (800) 500-8275",
            },
        )

    client, mock_http = _client(handler)
    check = await client.add("+79991234567")
    assert check.check_id == "abc123"
    assert check.call_phone == "78005008275"
    assert check.call_phone_pretty == "+7 (800) 500-8275"
    await mock_http.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "code,expected",
    [(400, CheckStatus.PENDING), (401, CheckStatus.VERIFIED), (402, CheckStatus.EXPIRED)],
)
async def test_status_maps_provider_codes(code, expected):
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["check_id"] == "abc123"
        return httpx.Response(200, json={"status": "OK", "check_status": code})

    client, mock_http = _client(handler)
    assert await client.status("abc123") is expected
    await mock_http.aclose()


def test_unknown_provider_code_is_failed():
    assert map_provider_status(999) is CheckStatus.FAILED
    assert map_provider_status(None) is CheckStatus.FAILED
    assert map_provider_status("401") is CheckStatus.VERIFIED


@pytest.mark.asyncio
async def test_error_status_raises_response_error():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "ERROR", "status_code": 200, "status_text": "bad api_id"})

    client, mock_http = _client(handler)
    with pytest.raises(CallCheckResponseError) as exc_info:
        await client.add("+79991234567")
    assert exc_info.value.payload["status_text"] == "bad api_id"
    await mock_http.aclose()


@pytest.mark.asyncio
async def test_network_failure_raises_transport_error():
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    client, mock_http = _client(handler)
    with pytest.raises(CallCheckTransportError):
        await client.status("abc123")
    await mock_http.aclose()


@pytest.mark.asyncio
async def test_http_error_raises_transport_error():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    client, mock_http = _client(handler)
    with pytest.raises(CallCheckTransportError):
        await client.add("+79991234567")
    await mock_http.aclose()


def test_client_requires_api_id():
    with pytest.raises(ValueError):
        SmsRuCallCheckClient(settings=AppSettings(sms_ru_api_id=""))
