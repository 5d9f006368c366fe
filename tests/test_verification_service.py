from datetime import datetime, timedelta, timezone

import pytest

from apps.api_gateway.exceptions import (
    RateLimited,
    UpstreamFailure,
    ValidationError,
    VerificationExpired,
    VerificationNotFound,
)
from apps.api_gateway.services.verification.service import CallVerificationService
from libs.common import get_settings
from libs.common.call_check import CallCheck, CallCheckTransportError, CheckStatus
from libs.common.rate_limit import RateLimiter
from libs.data.repositories import VerificationRepository

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeProvider:
    """Reports VERIFIED once the clock reaches ``verified_after`` seconds."""

    def __init__(self, clock: Clock, verified_after: float | None = None):
        self.clock = clock
        self.verified_after = verified_after
        self.added: list[str] = []
        self.status_calls = 0
        self.fail_status = False
        self.fail_add = False

    async def add(self, phone: str) -> CallCheck:
        if self.fail_add:
            raise CallCheckTransportError("connection refused")
        self.added.append(phone)
        return CallCheck(check_id="abc123", call_phone="78005008275", call_phone_pretty="+7 (800) 500-8275")

    async def status(self, check_id: str) -> CheckStatus:
        self.status_calls += 1
        if self.fail_status:
            raise CallCheckTransportError("timeout")
        elapsed = (self.clock() - T0).total_seconds()
        if self.verified_after is not None and elapsed >= self.verified_after:
            return CheckStatus.VERIFIED
        return CheckStatus.PENDING


def _service(session, provider, clock, limit: int = 5) -> CallVerificationService:
    limiter = RateLimiter(prefix="callcheck", limit=limit, ttl_seconds=86400)
    return CallVerificationService(session, provider, limiter, get_settings(), clock=clock)


@pytest.mark.asyncio
async def test_call_verified_after_twelve_seconds(session):
    clock = Clock()
    provider = FakeProvider(clock, verified_after=12)
    service = _service(session, provider, clock)

    check = await service.request_call("89991234567")
    assert check.check_id == "abc123"
    assert check.phone == "+79991234567"
    assert provider.added == ["+79991234567"]
    assert (check.expires_at - check.issued_at).total_seconds() == 300

    statuses = []
    for _ in range(4):
        clock.advance(3)
        statuses.append(await service.poll_status("abc123", "+79991234567"))

    assert statuses == [CheckStatus.PENDING] * 3 + [CheckStatus.VERIFIED]
    stored = await VerificationRepository(session).get_by_check_id("abc123")
    assert stored.status == CheckStatus.VERIFIED.value


@pytest.mark.asyncio
async def test_verified_after_window_is_expired(session):
    clock = Clock()
    provider = FakeProvider(clock, verified_after=301)
    service = _service(session, provider, clock)
    await service.request_call("+79991234567")

    clock.advance(301)
    with pytest.raises(VerificationExpired):
        await service.poll_status("abc123", "+79991234567")

    stored = await VerificationRepository(session).get_by_check_id("abc123")
    assert stored.status == CheckStatus.EXPIRED.value
    # The provider is not even asked once the window is gone
    assert provider.status_calls == 0


@pytest.mark.asyncio
async def test_expired_check_stays_expired(session):
    clock = Clock()
    provider = FakeProvider(clock, verified_after=0)
    service = _service(session, provider, clock)
    await service.request_call("+79991234567")

    clock.advance(400)
    with pytest.raises(VerificationExpired):
        await service.poll_status("abc123", "+79991234567")
    # A late webhook cannot revive it either
    assert await service.handle_webhook("abc123", 401) is CheckStatus.EXPIRED
    with pytest.raises(VerificationExpired):
        await service.poll_status("abc123", "+79991234567")


@pytest.mark.asyncio
async def test_poll_at_window_edge_is_still_accepted(session):
    clock = Clock()
    provider = FakeProvider(clock, verified_after=300)
    service = _service(session, provider, clock)
    await service.request_call("+79991234567")

    clock.advance(300)
    assert await service.poll_status("abc123", "+79991234567") is CheckStatus.VERIFIED


@pytest.mark.asyncio
async def test_webhook_verifies_inside_window(session):
    clock = Clock()
    provider = FakeProvider(clock, verified_after=15)
    service = _service(session, provider, clock)
    await service.request_call("+79991234567")

    clock.advance(20)
    assert await service.handle_webhook("abc123", "401") is CheckStatus.VERIFIED
    clock.advance(3)
    assert await service.poll_status("abc123", "+79991234567") is CheckStatus.VERIFIED
    # One lookup to confirm the callback, none for the poll
    assert provider.status_calls == 1


@pytest.mark.asyncio
async def test_webhook_verified_claim_is_ignored_until_provider_confirms(session):
    clock = Clock()
    provider = FakeProvider(clock)
    service = _service(session, provider, clock)
    await service.request_call("+79991234567")

    clock.advance(5)
    assert await service.handle_webhook("abc123", 401) is CheckStatus.PENDING
    stored = await VerificationRepository(session).get_by_check_id("abc123")
    assert stored.status == CheckStatus.PENDING.value
    assert await service.poll_status("abc123", "+79991234567") is CheckStatus.PENDING


@pytest.mark.asyncio
async def test_webhook_unknown_check(session):
    service = _service(session, FakeProvider(Clock()), Clock())
    with pytest.raises(VerificationNotFound):
        await service.handle_webhook("missing", 401)


@pytest.mark.asyncio
async def test_poll_with_other_phone_is_not_found(session):
    clock = Clock()
    service = _service(session, FakeProvider(clock), clock)
    await service.request_call("+79991234567")
    with pytest.raises(VerificationNotFound):
        await service.poll_status("abc123", "+79997654321")


@pytest.mark.asyncio
async def test_invalid_phone_rejected_before_provider_call(session):
    clock = Clock()
    provider = FakeProvider(clock)
    service = _service(session, provider, clock)
    with pytest.raises(ValidationError):
        await service.request_call("+74951234567")
    assert provider.added == []


@pytest.mark.asyncio
async def test_attempts_are_rate_limited(session):
    clock = Clock()
    provider = FakeProvider(clock)
    service = _service(session, provider, clock, limit=2)

    await service.request_call("+79991234567")
    provider_check = provider.add

    async def add_with_new_id(phone):
        call = await provider_check(phone)
        call.check_id = f"check-{len(provider.added)}"
        return call

    provider.add = add_with_new_id
    await service.request_call("+79991234567")
    with pytest.raises(RateLimited) as exc_info:
        await service.request_call("+79991234567")
    assert exc_info.value.retry_after > 0
    assert len(provider.added) == 2


@pytest.mark.asyncio
async def test_provider_failure_is_upstream_failure(session):
    clock = Clock()
    provider = FakeProvider(clock)
    provider.fail_status = True
    service = _service(session, provider, clock)
    await service.request_call("+79991234567")

    clock.advance(3)
    with pytest.raises(UpstreamFailure):
        await service.poll_status("abc123", "+79991234567")
    stored = await VerificationRepository(session).get_by_check_id("abc123")
    assert stored.status == CheckStatus.PENDING.value


@pytest.mark.asyncio
async def test_failed_call_request_does_not_use_an_attempt(session):
    clock = Clock()
    provider = FakeProvider(clock)
    provider.fail_add = True
    limiter = RateLimiter(prefix="callcheck", limit=5, ttl_seconds=86400)
    service = CallVerificationService(session, provider, limiter, get_settings(), clock=clock)

    for _ in range(7):
        with pytest.raises(UpstreamFailure):
            await service.request_call("+79991234567")
    assert await limiter.tokens_left("+79991234567") == 5

    provider.fail_add = False
    await service.request_call("+79991234567")
    assert await limiter.tokens_left("+79991234567") == 4
