import pytest

from libs.common.rate_limit import RateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_rate_limiter_allows_within_limit():
    limiter = RateLimiter(prefix="test", limit=2, ttl_seconds=5, clock=FakeClock())
    assert await limiter.check("user1")
    assert await limiter.check("user1")
    assert not await limiter.check("user1")
    # other keys have their own window
    assert await limiter.check("user2")


@pytest.mark.asyncio
async def test_rate_limiter_resets_after_ttl():
    clock = FakeClock()
    limiter = RateLimiter(prefix="test", limit=1, ttl_seconds=60, clock=clock)
    assert await limiter.check("user1")
    assert not await limiter.check("user1")
    assert await limiter.retry_after("user1") == 61

    clock.now += 30
    assert not await limiter.check("user1")
    assert await limiter.retry_after("user1") == 31

    clock.now += 31
    assert await limiter.check("user1")


@pytest.mark.asyncio
async def test_rate_limiter_reset_and_tokens_left():
    limiter = RateLimiter(prefix="test", limit=3, ttl_seconds=60, clock=FakeClock())
    await limiter.check("user1")
    await limiter.check("user1")
    assert await limiter.tokens_left("user1") == 1
    await limiter.reset("user1")
    assert await limiter.tokens_left("user1") == 3
    assert await limiter.retry_after("user1") == 0


@pytest.mark.asyncio
async def test_rate_limiter_keeps_no_empty_buckets():
    clock = FakeClock()
    limiter = RateLimiter(prefix="test", limit=2, ttl_seconds=60, clock=clock)
    assert await limiter.tokens_left("never-seen") == 2
    assert await limiter.retry_after("never-seen") == 0
    assert limiter._hits == {}

    await limiter.check("user1")
    assert list(limiter._hits) == ["test:user1"]

    clock.now += 61
    assert await limiter.tokens_left("user1") == 2
    assert limiter._hits == {}


@pytest.mark.asyncio
async def test_rate_limiter_refund_returns_latest_hit():
    limiter = RateLimiter(prefix="test", limit=1, ttl_seconds=60, clock=FakeClock())
    assert await limiter.check("user1")
    await limiter.refund("user1")
    assert await limiter.tokens_left("user1") == 1
    assert limiter._hits == {}

    await limiter.refund("user2")
    assert limiter._hits == {}
