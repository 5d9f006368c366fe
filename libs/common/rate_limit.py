from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """In-memory sliding-window limiter for the single-process deployment."""

    def __init__(
        self,
        *,
        prefix: str,
        limit: int,
        ttl_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.prefix = prefix
        self.limit = limit
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._hits: dict[str, list[float]] = {}
        self._lock = asyncio.Lock()

    async def check(self, key: str) -> bool:
        """Record a hit for ``key``; False once the window is full."""
        async with self._lock:
            bucket = self._prune(key)
            if len(bucket) >= self.limit:
                logger.info(f"Rate limit exceeded for {self._key(key)}")
                return False
            bucket.append(self._clock())
            self._hits[self._key(key)] = bucket
            return True

    async def refund(self, key: str) -> None:
        """Give back the most recent hit for ``key``."""
        async with self._lock:
            bucket = self._prune(key)
            if bucket:
                bucket.pop()
            if not bucket:
                self._hits.pop(self._key(key), None)

    async def tokens_left(self, key: str) -> int:
        async with self._lock:
            bucket = self._prune(key)
            return max(self.limit - len(bucket), 0)

    async def retry_after(self, key: str) -> int:
        """Seconds until the oldest hit leaves the window (0 if not limited)."""
        async with self._lock:
            bucket = self._prune(key)
            if len(bucket) < self.limit:
                return 0
            return max(int(bucket[0] + self.ttl_seconds - self._clock()) + 1, 0)

    async def reset(self, key: str) -> None:
        async with self._lock:
            self._hits.pop(self._key(key), None)

    def _prune(self, key: str) -> list[float]:
        # Empty buckets are dropped so unseen or idle keys hold no memory
        name = self._key(key)
        now = self._clock()
        bucket = [ts for ts in self._hits.get(name, ()) if now - ts < self.ttl_seconds]
        if bucket:
            self._hits[name] = bucket
        else:
            self._hits.pop(name, None)
        return bucket

    def _key(self, key: str) -> str:
        """Generate a namespaced key for rate limiting."""
        return f"{self.prefix}:{key}"
