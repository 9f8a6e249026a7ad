"""Counter stores backing the per-caller request limiter."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

import redis.asyncio as redis

logger = logging.getLogger(__name__)


@dataclass
class WindowCount:
    count: int
    window_start: float


class RateLimitStore(Protocol):
    async def hit(self, key: str, window_seconds: float, now: Optional[float] = None) -> WindowCount:
        """Count one request for `key` and return the state of its current window."""
        ...

    async def reset(self) -> None:
        ...


class InMemoryRateLimitStore:
    """Process-local counters. Windows reset in discrete jumps, not sliding.

    Expired windows are swept at most once per window length, so callers that
    stop sending requests do not keep an entry alive.
    """

    def __init__(self) -> None:
        self._counters: Dict[str, WindowCount] = {}
        self._lock = asyncio.Lock()
        self._last_sweep: Optional[float] = None

    def __len__(self) -> int:
        return len(self._counters)

    async def get(self, key: str) -> Optional[WindowCount]:
        async with self._lock:
            entry = self._counters.get(key)
            return WindowCount(entry.count, entry.window_start) if entry else None

    def _sweep_expired(self, current: float, window_seconds: float) -> None:
        if self._last_sweep is None:
            self._last_sweep = current
            return
        if current - self._last_sweep < window_seconds:
            return
        expired = [
            key for key, entry in self._counters.items()
            if current - entry.window_start > window_seconds
        ]
        for key in expired:
            del self._counters[key]
        self._last_sweep = current

    async def hit(self, key: str, window_seconds: float, now: Optional[float] = None) -> WindowCount:
        current = time.time() if now is None else now
        async with self._lock:
            self._sweep_expired(current, window_seconds)
            entry = self._counters.get(key) or WindowCount(count=0, window_start=current)
            if current - entry.window_start > window_seconds:
                entry.count = 0
                entry.window_start = current
            entry.count += 1
            self._counters[key] = entry
            return WindowCount(entry.count, entry.window_start)

    async def reset(self) -> None:
        async with self._lock:
            self._counters.clear()
            self._last_sweep = None


class RedisRateLimitStore:
    """Shared counters in Redis. The key expiry is the window; falls back to local counters when Redis is down."""

    def __init__(self, redis_url: str, key_prefix: str = "lab:rate") -> None:
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self._fallback = InMemoryRateLimitStore()

    async def hit(self, key: str, window_seconds: float, now: Optional[float] = None) -> WindowCount:
        current = time.time() if now is None else now
        redis_key = f"{self.key_prefix}:{key}"
        window = max(int(window_seconds), 1)
        try:
            redis_client = redis.from_url(self.redis_url, decode_responses=True)
            try:
                # Every counter key carries a TTL from its first hit.
                async with redis_client.pipeline(transaction=True) as pipe:
                    count, _, ttl = await (
                        pipe.incr(redis_key)
                        .expire(redis_key, window, nx=True)
                        .ttl(redis_key)
                        .execute()
                    )
            finally:
                await redis_client.aclose()
        except Exception as exc:
            logger.warning("Redis rate limit store unavailable, using local counters: %s", exc)
            return await self._fallback.hit(key, window_seconds, now=current)

        remaining = ttl if ttl and ttl > 0 else window_seconds
        return WindowCount(count=int(count), window_start=current - (window_seconds - remaining))

    async def reset(self) -> None:
        await self._fallback.reset()


def build_rate_limit_store(backend: str, redis_url: str) -> RateLimitStore:
    if (backend or "memory").strip().lower() == "redis":
        return RedisRateLimitStore(redis_url)
    return InMemoryRateLimitStore()
