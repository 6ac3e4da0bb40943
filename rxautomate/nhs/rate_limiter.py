"""Sliding-window rate limiting for outbound NHS API calls.

Each API category (``pds``, ``eps``, ``pecs``) owns one window of request
timestamps. A check adds the current timestamp, prunes entries older than the
window and counts what is left; the whole sequence is atomic per category.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Protocol

import redis.asyncio as redis

from rxautomate.errors import RateLimitedError

logger = logging.getLogger(__name__)

KEY_PREFIX = "nhs:ratelimit"
OVERFLOW_KEY = f"{KEY_PREFIX}:events"
OVERFLOW_MAX_EVENTS = 1000
OVERFLOW_TTL_SECONDS = 60 * 60 * 24 * 7


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    category: str
    limit: int
    remaining: int
    retry_after: int = 0
    reset_at: int = 0

    @property
    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(max(0, self.remaining)),
            "X-RateLimit-Reset": str(self.reset_at),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class WindowStore(Protocol):
    async def hit(self, key: str, now_ms: int, window_ms: int) -> tuple[int, int]:
        """Record a hit and return (count in window, oldest timestamp in window)."""
        ...

    async def push_overflow(self, event: dict[str, Any]) -> None: ...

    async def recent_overflow(self, limit: int) -> list[dict[str, Any]]: ...

    async def health_check(self) -> bool: ...


# ZADD + prune + expire + count in one round trip, atomic on the Redis server
_SLIDING_WINDOW_LUA = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local member = ARGV[3]
redis.call('ZADD', key, now, member)
redis.call('ZREMRANGEBYSCORE', key, 0, now - window)
redis.call('PEXPIRE', key, window * 2)
local count = redis.call('ZCARD', key)
local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
local oldest_score = now
if oldest[2] then
    oldest_score = tonumber(oldest[2])
end
return {count, oldest_score}
"""


class RedisWindowStore:
    """Window store shared across processes through Redis sorted sets."""

    def __init__(self, client: redis.Redis) -> None:
        self._redis = client
        self._script = client.register_script(_SLIDING_WINDOW_LUA)

    @classmethod
    def from_url(cls, url: str) -> "RedisWindowStore":
        return cls(redis.from_url(url, decode_responses=True))

    async def hit(self, key: str, now_ms: int, window_ms: int) -> tuple[int, int]:
        member = f"{now_ms}-{uuid.uuid4().hex}"
        count, oldest = await self._script(keys=[key], args=[now_ms, window_ms, member])
        return int(count), int(oldest)

    async def push_overflow(self, event: dict[str, Any]) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.lpush(OVERFLOW_KEY, json.dumps(event))
            pipe.ltrim(OVERFLOW_KEY, 0, OVERFLOW_MAX_EVENTS - 1)
            pipe.expire(OVERFLOW_KEY, OVERFLOW_TTL_SECONDS)
            await pipe.execute()

    async def recent_overflow(self, limit: int) -> list[dict[str, Any]]:
        raw = await self._redis.lrange(OVERFLOW_KEY, 0, limit - 1)
        return [json.loads(item) for item in raw]

    async def health_check(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except Exception:
            return False

    async def close(self) -> None:
        await self._redis.aclose()


class InMemoryWindowStore:
    """Process-local window store for development and tests."""

    def __init__(self) -> None:
        self._windows: dict[str, deque[int]] = {}
        self._overflow: deque[dict[str, Any]] = deque(maxlen=OVERFLOW_MAX_EVENTS)
        self._lock = asyncio.Lock()

    async def hit(self, key: str, now_ms: int, window_ms: int) -> tuple[int, int]:
        async with self._lock:
            window = self._windows.setdefault(key, deque())
            window.append(now_ms)
            cutoff = now_ms - window_ms
            while window and window[0] <= cutoff:
                window.popleft()
            return len(window), window[0]

    async def push_overflow(self, event: dict[str, Any]) -> None:
        self._overflow.appendleft(event)

    async def recent_overflow(self, limit: int) -> list[dict[str, Any]]:
        return list(self._overflow)[:limit]

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        self._windows.clear()


class RateLimiter:
    def __init__(
        self,
        store: WindowStore,
        limits: dict[str, int],
        window_seconds: int = 60,
        bypass: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._limits = limits
        self._window_ms = window_seconds * 1000
        self._window_seconds = window_seconds
        self._bypass = bypass
        self._clock = clock

    def limit_for(self, category: str) -> int:
        return self._limits.get(category, self._limits["default"])

    async def check(self, category: str) -> RateDecision:
        limit = self.limit_for(category)
        now_ms = int(self._clock() * 1000)
        reset_at = math.ceil(now_ms / 1000 + self._window_seconds)

        if self._bypass:
            return RateDecision(True, category, limit, limit, reset_at=reset_at)

        try:
            count, oldest_ms = await self._store.hit(
                f"{KEY_PREFIX}:{category}", now_ms, self._window_ms
            )
        except Exception:
            # Fail open
            logger.exception("Rate limiter store unavailable for %s, allowing request", category)
            return RateDecision(True, category, limit, limit, reset_at=reset_at)

        if count <= limit:
            return RateDecision(True, category, limit, limit - count, reset_at=reset_at)

        retry_after = max(1, math.ceil((oldest_ms + self._window_ms - now_ms) / 1000))
        logger.warning(
            "Rate limit exceeded for NHS API %s (%d/%d in window)", category, count, limit
        )
        await self._record_overflow(category, count, now_ms)
        return RateDecision(
            False, category, limit, 0, retry_after=retry_after, reset_at=reset_at
        )

    async def enforce(self, category: str) -> RateDecision:
        decision = await self.check(category)
        if not decision.allowed:
            raise RateLimitedError(category, decision.limit, decision.retry_after)
        return decision

    async def recent_overflow(self, limit: int = 100) -> list[dict[str, Any]]:
        return await self._store.recent_overflow(limit)

    async def health_check(self) -> bool:
        return await self._store.health_check()

    async def _record_overflow(self, category: str, count: int, now_ms: int) -> None:
        try:
            await self._store.push_overflow(
                {"apiName": category, "requestCount": count, "timestamp": now_ms}
            )
        except Exception:
            logger.exception("Failed to record rate limit event for %s", category)
