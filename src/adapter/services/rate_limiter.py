"""Rate Limiter Implementations

Sliding-window limiters backing the RateLimiter interface:
- RedisRateLimiter: sorted-set window log shared across processes
- InMemoryRateLimiter: per-process fallback when no Redis URL is configured
"""

import asyncio
import logging
import math
import time
import uuid
from collections import deque
from typing import Callable, Deque, Dict, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from src.app.services.rate_limiter import RateLimiter, RateLimitConfig, RateLimitResult

logger = logging.getLogger(__name__)

SWEEP_INTERVAL_SECONDS = 300


class RedisRateLimiter(RateLimiter):
    """
    Redis sliding-window log

    Each request is a member of a sorted set scored by its arrival time.
    Expired members are trimmed, the window is counted and the request is
    recorded in one pipeline. Redis failures fail open.
    """

    def __init__(
        self,
        client: aioredis.Redis,
        key_prefix: str = "billing:rl",
        clock: Callable[[], float] = time.time,
    ):
        self.redis = client
        self.key_prefix = key_prefix
        self._clock = clock

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisRateLimiter":
        return cls(aioredis.from_url(url, decode_responses=True), **kwargs)

    async def check_rate_limit(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        now = self._clock()
        window_start = now - config.window_seconds
        redis_key = f"{self.key_prefix}:{key}"
        member = f"{now}:{uuid.uuid4().hex[:8]}"

        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(redis_key, 0, window_start)
                pipe.zcard(redis_key)
                pipe.zadd(redis_key, {member: now})
                pipe.expire(redis_key, config.window_seconds + 1)
                _, current_count, _, _ = await pipe.execute()

            if current_count >= config.max_requests:
                # Rejected requests do not consume a slot
                await self.redis.zrem(redis_key, member)
                oldest = await self.redis.zrange(redis_key, 0, 0, withscores=True)
                reset_at = (oldest[0][1] if oldest else now) + config.window_seconds
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=reset_at,
                    retry_after_seconds=max(1, math.ceil(reset_at - now)),
                )

            return RateLimitResult(
                allowed=True,
                remaining=max(0, config.max_requests - current_count - 1),
                reset_at=now + config.window_seconds,
            )

        except RedisError as e:
            logger.error(f"Rate limit check failed for key {key}, allowing request: {e}")
            return RateLimitResult(
                allowed=True,
                remaining=config.max_requests,
                reset_at=now + config.window_seconds,
            )

    async def close(self) -> None:
        await self.redis.aclose()


class InMemoryRateLimiter(RateLimiter):
    """
    Single-process sliding-window log

    Keeps a deque of request timestamps per key. Keys whose log has fully
    expired are swept every SWEEP_INTERVAL_SECONDS.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._store: Dict[str, Deque[float]] = {}
        self._lock = asyncio.Lock()
        self._last_sweep = clock()
        self._max_window = 0

    async def check_rate_limit(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        async with self._lock:
            now = self._clock()
            self._max_window = max(self._max_window, config.window_seconds)
            if now - self._last_sweep >= SWEEP_INTERVAL_SECONDS:
                self._sweep(now)

            window_start = now - config.window_seconds
            log = self._store.setdefault(key, deque())
            while log and log[0] <= window_start:
                log.popleft()

            if len(log) >= config.max_requests:
                reset_at = log[0] + config.window_seconds
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=reset_at,
                    retry_after_seconds=max(1, math.ceil(reset_at - now)),
                )

            log.append(now)
            return RateLimitResult(
                allowed=True,
                remaining=config.max_requests - len(log),
                reset_at=log[0] + config.window_seconds,
            )

    def _sweep(self, now: float) -> None:
        cutoff = now - self._max_window
        expired = [key for key, log in self._store.items() if not log or log[-1] <= cutoff]
        for key in expired:
            del self._store[key]
        self._last_sweep = now
        if expired:
            logger.debug(f"Swept {len(expired)} idle rate limit keys")


def create_rate_limiter(redis_url: Optional[str]) -> RateLimiter:
    """Redis-backed limiter when a URL is configured, in-memory otherwise"""
    if redis_url:
        logger.info("Using Redis rate limiter")
        return RedisRateLimiter.from_url(redis_url)
    return InMemoryRateLimiter()
