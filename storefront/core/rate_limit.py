"""Fixed-window request throttling for public endpoints.

Two interchangeable backends: an in-process map for single-instance
deployments and tests, and Redis when several workers share the limit.
"""
from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable

import redis.asyncio as redis
from fastapi import Request, Response
from loguru import logger

from storefront.core.config import settings
from storefront.core.errors import RateLimited
from storefront.core.metrics import RATE_LIMIT_DECISIONS_TOTAL


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float

    def retry_after(self, now: float) -> int:
        return max(1, math.ceil(self.reset_at - now))


class RateLimiter:
    def __init__(self, max_requests: int, window_seconds: int, clock: Callable[[], float] = time.time):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock

    async def hit(self, key: str) -> RateLimitResult:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class InMemoryRateLimiter(RateLimiter):
    def __init__(self, max_requests: int, window_seconds: int, clock: Callable[[], float] = time.time):
        super().__init__(max_requests, window_seconds, clock)
        self._windows: dict[str, tuple[int, float]] = {}

    def _evict_expired(self, now: float) -> None:
        expired = [key for key, (_, reset_at) in self._windows.items() if reset_at <= now]
        for key in expired:
            del self._windows[key]

    async def hit(self, key: str) -> RateLimitResult:
        now = self.clock()
        self._evict_expired(now)
        count, reset_at = self._windows.get(key, (0, now + self.window_seconds))

        allowed = count < self.max_requests
        if allowed:
            count += 1
            self._windows[key] = (count, reset_at)
        return RateLimitResult(
            allowed=allowed,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - count),
            reset_at=reset_at,
        )

    def __len__(self) -> int:
        return len(self._windows)


class RedisRateLimiter(RateLimiter):
    def __init__(
        self,
        client: redis.Redis,
        max_requests: int,
        window_seconds: int,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(max_requests, window_seconds, clock)
        self._client = client

    @classmethod
    def from_url(cls, url: str, max_requests: int, window_seconds: int) -> RedisRateLimiter:
        client = redis.from_url(url, decode_responses=True, socket_connect_timeout=5, socket_timeout=5)
        return cls(client, max_requests, window_seconds)

    async def hit(self, key: str) -> RateLimitResult:
        now = self.clock()
        window_start = int(now // self.window_seconds) * self.window_seconds
        redis_key = f"ratelimit:{key}:{window_start}"
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.incr(redis_key)
            pipe.expire(redis_key, self.window_seconds)
            count, _ = await pipe.execute()
        count = int(count)
        return RateLimitResult(
            allowed=count <= self.max_requests,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - count),
            reset_at=float(window_start + self.window_seconds),
        )

    async def close(self) -> None:
        await self._client.close()


def build_rate_limiter() -> RateLimiter:
    if settings.RATE_LIMIT_REDIS_URL:
        logger.info("Using Redis rate limiter")
        return RedisRateLimiter.from_url(
            settings.RATE_LIMIT_REDIS_URL,
            settings.RATE_LIMIT_MAX_REQUESTS,
            settings.RATE_LIMIT_WINDOW_SECONDS,
        )
    logger.info("Using in-memory rate limiter")
    return InMemoryRateLimiter(settings.RATE_LIMIT_MAX_REQUESTS, settings.RATE_LIMIT_WINDOW_SECONDS)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "127.0.0.1"


def rate_limited(scope: str):
    async def _limit(request: Request, response: Response) -> None:
        limiter: RateLimiter = request.app.state.rate_limiter
        result = await limiter.hit(f"{scope}:{client_ip(request)}")
        if not result.allowed:
            RATE_LIMIT_DECISIONS_TOTAL.labels(
                service=settings.SERVICE_NAME,
                scope=scope,
                result="limited",
            ).inc()
            logger.warning(
                "Rate limit exceeded for scope='{scope}', ip='{ip}'",
                scope=scope,
                ip=client_ip(request),
            )
            raise RateLimited(retry_after=result.retry_after(limiter.clock()), limit=result.limit)

        RATE_LIMIT_DECISIONS_TOTAL.labels(
            service=settings.SERVICE_NAME,
            scope=scope,
            result="allowed",
        ).inc()
        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        response.headers["X-RateLimit-Reset"] = str(math.ceil(result.reset_at))

    return _limit
