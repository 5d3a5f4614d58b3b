"""
Fixed-window rate limiting.

RedisRateLimiter is shared across instances and fails open when Redis is
down. InMemoryRateLimiter keeps counters in process memory and is only
correct for a single instance (dev, tests).
"""
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache

import redis
from starlette.requests import Request

from eacon.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    count: int
    retry_after: int


class RateLimiter(ABC):
    @abstractmethod
    def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        """Count one request against key and say whether it is within limit."""

    @abstractmethod
    def reset(self, key: str) -> None:
        ...


class RedisRateLimiter(RateLimiter):
    def __init__(self, client: redis.Redis, prefix: str = "rl") -> None:
        self._client = client
        self._prefix = prefix

    def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        full_key = f"{self._prefix}:{key}"
        try:
            current = self._client.incr(full_key)
            if current == 1:
                self._client.expire(full_key, window_seconds)
            ttl = self._client.ttl(full_key)
        except redis.RedisError as e:
            logger.warning("rate_limit_redis_error", extra={"error": str(e)})
            return RateLimitDecision(allowed=True, count=0, retry_after=0)  # fail open
        retry_after = ttl if ttl and ttl > 0 else window_seconds
        return RateLimitDecision(allowed=current <= limit, count=current, retry_after=retry_after)

    def reset(self, key: str) -> None:
        try:
            self._client.delete(f"{self._prefix}:{key}")
        except redis.RedisError as e:
            logger.warning("rate_limit_redis_error", extra={"error": str(e)})


class InMemoryRateLimiter(RateLimiter):
    def __init__(self, clock=time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, tuple[float, int]] = {}

    def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        now = self._clock()
        with self._lock:
            started, count = self._windows.get(key, (now, 0))
            if now - started >= window_seconds:
                started, count = now, 0
            count += 1
            self._windows[key] = (started, count)
        retry_after = max(1, int(started + window_seconds - now))
        return RateLimitDecision(allowed=count <= limit, count=count, retry_after=retry_after)

    def reset(self, key: str) -> None:
        with self._lock:
            self._windows.pop(key, None)


@lru_cache(maxsize=1)
def get_rate_limiter() -> RateLimiter:
    if settings.rate_limit_backend == "memory":
        return InMemoryRateLimiter()
    return RedisRateLimiter(redis.Redis.from_url(settings.redis_url, decode_responses=True))


def get_client_ip(request: Request) -> str:
    """Client IP (supports X-Forwarded-For from proxy)."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded and settings.app_env == "production":
        trusted = settings.trusted_proxy_ips_set
        if trusted and request.client and request.client.host in trusted:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "127.0.0.1"
