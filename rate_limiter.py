import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Callable, Tuple

from fastapi import Depends, HTTPException, status

from auth import get_current_user
from auth_providers import UserRecord

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL")


class BaseRateLimiter(ABC):

    @abstractmethod
    def allow(self, key: str) -> bool:
        """Consume one request for ``key``; False when the key is over its limit."""


class TokenBucketRateLimiter(BaseRateLimiter):
    """
    Per-key token buckets, refilled continuously at ``capacity / window``.

    Buckets are kept in least-recently-used order. A bucket that has been idle
    long enough to refill completely is indistinguishable from a new one, so it
    is evicted; the map never holds more than ``max_keys`` buckets.
    """

    def __init__(self, capacity: int, window_seconds: float, max_keys: int = 10000,
                 clock: Callable[[], float] = time.monotonic):
        self.capacity = capacity
        self.window_seconds = window_seconds
        self.rate = capacity / window_seconds
        self.max_keys = max_keys
        self._clock = clock
        self._buckets: "OrderedDict[str, Tuple[float, float]]" = OrderedDict()
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        with self._lock:
            now = self._clock()
            self._evict(now)

            tokens, updated = self._buckets.pop(key, (self.capacity, now))
            tokens = min(self.capacity, tokens + (now - updated) * self.rate)
            allowed = tokens >= 1
            if allowed:
                tokens -= 1

            self._buckets[key] = (tokens, now)
            while len(self._buckets) > self.max_keys:
                self._buckets.popitem(last=False)
            return allowed

    def evict_idle(self) -> int:
        with self._lock:
            return self._evict(self._clock())

    def _evict(self, now: float) -> int:
        evicted = 0
        while self._buckets:
            key, (tokens, updated) = next(iter(self._buckets.items()))
            if tokens + (now - updated) * self.rate < self.capacity:
                break
            del self._buckets[key]
            evicted += 1
        return evicted

    def __len__(self):
        return len(self._buckets)


class RedisRateLimiter(BaseRateLimiter):
    """Sliding window in a Redis sorted set, shared by every server instance."""

    def __init__(self, redis_url: str, capacity: int, window_seconds: float, prefix: str = "ratelimit"):
        self.capacity = capacity
        self.window_seconds = window_seconds
        self.prefix = prefix
        self._redis_url = redis_url
        self._redis = None

    @property
    def redis(self):
        if self._redis is None:
            import redis
            self._redis = redis.from_url(self._redis_url)
        return self._redis

    def allow(self, key: str) -> bool:
        now = time.time()
        redis_key = f"{self.prefix}:{key}"
        member = f"{now:.6f}"

        try:
            pipe = self.redis.pipeline()
            pipe.zremrangebyscore(redis_key, 0, now - self.window_seconds)
            pipe.zcard(redis_key)
            pipe.zadd(redis_key, {member: now})
            pipe.expire(redis_key, int(self.window_seconds) + 1)
            current = pipe.execute()[1]

            if current >= self.capacity:
                self.redis.zrem(redis_key, member)
                return False
            return True
        except Exception as e:
            logger.warning("Redis rate limiter unavailable, allowing request: %s", e)
            return True


def build_rate_limiter(capacity: int, window_seconds: float, scope: str = "default") -> BaseRateLimiter:
    if REDIS_URL:
        logger.info("Using Redis rate limiter for %s", scope)
        return RedisRateLimiter(REDIS_URL, capacity, window_seconds, prefix=f"ratelimit:{scope}")
    return TokenBucketRateLimiter(capacity, window_seconds)


def rate_limit(capacity: int, window_seconds: float, scope: str = "admin"):
    """FastAPI dependency limiting each authenticated user to ``capacity`` requests per window."""
    limiter = build_rate_limiter(capacity, window_seconds, scope)

    def dependency(current_user: UserRecord = Depends(get_current_user)):
        if not limiter.allow(current_user.id):
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={
                    "message": "Too many requests",
                    "error": f"Rate limit exceeded for {scope} endpoints",
                },
            )
        return current_user

    dependency.limiter = limiter
    return dependency
