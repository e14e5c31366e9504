"""Fixed-window rate limiting behind a pluggable counter store.

The store lives on ``app.state.rate_limit_store`` and is chosen by the app
factory: Redis when ``REDIS_URL`` is set, an in-process dictionary otherwise.
"""

import logging
import time
from threading import Lock
from typing import Protocol

import redis
from fastapi import HTTPException, Request, status

logger = logging.getLogger(__name__)


class RateLimitStore(Protocol):
    def increment(self, key: str, window_seconds: int) -> tuple[int, int]:
        """Count one hit on ``key``; return (hits in window, seconds until reset)."""
        ...


class InMemoryRateLimitStore:
    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._lock = Lock()
        self._entries: dict[str, tuple[int, float]] = {}

    def increment(self, key: str, window_seconds: int) -> tuple[int, int]:
        now = self._clock()
        with self._lock:
            count, reset_at = self._entries.get(key, (0, 0.0))
            if now >= reset_at:
                count, reset_at = 0, now + window_seconds
            count += 1
            self._entries[key] = (count, reset_at)
            self._purge(now)
        return count, max(0, int(reset_at - now))

    def _purge(self, now: float) -> None:
        expired = [key for key, (_, reset_at) in self._entries.items() if now >= reset_at]
        for key in expired:
            del self._entries[key]


class RedisRateLimitStore:
    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> 'RedisRateLimitStore':
        return cls(redis.from_url(url, decode_responses=True, socket_connect_timeout=5, socket_timeout=5))

    def increment(self, key: str, window_seconds: int) -> tuple[int, int]:
        pipe = self._client.pipeline()
        pipe.incr(key)
        pipe.ttl(key)
        count, ttl = pipe.execute()
        if ttl < 0:
            # first hit in the window
            self._client.expire(key, window_seconds)
            ttl = window_seconds
        return int(count), max(0, int(ttl))


def build_rate_limit_store(redis_url: str | None) -> RateLimitStore:
    if redis_url:
        logger.info('Using Redis for rate limiting')
        return RedisRateLimitStore.from_url(redis_url)
    return InMemoryRateLimitStore()


def client_ip(request: Request) -> str:
    forwarded = request.headers.get('X-Forwarded-For')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.client.host if request.client else 'unknown'


def create_rate_limiter(limit: int, window_seconds: int, key_prefix: str = 'rate_limit'):
    """Build a FastAPI dependency enforcing ``limit`` hits per client IP."""

    def rate_limiter(request: Request) -> None:
        store: RateLimitStore = request.app.state.rate_limit_store
        key = f'{key_prefix}:{client_ip(request)}'
        try:
            count, ttl = store.increment(key, window_seconds)
        except redis.RedisError as exc:
            logger.error('Rate limit store unavailable: %s', exc)
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail='Rate limiting service temporarily unavailable',
            ) from exc

        if count > limit:
            logger.warning('Rate limit exceeded for %s (%s/%s)', key, count, limit)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=f'Rate limit exceeded. Maximum {limit} requests per {window_seconds} seconds.',
                headers={'Retry-After': str(ttl)},
            )

    return rate_limiter
