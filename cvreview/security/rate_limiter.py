"""Redis-backed fixed-window rate limiter for booking attempts.

Booking creation is the only write an applicant can repeat freely, so it is
throttled per actor before any database work.

Usage:
    from cvreview.security.rate_limiter import rate_limiter

    allowed, retry_after = await rate_limiter.check(f"rate:{actor_id}:booking", limit=10, window=60)
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from cvreview.db.engine import redis_client

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window rate limiter backed by Redis INCR + EXPIRE."""

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    async def check(self, key: str, limit: int, window: int) -> tuple[bool, int]:
        """Count one request against `key`.

        Returns:
            (allowed, retry_after): retry_after is seconds until the window
            resets, 0 when allowed.
        """
        try:
            count = await self._redis.incr(key)
            if count == 1:
                await self._redis.expire(key, window)

            if count > limit:
                ttl = await self._redis.ttl(key)
                return False, max(ttl, 1)

            return True, 0
        except RedisError:
            logger.exception("Rate limiter Redis error for key %s", key)
            # Fail open: Redis being down must not block bookings
            return True, 0


# Module-level singleton
rate_limiter = RateLimiter(redis_client)
