"""Redis-backed fixed-window rate limiter for inbound chat messages.

Uses INCR + EXPIRE. Checked in the channel handler before any session or
database work.

Usage:
    limiter = RateLimiter(redis_client)
    allowed, retry_after = await limiter.check("rate:6591234567:msg", limit=30, window=60)
"""

from __future__ import annotations

import logging
from typing import Any

from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window rate limiter backed by Redis INCR + EXPIRE."""

    def __init__(self, redis: Any) -> None:
        self._redis = redis

    async def check(self, key: str, limit: int, window: int) -> tuple[bool, int]:
        """Count one request against ``key``.

        Returns:
            (allowed, retry_after): retry_after is the seconds left in the
            window when the limit is exceeded, 0 otherwise.
        """
        try:
            count = await self._redis.incr(key)
            if count == 1:
                await self._redis.expire(key, window)

            if count > limit:
                ttl = await self._redis.ttl(key)
                return False, max(ttl, 1)
            return True, 0
        except (RedisError, OSError):
            # Fail open
            logger.exception("Rate limiter Redis error for key %s", key)
            return True, 0
