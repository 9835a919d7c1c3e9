"""Tests for the Redis rate limiter."""

from __future__ import annotations

import pytest

from stewardbot.security.rate_limiter import RateLimiter


class TestRateLimiter:
    @pytest.mark.asyncio()
    async def test_allows_up_to_limit(self, redis):
        limiter = RateLimiter(redis)
        results = [await limiter.check("rate:1:msg", limit=3, window=60) for _ in range(3)]
        assert results == [(True, 0)] * 3
        assert redis.ttls["rate:1:msg"] == 60

    @pytest.mark.asyncio()
    async def test_blocks_over_limit(self, redis):
        limiter = RateLimiter(redis)
        for _ in range(2):
            await limiter.check("rate:1:msg", limit=2, window=30)

        allowed, retry_after = await limiter.check("rate:1:msg", limit=2, window=30)
        assert allowed is False
        assert retry_after == 30

    @pytest.mark.asyncio()
    async def test_fails_open_when_redis_is_down(self, redis):
        redis.fail_writes = True
        assert await RateLimiter(redis).check("rate:1:msg", limit=1, window=60) == (True, 0)
