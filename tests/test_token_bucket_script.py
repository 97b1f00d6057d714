"""Tests running TOKEN_BUCKET_SCRIPT against an in-process Redis.

Tests cover:
- Reply shape and remaining headroom
- Retry hints on denial
- Bucket expiry
- Refill persisted on denial
"""

import fakeredis
import pytest

from botguard.app.services.rate_limit import TOKEN_BUCKET_SCRIPT, RedisCounterStore

NOW = 1700000000


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def redis():
    """Fake async Redis with Lua scripting, isolated per test."""
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def store(redis):
    return RedisCounterStore(redis_client=redis, operation_timeout=1.0)


# ============================================================================
# Script
# ============================================================================

class TestTokenBucketScript:
    """The script must keep the shared bucket layout and reply shape."""

    @pytest.mark.asyncio
    async def test_raw_replies(self, redis):
        allowed = await redis.eval(TOKEN_BUCKET_SCRIPT, 1, "rate:chat:1", 1, 1, 1.0, NOW)
        denied = await redis.eval(TOKEN_BUCKET_SCRIPT, 1, "rate:chat:1", 1, 1, 1.0, NOW)

        assert allowed == [1, 1]
        assert denied == [0, 0, 1]

    @pytest.mark.asyncio
    async def test_per_chat_scenario(self, store, redis):
        """20 calls in the same second report remaining 1..20; the 21st waits 3 seconds."""
        remaining = []
        for _ in range(20):
            result = await store.consume("rate:chat:1", 20, 1, 20 / 60, NOW)
            assert result.allowed is True
            remaining.append(result.remaining)

        denied = await store.consume("rate:chat:1", 20, 1, 20 / 60, NOW)

        assert remaining == list(range(1, 21))
        assert denied.allowed is False
        assert denied.remaining == 0
        assert denied.retry_after == 3
        assert 59000 < await redis.pttl("rate:chat:1") <= 60000

    @pytest.mark.asyncio
    async def test_global_scenario(self, store, redis):
        for _ in range(30):
            assert (await store.consume("rate:global:default", 30, 1, 30.0, NOW)).allowed
        denied = await store.consume("rate:global:default", 30, 1, 30.0, NOW)

        assert denied.allowed is False
        assert denied.retry_after == 1
        assert 0 < await redis.pttl("rate:global:default") <= 1000

        assert (await store.consume("rate:global:default", 30, 1, 30.0, NOW + 1)).allowed

    @pytest.mark.asyncio
    async def test_denial_persists_refill(self, store, redis):
        for _ in range(4):
            await store.consume("bucket", 4, 1, 0.5, NOW)
        first = await store.consume("bucket", 4, 1, 0.5, NOW)
        second = await store.consume("bucket", 4, 1, 0.5, NOW + 1)

        assert first.retry_after == 2
        assert second.retry_after == 1

        stats = await store.read("bucket")
        assert stats.tokens == 0.5
        assert stats.last_refill == NOW + 1
        assert 7000 < await redis.pttl("bucket") <= 8000

    @pytest.mark.asyncio
    async def test_waiting_retry_after_allows(self, store):
        for _ in range(4):
            await store.consume("bucket", 4, 1, 0.5, NOW)
        denied = await store.consume("bucket", 4, 1, 0.5, NOW)

        result = await store.consume("bucket", 4, 1, 0.5, NOW + denied.retry_after)

        assert result.allowed is True

    @pytest.mark.asyncio
    async def test_clock_behind_last_refill_does_not_drain(self, store):
        await store.consume("bucket", 10, 1, 1.0, NOW)

        result = await store.consume("bucket", 10, 1, 1.0, NOW - 30)

        assert result.allowed is True
        assert result.remaining == 2
        assert (await store.read("bucket")).tokens == 8

    @pytest.mark.asyncio
    async def test_refill_is_capped_at_capacity(self, store):
        await store.consume("bucket", 5, 5, 1.0, NOW)

        result = await store.consume("bucket", 5, 1, 1.0, NOW + 3600)

        assert result.remaining == 1
        assert (await store.read("bucket")).tokens == 4

    @pytest.mark.asyncio
    async def test_reset_starts_full(self, store):
        await store.consume("bucket", 1, 1, 1.0, NOW)
        await store.delete("bucket")

        assert await store.read("bucket") is None
        assert (await store.consume("bucket", 1, 1, 1.0, NOW)).allowed
