"""Tests for scope key derivation and decision aggregation."""

from unittest.mock import AsyncMock

import pytest

from botguard.app.exceptions import ConfigurationError
from botguard.app.services.rate_limit import (
    AggregatedDecision,
    DecisionKind,
    InMemoryCounterStore,
    LimitScopeRouter,
    RateLimitOutcome,
    TokenBucketEngine,
    build_scopes,
)


@pytest.fixture
def scopes(make_settings):
    return build_scopes(make_settings())


@pytest.fixture
def store():
    return InMemoryCounterStore(clock=lambda: 0)


@pytest.fixture
def router(store, scopes):
    return LimitScopeRouter(TokenBucketEngine(store), scopes)


def _outcome(scope, allowed, retry_after_ms=None):
    return RateLimitOutcome(
        scope=scope,
        key=f"rate:{scope}:x",
        allowed=allowed,
        remaining=0 if not allowed else 1,
        reset_at=0,
        retry_after_ms=retry_after_ms,
    )


class TestBuildScopes:

    def test_default_limits(self, scopes):
        assert scopes["chat"].capacity == 20
        assert scopes["chat"].refill_rate == pytest.approx(1 / 3)
        assert scopes["global"].capacity == 30
        assert scopes["global"].refill_rate == 30.0
        assert scopes["broadcast"].capacity == 15
        assert scopes["broadcast"].refill_rate == 0.25

    def test_custom_limits(self, make_settings):
        scopes = build_scopes(make_settings(rate_limit_per_chat_messages=5, rate_limit_per_chat_window=10000))
        assert scopes["chat"].capacity == 5
        assert scopes["chat"].refill_rate == 0.5

    def test_non_positive_limit_rejected(self, make_settings):
        settings = make_settings()
        settings.rate_limit_global_messages = 0
        with pytest.raises(ConfigurationError):
            build_scopes(settings)


class TestKeys:

    def test_chat_key(self, router):
        assert router.key_for("chat", chat_id=123) == "rate:chat:123"

    def test_negative_chat_id(self, router):
        assert router.key_for("chat", chat_id=-1001234567890) == "rate:chat:-1001234567890"

    def test_global_key_defaults(self, router):
        assert router.key_for("global") == "rate:global:default"
        assert router.key_for("global", bot_id=999) == "rate:global:999"

    def test_broadcast_key(self, router):
        assert router.key_for("broadcast") == "rate:broadcast:default"
        assert router.key_for("broadcast", bot_id="bot-a") == "rate:broadcast:bot-a"


class TestAggregation:

    def test_all_allowed(self):
        decision = AggregatedDecision.from_outcomes([_outcome("chat", True), _outcome("global", True)])
        assert decision.kind == DecisionKind.ALLOWED
        assert decision.allowed is True
        assert decision.retry_after_ms is None
        assert decision.denied_scope is None

    def test_one_denial_denies(self):
        decision = AggregatedDecision.from_outcomes(
            [_outcome("chat", True), _outcome("global", False, 1000)]
        )
        assert decision.kind == DecisionKind.RATE_LIMITED
        assert decision.allowed is False
        assert decision.denied_scope == "global"
        assert decision.retry_after_ms == 1000

    def test_largest_retry_hint_wins(self):
        decision = AggregatedDecision.from_outcomes(
            [_outcome("chat", False, 3000), _outcome("global", False, 1000)]
        )
        assert decision.retry_after_ms == 3000
        assert decision.denied_scopes == ["chat", "global"]

    def test_degraded_counts_as_allowed(self):
        assert AggregatedDecision(kind=DecisionKind.DEGRADED).allowed is True
        assert AggregatedDecision(kind=DecisionKind.SERVICE_UNAVAILABLE).allowed is False
        assert AggregatedDecision.bypassed().allowed is True

    def test_to_dict(self):
        decision = AggregatedDecision.from_outcomes([_outcome("chat", False, 2000)])
        data = decision.to_dict()
        assert data["kind"] == "rate_limited"
        assert data["allowed"] is False
        assert data["denied_scope"] == "chat"
        assert data["outcomes"]["chat"]["retry_after_ms"] == 2000


class TestInbound:

    @pytest.mark.asyncio
    async def test_consumes_chat_and_global(self, router, store):
        decision = await router.check_inbound(123, now=0)

        assert decision.kind == DecisionKind.ALLOWED
        assert set(decision.outcomes) == {"chat", "global"}
        assert decision.outcomes["chat"].key == "rate:chat:123"
        assert decision.outcomes["global"].key == "rate:global:default"
        assert await store.read("rate:chat:123") is not None
        assert await store.read("rate:global:default") is not None

    @pytest.mark.asyncio
    async def test_global_denial_reports_global_retry(self, router):
        """A fresh chat behind an exhausted global bucket is denied by global."""
        for chat_id in range(1, 31):
            assert (await router.check_inbound(chat_id, now=0)).allowed

        decision = await router.check_inbound(31, now=0)

        assert decision.kind == DecisionKind.RATE_LIMITED
        assert decision.outcomes["chat"].allowed is True
        assert decision.denied_scope == "global"
        assert decision.retry_after_ms == 1000

    @pytest.mark.asyncio
    async def test_denied_chat_still_consumes_global(self, router, store):
        for _ in range(20):
            await router.check_inbound(1, now=0)
        decision = await router.check_inbound(1, now=0)

        assert decision.denied_scope == "chat"
        assert decision.outcomes["global"].allowed is True
        stats = await store.read("rate:global:default")
        assert stats.tokens == 30 - 21

    @pytest.mark.asyncio
    async def test_chats_are_isolated(self, router):
        for _ in range(20):
            await router.check_inbound(1, now=0)
        assert not (await router.check_inbound(1, now=0)).allowed
        assert (await router.check_inbound(2, now=0)).allowed

    @pytest.mark.asyncio
    @pytest.mark.parametrize("chat_id", [None, 0])
    async def test_missing_chat_bypasses(self, scopes, chat_id):
        store = AsyncMock()
        router = LimitScopeRouter(TokenBucketEngine(store), scopes)

        decision = await router.check_inbound(chat_id)

        assert decision.kind == DecisionKind.BYPASSED
        store.consume.assert_not_called()


class TestOutbound:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["sendMessage", "editMessageText", "editMessageCaption"])
    async def test_sending_methods_consume_chat(self, router, store, method):
        decision = await router.check_outbound(method, 123, now=0)

        assert decision.kind == DecisionKind.ALLOWED
        assert set(decision.outcomes) == {"chat"}
        assert await store.read("rate:global:default") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["getMe", "sendChatAction", "answerCallbackQuery"])
    async def test_other_methods_bypass(self, router, store, method):
        decision = await router.check_outbound(method, 123, now=0)

        assert decision.kind == DecisionKind.BYPASSED
        assert await store.read("rate:chat:123") is None

    @pytest.mark.asyncio
    async def test_outbound_shares_inbound_chat_bucket(self, router):
        for _ in range(10):
            await router.check_inbound(123, now=0)
        for _ in range(10):
            await router.check_outbound("sendMessage", 123, now=0)

        assert not (await router.check_outbound("sendMessage", 123, now=0)).allowed


class TestBroadcast:

    @pytest.mark.asyncio
    async def test_broadcast_limit(self, router):
        for _ in range(15):
            assert (await router.check_broadcast(now=0)).allowed

        decision = await router.check_broadcast(now=0)

        assert decision.denied_scope == "broadcast"
        assert decision.outcomes["broadcast"].key == "rate:broadcast:default"
        assert decision.retry_after_ms == 4000
