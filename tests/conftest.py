"""Shared fixtures for botguard tests."""

from dataclasses import dataclass, field
from typing import Any, List, Optional

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from botguard.app.core.config import Settings
from botguard.app.core.redis_client import reset_redis_connection
from botguard.app.exceptions import StoreOperationError
from botguard.app.services.rate_limit import InMemoryCounterStore, reset_rate_limit_service


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset global singletons before and after each test."""
    reset_rate_limit_service()
    reset_redis_connection()
    yield
    reset_rate_limit_service()
    reset_redis_connection()


@pytest.fixture
def make_settings():
    """Factory for Settings that ignores the environment's .env file."""
    def _make(**overrides: Any) -> Settings:
        values = {"rate_limit_enabled": True}
        values.update(overrides)
        return Settings(_env_file=None, **values)
    return _make


class FailingStore(InMemoryCounterStore):
    """Store whose data operations fail as if Redis dropped the connection."""

    def __init__(self, healthy: bool = True) -> None:
        super().__init__()
        self.healthy = healthy
        self.consume_calls = 0

    async def consume(self, key, capacity, tokens, refill_rate, now):
        self.consume_calls += 1
        raise StoreOperationError("consume", key, cause=RedisConnectionError("Connection refused"))

    async def read(self, key):
        raise StoreOperationError("read", key, cause=RedisConnectionError("Connection refused"))

    async def delete(self, key):
        raise StoreOperationError("delete", key, cause=RedisConnectionError("Connection refused"))

    async def ping(self) -> bool:
        return self.healthy


@pytest.fixture
def failing_store() -> FailingStore:
    return FailingStore()


@pytest.fixture
def unhealthy_store() -> FailingStore:
    return FailingStore(healthy=False)


@dataclass
class FakeUpdateContext:
    """Minimal bot update context recording what the gate sends back."""

    chat_id: Optional[int] = 12345
    user_id: Optional[int] = 67890
    bot_id: Optional[int] = 999
    is_callback_query: bool = False
    rate_limit: Any = None
    replies: List[str] = field(default_factory=list)
    callback_answers: List[tuple] = field(default_factory=list)

    async def reply(self, text: str) -> None:
        self.replies.append(text)

    async def answer_callback_query(self, text: str, show_alert: bool = False) -> None:
        self.callback_answers.append((text, show_alert))


@pytest.fixture
def make_context():
    def _make(**overrides: Any) -> FakeUpdateContext:
        return FakeUpdateContext(**overrides)
    return _make
