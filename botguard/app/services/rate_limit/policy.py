"""Degradation policy for the rate limiter.

Decides whether the engine runs at all and how store failures are turned
into decisions. The limiter moves through three states:

- ``DISABLED``: every check is bypassed without store I/O
- ``UNINITIALIZED``: the first check connects to the store and pings it
- ``ACTIVE``: checks are delegated to the router

Store errors never escape ``run``; they become either a ``DEGRADED``
(fail-open) or a ``SERVICE_UNAVAILABLE`` (fail-closed) decision.
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional

from botguard.app.core.config import Settings, settings as default_settings
from botguard.app.core.logging import get_logger
from botguard.app.core.redis_client import get_redis_connection
from botguard.app.exceptions import RateLimitStoreError, StoreOperationError, StoreUnavailableError

from .engine import TokenBucketEngine
from .models import AggregatedDecision, DecisionKind, ScopeConfig
from .router import LimitScopeRouter, build_scopes
from .store import CounterStore, RedisCounterStore

logger = get_logger(__name__)


class LimiterState(str, Enum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    DISABLED = "disabled"


def _default_store_factory() -> CounterStore:
    return RedisCounterStore(connection=get_redis_connection())


class DegradationPolicy:
    """Lazy initialization and store-failure handling around the router."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store_factory: Optional[Callable[[], CounterStore]] = None,
        scopes: Optional[Dict[str, ScopeConfig]] = None,
    ) -> None:
        self.settings = settings or default_settings
        self._store_factory = store_factory or _default_store_factory
        self._scopes = scopes if scopes is not None else build_scopes(self.settings)
        self._store: Optional[CounterStore] = None
        self._router: Optional[LimitScopeRouter] = None
        self._init_lock = asyncio.Lock()
        self._state = (
            LimiterState.UNINITIALIZED if self.settings.rate_limit_enabled else LimiterState.DISABLED
        )

    @property
    def state(self) -> LimiterState:
        return self._state

    @property
    def store(self) -> Optional[CounterStore]:
        return self._store

    @property
    def router(self) -> Optional[LimitScopeRouter]:
        return self._router

    @property
    def on_redis_error(self) -> str:
        return self.settings.rate_limit_on_redis_error

    async def ensure_initialized(self) -> LimiterState:
        """Run the one-shot initializer if needed and return the state.

        Concurrent first callers wait on the same lock; only one of them
        connects and pings the store.

        Raises:
            StoreUnavailableError: If the health check fails and the deployment
                requires Redis
        """
        if self._state is not LimiterState.UNINITIALIZED:
            return self._state

        async with self._init_lock:
            if self._state is not LimiterState.UNINITIALIZED:
                return self._state

            store = self._store_factory()
            try:
                healthy = await store.ping()
            except RateLimitStoreError as e:
                logger.warning(f"Redis health check raised: {e}")
                healthy = False

            # disable() or close() ran while the health check was pending
            if self._state is not LimiterState.UNINITIALIZED:
                logger.info("Rate limiting was disabled during initialization")
                await store.close()
                return self._state

            if not healthy:
                if self.settings.rate_limit_require_redis:
                    logger.error("Redis is required for rate limiting but not available")
                    raise StoreUnavailableError()
                logger.warning("Redis health check failed, rate limiting disabled")
                self._state = LimiterState.DISABLED
                return self._state

            self._store = store
            self._router = LimitScopeRouter(TokenBucketEngine(store), self._scopes)
            self._state = LimiterState.ACTIVE
            logger.info("Rate limiting initialized successfully")
            return self._state

    async def run(
        self, operation: Callable[[LimitScopeRouter], Awaitable[AggregatedDecision]]
    ) -> AggregatedDecision:
        """Run a router operation under the degradation policy."""
        if await self.ensure_initialized() is not LimiterState.ACTIVE:
            return AggregatedDecision.bypassed()

        router = self._router
        if router is None:
            return AggregatedDecision.bypassed()

        try:
            return await operation(router)
        except StoreOperationError as e:
            return self.on_store_error(e)

    def on_store_error(self, error: StoreOperationError) -> AggregatedDecision:
        """Classify a store failure according to ``on_redis_error``."""
        if self.on_redis_error == "reject":
            logger.error(f"Rate limiting failed and configured to reject: {error}")
            return AggregatedDecision(kind=DecisionKind.SERVICE_UNAVAILABLE, error=str(error))

        logger.warning(f"Rate limiting fail-open triggered: {error}")
        return AggregatedDecision(kind=DecisionKind.DEGRADED, error=str(error))

    def enable(self) -> None:
        """Re-enable checks; reconnects lazily if no store was ever set up."""
        if self._state is not LimiterState.DISABLED:
            return
        self._state = LimiterState.ACTIVE if self._router is not None else LimiterState.UNINITIALIZED

    def disable(self) -> None:
        """Stop checking. In-flight operations keep their router and finish.

        A pending first initialization sees the new state and does not
        activate.
        """
        self._state = LimiterState.DISABLED

    async def close(self) -> None:
        """Disable the limiter and release the store connection."""
        self._state = LimiterState.DISABLED
        store, self._store, self._router = self._store, None, None
        if store is not None:
            await store.close()
