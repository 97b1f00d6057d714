"""Rate limit service for multi-instance bot deployments.

Facade over the degradation policy, scope router and token bucket engine.
All instances sharing one Redis agree on the remaining budget of each scope.

Redis key format:
- rate:chat:{chat_id} - Per-chat bucket
- rate:global:{bot_id|default} - Global bucket
- rate:broadcast:{bot_id|default} - Broadcast bucket
"""

from typing import Any, Callable, Dict, Optional

from botguard.app.core.config import Settings, settings as default_settings
from botguard.app.core.logging import get_log_context, get_logger
from botguard.app.exceptions import StoreOperationError

from .models import AggregatedDecision, BucketStats
from .policy import DegradationPolicy, LimiterState
from .router import BROADCAST_SCOPE, CHAT_SCOPE, GLOBAL_SCOPE, build_scopes, scope_identifier
from .store import CounterStore

logger = get_logger(__name__)


class RateLimitService:
    """Service for distributed rate limiting.

    Provides:
    - Inbound checks (per-chat and global scopes)
    - Outbound checks for message-sending calls (per-chat scope)
    - On-demand broadcast checks
    - Bucket statistics and reset
    - Runtime enable/disable
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[CounterStore] = None,
        store_factory: Optional[Callable[[], CounterStore]] = None,
    ) -> None:
        """Initialize the rate limit service.

        Args:
            settings: Settings to use (defaults to the global settings)
            store: Counter store to use instead of Redis
            store_factory: Factory called on first use to build the store
        """
        self.settings = settings or default_settings
        if store is not None and store_factory is None:
            store_factory = lambda: store  # noqa: E731
        self.scopes = build_scopes(self.settings)
        self.policy = DegradationPolicy(self.settings, store_factory, self.scopes)

    def scope_key(self, scope: str, chat_id: Any = None, bot_id: Any = None) -> str:
        return self.scopes[scope].key_for(scope_identifier(scope, chat_id, bot_id))

    async def check_inbound(
        self, chat_id: Any, bot_id: Any = None, tokens: int = 1, now: Optional[int] = None
    ) -> AggregatedDecision:
        """Check per-chat and global limits for an incoming update."""
        if not chat_id:
            return AggregatedDecision.bypassed()
        return await self.policy.run(lambda r: r.check_inbound(chat_id, bot_id, tokens, now))

    async def check_outbound(
        self, method: str, chat_id: Any, tokens: int = 1, now: Optional[int] = None
    ) -> AggregatedDecision:
        """Check the per-chat limit for an outgoing API call."""
        if not chat_id:
            return AggregatedDecision.bypassed()
        return await self.policy.run(lambda r: r.check_outbound(method, chat_id, tokens, now))

    async def check_broadcast(
        self, bot_id: Any = None, tokens: int = 1, now: Optional[int] = None
    ) -> AggregatedDecision:
        """Check the broadcast limit for a bulk send."""
        return await self.policy.run(lambda r: r.check_broadcast(bot_id, tokens, now))

    async def get_bucket_stats(self, key: str) -> Optional[BucketStats]:
        """Read the raw state of one bucket.

        Returns:
            BucketStats, or None if the limiter is inactive or the key is absent

        Raises:
            StoreOperationError: If the read fails
        """
        if await self.policy.ensure_initialized() is not LimiterState.ACTIVE:
            return None
        store = self.policy.store
        if store is None:
            return None
        return await store.read(key)

    async def get_stats(self, chat_id: Any = None, bot_id: Any = None) -> Dict[str, Any]:
        """Get current statistics of the chat and global buckets for monitoring."""
        if await self.policy.ensure_initialized() is not LimiterState.ACTIVE:
            return {"enabled": False}

        stats: Dict[str, Any] = {"enabled": True}
        try:
            if chat_id:
                stats[CHAT_SCOPE] = await self.get_bucket_stats(self.scope_key(CHAT_SCOPE, chat_id))
            stats[GLOBAL_SCOPE] = await self.get_bucket_stats(self.scope_key(GLOBAL_SCOPE, bot_id=bot_id))
        except StoreOperationError as e:
            logger.error(
                f"Failed to get rate limit stats: {e}",
                extra=get_log_context(chat_id=chat_id, bot_id=bot_id),
            )
            return {"enabled": False, "error": e.message}
        return stats

    async def reset(self, key: str) -> bool:
        """Delete a bucket so its scope starts full again.

        Returns:
            True if the delete was issued, False if inactive or it failed
        """
        if await self.policy.ensure_initialized() is not LimiterState.ACTIVE:
            return False
        store = self.policy.store
        if store is None:
            return False
        try:
            await store.delete(key)
        except StoreOperationError as e:
            logger.error(f"Failed to reset rate limit: {e}", extra=get_log_context(rate_limit_key=key))
            return False
        logger.info("Rate limit bucket reset", extra=get_log_context(rate_limit_key=key))
        return True

    async def reset_scope(self, scope: str, chat_id: Any = None, bot_id: Any = None) -> bool:
        return await self.reset(self.scope_key(scope, chat_id, bot_id))

    def is_enabled(self) -> bool:
        return self.policy.state is not LimiterState.DISABLED

    def set_enabled(self, enabled: bool) -> None:
        """Enable or disable rate limiting at runtime."""
        if enabled:
            self.policy.enable()
        else:
            self.policy.disable()
        logger.info(f"Rate limiting {'enabled' if enabled else 'disabled'}")

    async def close(self) -> None:
        """Disable the service and close the store connection."""
        await self.policy.close()


_rate_limit_service: Optional[RateLimitService] = None


def get_rate_limit_service(
    settings: Optional[Settings] = None,
    store: Optional[CounterStore] = None,
) -> RateLimitService:
    """Get the global rate limit service instance."""
    global _rate_limit_service
    if _rate_limit_service is None:
        _rate_limit_service = RateLimitService(settings=settings, store=store)
    return _rate_limit_service


def reset_rate_limit_service() -> None:
    """Reset the global rate limit service instance."""
    global _rate_limit_service
    _rate_limit_service = None


__all__ = [
    "RateLimitService",
    "get_rate_limit_service",
    "reset_rate_limit_service",
    "BROADCAST_SCOPE",
    "CHAT_SCOPE",
    "GLOBAL_SCOPE",
]
