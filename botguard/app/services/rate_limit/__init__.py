"""Distributed rate limiting using Redis for multi-instance bot deployments.

This package provides atomic token bucket operations using a Redis Lua
script, composed over per-chat, global and broadcast scopes, with a
fail-open/fail-closed policy when Redis is unavailable.
"""

from .engine import TokenBucketEngine, current_timestamp, refill_and_consume
from .models import (
    AggregatedDecision,
    BucketStats,
    ConsumeResult,
    DecisionKind,
    RateLimitOutcome,
    ScopeConfig,
)
from .policy import DegradationPolicy, LimiterState
from .redis_lua import TOKEN_BUCKET_SCRIPT
from .router import (
    BROADCAST_SCOPE,
    CHAT_SCOPE,
    GLOBAL_SCOPE,
    OUTBOUND_METHODS,
    LimitScopeRouter,
    build_scopes,
)
from .service import (
    RateLimitService,
    get_rate_limit_service,
    reset_rate_limit_service,
)
from .store import CounterStore, InMemoryCounterStore, RedisCounterStore

__all__ = [
    # Models
    "AggregatedDecision",
    "BucketStats",
    "ConsumeResult",
    "DecisionKind",
    "RateLimitOutcome",
    "ScopeConfig",
    # Engine
    "TOKEN_BUCKET_SCRIPT",
    "TokenBucketEngine",
    "current_timestamp",
    "refill_and_consume",
    # Stores
    "CounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    # Router
    "BROADCAST_SCOPE",
    "CHAT_SCOPE",
    "GLOBAL_SCOPE",
    "OUTBOUND_METHODS",
    "LimitScopeRouter",
    "build_scopes",
    # Policy
    "DegradationPolicy",
    "LimiterState",
    # Service
    "RateLimitService",
    "get_rate_limit_service",
    "reset_rate_limit_service",
]
