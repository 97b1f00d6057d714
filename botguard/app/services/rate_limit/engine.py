"""Token bucket engine.

Owns the numeric and timing semantics of a bucket. The atomic update itself
runs inside the counter store (a Lua script for Redis, a lock for the
in-memory store); both apply ``refill_and_consume``.
"""

import math
import time
from typing import TYPE_CHECKING, Optional, Tuple

from .models import ConsumeResult, RateLimitOutcome, ScopeConfig

if TYPE_CHECKING:
    from .store import CounterStore


def current_timestamp() -> int:
    """Wall clock in whole seconds, as stored in ``lastRefill``."""
    return int(time.time())


def refill_and_consume(
    tokens: Optional[float],
    last_refill: Optional[float],
    capacity: int,
    refill_rate: float,
    requested: int,
    now: int,
) -> Tuple[float, ConsumeResult]:
    """Apply one refill-then-consume step to a bucket.

    Args:
        tokens: Stored token count, or None for a missing bucket
        last_refill: Stored refill timestamp, or None for a missing bucket
        capacity: Bucket capacity
        refill_rate: Tokens per second
        requested: Tokens to consume
        now: Current time in seconds

    Returns:
        Tuple of (tokens to persist, consume result). The bucket is persisted
        with ``now`` as its refill timestamp whether or not it allowed.
    """
    if tokens is None:
        tokens = float(capacity)
    if last_refill is None:
        last_refill = now

    elapsed = max(0, now - last_refill)
    tokens = min(capacity, tokens + elapsed * refill_rate)

    if tokens >= requested:
        tokens -= requested
        return tokens, ConsumeResult(allowed=True, remaining=int(capacity - tokens))

    retry_after = math.ceil((requested - tokens) / refill_rate)
    return tokens, ConsumeResult(allowed=False, remaining=0, retry_after=retry_after)


class TokenBucketEngine:
    """Evaluates token buckets against a shared counter store.

    The engine never retries and never interprets store failures; a
    ``StoreOperationError`` raised by the store propagates to the caller.
    """

    def __init__(self, store: "CounterStore") -> None:
        self.store = store

    async def consume(
        self,
        key: str,
        capacity: int,
        refill_rate: float,
        tokens: int = 1,
        now: Optional[int] = None,
    ) -> ConsumeResult:
        """Atomically refill and consume ``tokens`` from the bucket at ``key``."""
        if now is None:
            now = current_timestamp()
        return await self.store.consume(key, capacity, tokens, refill_rate, now)

    async def evaluate(
        self,
        scope: ScopeConfig,
        identifier: object,
        tokens: int = 1,
        now: Optional[int] = None,
    ) -> RateLimitOutcome:
        """Consume from one scope's bucket and describe the outcome."""
        if now is None:
            now = current_timestamp()
        key = scope.key_for(identifier)
        result = await self.consume(key, scope.capacity, scope.refill_rate, tokens, now)
        return RateLimitOutcome(
            scope=scope.name,
            key=key,
            allowed=result.allowed,
            remaining=result.remaining,
            reset_at=now + scope.capacity / scope.refill_rate,
            retry_after_ms=result.retry_after * 1000 if result.retry_after is not None else None,
        )
