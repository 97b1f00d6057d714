"""Shared counter stores for token buckets.

A store exposes exactly four capabilities: an atomic consume, a raw read, a
delete and a liveness check. Store failures surface as ``StoreOperationError``.
"""

import asyncio
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from redis.exceptions import RedisError

from botguard.app.core.logging import get_logger
from botguard.app.core.redis_client import RedisConnection
from botguard.app.exceptions import StoreOperationError

from .engine import refill_and_consume
from .models import BucketStats, ConsumeResult
from .redis_lua import TOKEN_BUCKET_SCRIPT

logger = get_logger(__name__)


class CounterStore(ABC):
    """Abstract base class for bucket stores."""

    @abstractmethod
    async def consume(
        self, key: str, capacity: int, tokens: int, refill_rate: float, now: int
    ) -> ConsumeResult:
        """Atomically refill and consume tokens from the bucket at ``key``.

        Implementations must perform the whole read-refill-compare-write
        sequence as one indivisible operation.
        """
        pass

    @abstractmethod
    async def read(self, key: str) -> Optional[BucketStats]:
        """Return the stored bucket state, or None if the key is absent."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Liveness check with no side effects."""
        pass

    async def close(self) -> None:
        """Release store resources."""
        pass


class RedisCounterStore(CounterStore):
    """Redis-backed store using a Lua script for atomic consume.

    Bucket records are hashes with fields ``tokens`` and ``lastRefill``.
    """

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        connection: Optional[RedisConnection] = None,
        operation_timeout: Optional[float] = None,
    ) -> None:
        """Initialize the Redis store.

        Args:
            redis_client: Optional Redis client instance (takes priority)
            connection: Connection holder used to create the client lazily
            operation_timeout: Upper bound in seconds for each store call
        """
        self._redis = redis_client
        self._connection = connection
        if operation_timeout is None:
            operation_timeout = connection.operation_timeout if connection else 2.0
        self._operation_timeout = operation_timeout

    def _get_redis(self) -> Any:
        if self._redis is not None:
            return self._redis
        if self._connection is None:
            raise StoreOperationError("connect", cause=RuntimeError("no Redis connection configured"))
        return self._connection.get_client()

    async def _run(self, operation: str, key: Optional[str], call: Callable[[Any], Awaitable[Any]]) -> Any:
        """Run one Redis call bounded by the operation timeout."""
        try:
            client = self._get_redis()
            return await asyncio.wait_for(call(client), timeout=self._operation_timeout)
        except asyncio.TimeoutError as e:
            raise StoreOperationError(operation, key, cause=e) from e
        except (RedisError, OSError) as e:
            raise StoreOperationError(operation, key, cause=e) from e

    async def consume(
        self, key: str, capacity: int, tokens: int, refill_rate: float, now: int
    ) -> ConsumeResult:
        result = await self._run(
            "consume",
            key,
            lambda r: r.eval(
                TOKEN_BUCKET_SCRIPT,
                1,  # Number of keys
                key,  # KEYS[1]
                capacity,  # ARGV[1]
                tokens,  # ARGV[2]
                refill_rate,  # ARGV[3]
                now,  # ARGV[4]
            ),
        )
        try:
            allowed = int(result[0]) == 1
            remaining = int(result[1])
            retry_after = int(result[2]) if len(result) > 2 else None
        except (TypeError, ValueError, IndexError) as e:
            raise StoreOperationError("consume", key, cause=e) from e
        return ConsumeResult(allowed=allowed, remaining=remaining, retry_after=retry_after)

    async def read(self, key: str) -> Optional[BucketStats]:
        tokens, last_refill = await self._run(
            "read", key, lambda r: r.hmget(key, "tokens", "lastRefill")
        )
        if tokens is None and last_refill is None:
            return None
        try:
            return BucketStats(
                key=key,
                tokens=float(tokens or 0),
                last_refill=int(float(last_refill or 0)),
            )
        except (TypeError, ValueError) as e:
            raise StoreOperationError("read", key, cause=e) from e

    async def delete(self, key: str) -> None:
        await self._run("delete", key, lambda r: r.delete(key))

    async def ping(self) -> bool:
        if self._redis is None and self._connection is not None:
            return await self._connection.health_check()
        try:
            await self._run("ping", None, lambda r: r.ping())
        except StoreOperationError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False
        return True

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()


@dataclass
class _BucketEntry:
    """In-memory bucket record with expiry."""

    tokens: float
    last_refill: int
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class InMemoryCounterStore(CounterStore):
    """Single-process bucket store.

    Consume is atomic within one event loop via an asyncio lock. Buckets are
    not shared between processes, so this is suitable for tests and
    single-instance deployments only.

    Expiry during consume is judged against the caller's ``now``; reads use
    ``clock``.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._data: Dict[str, _BucketEntry] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def consume(
        self, key: str, capacity: int, tokens: int, refill_rate: float, now: int
    ) -> ConsumeResult:
        async with self._lock:
            entry = self._data.get(key)
            if entry is not None and entry.is_expired(now):
                entry = None
            new_tokens, result = refill_and_consume(
                entry.tokens if entry else None,
                entry.last_refill if entry else None,
                capacity,
                refill_rate,
                tokens,
                now,
            )
            self._data[key] = _BucketEntry(
                tokens=new_tokens,
                last_refill=now,
                expires_at=now + math.ceil(capacity / refill_rate),
            )
            return result

    async def read(self, key: str) -> Optional[BucketStats]:
        async with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._data[key]
                return None
            return BucketStats(key=key, tokens=entry.tokens, last_refill=entry.last_refill)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def ping(self) -> bool:
        return True
