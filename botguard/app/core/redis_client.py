"""Process-wide Redis connection for the rate limiter.

The client is created lazily on first use and shared by every task in the
process. redis-py's asyncio client is safe for concurrent use through its
connection pool.
"""

import asyncio
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from botguard.app.core.config import settings
from botguard.app.core.logging import get_logger

logger = get_logger(__name__)


class RedisConnection:
    """Lazily constructed Redis client with health check and disconnect.

    Timeouts are given in milliseconds to match the environment settings,
    except ``operation_timeout`` which is in seconds.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        connection_timeout: Optional[int] = None,
        max_retries: Optional[int] = None,
        idle_timeout: Optional[int] = None,
        operation_timeout: Optional[float] = None,
    ) -> None:
        self.url = url or settings.redis_url
        self.connection_timeout = connection_timeout or settings.redis_connection_timeout
        self.max_retries = settings.redis_max_retries if max_retries is None else max_retries
        self.idle_timeout = idle_timeout or settings.redis_idle_timeout
        self.operation_timeout = operation_timeout or settings.redis_operation_timeout
        self._client: Optional[Any] = None
        self._connected = False

    def get_client(self) -> Any:
        """Get or create the Redis client."""
        if self._client is None:
            self._client = aioredis.from_url(
                self.url,
                decode_responses=True,
                socket_connect_timeout=self.connection_timeout / 1000,
                socket_timeout=self.operation_timeout,
                health_check_interval=max(1, self.idle_timeout // 1000),
                retry=Retry(ExponentialBackoff(), self.max_retries),
                retry_on_error=[RedisConnectionError, RedisTimeoutError],
            )
            logger.info("Redis client created", extra={"redis_url": _redact(self.url)})
        return self._client

    async def health_check(self) -> bool:
        """Ping Redis; returns False instead of raising on failure."""
        try:
            client = self.get_client()
            await asyncio.wait_for(client.ping(), timeout=self.operation_timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            self._connected = False
            logger.warning(f"Redis health check failed: {e}")
            return False
        self._connected = True
        return True

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._client is None:
            return
        client, self._client = self._client, None
        self._connected = False
        try:
            await client.aclose()
            logger.info("Redis disconnected")
        except (RedisError, OSError) as e:
            logger.warning(f"Error closing Redis connection: {e}")


def _redact(url: str) -> str:
    """Strip credentials from a Redis URL for logging."""
    if "@" not in url:
        return url
    scheme, _, rest = url.partition("://")
    return f"{scheme}://***@{rest.split('@', 1)[1]}"


_redis_connection: Optional[RedisConnection] = None


def get_redis_connection() -> RedisConnection:
    """Get the global Redis connection holder."""
    global _redis_connection
    if _redis_connection is None:
        _redis_connection = RedisConnection()
    return _redis_connection


def reset_redis_connection() -> None:
    """Reset the global Redis connection holder.

    This is primarily useful for testing. It does not close the client.
    """
    global _redis_connection
    _redis_connection = None
