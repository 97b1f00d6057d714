"""Core utilities for botguard."""

from botguard.app.core.config import Settings, settings
from botguard.app.core.logging import get_logger, setup_logging
from botguard.app.core.redis_client import (
    RedisConnection,
    get_redis_connection,
    reset_redis_connection,
)

__all__ = [
    "Settings",
    "settings",
    "get_logger",
    "setup_logging",
    "RedisConnection",
    "get_redis_connection",
    "reset_redis_connection",
]
