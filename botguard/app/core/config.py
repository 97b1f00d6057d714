import json
import logging
import re
from typing import Annotated, Any, Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

logger = logging.getLogger(__name__)


def _parse_admin_ids(raw: Any) -> list[int]:
    if raw is None:
        return []
    if isinstance(raw, (list, tuple, set)):
        return [int(v) for v in raw if str(v).strip()]
    if isinstance(raw, int):
        return [raw]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []

    # Prefer JSON, but accept "1, 2 3" style lists as well.
    if raw.startswith("["):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            return [int(v) for v in parsed]

    return [int(p) for p in re.split(r"[,\s]+", raw.strip("[]")) if p]


class Settings(BaseSettings):
    """Rate limiter settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    Windows and the Redis connection/idle timeouts are in milliseconds.
    """

    # Feature switch
    rate_limit_enabled: bool = False
    # If True, a failed Redis health check at startup aborts instead of disabling
    rate_limit_require_redis: bool = False

    # Redis connection
    redis_url: str = "redis://localhost:6379"
    redis_connection_timeout: int = 10000
    redis_max_retries: int = 5
    redis_idle_timeout: int = 30000
    redis_operation_timeout: float = 2.0  # seconds, per store call

    # Scope limits (messages per window)
    rate_limit_per_chat_messages: int = 20
    rate_limit_per_chat_window: int = 60000  # 1 minute
    rate_limit_global_messages: int = 30
    rate_limit_global_window: int = 1000  # 1 second
    rate_limit_broadcast_messages: int = 15
    rate_limit_broadcast_window: int = 60000  # 1 minute

    # Behavior
    rate_limit_on_limit: Literal["reject", "delay", "queue"] = "reject"
    rate_limit_on_redis_error: Literal["allow", "reject"] = "allow"
    rate_limit_queue_timeout: int = 5000  # max delay in ms

    # Users that bypass the inbound gate
    rate_limit_admin_ids: Annotated[list[int], NoDecode] = []

    # Admin API
    admin_token: str = ""

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator("rate_limit_admin_ids", mode="before")
    @classmethod
    def decode_admin_ids(cls, v: Any) -> list[int]:
        return _parse_admin_ids(v)

    @field_validator(
        "rate_limit_per_chat_messages",
        "rate_limit_per_chat_window",
        "rate_limit_global_messages",
        "rate_limit_global_window",
        "rate_limit_broadcast_messages",
        "rate_limit_broadcast_window",
    )
    @classmethod
    def validate_limit_positive(cls, v: int) -> int:
        """Validate scope message counts and windows are positive."""
        if v < 1:
            raise ValueError("Rate limit messages and windows must be at least 1")
        return v

    @field_validator(
        "redis_connection_timeout",
        "redis_idle_timeout",
        "redis_operation_timeout",
        "rate_limit_queue_timeout",
    )
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator("redis_max_retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("redis_max_retries must not be negative")
        return v

    @model_validator(mode="after")
    def disable_without_redis_url(self) -> "Settings":
        """Turn rate limiting off when it is enabled without a Redis URL."""
        if self.rate_limit_enabled and not self.redis_url.strip():
            logger.warning(
                "RATE_LIMIT_ENABLED is true but REDIS_URL is not configured, "
                "rate limiting will be disabled"
            )
            self.rate_limit_enabled = False
        return self

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
