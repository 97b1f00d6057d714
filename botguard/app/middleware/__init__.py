"""Middleware package for botguard."""

from botguard.app.middleware.auth import require_admin
from botguard.app.middleware.rate_limit import (
    AdminBypassGate,
    OutboundRateLimiter,
    RateLimitGate,
    ServiceUnavailableError,
    create_rate_limit_transformer,
)

__all__ = [
    "require_admin",
    "AdminBypassGate",
    "OutboundRateLimiter",
    "RateLimitGate",
    "ServiceUnavailableError",
    "create_rate_limit_transformer",
]
