"""Services package for botguard."""

from botguard.app.services.rate_limit import (
    AggregatedDecision,
    DecisionKind,
    RateLimitService,
    get_rate_limit_service,
    reset_rate_limit_service,
)

__all__ = [
    "AggregatedDecision",
    "DecisionKind",
    "RateLimitService",
    "get_rate_limit_service",
    "reset_rate_limit_service",
]
