"""API endpoints package for botguard."""

from botguard.app.api.rate_limit import health_router, router as rate_limit_router

__all__ = [
    "health_router",
    "rate_limit_router",
]
