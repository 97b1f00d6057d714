"""Custom exceptions for botguard.

A rate limit denial is not an exception: it is returned as an
``AggregatedDecision``. These exceptions cover configuration and store faults.
"""


class BotGuardException(Exception):
    """Base class for botguard exceptions with HTTP status code."""
    status_code: int = 500

    def __init__(self, message: str = "Rate limiter error"):
        self.message = message
        super().__init__(message)


class ConfigurationError(BotGuardException):
    """Raised when rate limit settings are invalid at startup."""
    status_code = 500

    def __init__(self, detail: str = "Invalid rate limit configuration"):
        super().__init__(detail)


class RateLimitStoreError(BotGuardException):
    """Base class for failures of the shared counter store.

    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503

    def __init__(self, message: str = "Rate limit store error", key: str | None = None):
        self.key = key
        super().__init__(message)


class StoreUnavailableError(RateLimitStoreError):
    """Raised when the store cannot be reached during initialization."""

    def __init__(self, message: str = "Redis is required for rate limiting but not available"):
        super().__init__(message)


class StoreOperationError(RateLimitStoreError):
    """Raised when a consume, read or delete call fails mid-operation."""

    def __init__(self, operation: str, key: str | None = None, cause: Exception | None = None):
        self.operation = operation
        self.cause = cause
        message = f"Rate limit store {operation} failed"
        if key:
            message += f" for {key}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message, key=key)


class ServiceUnavailableError(BotGuardException):
    """Raised for outgoing calls when the store failed and the deployment fails closed."""
    status_code = 503

    def __init__(self, detail: str = "Rate limiting unavailable; outgoing call refused"):
        super().__init__(detail)
