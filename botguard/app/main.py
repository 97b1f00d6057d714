from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from botguard.app.api import health_router, rate_limit_router
from botguard.app.core.config import settings
from botguard.app.core.logging import get_logger, setup_logging
from botguard.app.exceptions import BotGuardException
from botguard.app.services.rate_limit import get_rate_limit_service


def create_app() -> FastAPI:
    """Create and configure the FastAPI application exposing the admin API.

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()
    logger = get_logger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Initialize the rate limiter on startup and close Redis on shutdown."""
        service = get_rate_limit_service()
        # Fails here, not on the first update, when Redis is required but down
        state = await service.policy.ensure_initialized()
        logger.info(
            "Application startup complete",
            extra={"rate_limit_state": state.value, "rate_limit_enabled": settings.rate_limit_enabled},
        )

        yield

        await service.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="botguard",
        description="Distributed rate limiting for chat bots",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(health_router)
    app.include_router(rate_limit_router)

    @app.exception_handler(BotGuardException)
    async def botguard_exception_handler(request: Request, exc: BotGuardException) -> JSONResponse:
        """Handle botguard exceptions with their HTTP status code."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.__class__.__name__, "message": exc.message},
        )

    return app


app = create_app()
