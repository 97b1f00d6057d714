"""Admin endpoints for inspecting and resetting rate limit buckets."""

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from botguard.app.core.logging import get_logger
from botguard.app.exceptions import StoreOperationError
from botguard.app.middleware.auth import require_admin
from botguard.app.services.rate_limit import LimiterState, RateLimitService, get_rate_limit_service

logger = get_logger(__name__)

router = APIRouter(
    prefix="/admin/rate-limit",
    tags=["admin-rate-limit"],
    dependencies=[Depends(require_admin)],
)


def get_service() -> RateLimitService:
    """Dependency returning the global rate limit service."""
    return get_rate_limit_service()


@router.get("/stats")
async def rate_limit_stats(
    chat_id: Optional[int] = None,
    bot_id: Optional[str] = None,
    service: RateLimitService = Depends(get_service),
) -> Any:
    """Get chat and global bucket statistics."""
    stats = await service.get_stats(chat_id=chat_id, bot_id=bot_id)
    if "error" in stats:
        return JSONResponse(status_code=503, content=stats)
    return {
        name: value.to_dict() if hasattr(value, "to_dict") else value
        for name, value in stats.items()
    }


@router.get("/buckets/{key}")
async def bucket_stats(key: str, service: RateLimitService = Depends(get_service)) -> dict[str, Any]:
    """Get the raw state of one bucket."""
    if await service.policy.ensure_initialized() is not LimiterState.ACTIVE:
        return {"enabled": False}
    try:
        stats = await service.get_bucket_stats(key)
    except StoreOperationError as e:
        logger.error(f"Bucket read failed: {e}")
        raise HTTPException(status_code=503, detail={"enabled": False, "error": e.message})
    if stats is None:
        raise HTTPException(status_code=404, detail=f"No bucket stored for {key}")
    return {"enabled": True, **stats.to_dict()}


@router.delete("/buckets/{key}")
async def reset_bucket(key: str, service: RateLimitService = Depends(get_service)) -> dict[str, Any]:
    """Delete one bucket so its scope starts full again."""
    if await service.policy.ensure_initialized() is not LimiterState.ACTIVE:
        return {"enabled": False, "key": key, "reset": False}
    if not await service.reset(key):
        raise HTTPException(status_code=503, detail="Rate limit store unavailable")
    return {"enabled": True, "key": key, "reset": True}


health_router = APIRouter()


@health_router.get("/health/rate-limit")
async def rate_limit_health(service: RateLimitService = Depends(get_service)) -> dict[str, Any]:
    """Report the limiter state and whether its store answers a ping."""
    state = await service.policy.ensure_initialized()
    health: dict[str, Any] = {"status": "ok", "state": state.value}
    store = service.policy.store
    if state is not LimiterState.ACTIVE or store is None:
        health["status"] = "disabled"
        return health
    healthy = await store.ping()
    health["store"] = "ok" if healthy else "error"
    if not healthy:
        health["status"] = "degraded"
    return health
