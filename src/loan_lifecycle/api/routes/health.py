"""Health check endpoint.

Verifies the record-store webhooks answer and, when the idempotency guard
is enabled, that Redis responds. Used by container healthchecks and load
balancers.
"""

from __future__ import annotations

import httpx
from fastapi import APIRouter, Depends, Request
from redis.exceptions import RedisError

from loan_lifecycle.api.deps import get_app_settings
from loan_lifecycle.config import APP_VERSION, Settings
from loan_lifecycle.logging_config import get_logger
from loan_lifecycle.schemas.health import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check(
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> HealthResponse:
    """Check connectivity to the record store and Redis."""
    record_store_status = "unknown"
    redis_status = "disabled"

    # Check record store
    try:
        client = request.app.state.record_store
        ok = await client.ping(settings.loan_applications_get_path)
        record_store_status = "healthy" if ok else "unhealthy: upstream 5xx"
    except httpx.HTTPError as exc:
        record_store_status = f"unhealthy: {exc}"
        logger.error("health.record_store_check_failed", error=str(exc))

    # Check Redis
    redis = getattr(request.app.state, "redis", None)
    if redis is not None:
        try:
            await redis.ping()
            redis_status = "healthy"
        except RedisError as exc:
            redis_status = f"unhealthy: {exc}"
            logger.error("health.redis_check_failed", error=str(exc))

    healthy = record_store_status == "healthy" and redis_status in ("healthy", "disabled")

    return HealthResponse(
        status="ok" if healthy else "degraded",
        version=APP_VERSION,
        record_store=record_store_status,
        redis=redis_status,
    )
