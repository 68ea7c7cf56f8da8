"""Health check endpoints."""

import time

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from kb_assistant.database.connection import check_connection
from kb_assistant.dependencies import get_services
from kb_assistant.utils.logging import get_logger

logger = get_logger("health")

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check(request: Request):
    """
    Health check endpoint.

    Returns basic service health status. This endpoint does not check
    external dependencies and will always return healthy if the service is running.
    """
    logger.debug("Health check requested")
    settings = request.app.state.settings
    started_at = getattr(request.app.state, "started_at", None)
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "environment": settings.environment.value,
        "uptime_seconds": round(time.time() - started_at, 1) if started_at else 0.0,
    }


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check(request: Request):
    """
    Readiness check endpoint.

    Checks:
    - Database connectivity (critical)
    - Embedding cache size
    - Job worker state

    Returns 503 if the database is unavailable.
    """
    logger.debug("Readiness check requested")
    services = get_services(request)
    settings = services.settings

    db_connected = await check_connection(services.engine)
    checks = {
        "database": "connected" if db_connected else "disconnected",
        "embedding_cache": services.cache.stats(),
        "job_worker": "running" if services.job_queue.is_running else "stopped",
        "embeddings_configured": settings.embedding.is_configured,
    }

    if not db_connected:
        logger.warning(f"Readiness check failed: {checks}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "app_name": settings.app_name,
                "environment": settings.environment.value,
                "checks": checks,
            },
        )

    logger.debug("Readiness check passed")
    return {
        "status": "ready",
        "app_name": settings.app_name,
        "environment": settings.environment.value,
        "checks": checks,
    }
