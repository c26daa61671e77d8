"""
Health check endpoints for the unified cache API.
"""

import time
from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ...constants import get_current_timestamp
from ...core.config import Settings
from ...domain.cache.exceptions import CacheStoreUnavailableError
from ...services.cache.cache_manager import UnifiedCache
from ...services.cache.responses import CacheResponseFactory
from ..dependencies import get_app_settings, get_cache, get_response_factory

# Track process start time for uptime calculation
PROCESS_START_TIME = time.time()

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health_check(
    settings: Settings = Depends(get_app_settings),
    responses: CacheResponseFactory = Depends(get_response_factory),
) -> JSONResponse:
    """
    Basic health check endpoint.

    Returns a simple health status for load balancers and monitoring systems.
    """
    return responses.create_response(
        {
            "status": "healthy",
            "timestamp": get_current_timestamp().isoformat(),
            "service": settings.SERVICE_NAME,
            "version": settings.SERVICE_VERSION,
            "environment": settings.ENVIRONMENT,
            "uptime_seconds": int(time.time() - PROCESS_START_TIME),
        },
        "REALTIME",
    )


@router.get("/ready")
async def readiness_check(
    cache: UnifiedCache = Depends(get_cache),
    responses: CacheResponseFactory = Depends(get_response_factory),
) -> JSONResponse:
    """
    Readiness check endpoint.

    The cache store is reported but never makes the service unready:
    an unavailable store only means every read goes to the producer.
    """
    checks: Dict[str, Any] = {}
    try:
        available = await cache.store.ping()
        checks["cache_store"] = {
            "status": "healthy" if available else "degraded",
            "backend": type(cache.store).__name__,
        }
    except CacheStoreUnavailableError as e:
        checks["cache_store"] = {"status": "degraded", "message": e.message}

    return responses.create_response(
        {
            "status": "ready",
            "timestamp": get_current_timestamp().isoformat(),
            "build_id": cache.build_id,
            "checks": checks,
        },
        "USER_PRIVATE",
    )
