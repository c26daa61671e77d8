"""
Unified Cache API - Main FastAPI Application

Exposes cache health, statistics, Prometheus metrics and invalidation
endpoints on top of the unified cache executor.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api.endpoints.cache import router as cache_router
from .api.endpoints.health import router as health_router
from .constants import APP_NAME
from .core.config import Settings, get_settings
from .domain.cache.exceptions import CacheException
from .services.cache.cache_manager import UnifiedCache, build_unified_cache
from .services.cache.cdn_purge import CloudflareCachePurge
from .services.cache.responses import CacheResponseFactory

# Configure structured logging
logger = structlog.get_logger()

ERROR_STATUS_CODES = {
    "CACHE_STORE_UNAVAILABLE": 503,
    "CACHE_CIRCUIT_OPEN": 503,
    "CACHE_INVALID_KEY": 400,
    "CACHE_SERIALIZATION_ERROR": 500,
    "CACHE_UNKNOWN_STRATEGY": 500,
    "CACHE_CONFIGURATION_ERROR": 500,
}


def create_app(
    settings: Optional[Settings] = None,
    cache: Optional[UnifiedCache] = None,
    cdn: Optional[CloudflareCachePurge] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Components passed in are attached to ``app.state`` immediately; the
    rest are built from settings during startup.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager: build and close cache components."""
        logging.basicConfig(level=settings.LOG_LEVEL)
        logger.info(
            "Starting unified cache API",
            environment=settings.ENVIRONMENT,
            build_id=settings.BUILD_ID,
            redis_enabled=settings.redis_enabled,
        )

        if getattr(app.state, "cache", None) is None:
            app.state.cache = build_unified_cache(settings)
        if getattr(app.state, "cdn", None) is None:
            app.state.cdn = CloudflareCachePurge.from_settings(settings)
        if not app.state.cdn.enabled:
            logger.warning("Cloudflare purge disabled, CDN credentials not set")

        yield

        logger.info("Shutting down unified cache API")
        try:
            await app.state.cache.close()
        except Exception as e:
            logger.error("Error during cache shutdown", error=str(e))

    app = FastAPI(
        title=f"{APP_NAME} API",
        description="Strategy driven caching with tag invalidation",
        version=settings.SERVICE_VERSION,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.cache = cache
    app.state.cdn = cdn
    app.state.responses = CacheResponseFactory(
        registry=cache.registry if cache is not None else None,
        build_id=settings.BUILD_ID,
        disable_caching=settings.is_development,
    )

    app.include_router(health_router)
    app.include_router(cache_router)

    @app.exception_handler(CacheException)
    async def cache_exception_handler(request: Request, exc: CacheException):
        status_code = ERROR_STATUS_CODES.get(exc.error_code, 500)
        logger.warning(
            "Cache error",
            path=request.url.path,
            error_code=exc.error_code,
            error=exc.message,
        )
        return app.state.responses.create_error_response(
            exc.message,
            status_code=status_code,
            details=exc.details,
            error_code=exc.error_code,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return app.state.responses.create_error_response(
            str(exc.detail), status_code=exc.status_code
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        return app.state.responses.create_error_response(
            "Invalid request", status_code=422, details={"errors": exc.errors()}
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=True,
        )
        return app.state.responses.create_error_response(
            "Internal server error", status_code=500
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
