"""
Cache management endpoints.

Statistics, Prometheus metrics, manual purges and the purge webhook.
Purge routes require ``X-Cache-Admin-Token`` when an admin token is configured.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from ...services.cache.cache_manager import UnifiedCache
from ...services.cache.cdn_purge import CloudflareCachePurge, handle_purge_webhook
from ...services.cache.responses import CacheResponseFactory
from ..dependencies import (
    get_cache,
    get_cdn_purge,
    get_response_factory,
    require_admin_token,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/cache", tags=["cache"])


class PurgeRequest(BaseModel):
    """Tags, keys and key prefixes to purge from the application cache."""

    tags: List[str] = Field(default_factory=list, description="Tags to purge")
    keys: List[str] = Field(default_factory=list, description="Keys to purge")
    prefixes: List[str] = Field(
        default_factory=list, description="Key prefixes to purge, e.g. companies:"
    )


class WebhookRequest(BaseModel):
    """Content or deployment event triggering a purge."""

    action: str = Field(..., description="deploy, event_created, purge_all, ...")


@router.get("/stats")
async def cache_stats(
    cache: UnifiedCache = Depends(get_cache),
    responses: CacheResponseFactory = Depends(get_response_factory),
) -> JSONResponse:
    """Hit/miss counters, store statistics and configured strategies."""
    return responses.create_response(await cache.stats(), "USER_PRIVATE")


@router.get("/metrics")
async def cache_metrics(cache: UnifiedCache = Depends(get_cache)) -> Response:
    """Prometheus exposition of the cache counters."""
    return Response(
        content=cache.metrics.export(),
        media_type=cache.metrics.content_type,
        headers={"Cache-Control": "no-store"},
    )


@router.post("/purge", dependencies=[Depends(require_admin_token)])
async def purge_cache(
    request: PurgeRequest,
    cache: UnifiedCache = Depends(get_cache),
    responses: CacheResponseFactory = Depends(get_response_factory),
) -> JSONResponse:
    """Purge entries by tag, by key and by key prefix."""
    if not (request.tags or request.keys or request.prefixes):
        return responses.create_error_response(
            "Provide at least one tag, key or prefix", status_code=422
        )

    purged_by_tags = await cache.purge_by_tags(request.tags) if request.tags else 0
    purged_keys = 0
    for key in request.keys:
        if await cache.purge_by_key(key):
            purged_keys += 1
    purged_by_prefix = 0
    for prefix in request.prefixes:
        purged_by_prefix += await cache.purge_by_prefix(prefix)

    logger.info(
        "Manual cache purge",
        extra={
            "tags": request.tags,
            "keys": len(request.keys),
            "prefixes": request.prefixes,
        },
    )
    return responses.create_response(
        {
            "success": True,
            "purged_by_tags": purged_by_tags,
            "purged_keys": purged_keys,
            "purged_by_prefix": purged_by_prefix,
        },
        "USER_PRIVATE",
    )


@router.post("/webhook", dependencies=[Depends(require_admin_token)])
async def purge_webhook(
    request: WebhookRequest,
    cache: UnifiedCache = Depends(get_cache),
    cdn: CloudflareCachePurge = Depends(get_cdn_purge),
    responses: CacheResponseFactory = Depends(get_response_factory),
) -> JSONResponse:
    """Purge CDN and application cache for a deployment or content event."""
    result = await handle_purge_webhook(request.action, cache=cache, cdn=cdn)
    if result["message"] == "Unknown action":
        return responses.create_error_response(
            "Unknown action", status_code=400, details={"action": request.action}
        )
    return responses.create_response(
        result, "USER_PRIVATE", status_code=200 if result["success"] else 502
    )
