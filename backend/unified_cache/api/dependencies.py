"""
FastAPI dependencies resolving the cache components attached to the app.
"""

import hmac
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from ..constants import HEADER_ADMIN_TOKEN
from ..core.config import Settings
from ..services.cache.cache_manager import UnifiedCache
from ..services.cache.cdn_purge import CloudflareCachePurge
from ..services.cache.responses import CacheResponseFactory


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_cache(request: Request) -> UnifiedCache:
    return request.app.state.cache


def get_response_factory(request: Request) -> CacheResponseFactory:
    return request.app.state.responses


def get_cdn_purge(request: Request) -> CloudflareCachePurge:
    return request.app.state.cdn


async def require_admin_token(
    admin_token: Optional[str] = Header(
        None,
        alias=HEADER_ADMIN_TOKEN,
        description="Admin token for cache invalidation endpoints",
    ),
    settings: Settings = Depends(get_app_settings),
) -> None:
    """Reject the request unless it carries ``CACHE_ADMIN_TOKEN``, when one is set."""
    expected = settings.CACHE_ADMIN_TOKEN
    if not expected:
        return
    if not admin_token or not hmac.compare_digest(admin_token, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing cache admin token",
        )
