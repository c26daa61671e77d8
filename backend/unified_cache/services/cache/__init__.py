"""
Cache services: the read-through executor, response headers, CDN purge
and cache warming.
"""

from .cache_manager import UnifiedCache, build_unified_cache
from .cache_warmer import CacheWarmer
from .cdn_purge import CloudflareCachePurge, handle_purge_webhook
from .responses import CacheResponseFactory

__all__ = [
    "UnifiedCache",
    "build_unified_cache",
    "CacheWarmer",
    "CloudflareCachePurge",
    "handle_purge_webhook",
    "CacheResponseFactory",
]
