"""
Cache repository implementations.
"""

from .cache_repository import RedisCacheStore, RedisDistributedLock, RedisTagIndex
from .memory_cache_repository import InMemoryCacheStore, InMemoryTagIndex

__all__ = [
    "InMemoryCacheStore",
    "InMemoryTagIndex",
    "RedisCacheStore",
    "RedisDistributedLock",
    "RedisTagIndex",
]
