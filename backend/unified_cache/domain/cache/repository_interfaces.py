"""
Cache Repository Interfaces

Abstract repository interfaces following the DDD Repository pattern.
Defines contracts for the cache store, the tag index and the
cross-instance single-flight lock.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Set

from .entities import CacheEntry


class CacheStore(ABC):
    """
    Abstract key-value store for cache entries.

    Implementations raise ``CacheStoreUnavailableError`` when the backing
    store cannot be reached; callers decide how to degrade.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[CacheEntry]:
        """Get entry by key, or None if absent."""
        pass

    @abstractmethod
    async def set(self, entry: CacheEntry, ttl_seconds: int) -> None:
        """Store entry, keeping it for at most ``ttl_seconds``."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete entry by key. Returns True if it existed."""
        pass

    @abstractmethod
    async def delete_many(self, keys: Iterable[str]) -> int:
        """Delete several entries. Returns the number removed."""
        pass

    @abstractmethod
    async def delete_by_prefix(self, prefix: str) -> List[str]:
        """Delete every entry whose key starts with ``prefix``. Returns the removed keys."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Remove every entry owned by this store."""
        pass

    @abstractmethod
    async def size(self) -> int:
        """Number of entries currently held."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Check store availability."""
        pass

    async def get_stats(self) -> Dict[str, Any]:
        """Backend specific statistics."""
        return {"backend": type(self).__name__, "size": await self.size()}


class TagIndexRepository(ABC):
    """
    Abstract secondary index from tag to cache keys.

    Keeps a reverse key -> tags mapping so that removing a key
    clears it from every tag that references it.
    """

    @abstractmethod
    async def associate(
        self, key: str, tags: Iterable[str], ttl_seconds: Optional[int] = None
    ) -> None:
        """Record ``key`` under every tag in ``tags``."""
        pass

    @abstractmethod
    async def keys_for_tags(self, tags: Iterable[str]) -> Set[str]:
        """Union of keys associated with any of the tags."""
        pass

    @abstractmethod
    async def tags_for_key(self, key: str) -> Set[str]:
        """Tags currently referencing ``key``."""
        pass

    @abstractmethod
    async def remove_keys(self, keys: Iterable[str]) -> None:
        """Remove keys from every tag set and drop their reverse mapping."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Drop the whole index."""
        pass


class DistributedLock(ABC):
    """
    Cross-instance mutex keyed by cache key.

    Used to extend single-flight beyond one process. Acquisition is
    non-blocking; callers that lose fall back to polling the store.
    """

    @abstractmethod
    async def acquire(self, key: str, ttl_ms: int) -> Optional[Any]:
        """Try to take the lock. Returns a handle, or None if held elsewhere."""
        pass

    @abstractmethod
    async def release(self, handle: Any) -> None:
        """Release a lock previously returned by ``acquire``."""
        pass
