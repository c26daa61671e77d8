"""
In-Memory Cache Repository Implementation

Process-local cache store and tag index. Used when no shared Redis store
is configured and as the default for tests.

Entries are held JSON encoded, like in Redis, so every hit returns its own
copy of the value and unserializable values are refused on both backends.
"""

import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from ...domain.cache.entities import CacheEntry
from ...domain.cache.exceptions import CacheSerializationError
from ...domain.cache.repository_interfaces import CacheStore, TagIndexRepository

logger = logging.getLogger(__name__)


class InMemoryCacheStore(CacheStore):
    """
    LRU-bounded in-memory cache store.

    Expired entries are dropped lazily on access. Every operation runs
    without suspension points, so no lock is needed on a single event loop.

    Parameters:
        max_size: Maximum number of entries before the least recently used
            one is evicted.
        clock: Time source in epoch seconds; injectable for tests.
        on_evict: Called with the key of every entry removed by expiry or
            LRU eviction, so the tag index can drop it.
    """

    def __init__(
        self,
        max_size: int = 1000,
        clock: Callable[[], float] = time.time,
        on_evict: Optional[Callable[[str], None]] = None,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._max_size = max_size
        self._clock = clock
        self._on_evict = on_evict
        self._data: "OrderedDict[str, Tuple[str, float]]" = OrderedDict()
        self._evictions = 0

    async def get(self, key: str) -> Optional[CacheEntry]:
        item = self._data.get(key)
        if item is None:
            return None

        payload, drop_at = item
        if self._clock() >= drop_at:
            self._evict(key)
            return None

        self._data.move_to_end(key)
        return CacheEntry.from_json(payload)

    async def set(self, entry: CacheEntry, ttl_seconds: int) -> None:
        try:
            payload = entry.to_json()
        except (TypeError, ValueError) as e:
            raise CacheSerializationError(entry.key, original_error=e) from e

        drop_at = self._clock() + max(1, ttl_seconds)

        if entry.key in self._data:
            self._data[entry.key] = (payload, drop_at)
            self._data.move_to_end(entry.key)
            return

        while len(self._data) >= self._max_size:
            oldest_key = next(iter(self._data))
            self._evict(oldest_key)

        self._data[entry.key] = (payload, drop_at)

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def delete_many(self, keys: Iterable[str]) -> int:
        removed = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                removed += 1
        return removed

    async def delete_by_prefix(self, prefix: str) -> List[str]:
        matched = [key for key in self._data if key.startswith(prefix)]
        for key in matched:
            del self._data[key]
        return matched

    async def clear(self) -> None:
        self._data.clear()

    async def size(self) -> int:
        return len(self._data)

    async def ping(self) -> bool:
        return True

    async def get_stats(self) -> Dict[str, Any]:
        return {
            "backend": "memory",
            "size": len(self._data),
            "max_size": self._max_size,
            "evictions": self._evictions,
        }

    def _evict(self, key: str) -> None:
        self._data.pop(key, None)
        self._evictions += 1
        if self._on_evict is not None:
            try:
                self._on_evict(key)
            except Exception as e:
                logger.warning(f"Eviction hook failed for {key}: {e}")

    def __repr__(self) -> str:
        return f"InMemoryCacheStore(max_size={self._max_size}, entries={len(self._data)})"


class InMemoryTagIndex(TagIndexRepository):
    """Tag index kept in two dictionaries: tag -> keys and key -> tags."""

    def __init__(self) -> None:
        self._keys_by_tag: Dict[str, Set[str]] = {}
        self._tags_by_key: Dict[str, Set[str]] = {}

    async def associate(
        self, key: str, tags: Iterable[str], ttl_seconds: Optional[int] = None
    ) -> None:
        tag_set = self._tags_by_key.setdefault(key, set())
        for tag in tags:
            self._keys_by_tag.setdefault(tag, set()).add(key)
            tag_set.add(tag)

    async def keys_for_tags(self, tags: Iterable[str]) -> Set[str]:
        keys: Set[str] = set()
        for tag in tags:
            keys.update(self._keys_by_tag.get(tag, ()))
        return keys

    async def tags_for_key(self, key: str) -> Set[str]:
        return set(self._tags_by_key.get(key, ()))

    async def remove_keys(self, keys: Iterable[str]) -> None:
        for key in keys:
            self.discard_key(key)

    async def clear(self) -> None:
        self._keys_by_tag.clear()
        self._tags_by_key.clear()

    def discard_key(self, key: str) -> None:
        """Synchronous removal, usable as the memory store eviction hook."""
        for tag in self._tags_by_key.pop(key, ()):
            members = self._keys_by_tag.get(tag)
            if members is None:
                continue
            members.discard(key)
            if not members:
                del self._keys_by_tag[tag]

    @property
    def tag_count(self) -> int:
        return len(self._keys_by_tag)
