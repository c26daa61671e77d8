"""
Cache Domain Services

Business logic for tag-based cache invalidation.
Orchestrates the cache store and the tag index so that every purge removes
entries from the store and from all tag sets that reference them.
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Set, Union

from opentelemetry import trace

from .repository_interfaces import CacheStore, TagIndexRepository
from .value_objects import CacheTag

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

InvalidationCallback = Callable[[List[str], List[str]], Union[None, Awaitable[None]]]


class TagInvalidationService:
    """
    Domain service for tag and key based invalidation.

    Purges are idempotent: unknown tags and missing keys are no-ops.
    Store errors propagate so callers can tell a purge did not commit.
    """

    def __init__(self, store: CacheStore, tag_index: TagIndexRepository):
        self.store = store
        self.tag_index = tag_index
        self._callbacks: List[InvalidationCallback] = []

    def register_callback(self, callback: InvalidationCallback) -> None:
        """Register a callback notified with ``(keys, tags)`` after each purge."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: InvalidationCallback) -> None:
        self._callbacks = [cb for cb in self._callbacks if cb is not callback]

    async def associate(
        self, key: str, tags: Iterable[Any], ttl_seconds: Optional[int] = None
    ) -> None:
        """Record ``key`` under each tag."""
        normalized = CacheTag.normalize(tags)
        if not normalized:
            return
        await self.tag_index.associate(key, normalized, ttl_seconds=ttl_seconds)

    async def purge_by_tags(self, tags: Iterable[Any]) -> List[str]:
        """
        Purge every entry associated with any of the given tags.

        Args:
            tags: Tags to purge

        Returns:
            Keys that were purged (empty when no key matched)
        """
        normalized = list(CacheTag.normalize(tags))

        with tracer.start_as_current_span("cache.purge_by_tags") as span:
            span.set_attribute("cache.tags", ",".join(normalized))

            if not normalized:
                return []

            keys: Set[str] = await self.tag_index.keys_for_tags(normalized)
            if keys:
                await self.store.delete_many(keys)
                await self.tag_index.remove_keys(keys)

            purged = sorted(keys)
            span.set_attribute("cache.purged_count", len(purged))
            logger.info(
                f"Purged {len(purged)} cache entries by tags",
                extra={"tags": normalized, "count": len(purged)},
            )

            await self._notify(purged, normalized)
            return purged

    async def purge_by_key(self, key: str) -> bool:
        """
        Purge a single entry directly, independent of its tags.

        Returns:
            True if the entry existed in the store
        """
        with tracer.start_as_current_span("cache.purge_by_key") as span:
            span.set_attribute("cache.key", key)

            existed = await self.store.delete(key)
            await self.tag_index.remove_keys([key])

            logger.debug(
                "Purged cache key",
                extra={"key": key, "existed": existed},
            )

            await self._notify([key], [])
            return existed

    async def purge_by_prefix(self, prefix: str) -> List[str]:
        """
        Purge every entry whose key starts with ``prefix``, e.g. ``companies:``.

        Returns:
            Keys that were purged
        """
        with tracer.start_as_current_span("cache.purge_by_prefix") as span:
            span.set_attribute("cache.prefix", prefix)

            keys = await self.store.delete_by_prefix(prefix)
            if keys:
                await self.tag_index.remove_keys(keys)

            purged = sorted(keys)
            span.set_attribute("cache.purged_count", len(purged))
            logger.info(
                f"Purged {len(purged)} cache entries by prefix",
                extra={"prefix": prefix, "count": len(purged)},
            )

            await self._notify(purged, [])
            return purged

    async def _notify(self, keys: List[str], tags: List[str]) -> None:
        """Run invalidation callbacks; their failures never fail the purge."""
        for callback in list(self._callbacks):
            try:
                result = callback(keys, tags)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Cache invalidation callback failed: {e}",
                    extra={
                        "callback": getattr(callback, "__name__", repr(callback)),
                        "keys": keys[:20],
                        "tags": tags,
                    },
                )
