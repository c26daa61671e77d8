"""
Redis Cache Repository Implementation

Shared cache store, tag index and single-flight lock backed by Redis.
Every key is namespaced under the configured prefix:

    {prefix}:entry:{key}      JSON encoded cache entry
    {prefix}:tag:{tag}        set of keys carrying the tag
    {prefix}:keytags:{key}    set of tags carried by the key
    {prefix}:lock:{key}       single-flight lock
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Set

from redis.asyncio import Redis
from redis.exceptions import LockError

from ...domain.cache.entities import CacheEntry
from ...domain.cache.exceptions import CacheSerializationError
from ...domain.cache.repository_interfaces import (
    CacheStore,
    DistributedLock,
    TagIndexRepository,
)
from ..redis.connection_factory import RedisConnectionFactory

logger = logging.getLogger(__name__)

SCAN_BATCH_SIZE = 500

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def _escape_glob(value: str) -> str:
    """Escape SCAN MATCH wildcards so ``value`` is matched literally."""
    return _GLOB_SPECIAL.sub(r"\\\1", value)


async def _delete_matching(client: Redis, pattern: str) -> int:
    """Delete every key matching ``pattern`` using SCAN, in batches."""
    deleted = 0
    batch: List[str] = []
    async for name in client.scan_iter(match=pattern, count=SCAN_BATCH_SIZE):
        batch.append(name)
        if len(batch) >= SCAN_BATCH_SIZE:
            deleted += await client.delete(*batch)
            batch = []
    if batch:
        deleted += await client.delete(*batch)
    return deleted


class RedisCacheStore(CacheStore):
    """Cache store keeping JSON encoded entries in Redis with SETEX expiry."""

    def __init__(self, connection_factory: RedisConnectionFactory, prefix: str):
        self.connection_factory = connection_factory
        self.prefix = prefix

    def _entry_key(self, key: str) -> str:
        return f"{self.prefix}:entry:{key}"

    async def get(self, key: str) -> Optional[CacheEntry]:
        raw = await self.connection_factory.execute(
            "get", lambda client: client.get(self._entry_key(key)), key=key
        )
        if raw is None:
            return None

        try:
            return CacheEntry.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(
                f"Dropping undecodable cache entry: {e}",
                extra={"key": key},
            )
            await self.delete(key)
            return None

    async def set(self, entry: CacheEntry, ttl_seconds: int) -> None:
        try:
            payload = entry.to_json()
        except (TypeError, ValueError) as e:
            raise CacheSerializationError(entry.key, original_error=e) from e

        await self.connection_factory.execute(
            "set",
            lambda client: client.set(
                self._entry_key(entry.key), payload, ex=max(1, int(ttl_seconds))
            ),
            key=entry.key,
        )

    async def delete(self, key: str) -> bool:
        removed = await self.connection_factory.execute(
            "delete", lambda client: client.delete(self._entry_key(key)), key=key
        )
        return bool(removed)

    async def delete_many(self, keys: Iterable[str]) -> int:
        names = [self._entry_key(key) for key in keys]
        if not names:
            return 0
        return await self.connection_factory.execute(
            "delete_many", lambda client: client.delete(*names)
        )

    async def delete_by_prefix(self, prefix: str) -> List[str]:
        namespace = f"{self.prefix}:entry:"
        pattern = f"{namespace}{_escape_glob(prefix)}*"

        async def _delete_prefixed(client: Redis) -> List[str]:
            names: List[str] = []
            async for name in client.scan_iter(match=pattern, count=SCAN_BATCH_SIZE):
                names.append(name)
            for start in range(0, len(names), SCAN_BATCH_SIZE):
                await client.delete(*names[start : start + SCAN_BATCH_SIZE])
            return [name[len(namespace) :] for name in names]

        return await self.connection_factory.execute("delete_by_prefix", _delete_prefixed)

    async def clear(self) -> None:
        deleted = await self.connection_factory.execute(
            "clear",
            lambda client: _delete_matching(client, f"{self.prefix}:entry:*"),
        )
        logger.info(f"Cleared {deleted} cache entries", extra={"prefix": self.prefix})

    async def size(self) -> int:
        async def _count(client: Redis) -> int:
            count = 0
            async for _ in client.scan_iter(
                match=f"{self.prefix}:entry:*", count=SCAN_BATCH_SIZE
            ):
                count += 1
            return count

        return await self.connection_factory.execute("size", _count)

    async def ping(self) -> bool:
        health = await self.connection_factory.health_check()
        return health["status"] == "healthy"

    async def get_stats(self) -> Dict[str, Any]:
        return {
            "backend": "redis",
            "prefix": self.prefix,
            "size": await self.size(),
            "circuit_breaker": self.connection_factory.circuit_breaker.get_status(),
        }


class RedisTagIndex(TagIndexRepository):
    """
    Tag index stored as Redis sets.

    Tag sets get a TTL that only ever grows, so a set outlives every key it
    references and is reclaimed once all of them have expired.
    """

    def __init__(self, connection_factory: RedisConnectionFactory, prefix: str):
        self.connection_factory = connection_factory
        self.prefix = prefix

    def _tag_key(self, tag: str) -> str:
        return f"{self.prefix}:tag:{tag}"

    def _key_tags_key(self, key: str) -> str:
        return f"{self.prefix}:keytags:{key}"

    async def associate(
        self, key: str, tags: Iterable[str], ttl_seconds: Optional[int] = None
    ) -> None:
        tag_list = list(tags)
        if not tag_list:
            return

        async def _associate(client: Redis) -> None:
            async with client.pipeline(transaction=True) as pipe:
                for tag in tag_list:
                    tag_key = self._tag_key(tag)
                    pipe.sadd(tag_key, key)
                    if ttl_seconds:
                        # NX sets a TTL on new sets, GT only extends existing ones
                        pipe.expire(tag_key, ttl_seconds, nx=True)
                        pipe.expire(tag_key, ttl_seconds, gt=True)
                reverse_key = self._key_tags_key(key)
                pipe.sadd(reverse_key, *tag_list)
                if ttl_seconds:
                    pipe.expire(reverse_key, ttl_seconds)
                await pipe.execute()

        await self.connection_factory.execute("tag_associate", _associate, key=key)

    async def keys_for_tags(self, tags: Iterable[str]) -> Set[str]:
        names = [self._tag_key(tag) for tag in tags]
        if not names:
            return set()
        members = await self.connection_factory.execute(
            "tag_lookup", lambda client: client.sunion(names)
        )
        return set(members or ())

    async def tags_for_key(self, key: str) -> Set[str]:
        members = await self.connection_factory.execute(
            "key_tags",
            lambda client: client.smembers(self._key_tags_key(key)),
            key=key,
        )
        return set(members or ())

    async def remove_keys(self, keys: Iterable[str]) -> None:
        key_list = list(keys)
        if not key_list:
            return

        async def _remove(client: Redis) -> None:
            async with client.pipeline(transaction=False) as pipe:
                for key in key_list:
                    pipe.smembers(self._key_tags_key(key))
                tag_sets = await pipe.execute()

            async with client.pipeline(transaction=True) as pipe:
                for key, key_tags in zip(key_list, tag_sets):
                    for tag in key_tags or ():
                        pipe.srem(self._tag_key(tag), key)
                    pipe.delete(self._key_tags_key(key))
                await pipe.execute()

        await self.connection_factory.execute("tag_remove", _remove)

    async def clear(self) -> None:
        async def _clear(client: Redis) -> int:
            deleted = await _delete_matching(client, f"{self.prefix}:tag:*")
            deleted += await _delete_matching(client, f"{self.prefix}:keytags:*")
            return deleted

        await self.connection_factory.execute("tag_clear", _clear)


class RedisDistributedLock(DistributedLock):
    """Single-flight lock built on redis-py's token based ``Lock``."""

    def __init__(self, connection_factory: RedisConnectionFactory, prefix: str):
        self.connection_factory = connection_factory
        self.prefix = prefix

    async def acquire(self, key: str, ttl_ms: int) -> Optional[Any]:
        async def _acquire(client: Redis) -> Optional[Any]:
            lock = client.lock(
                f"{self.prefix}:lock:{key}",
                timeout=ttl_ms / 1000,
                blocking=False,
            )
            if await lock.acquire(blocking=False):
                return lock
            return None

        return await self.connection_factory.execute("lock_acquire", _acquire, key=key)

    async def release(self, handle: Any) -> None:
        async def _release(client: Redis) -> None:
            try:
                await handle.release()
            except LockError:
                # Lease expired and may now belong to another instance
                logger.debug("Single-flight lock already released", extra={"lock": handle.name})

        await self.connection_factory.execute("lock_release", _release)
