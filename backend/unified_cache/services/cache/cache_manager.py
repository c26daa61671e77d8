"""
Unified Cache Service

Read-through cache executor that orchestrates the strategy registry, the
cache store, the tag index and the optional cross-instance lock.

Lookup policy:
    fresh entry      -> served, producer skipped
    stale entry      -> served, one background refresh scheduled
    miss / expired   -> producer runs once per key, concurrent callers join it
    private strategy -> producer runs, store never touched

Store failures degrade to calling the producer. Producer failures propagate
and are never cached.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Optional,
    Set,
    TypeVar,
    Union,
)

from opentelemetry import trace

from ...core.config import Settings, get_settings
from ...domain.cache.domain_services import InvalidationCallback, TagInvalidationService
from ...domain.cache.entities import CacheEntry
from ...domain.cache.exceptions import (
    CacheSerializationError,
    CacheStoreUnavailableError,
    InvalidCacheKeyError,
)
from ...domain.cache.repository_interfaces import (
    CacheStore,
    DistributedLock,
    TagIndexRepository,
)
from ...domain.cache.strategies import StrategyRef, StrategyRegistry, default_registry
from ...domain.cache.value_objects import CacheKey, CacheStrategy, CacheTag
from ...infrastructure.redis.connection_factory import RedisConnectionFactory
from ...infrastructure.repositories.cache_repository import (
    RedisCacheStore,
    RedisDistributedLock,
    RedisTagIndex,
)
from ...infrastructure.repositories.memory_cache_repository import (
    InMemoryCacheStore,
    InMemoryTagIndex,
)
from ...monitoring.cache_metrics import CacheMetrics

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

T = TypeVar("T")

Producer = Callable[[], Union[Awaitable[T], T]]
KeyRef = Union[str, CacheKey]
TagsRef = Optional[Union[str, Iterable[Any]]]


@dataclass
class _Flight:
    """A producer run shared by every caller of the same key."""

    key: str
    tags: FrozenSet[str]
    task: "asyncio.Task[Any]" = field(repr=False, default=None)
    invalidated: bool = False


class UnifiedCache:
    """
    Strategy driven read-through cache.

    Args:
        registry: Strategy registry resolving strategy names
        store: Cache entry store (in-memory when omitted)
        tag_index: Tag index (in-memory when omitted)
        lock: Optional cross-instance single-flight lock
        metrics: Metrics collector
        clock: Epoch seconds time source used for entry freshness
        build_id: Deployment build id; entries from other builds are discarded
        lock_ttl_ms: Lease of the cross-instance lock
        lock_wait_seconds: How long a caller that lost the lock waits for
            the winner's result before running the producer itself
        connection_factory: Redis factory closed together with the cache
    """

    def __init__(
        self,
        registry: Optional[StrategyRegistry] = None,
        store: Optional[CacheStore] = None,
        tag_index: Optional[TagIndexRepository] = None,
        lock: Optional[DistributedLock] = None,
        metrics: Optional[CacheMetrics] = None,
        clock: Callable[[], float] = time.time,
        build_id: str = "local",
        lock_ttl_ms: int = 10_000,
        lock_wait_seconds: float = 2.0,
        lock_poll_interval: float = 0.05,
        connection_factory: Optional[RedisConnectionFactory] = None,
    ):
        self.registry = registry or default_registry
        self._clock = clock
        self.build_id = build_id
        self.metrics = metrics or CacheMetrics()

        if tag_index is None:
            tag_index = InMemoryTagIndex()
        if store is None:
            on_evict = (
                tag_index.discard_key if isinstance(tag_index, InMemoryTagIndex) else None
            )
            store = InMemoryCacheStore(clock=clock, on_evict=on_evict)

        self.store = store
        self.tag_index = tag_index
        self.lock = lock
        self.invalidation = TagInvalidationService(store, tag_index)

        self._lock_ttl_ms = lock_ttl_ms
        self._lock_wait_seconds = lock_wait_seconds
        self._lock_poll_interval = lock_poll_interval
        self._connection_factory = connection_factory

        self._inflight: Dict[str, _Flight] = {}
        self._refresh_tasks: Set["asyncio.Task[Any]"] = set()
        self._closed = False

    # Read path

    async def cached_query(
        self,
        key: KeyRef,
        producer: Producer,
        strategy: StrategyRef,
        tags: TagsRef = None,
        timeout: Optional[float] = None,
    ) -> T:
        """
        Return the cached value for ``key``, running ``producer`` on a miss.

        Args:
            key: Cache key (see ``CacheKey.build`` for query keys)
            producer: Zero-argument coroutine function performing the read
            strategy: Strategy name, enum member or instance
            tags: Extra invalidation tags on top of the strategy's own
            timeout: Optional producer timeout in seconds; a timeout is
                treated as a producer failure

        Raises:
            UnknownStrategyError: Strategy is not registered
            Exception: Whatever the producer raised (never cached)
        """
        resolved = self.registry.get(strategy)
        cache_key = self._normalize_key(key)

        with tracer.start_as_current_span("cache.cached_query") as span:
            span.set_attribute("cache.key", cache_key)
            span.set_attribute("cache.strategy", resolved.name)

            if not resolved.cacheable:
                span.set_attribute("cache.outcome", "bypass")
                self.metrics.record_lookup(resolved.name, "bypass")
                return await self._run_producer(producer, resolved, timeout)

            call_tags = self._normalize_tags(tags)
            entry = await self._read(cache_key)
            now = self._clock()

            if entry is not None and entry.is_fresh(now):
                span.set_attribute("cache.outcome", "hit")
                self.metrics.record_lookup(resolved.name, "hit")
                return entry.value

            if entry is not None and resolved.serves_stale and entry.is_servable(now):
                span.set_attribute("cache.outcome", "stale")
                self.metrics.record_lookup(resolved.name, "stale")
                self._schedule_refresh(cache_key, producer, resolved, call_tags, timeout)
                return entry.value

            flight = self._inflight.get(cache_key)
            if flight is not None:
                span.set_attribute("cache.outcome", "coalesced")
                self.metrics.record_lookup(resolved.name, "coalesced")
                return await asyncio.shield(flight.task)

            span.set_attribute("cache.outcome", "miss")
            self.metrics.record_lookup(resolved.name, "miss")
            flight = self._start_flight(cache_key, producer, resolved, call_tags, timeout)
            return await asyncio.shield(flight.task)

    async def get(self, key: KeyRef) -> Optional[Any]:
        """Cached value for ``key`` if fresh or stale-servable, else None."""
        entry = await self._read(self._normalize_key(key))
        if entry is None or not entry.is_servable(self._clock()):
            return None
        return entry.value

    async def set(
        self,
        key: KeyRef,
        value: Any,
        strategy: StrategyRef,
        tags: TagsRef = None,
    ) -> bool:
        """
        Write a value directly, as if a producer had returned it.

        Returns:
            True if the entry was stored
        """
        resolved = self.registry.get(strategy)
        if not resolved.cacheable:
            return False
        return await self._write(
            self._normalize_key(key), value, resolved, self._normalize_tags(tags)
        )

    # Invalidation

    async def purge_by_tags(self, tags: TagsRef) -> int:
        """
        Purge every entry carrying any of ``tags``.

        In-flight producers for affected keys are detached so their results
        are not written back. Store errors propagate: the purge did not commit.

        Returns:
            Number of keys purged
        """
        normalized = set(self._normalize_tags(tags))
        if not normalized:
            return 0

        for flight in list(self._inflight.values()):
            if flight.tags & normalized:
                self._detach_flight(flight)

        purged = await self.invalidation.purge_by_tags(normalized)
        for key in purged:
            flight = self._inflight.get(key)
            if flight is not None:
                self._detach_flight(flight)

        self.metrics.record_purge("tag", len(purged))
        return len(purged)

    async def purge_by_key(self, key: KeyRef) -> bool:
        """Purge a single entry regardless of its tags."""
        cache_key = self._normalize_key(key)
        flight = self._inflight.get(cache_key)
        if flight is not None:
            self._detach_flight(flight)

        existed = await self.invalidation.purge_by_key(cache_key)
        self.metrics.record_purge("key", 1 if existed else 0)
        return existed

    async def purge_by_prefix(self, prefix: str) -> int:
        """
        Purge every entry whose key starts with ``prefix``.

        Raises:
            InvalidCacheKeyError: Empty prefix; use ``clear`` to drop everything

        Returns:
            Number of keys purged
        """
        if not prefix:
            raise InvalidCacheKeyError("Purge prefix cannot be empty")

        for flight in list(self._inflight.values()):
            if flight.key.startswith(prefix):
                self._detach_flight(flight)

        purged = await self.invalidation.purge_by_prefix(prefix)
        for key in purged:
            flight = self._inflight.get(key)
            if flight is not None:
                self._detach_flight(flight)

        self.metrics.record_purge("prefix", len(purged))
        return len(purged)

    async def invalidate(self, key: KeyRef) -> bool:
        """Alias of ``purge_by_key``."""
        return await self.purge_by_key(key)

    async def clear(self) -> None:
        """Drop every entry and the whole tag index."""
        for flight in list(self._inflight.values()):
            self._detach_flight(flight)
        await self.store.clear()
        await self.tag_index.clear()
        logger.info("Unified cache cleared", extra={"build_id": self.build_id})

    def register_invalidation_callback(self, callback: InvalidationCallback) -> None:
        """Notify ``callback(keys, tags)`` after every purge."""
        self.invalidation.register_callback(callback)

    # Introspection and lifecycle

    async def stats(self) -> Dict[str, Any]:
        """Counters, store statistics and configuration summary."""
        try:
            store_stats = await self.store.get_stats()
            store_stats["available"] = True
        except CacheStoreUnavailableError as e:
            store_stats = {
                "backend": type(self.store).__name__,
                "available": False,
                "error": e.message,
            }

        return {
            "build_id": self.build_id,
            "store": store_stats,
            "metrics": self.metrics.snapshot(),
            "in_flight": len(self._inflight),
            "pending_refreshes": len(self._refresh_tasks),
            "strategies": {strategy.name: strategy.to_dict() for strategy in self.registry},
        }

    async def close(self) -> None:
        """Cancel background refreshes, release store connections and log final counters."""
        if self._closed:
            return
        self._closed = True

        tasks = list(self._refresh_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._refresh_tasks.clear()

        if self._connection_factory is not None:
            await self._connection_factory.close()

        self.metrics.log_summary()
        logger.info(
            "Unified cache closed",
            extra={"cancelled_refreshes": len(tasks)},
        )

    # Internals

    def _normalize_key(self, key: KeyRef) -> str:
        if isinstance(key, CacheKey):
            return key.value
        return CacheKey(key).value

    def _normalize_tags(self, tags: TagsRef) -> tuple:
        if isinstance(tags, (str, CacheTag)):
            tags = [tags]
        return CacheTag.normalize(tags)

    async def _read(self, key: str) -> Optional[CacheEntry]:
        """Store lookup that degrades to a miss when the store is down."""
        try:
            entry = await self.store.get(key)
        except CacheStoreUnavailableError as e:
            self.metrics.record_error("get", e)
            logger.warning(
                "Cache store unavailable, treating lookup as miss",
                extra={"key": key, "error_code": e.error_code},
            )
            return None

        if entry is None:
            return None

        if entry.build_id != self.build_id:
            logger.debug(
                "Discarding cache entry from another build",
                extra={"key": key, "entry_build_id": entry.build_id},
            )
            try:
                await self.invalidation.purge_by_key(key)
            except CacheStoreUnavailableError as e:
                self.metrics.record_error("delete", e)
            return None

        return entry

    async def _write(
        self,
        key: str,
        value: Any,
        strategy: CacheStrategy,
        tags: Iterable[str],
    ) -> bool:
        """Store a producer result. Failures are logged, never raised."""
        entry = CacheEntry.create(
            key=key,
            value=value,
            strategy=strategy,
            now=self._clock(),
            build_id=self.build_id,
            tags=tags,
        )
        ttl = entry.remaining_ttl(entry.created_at)

        try:
            # Index first so a stored entry is always reachable by tag purge
            await self.invalidation.associate(key, entry.tags, ttl_seconds=ttl)
            await self.store.set(entry, ttl)
        except (CacheStoreUnavailableError, CacheSerializationError) as e:
            self.metrics.record_error("set", e)
            logger.warning(
                f"Failed to store cache entry: {e.message}",
                extra={"key": key, "strategy": strategy.name, "error_code": e.error_code},
            )
            return False

        return True

    async def _run_producer(
        self,
        producer: Producer,
        strategy: CacheStrategy,
        timeout: Optional[float],
    ) -> Any:
        start_time = time.perf_counter()
        try:
            result = producer()
            if inspect.isawaitable(result):
                if timeout is not None:
                    result = await asyncio.wait_for(result, timeout=timeout)
                else:
                    result = await result
            return result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.metrics.record_error("producer", e)
            raise
        finally:
            self.metrics.observe_producer(
                strategy.name, time.perf_counter() - start_time
            )

    def _start_flight(
        self,
        key: str,
        producer: Producer,
        strategy: CacheStrategy,
        tags: Iterable[str],
        timeout: Optional[float],
    ) -> _Flight:
        flight = _Flight(key=key, tags=frozenset(tuple(strategy.tags) + tuple(tags)))
        flight.task = asyncio.ensure_future(
            self._fill(flight, producer, strategy, tags, timeout)
        )
        self._inflight[key] = flight
        flight.task.add_done_callback(lambda task: self._finish_flight(flight, task))
        return flight

    def _finish_flight(self, flight: _Flight, task: "asyncio.Task[Any]") -> None:
        if self._inflight.get(flight.key) is flight:
            del self._inflight[flight.key]
        # Mark the exception retrieved even when every waiter was cancelled
        if not task.cancelled():
            task.exception()

    def _detach_flight(self, flight: _Flight) -> None:
        flight.invalidated = True
        if self._inflight.get(flight.key) is flight:
            del self._inflight[flight.key]

    async def _fill(
        self,
        flight: _Flight,
        producer: Producer,
        strategy: CacheStrategy,
        tags: Iterable[str],
        timeout: Optional[float],
    ) -> Any:
        """Run the producer once for a key and store its result."""
        handle = None
        lock_contended = False

        if self.lock is not None:
            try:
                handle = await self.lock.acquire(flight.key, self._lock_ttl_ms)
                lock_contended = handle is None
            except CacheStoreUnavailableError as e:
                self.metrics.record_error("lock", e)

        try:
            if lock_contended:
                entry = await self._wait_for_remote_fill(flight.key)
                if entry is not None:
                    return entry.value

            value = await self._run_producer(producer, strategy, timeout)

            if not flight.invalidated:
                stored = await self._write(flight.key, value, strategy, tags)
                if stored and flight.invalidated:
                    # Purged while writing
                    await self._discard_quietly(flight.key)
            return value
        finally:
            if handle is not None:
                try:
                    await self.lock.release(handle)
                except CacheStoreUnavailableError as e:
                    self.metrics.record_error("lock", e)

    async def _wait_for_remote_fill(self, key: str) -> Optional[CacheEntry]:
        """Poll the store while another instance runs the producer."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._lock_wait_seconds
        while loop.time() < deadline:
            await asyncio.sleep(self._lock_poll_interval)
            entry = await self._read(key)
            if entry is not None and entry.is_fresh(self._clock()):
                return entry

        logger.debug(
            "Single-flight lock holder did not fill in time, running producer",
            extra={"key": key, "waited_seconds": self._lock_wait_seconds},
        )
        return None

    async def _discard_quietly(self, key: str) -> None:
        try:
            await self.store.delete(key)
            await self.tag_index.remove_keys([key])
        except CacheStoreUnavailableError as e:
            self.metrics.record_error("delete", e)

    def _schedule_refresh(
        self,
        key: str,
        producer: Producer,
        strategy: CacheStrategy,
        tags: Iterable[str],
        timeout: Optional[float],
    ) -> None:
        if self._closed or key in self._inflight:
            return

        flight = self._start_flight(key, producer, strategy, tags, timeout)
        self._refresh_tasks.add(flight.task)
        flight.task.add_done_callback(self._on_refresh_done)

    def _on_refresh_done(self, task: "asyncio.Task[Any]") -> None:
        self._refresh_tasks.discard(task)
        if task.cancelled():
            return

        error = task.exception()
        self.metrics.record_refresh(error is None)
        if error is not None:
            logger.warning(
                f"Background cache refresh failed, keeping stale entry: {error}",
                extra={"error_type": type(error).__name__},
            )


def build_unified_cache(
    settings: Optional[Settings] = None,
    registry: Optional[StrategyRegistry] = None,
) -> UnifiedCache:
    """
    Build a cache from settings: Redis backed when ``REDIS_URL`` is set,
    in-memory otherwise.
    """
    settings = settings or get_settings()
    registry = registry or default_registry

    if not settings.redis_enabled:
        logger.info(
            "Using in-memory cache store",
            extra={"max_size": settings.CACHE_MAX_SIZE, "build_id": settings.BUILD_ID},
        )
        tag_index = InMemoryTagIndex()
        return UnifiedCache(
            registry=registry,
            store=InMemoryCacheStore(
                max_size=settings.CACHE_MAX_SIZE, on_evict=tag_index.discard_key
            ),
            tag_index=tag_index,
            build_id=settings.BUILD_ID,
        )

    factory = RedisConnectionFactory.from_settings(settings)
    prefix = settings.CACHE_KEY_PREFIX
    logger.info(
        "Using Redis cache store",
        extra={"prefix": prefix, "build_id": settings.BUILD_ID},
    )
    return UnifiedCache(
        registry=registry,
        store=RedisCacheStore(factory, prefix),
        tag_index=RedisTagIndex(factory, prefix),
        lock=RedisDistributedLock(factory, prefix),
        build_id=settings.BUILD_ID,
        lock_ttl_ms=settings.CACHE_LOCK_TTL_MS,
        lock_wait_seconds=settings.CACHE_LOCK_WAIT_SECONDS,
        connection_factory=factory,
    )
