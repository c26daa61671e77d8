"""
Unit tests for the in-memory cache store and tag index.
"""

import pytest

from unified_cache.domain.cache.entities import CacheEntry
from unified_cache.domain.cache.exceptions import CacheSerializationError
from unified_cache.domain.cache.value_objects import CacheStrategy
from unified_cache.infrastructure.repositories.memory_cache_repository import (
    InMemoryCacheStore,
    InMemoryTagIndex,
)

STRATEGY = CacheStrategy(name="TEST", max_age_seconds=10)


def make_entry(key, now=0.0):
    return CacheEntry.create(key, {"key": key}, STRATEGY, now=now, build_id="b")


class TestInMemoryCacheStore:
    """Test InMemoryCacheStore."""

    @pytest.mark.asyncio
    async def test_set_and_get(self, clock):
        store = InMemoryCacheStore(clock=clock)
        entry = make_entry("a", clock())

        await store.set(entry, 10)

        assert await store.get("a") == entry
        assert await store.get("missing") is None
        assert await store.size() == 1

    @pytest.mark.asyncio
    async def test_entries_dropped_after_ttl(self, clock):
        evicted = []
        store = InMemoryCacheStore(clock=clock, on_evict=evicted.append)
        await store.set(make_entry("a", clock()), 10)

        clock.advance(9.9)
        assert await store.get("a") is not None

        clock.advance(0.2)
        assert await store.get("a") is None
        assert evicted == ["a"]

    @pytest.mark.asyncio
    async def test_lru_eviction(self, clock):
        store = InMemoryCacheStore(max_size=2, clock=clock)
        await store.set(make_entry("a"), 10)
        await store.set(make_entry("b"), 10)

        # Touch "a" so "b" becomes least recently used
        await store.get("a")
        await store.set(make_entry("c"), 10)

        assert await store.get("b") is None
        assert await store.get("a") is not None
        assert await store.get("c") is not None
        assert (await store.get_stats())["evictions"] == 1

    @pytest.mark.asyncio
    async def test_overwrite_does_not_evict(self, clock):
        store = InMemoryCacheStore(max_size=1, clock=clock)
        await store.set(make_entry("a"), 10)
        await store.set(make_entry("a"), 10)

        assert await store.size() == 1
        assert (await store.get_stats())["evictions"] == 0

    @pytest.mark.asyncio
    async def test_delete_and_clear(self, clock):
        store = InMemoryCacheStore(clock=clock)
        for key in ("a", "b", "c"):
            await store.set(make_entry(key), 10)

        assert await store.delete("a") is True
        assert await store.delete("a") is False
        assert await store.delete_many(["b", "missing"]) == 1

        await store.clear()
        assert await store.size() == 0
        assert await store.ping() is True

    @pytest.mark.asyncio
    async def test_hits_return_independent_copies(self, clock):
        store = InMemoryCacheStore(clock=clock)
        await store.set(make_entry("a"), 10)

        first = await store.get("a")
        first.value["key"] = "changed"

        assert (await store.get("a")).value == {"key": "a"}

    @pytest.mark.asyncio
    async def test_unserializable_value_refused(self, clock):
        store = InMemoryCacheStore(clock=clock)
        entry = CacheEntry.create("a", {1, 2}, STRATEGY, now=0.0, build_id="b")

        with pytest.raises(CacheSerializationError):
            await store.set(entry, 10)
        assert await store.size() == 0

    @pytest.mark.asyncio
    async def test_delete_by_prefix(self, clock):
        store = InMemoryCacheStore(clock=clock)
        for key in ("companies:1", "companies:2", "events:1"):
            await store.set(make_entry(key), 10)

        removed = await store.delete_by_prefix("companies:")

        assert sorted(removed) == ["companies:1", "companies:2"]
        assert await store.get("events:1") is not None
        assert await store.delete_by_prefix("nothing:") == []

    def test_invalid_max_size(self):
        with pytest.raises(ValueError):
            InMemoryCacheStore(max_size=0)


class TestInMemoryTagIndex:
    """Test InMemoryTagIndex."""

    @pytest.mark.asyncio
    async def test_associate_and_lookup(self):
        index = InMemoryTagIndex()
        await index.associate("k1", ["A", "B"])
        await index.associate("k2", ["B"])

        assert await index.keys_for_tags(["A"]) == {"k1"}
        assert await index.keys_for_tags(["A", "B"]) == {"k1", "k2"}
        assert await index.tags_for_key("k1") == {"A", "B"}
        assert index.tag_count == 2

    @pytest.mark.asyncio
    async def test_remove_keys_cleans_every_tag(self):
        index = InMemoryTagIndex()
        await index.associate("k1", ["A", "B"])
        await index.associate("k2", ["B"])

        await index.remove_keys(["k1"])

        assert await index.keys_for_tags(["A"]) == set()
        assert await index.keys_for_tags(["B"]) == {"k2"}
        assert index.tag_count == 1

    @pytest.mark.asyncio
    async def test_eviction_hook_removes_key(self, clock):
        index = InMemoryTagIndex()
        store = InMemoryCacheStore(max_size=1, clock=clock, on_evict=index.discard_key)
        await index.associate("a", ["T"])
        await store.set(make_entry("a"), 10)

        await store.set(make_entry("b"), 10)

        assert await index.keys_for_tags(["T"]) == set()

    @pytest.mark.asyncio
    async def test_clear(self):
        index = InMemoryTagIndex()
        await index.associate("k1", ["A"])
        await index.clear()

        assert await index.keys_for_tags(["A"]) == set()
        assert await index.tags_for_key("k1") == set()
