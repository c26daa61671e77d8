"""
Unit tests for the tag invalidation domain service.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from unified_cache.domain.cache.domain_services import TagInvalidationService
from unified_cache.domain.cache.entities import CacheEntry
from unified_cache.domain.cache.exceptions import CacheStoreUnavailableError
from unified_cache.domain.cache.value_objects import CacheStrategy
from unified_cache.infrastructure.repositories.memory_cache_repository import (
    InMemoryCacheStore,
    InMemoryTagIndex,
)

STRATEGY = CacheStrategy(name="TEST", max_age_seconds=60)


async def _put(service, store, key, tags):
    entry = CacheEntry.create(key, key.upper(), STRATEGY, now=0.0, build_id="b", tags=tags)
    await service.associate(key, entry.tags)
    await store.set(entry, 60)


class TestTagInvalidationService:
    """Test TagInvalidationService."""

    @pytest.fixture
    def store(self):
        return InMemoryCacheStore(clock=lambda: 0.0)

    @pytest.fixture
    def tag_index(self):
        return InMemoryTagIndex()

    @pytest.fixture
    def service(self, store, tag_index):
        return TagInvalidationService(store, tag_index)

    @pytest.mark.asyncio
    async def test_purge_by_tags_removes_only_tagged_keys(self, service, store, tag_index):
        await _put(service, store, "k1", ["A", "B"])
        await _put(service, store, "k2", ["C"])

        purged = await service.purge_by_tags(["A"])

        assert purged == ["k1"]
        assert await store.get("k1") is None
        assert await store.get("k2") is not None
        # k1 is gone from every tag that referenced it
        assert await tag_index.keys_for_tags(["B"]) == set()
        assert await tag_index.keys_for_tags(["C"]) == {"k2"}

    @pytest.mark.asyncio
    async def test_purge_unknown_tag_is_noop(self, service, store):
        await _put(service, store, "k1", ["A"])

        assert await service.purge_by_tags(["missing"]) == []
        assert await service.purge_by_tags([]) == []
        assert await store.get("k1") is not None

    @pytest.mark.asyncio
    async def test_purge_is_idempotent(self, service, store):
        await _put(service, store, "k1", ["A"])

        assert await service.purge_by_tags(["A"]) == ["k1"]
        assert await service.purge_by_tags(["A"]) == []

    @pytest.mark.asyncio
    async def test_purge_by_key(self, service, store, tag_index):
        await _put(service, store, "k1", ["A"])

        assert await service.purge_by_key("k1") is True
        assert await service.purge_by_key("k1") is False
        assert await tag_index.tags_for_key("k1") == set()

    @pytest.mark.asyncio
    async def test_purge_by_prefix(self, service, store, tag_index):
        await _put(service, store, "companies:1", ["A"])
        await _put(service, store, "companies:2", ["A", "B"])
        await _put(service, store, "events:1", ["A"])
        seen = []
        service.register_callback(lambda keys, tags: seen.append((keys, tags)))

        purged = await service.purge_by_prefix("companies:")

        assert purged == ["companies:1", "companies:2"]
        assert await store.get("events:1") is not None
        assert await tag_index.keys_for_tags(["A", "B"]) == {"events:1"}
        assert seen == [(["companies:1", "companies:2"], [])]
        assert await service.purge_by_prefix("companies:") == []

    @pytest.mark.asyncio
    async def test_callbacks_notified(self, service, store):
        sync_callback = MagicMock()
        async_callback = AsyncMock()
        service.register_callback(sync_callback)
        service.register_callback(async_callback)
        service.register_callback(sync_callback)

        await _put(service, store, "k1", ["A"])
        await service.purge_by_tags(["A"])

        sync_callback.assert_called_once_with(["k1"], ["A"])
        async_callback.assert_awaited_once_with(["k1"], ["A"])

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_fail_purge(self, service, store):
        failing = MagicMock(side_effect=RuntimeError("boom"))
        after = MagicMock()
        service.register_callback(failing)
        service.register_callback(after)

        await _put(service, store, "k1", ["A"])
        assert await service.purge_by_tags(["A"]) == ["k1"]
        after.assert_called_once()

    @pytest.mark.asyncio
    async def test_unregister_callback(self, service):
        callback = MagicMock()
        service.register_callback(callback)
        service.unregister_callback(callback)

        await service.purge_by_key("k1")
        callback.assert_not_called()

    @pytest.mark.asyncio
    async def test_store_errors_propagate(self, tag_index):
        store = AsyncMock()
        store.delete_many.side_effect = CacheStoreUnavailableError("delete_many")
        service = TagInvalidationService(store, tag_index)
        await tag_index.associate("k1", ["A"])

        with pytest.raises(CacheStoreUnavailableError):
            await service.purge_by_tags(["A"])

        # Index untouched so a retry still finds the key
        assert await tag_index.keys_for_tags(["A"]) == {"k1"}
