"""
Main pytest configuration for the unified cache tests.

Environment and shared fixtures for unit and API tests.
"""

import os

import pytest

# Set test environment variables before importing application modules
os.environ["ENVIRONMENT"] = "test"
os.environ["BUILD_ID"] = "test-build"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["MESSAGE_ENCRYPTION_KEY"] = "00112233445566778899aabbccddeeff" * 2
os.environ.pop("REDIS_URL", None)
os.environ.pop("CACHE_ADMIN_TOKEN", None)
os.environ.pop("CLOUDFLARE_ZONE_ID", None)
os.environ.pop("CLOUDFLARE_API_TOKEN", None)

from unified_cache.core.config import get_settings  # noqa: E402
from unified_cache.infrastructure.repositories.memory_cache_repository import (  # noqa: E402
    InMemoryCacheStore,
    InMemoryTagIndex,
)
from unified_cache.services.cache.cache_manager import UnifiedCache  # noqa: E402


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Settings are cached per process; reset them around every test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tag_index():
    return InMemoryTagIndex()


@pytest.fixture
def store(clock, tag_index):
    return InMemoryCacheStore(max_size=100, clock=clock, on_evict=tag_index.discard_key)


@pytest.fixture
def cache(store, tag_index, clock):
    """Unified cache over in-memory store with a controllable clock."""
    return UnifiedCache(
        store=store,
        tag_index=tag_index,
        clock=clock,
        build_id="test-build",
    )


@pytest.fixture
def counting_producer():
    """Producer factory recording how often it ran."""

    def _make(value):
        calls = {"count": 0}

        async def producer():
            calls["count"] += 1
            return value

        producer.calls = calls
        return producer

    return _make
