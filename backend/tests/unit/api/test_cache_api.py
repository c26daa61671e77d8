"""
API tests for health, statistics, metrics and purge endpoints.

The lifespan is not run; components are attached to the app directly.
"""

from unittest.mock import AsyncMock

import httpx
import pytest

from unified_cache.core.config import Settings
from unified_cache.domain.cache.exceptions import CacheStoreUnavailableError
from unified_cache.main import create_app
from unified_cache.services.cache.cdn_purge import CloudflareCachePurge


def make_client(app):
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


@pytest.fixture
def cdn():
    return CloudflareCachePurge(None, None, "https://example.com")


@pytest.fixture
def app(cache, cdn):
    settings = Settings(ENVIRONMENT="test", BUILD_ID="test-build")
    return create_app(settings=settings, cache=cache, cdn=cdn)


@pytest.fixture
def secured_app(cache, cdn):
    settings = Settings(ENVIRONMENT="test", CACHE_ADMIN_TOKEN="s3cret")
    return create_app(settings=settings, cache=cache, cdn=cdn)


class TestHealthEndpoints:
    """Test health and readiness."""

    @pytest.mark.asyncio
    async def test_health(self, app):
        async with make_client(app) as client:
            response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["environment"] == "test"
        assert response.headers["x-cache-strategy"] == "REALTIME"
        assert response.headers["x-build-id"] == "test-build"
        assert app.title == "Unified Cache API"

    @pytest.mark.asyncio
    async def test_ready(self, app):
        async with make_client(app) as client:
            response = await client.get("/health/ready")

        body = response.json()
        assert body["status"] == "ready"
        assert body["build_id"] == "test-build"
        assert body["checks"]["cache_store"]["status"] == "healthy"
        assert "no-store" in response.headers["cache-control"]

    @pytest.mark.asyncio
    async def test_ready_with_store_down(self, app, cache):
        cache.store.ping = AsyncMock(side_effect=CacheStoreUnavailableError("ping"))

        async with make_client(app) as client:
            response = await client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["checks"]["cache_store"]["status"] == "degraded"


class TestStatsEndpoints:
    """Test statistics and Prometheus metrics."""

    @pytest.mark.asyncio
    async def test_stats(self, app, cache, counting_producer):
        await cache.cached_query("k", counting_producer(1), "API_STANDARD")
        await cache.cached_query("k", counting_producer(1), "API_STANDARD")

        async with make_client(app) as client:
            response = await client.get("/cache/stats")

        body = response.json()
        assert body["metrics"]["hits"] == 1
        assert body["metrics"]["misses"] == 1
        assert body["store"]["available"] is True
        assert "API_STANDARD" in body["strategies"]
        assert response.headers["cache-control"].startswith("private, no-cache, no-store")

    @pytest.mark.asyncio
    async def test_metrics(self, app, cache, counting_producer):
        await cache.cached_query("k", counting_producer(1), "REALTIME")

        async with make_client(app) as client:
            response = await client.get("/cache/metrics")

        assert response.status_code == 200
        assert response.headers["cache-control"] == "no-store"
        assert "ucache_lookups_total" in response.text


class TestPurgeEndpoints:
    """Test manual purge and the purge webhook."""

    @pytest.mark.asyncio
    async def test_purge_by_tags_and_keys(self, app, cache):
        await cache.set("a", 1, "API_STANDARD", tags=["T"])
        await cache.set("b", 2, "API_STANDARD")

        async with make_client(app) as client:
            response = await client.post("/cache/purge", json={"tags": ["T"], "keys": ["b", "c"]})

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "purged_by_tags": 1,
            "purged_keys": 1,
            "purged_by_prefix": 0,
        }
        assert await cache.get("a") is None
        assert await cache.get("b") is None

    @pytest.mark.asyncio
    async def test_purge_by_prefix(self, app, cache):
        await cache.set("companies:1", 1, "API_STANDARD")
        await cache.set("companies:2", 2, "API_STANDARD")
        await cache.set("events:1", 3, "API_STANDARD")

        async with make_client(app) as client:
            response = await client.post("/cache/purge", json={"prefixes": ["companies:"]})

        assert response.status_code == 200
        assert response.json()["purged_by_prefix"] == 2
        assert await cache.get("companies:1") is None
        assert await cache.get("events:1") is not None

    @pytest.mark.asyncio
    async def test_purge_rejects_empty_prefix(self, app):
        async with make_client(app) as client:
            response = await client.post("/cache/purge", json={"prefixes": [""]})

        assert response.status_code == 400
        assert response.json()["error_code"] == "CACHE_INVALID_KEY"

    @pytest.mark.asyncio
    async def test_purge_requires_targets(self, app):
        async with make_client(app) as client:
            response = await client.post("/cache/purge", json={})

        assert response.status_code == 422
        assert response.headers["x-cache-strategy"] == "error"

    @pytest.mark.asyncio
    async def test_purge_store_unavailable(self, app, cache):
        cache.invalidation.purge_by_tags = AsyncMock(
            side_effect=CacheStoreUnavailableError("purge_by_tags")
        )

        async with make_client(app) as client:
            response = await client.post("/cache/purge", json={"tags": ["T"]})

        assert response.status_code == 503
        body = response.json()
        assert body["error_code"] == "CACHE_STORE_UNAVAILABLE"
        assert "no-store" in response.headers["cache-control"]

    @pytest.mark.asyncio
    async def test_admin_token_required(self, secured_app):
        async with make_client(secured_app) as client:
            missing = await client.post("/cache/purge", json={"tags": ["T"]})
            wrong = await client.post(
                "/cache/purge", json={"tags": ["T"]}, headers={"X-Cache-Admin-Token": "nope"}
            )
            ok = await client.post(
                "/cache/purge", json={"tags": ["T"]}, headers={"X-Cache-Admin-Token": "s3cret"}
            )

        assert missing.status_code == 401
        assert missing.json()["error"] == "Invalid or missing cache admin token"
        assert wrong.status_code == 401
        assert ok.status_code == 200

    @pytest.mark.asyncio
    async def test_webhook_unknown_action(self, app):
        async with make_client(app) as client:
            response = await client.post("/cache/webhook", json={"action": "reindex"})

        assert response.status_code == 400
        assert response.json()["details"] == {"action": "reindex"}

    @pytest.mark.asyncio
    async def test_webhook_purges_local_cache(self, app, cache):
        await cache.set("events:list", [1], "DYNAMIC_CONTENT", tags=["events"])

        async with make_client(app) as client:
            response = await client.post("/cache/webhook", json={"action": "event_created"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["cdn_purged"] is False
        assert body["local_purged"] == 1

    @pytest.mark.asyncio
    async def test_invalid_body(self, app):
        async with make_client(app) as client:
            response = await client.post("/cache/webhook", json={})

        assert response.status_code == 422
        assert response.json()["error"] == "Invalid request"
