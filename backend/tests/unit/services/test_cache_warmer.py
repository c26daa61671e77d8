"""
Unit tests for the cache warmer.
"""

import httpx
import pytest

from unified_cache.core.config import Settings
from unified_cache.services.cache.cache_warmer import CRITICAL_ENDPOINTS, CacheWarmer


def make_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestCacheWarmer:
    """Test endpoint warming."""

    @pytest.mark.asyncio
    async def test_warms_every_endpoint(self):
        seen = []

        def handler(request):
            seen.append((request.url.path, request.headers["user-agent"]))
            return httpx.Response(200, json={})

        warmer = CacheWarmer("https://example.com/", client=make_client(handler))
        results = await warmer.warm()

        assert [result["endpoint"] for result in results] == list(CRITICAL_ENDPOINTS)
        assert all(result["ok"] and result["status_code"] == 200 for result in results)
        assert sorted(path for path, _ in seen) == sorted(CRITICAL_ENDPOINTS)
        assert {agent for _, agent in seen} == {"CacheWarmer/2.0"}

    @pytest.mark.asyncio
    async def test_reports_failures(self):
        def handler(request):
            if request.url.path == "/api/down":
                raise httpx.ConnectError("refused", request=request)
            if request.url.path == "/api/broken":
                return httpx.Response(500)
            return httpx.Response(200)

        warmer = CacheWarmer(
            "https://example.com",
            endpoints=["/api/ok", "/api/broken", "/api/down"],
            client=make_client(handler),
        )
        ok, broken, down = await warmer.warm()

        assert ok["ok"] is True
        assert broken == {
            "endpoint": "/api/broken",
            "ok": False,
            "status_code": 500,
            "duration_ms": broken["duration_ms"],
        }
        assert down["ok"] is False
        assert "refused" in down["error"]
        assert down["duration_ms"] >= 0

    def test_from_settings(self):
        warmer = CacheWarmer.from_settings(Settings(SITE_URL="https://site.test/"))

        assert warmer.base_url == "https://site.test"
