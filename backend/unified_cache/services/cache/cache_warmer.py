"""
Cache Warmer

Requests critical endpoints after a deployment so the CDN and the
application cache are populated before user traffic arrives.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Iterable, List, Optional

import httpx

from ...core.config import Settings, get_settings

logger = logging.getLogger(__name__)

CRITICAL_ENDPOINTS = (
    "/api/hackathons",
    "/api/leaderboard/stats",
    "/api/tests/public",
)

USER_AGENT = "CacheWarmer/2.0"


class CacheWarmer:
    """Concurrently fetch a list of endpoints; failures are reported, not raised."""

    def __init__(
        self,
        base_url: str,
        endpoints: Iterable[str] = CRITICAL_ENDPOINTS,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.endpoints = list(endpoints)
        self._client = client
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "CacheWarmer":
        settings = settings or get_settings()
        return cls(base_url=settings.SITE_URL)

    async def warm(self) -> List[Dict[str, Any]]:
        """
        Fetch every endpoint once.

        Returns:
            One ``{"endpoint", "ok", "status_code" | "error", "duration_ms"}``
            dict per endpoint, in the configured order
        """
        logger.info(
            "Starting cache warming",
            extra={"base_url": self.base_url, "endpoints": len(self.endpoints)},
        )

        if self._client is not None:
            results = await self._warm_all(self._client)
        else:
            async with httpx.AsyncClient(
                timeout=self._timeout, headers={"User-Agent": USER_AGENT}
            ) as client:
                results = await self._warm_all(client)

        warmed = sum(1 for result in results if result["ok"])
        logger.info(
            "Cache warming completed",
            extra={"warmed": warmed, "failed": len(results) - warmed},
        )
        return results

    async def _warm_all(self, client: httpx.AsyncClient) -> List[Dict[str, Any]]:
        return list(
            await asyncio.gather(
                *(self._warm_one(client, endpoint) for endpoint in self.endpoints)
            )
        )

    async def _warm_one(self, client: httpx.AsyncClient, endpoint: str) -> Dict[str, Any]:
        start_time = time.perf_counter()
        result: Dict[str, Any] = {"endpoint": endpoint}
        try:
            response = await client.get(
                f"{self.base_url}{endpoint}", headers={"User-Agent": USER_AGENT}
            )
        except httpx.HTTPError as e:
            logger.warning(f"Failed to warm {endpoint}: {e}")
            result.update(ok=False, error=str(e))
        else:
            result.update(ok=response.is_success, status_code=response.status_code)
            logger.debug(
                "Warmed endpoint",
                extra={"endpoint": endpoint, "status_code": response.status_code},
            )

        result["duration_ms"] = round((time.perf_counter() - start_time) * 1000, 2)
        return result
