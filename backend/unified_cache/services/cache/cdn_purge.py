"""
CDN Cache Purge Service

Cloudflare purge client used on deployments and content updates, and the
webhook handler that purges the CDN together with the local cache.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx

from ...core.config import Settings, get_settings
from ...domain.cache.exceptions import CacheStoreUnavailableError
from .cache_manager import UnifiedCache

logger = logging.getLogger(__name__)

CLOUDFLARE_API_BASE = "https://api.cloudflare.com/client/v4"

EVENT_TAGS = ["events", "hackathons", "api-events", "api-hackathons"]
EVENT_PATHS = [
    "/hackathons",
    "/events",
    "/api/hackathons",
    "/api/events",
    "/api/hackathons/featured",
    "/opportunities",
]

DEPLOY_TAGS = ["pages", "events", "hackathons", "api"]
DEPLOY_PATHS = [
    "/",
    "/hackathons",
    "/events",
    "/leaderboard",
    "/opportunities",
    "/api/hackathons",
    "/api/events",
    "/api/leaderboard/stats",
]

WEBHOOK_ACTIONS = (
    "deploy",
    "event_created",
    "event_updated",
    "hackathon_created",
    "hackathon_updated",
    "purge_all",
)


class CloudflareCachePurge:
    """
    Cloudflare zone purge client.

    Every method returns True on success and False (after logging) when
    credentials are missing or the API reports a failure; none raise.
    """

    def __init__(
        self,
        zone_id: Optional[str],
        api_token: Optional[str],
        site_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.zone_id = zone_id
        self.api_token = api_token
        self.site_url = site_url.rstrip("/")
        self._client = client
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "CloudflareCachePurge":
        settings = settings or get_settings()
        return cls(
            zone_id=settings.CLOUDFLARE_ZONE_ID,
            api_token=settings.CLOUDFLARE_API_TOKEN,
            site_url=settings.SITE_URL,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.zone_id and self.api_token)

    async def purge_everything(self) -> bool:
        """Purge the whole zone. Reserved for major deployments."""
        return await self._purge({"purge_everything": True}, "entire cache")

    async def purge_urls(self, urls: Iterable[str]) -> bool:
        url_list = list(urls)
        if not url_list:
            logger.warning("No URLs given for CDN purge")
            return False
        return await self._purge({"files": url_list}, f"{len(url_list)} URLs")

    async def purge_tags(self, tags: Iterable[str]) -> bool:
        """Purge by Cache-Tag. Only available on Enterprise zones."""
        tag_list = list(tags)
        if not tag_list:
            logger.warning("No tags given for CDN purge")
            return False
        return await self._purge({"tags": tag_list}, f"tags {', '.join(tag_list)}")

    async def purge_events(self) -> bool:
        """Purge event and hackathon listings, by tag with URL fallback."""
        if await self.purge_tags(EVENT_TAGS):
            return True
        return await self.purge_urls(self._urls(EVENT_PATHS))

    async def purge_on_deploy(self) -> bool:
        """Purge dynamic pages after a deployment, keeping static assets."""
        logger.info("Deployment detected, purging CDN cache")
        if await self.purge_tags(DEPLOY_TAGS):
            return True
        return await self.purge_urls(self._urls(DEPLOY_PATHS))

    def _urls(self, paths: List[str]) -> List[str]:
        return [f"{self.site_url}{path}" for path in paths]

    async def _purge(self, body: Dict[str, Any], description: str) -> bool:
        if not self.enabled:
            logger.warning(
                "Cloudflare credentials not set, skipping CDN purge",
                extra={"target": description},
            )
            return False

        url = f"{CLOUDFLARE_API_BASE}/zones/{self.zone_id}/purge_cache"
        headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

        try:
            if self._client is not None:
                response = await self._client.post(url, json=body, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(url, json=body, headers=headers)
            result = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                f"Cloudflare purge error: {e}",
                extra={"target": description},
            )
            return False

        if result.get("success"):
            logger.info(f"Cloudflare: purged {description}")
            return True

        logger.error(
            "Cloudflare purge failed",
            extra={
                "target": description,
                "status_code": response.status_code,
                "errors": result.get("errors"),
            },
        )
        return False


async def handle_purge_webhook(
    action: str,
    cache: UnifiedCache,
    cdn: CloudflareCachePurge,
) -> Dict[str, Any]:
    """
    Purge the CDN and the local cache for a content or deployment event.

    Returns:
        ``{"success", "message", "action", "cdn_purged", "local_purged"}``;
        an unknown action yields ``success=False`` without purging anything.
    """
    if action not in WEBHOOK_ACTIONS:
        return {"success": False, "message": "Unknown action", "action": action}

    logger.info("Cache purge webhook triggered", extra={"action": action})

    if action == "deploy":
        cdn_ok = await cdn.purge_on_deploy()
        local_tags: Optional[List[str]] = DEPLOY_TAGS + ["content"]
        label = "Deployment cache purge"
    elif action == "purge_all":
        cdn_ok = await cdn.purge_everything()
        local_tags = None
        label = "Full cache purge"
    else:
        cdn_ok = await cdn.purge_events()
        local_tags = EVENT_TAGS + ["content"]
        label = "Event/hackathon cache purge"

    local_ok = True
    local_purged = 0
    try:
        if local_tags is None:
            await cache.clear()
        else:
            local_purged = await cache.purge_by_tags(local_tags)
    except CacheStoreUnavailableError as e:
        local_ok = False
        logger.error(
            f"Local cache purge failed: {e.message}",
            extra={"action": action, "error_code": e.error_code},
        )

    success = local_ok and (cdn_ok or not cdn.enabled)
    return {
        "success": success,
        "message": f"{label} {'completed' if success else 'failed'}",
        "action": action,
        "cdn_purged": cdn_ok,
        "local_purged": local_purged,
    }
