"""
Cache Response Factory

Builds JSON responses whose HTTP caching headers are derived from a
cache strategy. Error responses are always emitted as non-cacheable.
"""

import time
from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder
from starlette.responses import JSONResponse, Response

from ...constants import (
    HEADER_BUILD_ID,
    HEADER_CACHE_CONTROL,
    HEADER_CACHE_STRATEGY,
    HEADER_CACHE_TAG,
    HEADER_CDN_CACHE_CONTROL,
)
from ...domain.cache.strategies import StrategyRef, StrategyRegistry, default_registry
from ...domain.cache.value_objects import CacheStrategy, StrategyName

NO_STORE_CACHE_CONTROL = "private, no-cache, no-store, must-revalidate, max-age=0"
DEVELOPMENT_CACHE_CONTROL = "no-cache, no-store, must-revalidate"
VARY = "Accept-Encoding, Authorization"


class CacheResponseFactory:
    """
    Response synthesizer for cache strategies.

    Args:
        registry: Strategy registry used to resolve names
        build_id: Value of the ``X-Build-ID`` header
        disable_caching: Emit no-cache headers for every response
            (development environments)
    """

    def __init__(
        self,
        registry: Optional[StrategyRegistry] = None,
        build_id: str = "local",
        disable_caching: bool = False,
    ):
        self.registry = registry or default_registry
        self.build_id = build_id
        self.disable_caching = disable_caching

    def generate_headers(self, strategy: StrategyRef) -> Dict[str, str]:
        """Caching headers for ``strategy``."""
        resolved = self.registry.get(strategy)

        if self.disable_caching:
            return {
                HEADER_CACHE_CONTROL: DEVELOPMENT_CACHE_CONTROL,
                "Pragma": "no-cache",
                "Expires": "0",
                HEADER_CACHE_STRATEGY: "development",
                HEADER_BUILD_ID: self.build_id,
            }

        if not resolved.cacheable:
            headers = self._no_store_headers()
        else:
            headers = {
                HEADER_CACHE_CONTROL: self._cache_control(resolved),
                HEADER_CDN_CACHE_CONTROL: self._cdn_cache_control(resolved),
            }

        headers[HEADER_BUILD_ID] = self.build_id
        headers[HEADER_CACHE_STRATEGY] = resolved.name
        headers["Vary"] = VARY
        if resolved.tags:
            headers[HEADER_CACHE_TAG] = ",".join(resolved.tags)
        return headers

    def create_response(
        self,
        payload: Any,
        strategy: StrategyRef = StrategyName.API_STANDARD,
        status_code: int = 200,
    ) -> JSONResponse:
        """
        Serialize ``payload`` as JSON with the strategy's caching headers.

        Status codes of 400 and above are emitted with no-store headers
        whatever strategy was requested.
        """
        headers = (
            self._error_headers()
            if status_code >= 400
            else self.generate_headers(strategy)
        )
        return JSONResponse(
            content=jsonable_encoder(payload),
            status_code=status_code,
            headers=headers,
        )

    def create_error_response(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ) -> JSONResponse:
        """Error body ``{"error": ..., "details": ...}``, never cacheable."""
        body: Dict[str, Any] = {"error": message}
        if error_code:
            body["error_code"] = error_code
        if details:
            body["details"] = details

        return JSONResponse(
            content=jsonable_encoder(body),
            status_code=max(status_code, 400),
            headers=self._error_headers(),
        )

    def create_isr_response(
        self,
        payload: Any,
        revalidate_seconds: int = 3600,
        strategy: StrategyRef = StrategyName.DYNAMIC_CONTENT,
    ) -> JSONResponse:
        """Response for incrementally regenerated pages, with revalidation hints."""
        response = self.create_response(payload, strategy)
        response.headers["X-ISR-Revalidate"] = str(revalidate_seconds)
        response.headers["X-ISR-Timestamp"] = str(int(time.time() * 1000))
        return response

    def apply_headers(self, response: Response, strategy: StrategyRef) -> Response:
        """Overwrite caching headers on an existing response."""
        if response.status_code >= 400:
            headers = self._error_headers()
        else:
            headers = self.generate_headers(strategy)
        for name, value in headers.items():
            response.headers[name] = value
        return response

    def _cache_control(self, strategy: CacheStrategy) -> str:
        directives = ["private" if strategy.private else "public"]
        directives.append(f"max-age={strategy.browser_max_age_seconds}")
        if strategy.cdn_max_age_seconds > 0:
            directives.append(f"s-maxage={strategy.cdn_max_age_seconds}")
        if strategy.stale_while_revalidate_seconds > 0:
            directives.append(
                f"stale-while-revalidate={strategy.stale_while_revalidate_seconds}"
            )
        if strategy.must_revalidate:
            directives.append("must-revalidate")
        if strategy.immutable:
            directives.append("immutable")
        return ", ".join(directives)

    def _cdn_cache_control(self, strategy: CacheStrategy) -> str:
        if strategy.private:
            return "no-store"
        if strategy.cdn_max_age_seconds <= 0:
            return "no-cache"
        value = f"public, max-age={strategy.cdn_max_age_seconds}"
        if strategy.stale_while_revalidate_seconds > 0:
            value += f", stale-while-revalidate={strategy.stale_while_revalidate_seconds}"
        return value

    def _error_headers(self) -> Dict[str, str]:
        headers = self._no_store_headers()
        headers[HEADER_BUILD_ID] = self.build_id
        headers[HEADER_CACHE_STRATEGY] = "error"
        headers["Vary"] = VARY
        return headers

    @staticmethod
    def _no_store_headers() -> Dict[str, str]:
        return {
            HEADER_CACHE_CONTROL: NO_STORE_CACHE_CONTROL,
            HEADER_CDN_CACHE_CONTROL: "no-store",
            "Pragma": "no-cache",
            "Expires": "0",
        }
