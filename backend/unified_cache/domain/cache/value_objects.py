"""
Cache Value Objects

Immutable value objects for the cache domain.
Provides type safety and validation for keys, tags and strategy policies.
"""

import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from ...constants import CACHE_KEY_SEPARATOR, MAX_CACHE_KEY_LENGTH
from .exceptions import CacheConfigurationError, InvalidCacheKeyError


class CacheEntryStatus(str, Enum):
    """Freshness of a stored entry relative to its strategy."""

    FRESH = "fresh"
    STALE = "stale"
    EXPIRED = "expired"


class StrategyName(str, Enum):
    """Names of the built-in cache strategies."""

    STATIC_IMMUTABLE = "STATIC_IMMUTABLE"
    DYNAMIC_CONTENT = "DYNAMIC_CONTENT"
    API_STANDARD = "API_STANDARD"
    DATABASE_QUERIES = "DATABASE_QUERIES"
    USER_PRIVATE = "USER_PRIVATE"
    REALTIME = "REALTIME"


def _stable_json(value: Any) -> str:
    """Serialize filters so that equal queries produce equal strings."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


@dataclass(frozen=True)
class CacheKey:
    """
    Immutable cache key value object.

    Convention is ``<resource>:<discriminator>...``; the core only enforces
    non-empty, whitespace-free keys. Built keys that are too long or carry
    whitespace from filter values are hashed.
    """

    value: str

    def __post_init__(self) -> None:
        """Validate cache key format."""
        if not self.value:
            raise InvalidCacheKeyError("Cache key cannot be empty")

        if any(char.isspace() for char in self.value):
            raise InvalidCacheKeyError(
                "Cache key cannot contain whitespace", key=self.value
            )

    @classmethod
    def build(
        cls,
        resource: str,
        *parts: Any,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> "CacheKey":
        """Compose a key from a resource kind, discriminators and filters.

        Filters are serialized with sorted keys and ``None`` values dropped,
        e.g. ``companies:list:{"page":1,"status":"verified"}``.
        """
        if not resource:
            raise InvalidCacheKeyError("Cache key resource cannot be empty")

        segments = [resource] + [str(part) for part in parts]
        if filters:
            cleaned = {k: v for k, v in filters.items() if v is not None}
            if cleaned:
                segments.append(_stable_json(cleaned))

        raw = CACHE_KEY_SEPARATOR.join(segments)
        if len(raw) > MAX_CACHE_KEY_LENGTH or any(c.isspace() for c in raw):
            digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()
            raw = f"{resource}{CACHE_KEY_SEPARATOR}sha256{CACHE_KEY_SEPARATOR}{digest}"
        return cls(raw)

    @property
    def resource(self) -> str:
        """Resource kind (first segment)."""
        return self.value.split(CACHE_KEY_SEPARATOR, 1)[0]

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class CacheTag:
    """Cache tag for grouping related entries."""

    value: str

    def __post_init__(self) -> None:
        if not self.value or not self.value.strip():
            raise InvalidCacheKeyError("Cache tag cannot be empty")
        if "," in self.value:
            raise InvalidCacheKeyError(
                "Cache tag cannot contain commas", key=self.value
            )

    @classmethod
    def normalize(cls, tags: Optional[Iterable[Any]]) -> Tuple[str, ...]:
        """Validate tags and return them de-duplicated in first-seen order."""
        if not tags:
            return ()
        seen: Dict[str, None] = {}
        for tag in tags:
            raw = tag.value if isinstance(tag, CacheTag) else str(tag)
            seen[cls(raw.strip()).value] = None
        return tuple(seen)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class CacheStrategy:
    """
    Named cache policy bundle.

    ``max_age_seconds`` is the application cache freshness window,
    ``stale_while_revalidate_seconds`` how long after expiry an entry may
    still be served while it is refreshed, ``cdn_max_age_seconds`` and
    ``browser_max_age_seconds`` drive the emitted HTTP headers.
    """

    name: str
    max_age_seconds: int
    stale_while_revalidate_seconds: int = 0
    cdn_max_age_seconds: int = 0
    browser_max_age_seconds: int = 0
    cacheable: bool = True
    private: bool = False
    must_revalidate: bool = False
    immutable: bool = False
    tags: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not self.name:
            raise CacheConfigurationError("Strategy name cannot be empty")

        for attr in (
            "max_age_seconds",
            "stale_while_revalidate_seconds",
            "cdn_max_age_seconds",
            "browser_max_age_seconds",
        ):
            value = getattr(self, attr)
            if not isinstance(value, int) or value < 0:
                raise CacheConfigurationError(
                    f"Strategy {self.name}: {attr} must be a non-negative integer",
                    config_key=attr,
                )

        if self.cacheable and self.max_age_seconds == 0:
            raise CacheConfigurationError(
                f"Strategy {self.name}: cacheable strategies need max_age_seconds > 0",
                config_key="max_age_seconds",
            )

        # Tags may be given as any iterable; store them normalized
        object.__setattr__(self, "tags", CacheTag.normalize(self.tags))

    @property
    def retention_seconds(self) -> int:
        """Total time an entry stays in the store (fresh plus stale window)."""
        return self.max_age_seconds + self.stale_while_revalidate_seconds

    @property
    def serves_stale(self) -> bool:
        """Whether expired entries are served while being refreshed."""
        return self.cacheable and self.stale_while_revalidate_seconds > 0

    def to_dict(self) -> Dict[str, Any]:
        """Serialize strategy for stats and diagnostics."""
        return {
            "name": self.name,
            "cacheable": self.cacheable,
            "max_age_seconds": self.max_age_seconds,
            "stale_while_revalidate_seconds": self.stale_while_revalidate_seconds,
            "cdn_max_age_seconds": self.cdn_max_age_seconds,
            "browser_max_age_seconds": self.browser_max_age_seconds,
            "private": self.private,
            "must_revalidate": self.must_revalidate,
            "immutable": self.immutable,
            "tags": list(self.tags),
        }
