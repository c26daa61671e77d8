"""
Cache Domain Entities

Core domain entity for cached query results.
Encapsulates freshness rules and serialization for the backing stores.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, Optional

from .value_objects import CacheEntryStatus, CacheStrategy, CacheTag


@dataclass
class CacheEntry:
    """
    Cached producer result.

    Timestamps are epoch seconds taken from the executor clock, so the same
    entry can be evaluated by any process sharing the store.
    """

    key: str
    value: Any
    created_at: float
    expires_at: float
    stale_until: float
    strategy: str
    build_id: str
    tags: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def create(
        cls,
        key: str,
        value: Any,
        strategy: CacheStrategy,
        now: float,
        build_id: str,
        tags: Optional[Iterable[str]] = None,
    ) -> "CacheEntry":
        """Create a new entry for a successful producer result."""
        all_tags = CacheTag.normalize(tuple(strategy.tags) + tuple(tags or ()))
        expires_at = now + strategy.max_age_seconds
        return cls(
            key=key,
            value=value,
            created_at=now,
            expires_at=expires_at,
            stale_until=expires_at + strategy.stale_while_revalidate_seconds,
            strategy=strategy.name,
            build_id=build_id,
            tags=frozenset(all_tags),
        )

    def status(self, now: float) -> CacheEntryStatus:
        """Classify the entry at the given instant."""
        if now < self.expires_at:
            return CacheEntryStatus.FRESH
        if now < self.stale_until:
            return CacheEntryStatus.STALE
        return CacheEntryStatus.EXPIRED

    def is_fresh(self, now: float) -> bool:
        return self.status(now) is CacheEntryStatus.FRESH

    def is_servable(self, now: float) -> bool:
        """Fresh or within the stale-while-revalidate window."""
        return self.status(now) is not CacheEntryStatus.EXPIRED

    def remaining_ttl(self, now: float) -> int:
        """Seconds the backing store should keep this entry."""
        return max(1, int(round(self.stale_until - now)))

    def age(self, now: float) -> float:
        return max(0.0, now - self.created_at)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize entry for storage."""
        return {
            "key": self.key,
            "value": self.value,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "stale_until": self.stale_until,
            "strategy": self.strategy,
            "build_id": self.build_id,
            "tags": sorted(self.tags),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        """Deserialize entry from storage."""
        return cls(
            key=data["key"],
            value=data["value"],
            created_at=float(data["created_at"]),
            expires_at=float(data["expires_at"]),
            stale_until=float(data["stale_until"]),
            strategy=data["strategy"],
            build_id=data["build_id"],
            tags=frozenset(data.get("tags", [])),
        )

    @classmethod
    def from_json(cls, raw: str) -> "CacheEntry":
        return cls.from_dict(json.loads(raw))

    def describe(self, now: float) -> Dict[str, Any]:
        """Human-readable summary for diagnostics endpoints."""
        return {
            "key": self.key,
            "strategy": self.strategy,
            "status": self.status(now).value,
            "age_seconds": round(self.age(now), 3),
            "created_at": datetime.fromtimestamp(
                self.created_at, tz=timezone.utc
            ).isoformat(),
            "expires_at": datetime.fromtimestamp(
                self.expires_at, tz=timezone.utc
            ).isoformat(),
            "tags": sorted(self.tags),
        }
