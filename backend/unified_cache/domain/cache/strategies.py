"""
Cache Strategy Registry

Closed, immutable mapping from strategy names to cache policies.
The registry is built once at startup and injected into the cache
executor and the response factory.
"""

from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Tuple, Union

from .exceptions import CacheConfigurationError, UnknownStrategyError
from .value_objects import CacheStrategy, StrategyName

StrategyRef = Union[str, StrategyName, CacheStrategy]

ONE_MINUTE = 60
ONE_HOUR = 60 * ONE_MINUTE
ONE_DAY = 24 * ONE_HOUR
ONE_YEAR = 365 * ONE_DAY


DEFAULT_STRATEGIES: Tuple[CacheStrategy, ...] = (
    # Content that never changes after creation (e.g. verified certificates)
    CacheStrategy(
        name=StrategyName.STATIC_IMMUTABLE.value,
        max_age_seconds=ONE_DAY,
        stale_while_revalidate_seconds=7 * ONE_DAY,
        cdn_max_age_seconds=ONE_YEAR,
        browser_max_age_seconds=ONE_YEAR,
        immutable=True,
        tags=("static",),
    ),
    # Frequently changing public listings
    CacheStrategy(
        name=StrategyName.DYNAMIC_CONTENT.value,
        max_age_seconds=2 * ONE_MINUTE,
        stale_while_revalidate_seconds=5 * ONE_MINUTE,
        cdn_max_age_seconds=ONE_MINUTE,
        tags=("pages", "content"),
    ),
    # General read endpoints
    CacheStrategy(
        name=StrategyName.API_STANDARD.value,
        max_age_seconds=3 * ONE_MINUTE,
        stale_while_revalidate_seconds=6 * ONE_MINUTE,
        cdn_max_age_seconds=30,
        tags=("api",),
    ),
    # Expensive aggregate queries, application cache only
    CacheStrategy(
        name=StrategyName.DATABASE_QUERIES.value,
        max_age_seconds=5 * ONE_MINUTE,
        stale_while_revalidate_seconds=10 * ONE_MINUTE,
        tags=("database",),
    ),
    # Leaderboards and counters
    CacheStrategy(
        name=StrategyName.REALTIME.value,
        max_age_seconds=30,
        stale_while_revalidate_seconds=ONE_MINUTE,
        cdn_max_age_seconds=5,
        tags=("realtime",),
    ),
    # Per-user data: never stored, never shared
    CacheStrategy(
        name=StrategyName.USER_PRIVATE.value,
        max_age_seconds=0,
        cacheable=False,
        private=True,
        must_revalidate=True,
        tags=("private",),
    ),
)


class StrategyRegistry:
    """
    Immutable lookup of cache strategies by name.

    Unknown names raise ``UnknownStrategyError``; this is a programming
    error and is surfaced immediately instead of degrading.
    """

    def __init__(self, strategies: Iterable[CacheStrategy] = DEFAULT_STRATEGIES):
        table: Dict[str, CacheStrategy] = {}
        for strategy in strategies:
            if strategy.name in table:
                raise CacheConfigurationError(
                    f"Duplicate cache strategy: {strategy.name}",
                    config_key="strategy",
                )
            table[strategy.name] = strategy

        if not table:
            raise CacheConfigurationError("Strategy registry cannot be empty")

        self._strategies: Mapping[str, CacheStrategy] = MappingProxyType(table)

    def get(self, ref: StrategyRef) -> CacheStrategy:
        """Resolve a strategy by name, enum member or instance."""
        if isinstance(ref, CacheStrategy):
            registered = self._strategies.get(ref.name)
            if registered is None:
                raise UnknownStrategyError(ref.name, self._strategies)
            return registered

        name = ref.value if isinstance(ref, StrategyName) else ref
        try:
            return self._strategies[name]
        except (KeyError, TypeError):
            raise UnknownStrategyError(str(name), self._strategies) from None

    def validate(self, names: Iterable[StrategyRef]) -> None:
        """Fail fast at startup if any referenced strategy is unknown."""
        for name in names:
            self.get(name)

    def names(self) -> Tuple[str, ...]:
        return tuple(self._strategies)

    def __contains__(self, name: object) -> bool:
        if isinstance(name, StrategyName):
            name = name.value
        return name in self._strategies

    def __iter__(self):
        return iter(self._strategies.values())

    def __len__(self) -> int:
        return len(self._strategies)

    def __repr__(self) -> str:
        return f"StrategyRegistry(strategies={list(self._strategies)})"


default_registry = StrategyRegistry()


def get_strategy(name: StrategyRef) -> CacheStrategy:
    """Resolve a strategy from the default registry."""
    return default_registry.get(name)
