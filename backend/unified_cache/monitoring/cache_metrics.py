"""
Cache Metrics Collector

Hit/miss accounting for the unified cache executor.
Counts are kept twice: in Prometheus collectors for scraping and in
plain counters for the JSON statistics endpoint.
"""

import threading
from collections import defaultdict
from typing import Any, Dict

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)
import structlog

logger = structlog.get_logger(__name__)

LOOKUP_OUTCOMES = ("hit", "stale", "miss", "coalesced", "bypass")


class CacheMetrics:
    """
    Metrics for cache lookups, producer runs, errors and purges.

    Each instance owns its own ``CollectorRegistry`` so several executors
    (and tests) never collide on metric names.
    """

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, namespace: str = "ucache"):
        self.namespace = namespace
        self.registry = CollectorRegistry()
        self._lock = threading.Lock()

        self._outcomes: Dict[str, Dict[str, int]] = defaultdict(
            lambda: {outcome: 0 for outcome in LOOKUP_OUTCOMES}
        )
        self._errors: Dict[str, int] = defaultdict(int)
        self._purged_keys = 0
        self._refreshes = {"succeeded": 0, "failed": 0}

        self.prom_lookups_total = Counter(
            f"{namespace}_lookups_total",
            "Cache lookups by strategy and outcome",
            ["strategy", "outcome"],
            registry=self.registry,
        )

        self.prom_errors_total = Counter(
            f"{namespace}_errors_total",
            "Cache store and producer errors",
            ["operation", "error_type"],
            registry=self.registry,
        )

        self.prom_producer_duration_seconds = Histogram(
            f"{namespace}_producer_duration_seconds",
            "Time spent running producers on a cache miss",
            ["strategy"],
            buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=self.registry,
        )

        self.prom_purged_keys_total = Counter(
            f"{namespace}_purged_keys_total",
            "Cache keys removed by purge operations",
            ["kind"],
            registry=self.registry,
        )

        self.prom_refreshes_total = Counter(
            f"{namespace}_background_refreshes_total",
            "Stale-while-revalidate background refreshes",
            ["result"],
            registry=self.registry,
        )

    def record_lookup(self, strategy: str, outcome: str) -> None:
        """Count a lookup outcome: hit, stale, miss, coalesced or bypass."""
        if outcome not in LOOKUP_OUTCOMES:
            raise ValueError(f"Unknown lookup outcome: {outcome}")
        with self._lock:
            self._outcomes[strategy][outcome] += 1
        self.prom_lookups_total.labels(strategy=strategy, outcome=outcome).inc()

    def record_error(self, operation: str, error: BaseException) -> None:
        error_type = type(error).__name__
        with self._lock:
            self._errors[operation] += 1
        self.prom_errors_total.labels(operation=operation, error_type=error_type).inc()

    def observe_producer(self, strategy: str, duration_seconds: float) -> None:
        self.prom_producer_duration_seconds.labels(strategy=strategy).observe(
            duration_seconds
        )

    def record_purge(self, kind: str, count: int) -> None:
        with self._lock:
            self._purged_keys += count
        self.prom_purged_keys_total.labels(kind=kind).inc(count)

    def record_refresh(self, succeeded: bool) -> None:
        result = "succeeded" if succeeded else "failed"
        with self._lock:
            self._refreshes[result] += 1
        self.prom_refreshes_total.labels(result=result).inc()

    def snapshot(self) -> Dict[str, Any]:
        """
        Aggregate counters for the statistics endpoint.

        ``hit_rate`` counts stale and coalesced results as hits, since the
        producer did not run for them.
        """
        with self._lock:
            per_strategy = {name: dict(counts) for name, counts in self._outcomes.items()}
            errors = dict(self._errors)
            purged = self._purged_keys
            refreshes = dict(self._refreshes)

        totals = {outcome: 0 for outcome in LOOKUP_OUTCOMES}
        for counts in per_strategy.values():
            for outcome, value in counts.items():
                totals[outcome] += value

        served = totals["hit"] + totals["stale"] + totals["coalesced"]
        cacheable_lookups = served + totals["miss"]
        hit_rate = served / cacheable_lookups if cacheable_lookups else 0.0

        return {
            "hits": totals["hit"],
            "stale_hits": totals["stale"],
            "misses": totals["miss"],
            "coalesced": totals["coalesced"],
            "bypassed": totals["bypass"],
            "hit_rate": round(hit_rate, 4),
            "errors": errors,
            "purged_keys": purged,
            "background_refreshes": refreshes,
            "strategies": per_strategy,
        }

    def export(self) -> bytes:
        """Prometheus text exposition of this collector's registry."""
        return generate_latest(self.registry)

    def log_summary(self) -> None:
        summary = self.snapshot()
        logger.info(
            "cache_metrics_summary",
            hits=summary["hits"],
            misses=summary["misses"],
            stale_hits=summary["stale_hits"],
            hit_rate=summary["hit_rate"],
        )
