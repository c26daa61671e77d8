"""
Monitoring for the unified cache.
"""

from .cache_metrics import CacheMetrics

__all__ = ["CacheMetrics"]
