"""
HTTP API for cache health, statistics and invalidation.
"""
