"""
Unified Cache Backend

Strategy-driven read-through caching, tag-based invalidation, HTTP cache
header synthesis and message encryption for the listings platform API.
"""

__version__ = "0.1.0"
