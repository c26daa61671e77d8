"""
Unified Cache Global Constants

Centralized location for system-wide constants used across the cache layer.
"""

import os
import time
from datetime import datetime, timezone


# Timestamp Functions
def get_current_timestamp() -> datetime:
    """Get current timestamp with UTC timezone.

    Returns:
        datetime: Current UTC timestamp
    """
    return datetime.now(timezone.utc)


def resolve_build_id() -> str:
    """Resolve the deployment build identifier used for cache busting.

    Order: BUILD_ID, short VERCEL_GIT_COMMIT_SHA, process start time.
    """
    build_id = os.getenv("BUILD_ID")
    if build_id:
        return build_id

    commit_sha = os.getenv("VERCEL_GIT_COMMIT_SHA")
    if commit_sha:
        return commit_sha[:7]

    return str(int(time.time() * 1000))


# Application Constants
APP_NAME = "Unified Cache"
APP_VERSION = "0.1.0"

# Cache key limits
MAX_CACHE_KEY_LENGTH = 200
CACHE_KEY_SEPARATOR = ":"

# HTTP header names emitted by the response factory
HEADER_CACHE_CONTROL = "Cache-Control"
HEADER_CDN_CACHE_CONTROL = "CDN-Cache-Control"
HEADER_CACHE_TAG = "Cache-Tag"
HEADER_BUILD_ID = "X-Build-ID"
HEADER_CACHE_STRATEGY = "X-Cache-Strategy"
HEADER_ADMIN_TOKEN = "X-Cache-Admin-Token"

# Encrypted message wire format
ENCRYPTION_DELIMITER = ":"
ENCRYPTION_IV_BYTES = 16
ENCRYPTION_TAG_BYTES = 16
ENCRYPTION_KEY_HEX_LENGTH = 64
