"""
Cache Domain Exceptions

Domain-specific exceptions for cache configuration and operations.
Configuration errors are fatal; store errors are recovered by the executor.
"""

from typing import Optional, Any, Dict, Iterable


class CacheException(Exception):
    """Base exception for cache-related errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class CacheConfigurationError(CacheException):
    """Raised when cache configuration is invalid.

    Deployment-time failure: never caught and degraded at request time.
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key
        if original_error:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__

        super().__init__(
            message=message, error_code="CACHE_CONFIGURATION_ERROR", details=details
        )
        if original_error:
            self.__cause__ = original_error


class UnknownStrategyError(CacheConfigurationError):
    """Raised when a strategy name is not in the registry."""

    def __init__(self, name: str, known: Iterable[str] = ()):
        super().__init__(
            message=f"Unknown cache strategy: {name!r}",
            config_key="strategy",
        )
        self.error_code = "CACHE_UNKNOWN_STRATEGY"
        self.details["strategy"] = name
        self.details["known_strategies"] = sorted(known)


class InvalidCacheKeyError(CacheException):
    """Raised when a cache key or tag violates naming rules."""

    def __init__(self, message: str, key: Optional[str] = None):
        details = {"key": key} if key is not None else {}
        super().__init__(
            message=message, error_code="CACHE_INVALID_KEY", details=details
        )


class CacheStoreUnavailableError(CacheException):
    """Raised by store implementations when the backing store cannot be reached."""

    def __init__(
        self,
        operation: str,
        key: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {"operation": operation}
        if key:
            details["key"] = key
        if original_error:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__

        super().__init__(
            message=f"Cache store unavailable during '{operation}'",
            error_code="CACHE_STORE_UNAVAILABLE",
            details=details,
        )
        if original_error:
            self.__cause__ = original_error


class CircuitOpenError(CacheStoreUnavailableError):
    """Raised when the store circuit breaker rejects a call without trying it."""

    def __init__(self, operation: str = "call", retry_after: Optional[float] = None):
        super().__init__(operation=operation)
        self.message = "Cache store circuit breaker is open"
        self.args = (self.message,)
        self.error_code = "CACHE_CIRCUIT_OPEN"
        if retry_after is not None:
            self.details["retry_after_seconds"] = round(retry_after, 3)


class CacheSerializationError(CacheException):
    """Raised when a value cannot be encoded for, or decoded from, the store."""

    def __init__(self, key: str, original_error: Optional[Exception] = None):
        details: Dict[str, Any] = {"key": key}
        if original_error:
            details["original_error"] = str(original_error)
        super().__init__(
            message=f"Cache entry for '{key}' could not be serialized",
            error_code="CACHE_SERIALIZATION_ERROR",
            details=details,
        )
        if original_error:
            self.__cause__ = original_error
