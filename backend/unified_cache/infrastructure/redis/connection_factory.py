"""
Redis Connection Factory

Connection management for the shared Redis cache store.
Provides a pooled client, circuit breaker protection and a single
error translation point for every Redis command.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar
from urllib.parse import urlparse

from redis.asyncio import Redis
from redis.exceptions import (
    ConnectionError as RedisConnectionError,
    TimeoutError as RedisTimeoutError,
    RedisError,
)

from opentelemetry import trace

from ...core.config import Settings
from ...domain.cache.exceptions import (
    CacheConfigurationError,
    CacheStoreUnavailableError,
    CircuitOpenError,
)
from .circuit_breaker import CircuitBreakerConfig, StoreCircuitBreaker

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

T = TypeVar("T")


class RedisConnectionFactory:
    """
    Factory owning the Redis client used by the cache store.

    All commands go through ``execute`` so that connection errors,
    timeouts and an open circuit surface as ``CacheStoreUnavailableError``.
    """

    def __init__(
        self,
        redis_url: str,
        *,
        max_connections: int = 10,
        connection_timeout: float = 5.0,
        operation_timeout: float = 2.0,
        circuit_breaker: Optional[StoreCircuitBreaker] = None,
        client: Optional[Redis] = None,
    ):
        parsed = urlparse(redis_url)
        if parsed.scheme not in ("redis", "rediss", "unix"):
            raise CacheConfigurationError(
                f"Unsupported Redis URL scheme: {parsed.scheme!r}",
                config_key="REDIS_URL",
            )

        self.redis_url = redis_url
        self._host = parsed.hostname or "localhost"
        self._port = parsed.port or 6379
        self._max_connections = max_connections
        self._connection_timeout = connection_timeout
        self._operation_timeout = operation_timeout
        self._client: Optional[Redis] = client
        self._lock = asyncio.Lock()
        self.circuit_breaker = circuit_breaker or StoreCircuitBreaker(
            CircuitBreakerConfig(
                operation_timeout=operation_timeout,
                failure_exceptions=(
                    RedisConnectionError,
                    RedisTimeoutError,
                    ConnectionError,
                    asyncio.TimeoutError,
                    OSError,
                ),
            )
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisConnectionFactory":
        """Create factory from application settings."""
        if not settings.REDIS_URL:
            raise CacheConfigurationError(
                "REDIS_URL is not configured", config_key="REDIS_URL"
            )
        return cls(
            settings.REDIS_URL,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            connection_timeout=settings.REDIS_CONNECTION_TIMEOUT,
            operation_timeout=settings.REDIS_OPERATION_TIMEOUT,
            circuit_breaker=StoreCircuitBreaker(
                CircuitBreakerConfig(
                    failure_threshold=settings.CIRCUIT_BREAKER_FAILURE_THRESHOLD,
                    recovery_timeout=float(settings.CIRCUIT_BREAKER_RECOVERY_TIMEOUT),
                    operation_timeout=settings.REDIS_OPERATION_TIMEOUT,
                    failure_exceptions=(
                        RedisConnectionError,
                        RedisTimeoutError,
                        ConnectionError,
                        asyncio.TimeoutError,
                        OSError,
                    ),
                )
            ),
        )

    async def get_client(self) -> Redis:
        """Get (lazily creating) the pooled Redis client."""
        if self._client is not None:
            return self._client

        async with self._lock:
            if self._client is None:
                self._client = Redis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                    max_connections=self._max_connections,
                    socket_connect_timeout=self._connection_timeout,
                    socket_timeout=self._operation_timeout,
                    retry_on_timeout=True,
                )
                logger.info(
                    "Redis client created",
                    extra={
                        "host": self._host,
                        "port": self._port,
                        "max_connections": self._max_connections,
                    },
                )
        return self._client

    async def execute(
        self,
        operation: str,
        command: Callable[[Redis], Awaitable[T]],
        key: Optional[str] = None,
    ) -> T:
        """
        Run a Redis command with circuit breaker protection.

        Args:
            operation: Operation name for logs and errors
            command: Callable receiving the client and returning an awaitable
            key: Optional cache key for error context

        Raises:
            CacheStoreUnavailableError: On connection failure, timeout,
                open circuit or any other Redis error
        """
        client = await self.get_client()
        try:
            return await self.circuit_breaker.call(
                command, client, operation=operation
            )
        except CircuitOpenError:
            raise
        except (RedisError, ConnectionError, asyncio.TimeoutError, OSError) as e:
            logger.warning(
                f"Redis {operation} failed: {e}",
                extra={"operation": operation, "key": key},
            )
            raise CacheStoreUnavailableError(
                operation=operation, key=key, original_error=e
            ) from e

    async def health_check(self) -> Dict[str, Any]:
        """Ping Redis and report latency with circuit breaker status."""
        health_status: Dict[str, Any] = {
            "status": "unhealthy",
            "timestamp": time.time(),
            "circuit_breaker": self.circuit_breaker.get_status(),
        }

        with tracer.start_as_current_span("redis.health_check") as span:
            start_time = time.perf_counter()
            try:
                await self.execute("ping", lambda client: client.ping())
            except CacheStoreUnavailableError as e:
                health_status["error"] = e.message
                span.set_attribute("redis.healthy", False)
                return health_status

            health_status["status"] = "healthy"
            health_status["response_time_ms"] = round(
                (time.perf_counter() - start_time) * 1000, 2
            )
            span.set_attribute("redis.healthy", True)
            return health_status

    async def close(self) -> None:
        """Close the client and its connection pool."""
        async with self._lock:
            if self._client is None:
                return
            try:
                await self._client.aclose()
            except Exception as e:
                logger.warning(f"Error closing Redis client: {e}")
            finally:
                self._client = None
            logger.info("Redis connection factory closed")
