"""
Redis infrastructure for the shared cache store.
"""

from .circuit_breaker import (
    CircuitBreakerConfig,
    CircuitState,
    StoreCircuitBreaker,
)
from .connection_factory import RedisConnectionFactory

__all__ = [
    "CircuitBreakerConfig",
    "CircuitState",
    "StoreCircuitBreaker",
    "RedisConnectionFactory",
]
