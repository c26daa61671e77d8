"""
Cache Store Circuit Breaker

Circuit breaker for shared cache store operations. When the store keeps
failing, calls are rejected immediately so request paths fall back to
the producer instead of waiting on a dead connection.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, Union

from ...domain.cache.exceptions import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject calls
    HALF_OPEN = "half_open"  # Testing if service recovered


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    # Consecutive failures before opening
    failure_threshold: int = 5

    # Seconds to wait before letting a trial call through
    recovery_timeout: float = 30.0

    # Successful trial calls needed to close again
    success_threshold: int = 1

    # Timeout for individual operations
    operation_timeout: float = 2.0

    # Exception types counted as failures; anything else passes through
    failure_exceptions: tuple = (
        ConnectionError,
        TimeoutError,
        asyncio.TimeoutError,
        OSError,
    )


@dataclass
class CircuitBreakerMetrics:
    """Counters for circuit breaker monitoring."""

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    circuit_opens: int = 0

    @property
    def failure_rate(self) -> float:
        if self.total_calls == 0:
            return 0.0
        return self.failed_calls / self.total_calls


class StoreCircuitBreaker:
    """
    Circuit breaker guarding calls to the shared cache store.

    Counts only ``failure_exceptions`` as failures. Operations exceeding
    ``operation_timeout`` are cancelled and counted as failures.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.opened_at: Optional[float] = None
        self.metrics = CircuitBreakerMetrics()

    async def call(
        self,
        func: Callable[..., Union[T, Awaitable[T]]],
        *args: Any,
        operation: str = "call",
        **kwargs: Any,
    ) -> T:
        """
        Execute ``func`` with circuit breaker protection.

        Raises:
            CircuitOpenError: If the circuit is open
            Exception: Original exception from the call
        """
        self._before_call(operation)
        self.metrics.total_calls += 1

        try:
            result = func(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await asyncio.wait_for(
                    result, timeout=self.config.operation_timeout
                )
        except self.config.failure_exceptions as e:
            self._record_failure(operation, e)
            raise

        self._record_success()
        return result

    def _before_call(self, operation: str) -> None:
        if self.state is not CircuitState.OPEN:
            return

        elapsed = self._clock() - (self.opened_at or 0.0)
        if elapsed >= self.config.recovery_timeout:
            self.state = CircuitState.HALF_OPEN
            self.success_count = 0
            logger.info(
                "Circuit breaker transitioning to HALF_OPEN",
                extra={"operation": operation, "failure_count": self.failure_count},
            )
            return

        self.metrics.rejected_calls += 1
        raise CircuitOpenError(
            operation=operation,
            retry_after=self.config.recovery_timeout - elapsed,
        )

    def _record_success(self) -> None:
        self.metrics.successful_calls += 1

        if self.state is CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.config.success_threshold:
                self.state = CircuitState.CLOSED
                self.failure_count = 0
                self.success_count = 0
                self.opened_at = None
                logger.info("Circuit breaker: circuit closed after recovery")
        elif self.failure_count:
            self.failure_count = 0

    def _record_failure(self, operation: str, error: BaseException) -> None:
        self.metrics.failed_calls += 1
        self.failure_count += 1

        if (
            self.state is CircuitState.HALF_OPEN
            or self.failure_count >= self.config.failure_threshold
        ):
            if self.state is not CircuitState.OPEN:
                self.metrics.circuit_opens += 1
            self.state = CircuitState.OPEN
            self.opened_at = self._clock()
            logger.warning(
                "Circuit breaker: circuit opened",
                extra={
                    "operation": operation,
                    "failure_count": self.failure_count,
                    "error_type": type(error).__name__,
                },
            )

    def reset(self) -> None:
        """Manually reset circuit breaker to closed state."""
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.opened_at = None

    def get_status(self) -> Dict[str, Any]:
        """Get current circuit breaker status for monitoring."""
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "metrics": {
                "total_calls": self.metrics.total_calls,
                "successful_calls": self.metrics.successful_calls,
                "failed_calls": self.metrics.failed_calls,
                "rejected_calls": self.metrics.rejected_calls,
                "failure_rate": self.metrics.failure_rate,
                "circuit_opens": self.metrics.circuit_opens,
            },
            "config": {
                "failure_threshold": self.config.failure_threshold,
                "recovery_timeout": self.config.recovery_timeout,
                "operation_timeout": self.config.operation_timeout,
            },
        }
