"""
Redis Circuit Breaker

Fails Cache Store calls fast with UnavailableError once Redis has stopped
answering, instead of letting every caller wait out a socket timeout.
Only transport failures count; command errors pass through untouched.
"""

import asyncio
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type, TypeVar

import structlog
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ...domain.documents.exceptions import UnavailableError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

TRANSPORT_ERRORS: Tuple[Type[BaseException], ...] = (
    RedisConnectionError,
    RedisTimeoutError,
    ConnectionError,
    TimeoutError,
    OSError,
)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """
    Attributes:
        failure_threshold: Consecutive transport failures that open the circuit
        recovery_timeout: Seconds an open circuit waits before a probe call
        success_threshold: Successful probes needed to close it again
        failure_exceptions: Exception types counted as transport failures
    """

    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    success_threshold: int = 1
    failure_exceptions: Tuple[Type[BaseException], ...] = TRANSPORT_ERRORS


@dataclass
class CircuitBreakerMetrics:
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    circuit_opens: int = 0


class RedisCircuitBreaker:
    """Three-state breaker guarding every Redis command sequence."""

    def __init__(
        self,
        config: CircuitBreakerConfig,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.metrics = CircuitBreakerMetrics()
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def retry_at(self) -> Optional[float]:
        """Clock reading after which an open circuit admits a probe."""
        if self.last_failure_time is None:
            return None
        return self.last_failure_time + self.config.recovery_timeout

    async def call(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """
        Await `func(*args, **kwargs)` unless the circuit is open.

        Raises:
            UnavailableError: The circuit is open and no probe is due
            Exception: Whatever `func` raised, after it has been counted
        """
        await self._admit()
        try:
            result = await func(*args, **kwargs)
        except self.config.failure_exceptions as e:
            await self._on_failure(type(e).__name__)
            raise
        await self._on_success()
        return result

    async def _admit(self) -> None:
        async with self._lock:
            self.metrics.total_calls += 1
            if self.state is not CircuitState.OPEN:
                return
            retry_at = self.retry_at
            if retry_at is None or self._clock() >= retry_at:
                self._transition(CircuitState.HALF_OPEN)
                return
            self.metrics.rejected_calls += 1
        raise UnavailableError(
            "Cache store circuit breaker is open",
            details={"state": CircuitState.OPEN.value, "retry_at": retry_at},
        )

    async def _on_success(self) -> None:
        async with self._lock:
            self.metrics.successful_calls += 1
            if self.state is CircuitState.HALF_OPEN:
                self.success_count += 1
                if self.success_count >= self.config.success_threshold:
                    self._transition(CircuitState.CLOSED)
            else:
                self.failure_count = 0

    async def _on_failure(self, failure_type: str) -> None:
        async with self._lock:
            self.metrics.failed_calls += 1
            self.last_failure_time = self._clock()
            if self.state is CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN, failure_type=failure_type)
            elif self.state is CircuitState.CLOSED:
                self.failure_count += 1
                if self.failure_count >= self.config.failure_threshold:
                    self._transition(CircuitState.OPEN, failure_type=failure_type)

    def _transition(self, state: CircuitState, **context: Any) -> None:
        """Move to `state`; callers hold the lock."""
        previous, self.state = self.state, state
        self.success_count = 0
        if state is CircuitState.OPEN:
            self.metrics.circuit_opens += 1
            logger.warning(
                "circuit_breaker_opened",
                previous_state=previous.value,
                failure_count=self.failure_count,
                threshold=self.config.failure_threshold,
                **context,
            )
        elif state is CircuitState.CLOSED:
            self.failure_count = 0
            logger.info("circuit_breaker_closed", previous_state=previous.value)
        else:
            logger.info("circuit_breaker_half_open", failure_count=self.failure_count)

    def get_status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "last_failure_time": self.last_failure_time,
            "metrics": asdict(self.metrics),
        }

    async def reset(self) -> None:
        """Force the circuit closed and forget past failures."""
        async with self._lock:
            self.last_failure_time = None
            self._transition(CircuitState.CLOSED)
