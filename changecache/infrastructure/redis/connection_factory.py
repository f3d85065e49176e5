"""
Redis Connection Factory

Connection management for the Cache Store: one pooled asyncio client,
circuit breaker protection and error classification for every command.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import structlog
from opentelemetry.instrumentation.redis import RedisInstrumentor
from redis.asyncio import ConnectionPool, Redis

from ...core.config import Settings
from ...domain.documents.exceptions import CacheEngineError
from .circuit_breaker import CircuitBreakerConfig, RedisCircuitBreaker
from .exceptions import classify_redis_error

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RedisConnectionFactory:
    """
    Factory for the pooled Redis client used by the Cache Store.

    Connections are opened lazily so an unreachable Redis never prevents
    the engine from starting; reads then degrade to the Primary Store.
    """

    def __init__(self, settings: Settings, client: Optional[Redis] = None):
        self.settings = settings
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = client
        self._circuit_breaker = RedisCircuitBreaker(
            CircuitBreakerConfig(
                failure_threshold=settings.CIRCUIT_BREAKER_FAILURE_THRESHOLD,
                recovery_timeout=settings.CIRCUIT_BREAKER_RECOVERY_TIMEOUT,
            )
        )
        self._lock = asyncio.Lock()

    @property
    def circuit_breaker(self) -> RedisCircuitBreaker:
        return self._circuit_breaker

    async def get_client(self) -> Redis:
        """Get the shared client, creating the pool on first use."""
        if self._client is not None:
            return self._client

        async with self._lock:
            if self._client is None:
                _instrument_redis()
                self._pool = ConnectionPool.from_url(
                    self.settings.REDIS_URL,
                    decode_responses=True,
                    encoding="utf-8",
                    max_connections=self.settings.REDIS_MAX_CONNECTIONS,
                    socket_timeout=self.settings.REDIS_SOCKET_TIMEOUT,
                    socket_connect_timeout=self.settings.REDIS_SOCKET_TIMEOUT,
                )
                self._client = Redis(connection_pool=self._pool)
                logger.info(
                    "redis_pool_created",
                    max_connections=self.settings.REDIS_MAX_CONNECTIONS,
                )
        return self._client

    async def execute(
        self, operation: str, func: Callable[[Redis], Awaitable[T]]
    ) -> T:
        """
        Run one Cache Store command sequence against Redis.

        Args:
            operation: Operation description for logging and errors
            func: Coroutine function receiving the client

        Returns:
            Result of `func`

        Raises:
            CacheEngineError: Classified Redis failure or open circuit
        """
        client = await self.get_client()
        try:
            return await self._circuit_breaker.call(func, client)
        except CacheEngineError:
            raise
        except Exception as e:
            raise classify_redis_error(e, operation) from e

    async def health_check(self) -> Dict[str, Any]:
        """Ping Redis and report circuit breaker state."""
        status: Dict[str, Any] = {
            "status": "unhealthy",
            "timestamp": time.time(),
            "circuit_breaker": self._circuit_breaker.get_status(),
        }
        try:
            start_time = time.time()
            await self.execute("ping", lambda client: client.ping())
            status["status"] = "healthy"
            status["response_time_ms"] = round((time.time() - start_time) * 1000, 2)
        except CacheEngineError as e:
            status["error"] = e.message
        return status

    async def close(self) -> None:
        """Close the client and its pool."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        if self._pool is not None:
            await self._pool.aclose()
            self._pool = None
        logger.info("redis_connection_factory_closed")


_instrumented = False


def _instrument_redis() -> None:
    """Enable OpenTelemetry instrumentation of redis-py once per process."""
    global _instrumented
    if _instrumented:
        return
    try:
        RedisInstrumentor().instrument()
        _instrumented = True
    except Exception as e:
        logger.warning("redis_instrumentation_failed", error=str(e))
