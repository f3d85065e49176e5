"""
Redis infrastructure for the Cache Store.

Provides the pooled connection factory, circuit breaker and error
classification used by the Redis cache repository.
"""

from .circuit_breaker import CircuitBreakerConfig, CircuitState, RedisCircuitBreaker
from .connection_factory import RedisConnectionFactory
from .exceptions import classify_redis_error

__all__ = [
    "CircuitBreakerConfig",
    "CircuitState",
    "RedisCircuitBreaker",
    "RedisConnectionFactory",
    "classify_redis_error",
]
