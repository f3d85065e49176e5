"""
Redis Error Classification

Maps redis-py exceptions onto the engine's error kinds.
"""

from redis.exceptions import (
    AuthenticationError,
    BusyLoadingError,
    ConnectionError as RedisConnectionError,
    ResponseError,
    TimeoutError as RedisTimeoutError,
)

from ...domain.documents.exceptions import (
    CacheEngineError,
    NetworkError,
    ThrottlingError,
    UnavailableError,
)

# Server replies that mean "back off and try again"
_THROTTLING_REPLY_PREFIXES = ("OOM", "BUSY", "TRYAGAIN", "LOADING")


def classify_redis_error(error: Exception, operation: str) -> CacheEngineError:
    """
    Translate a redis-py exception into an engine error kind.

    Args:
        error: Exception raised by the Redis client
        operation: Repository operation that failed

    Returns:
        Engine error chained to the original exception
    """
    details = {
        "operation": operation,
        "original_error": str(error),
        "original_error_type": type(error).__name__,
    }
    message = f"Cache store {operation} failed: {error}"

    if isinstance(error, CacheEngineError):
        return error
    if isinstance(error, BusyLoadingError):
        classified: CacheEngineError = ThrottlingError(message, details=details)
    elif isinstance(error, AuthenticationError):
        classified = UnavailableError(message, details=details)
    elif isinstance(error, (RedisTimeoutError, RedisConnectionError, TimeoutError, ConnectionError)):
        classified = NetworkError(message, details=details)
    elif isinstance(error, ResponseError) and str(error).upper().startswith(
        _THROTTLING_REPLY_PREFIXES
    ):
        classified = ThrottlingError(message, details=details)
    else:
        classified = UnavailableError(message, details=details)

    # Preserve exception context for debugging (exception chaining)
    classified.__cause__ = error
    return classified
