"""
Document Cache Exceptions

Error taxonomy shared by the Cache Store and Primary Store paths.
Store adapters translate driver errors into these kinds; the services
decide retry, rollback and fallback behaviour from the kind alone.
"""

from typing import Any, Dict, Optional


class CacheEngineError(Exception):
    """Base exception for cache engine errors.

    Carries a stable error code, structured details and the number of
    attempts made before the error surfaced.
    """

    error_code = "CACHE_ENGINE_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        attempts: int = 1,
    ):
        self.message = message
        self.error_code = error_code or self.error_code
        self.details = details or {}
        self.attempts = attempts
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.attempts > 1:
            return f"{self.message} (after {self.attempts} attempts)"
        return self.message


class ValidationError(CacheEngineError):
    """Malformed input. Never retried, always surfaced."""

    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None, **details: Any):
        if field:
            details["field"] = field
        super().__init__(message=message, details=details)


class NotFoundError(CacheEngineError):
    """Point lookup miss. Not an error for deletes."""

    error_code = "NOT_FOUND"

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message=message, details={"key": key} if key else None)


class ThrottlingError(CacheEngineError):
    """Store rejected the call for load reasons. Retryable with short backoff."""

    error_code = "THROTTLED"


class NetworkError(CacheEngineError):
    """Transient transport failure. Retryable with longer backoff."""

    error_code = "NETWORK_ERROR"


class UnavailableError(CacheEngineError):
    """The whole store is unreachable. Reads fall back, writes abort."""

    error_code = "STORE_UNAVAILABLE"


class OperationCancelledError(CacheEngineError):
    """The caller's deadline expired before the operation finished."""

    error_code = "OPERATION_CANCELLED"

    def __init__(self, operation: str, timeout_seconds: Optional[float] = None):
        details: Dict[str, Any] = {"operation": operation}
        message = f"Operation '{operation}' cancelled"
        if timeout_seconds is not None:
            details["timeout_seconds"] = timeout_seconds
            message = f"Operation '{operation}' cancelled after {timeout_seconds}s deadline"
        super().__init__(message=message, details=details)


class FallbackReadError(CacheEngineError):
    """Both the Cache Store and the Primary Store failed to serve a read."""

    error_code = "FALLBACK_READ_FAILED"

    def __init__(
        self,
        document_id: str,
        primary_error: Exception,
        cache_error: Optional[Exception] = None,
    ):
        self.document_id = document_id
        self.primary_error = primary_error
        self.cache_error = cache_error
        details: Dict[str, Any] = {
            "document_id": document_id,
            "primary_error": str(primary_error),
            "primary_error_type": type(primary_error).__name__,
        }
        if cache_error is not None:
            details["cache_error"] = str(cache_error)
            details["cache_error_type"] = type(cache_error).__name__
        super().__init__(
            message=f"Document {document_id} unavailable from cache and primary store",
            details=details,
        )


# Errors absorbed by local retry loops
RETRYABLE_ERRORS = (ThrottlingError, NetworkError)
