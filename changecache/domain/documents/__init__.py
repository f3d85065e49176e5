"""
Document cache domain: entities, value objects, conversion, errors and
store contracts.
"""

from .converter import ItemConverter, compute_expiry, primary_customer
from .entities import CacheEntry, Document
from .exceptions import (
    RETRYABLE_ERRORS,
    CacheEngineError,
    FallbackReadError,
    NetworkError,
    NotFoundError,
    OperationCancelledError,
    ThrottlingError,
    UnavailableError,
    ValidationError,
)
from .repository_interfaces import CacheStore, PrimaryStore, QueryPage
from .value_objects import TTL, DocumentType, IndexName, StorageLocator

__all__ = [
    "CacheEntry",
    "CacheEngineError",
    "CacheStore",
    "Document",
    "DocumentType",
    "FallbackReadError",
    "IndexName",
    "ItemConverter",
    "NetworkError",
    "NotFoundError",
    "OperationCancelledError",
    "PrimaryStore",
    "QueryPage",
    "RETRYABLE_ERRORS",
    "StorageLocator",
    "TTL",
    "ThrottlingError",
    "UnavailableError",
    "ValidationError",
    "compute_expiry",
    "primary_customer",
]
