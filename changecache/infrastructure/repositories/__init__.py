"""Cache Store implementations."""

from .memory_cache_repository import InMemoryDocumentCacheRepository
from .redis_cache_repository import RedisDocumentCacheRepository

__all__ = ["InMemoryDocumentCacheRepository", "RedisDocumentCacheRepository"]
