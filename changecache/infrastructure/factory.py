"""
Store Factories

Instantiate the configured Cache Store and Primary Store backends.
"""

from typing import Callable, Optional

from ..core.config import Settings
from ..domain.documents.converter import ItemConverter
from ..domain.documents.repository_interfaces import CacheStore, PrimaryStore
from ..services.retry import RetryPolicy


def create_cache_store(
    settings: Settings,
    converter: Optional[ItemConverter] = None,
    clock: Optional[Callable[[], float]] = None,
) -> CacheStore:
    """Instantiate the configured Cache Store backend.

    Args:
        settings: Engine settings
        converter: Item converter shared with the cache manager
        clock: Wall clock used to hide expired entries

    Returns:
        Configured CacheStore implementation.
    """
    converter = converter or ItemConverter(ttl_days=settings.CACHE_TTL_DAYS)
    kwargs = {"clock": clock} if clock is not None else {}

    if settings.CACHE_BACKEND == "memory":
        from .repositories.memory_cache_repository import (
            InMemoryDocumentCacheRepository,
        )

        return InMemoryDocumentCacheRepository(
            converter=converter, ttl_seconds=settings.cache_ttl_seconds, **kwargs
        )

    if settings.CACHE_BACKEND == "redis":
        from .redis.connection_factory import RedisConnectionFactory
        from .repositories.redis_cache_repository import RedisDocumentCacheRepository

        return RedisDocumentCacheRepository(
            connection_factory=RedisConnectionFactory(settings),
            converter=converter,
            key_prefix=settings.CACHE_KEY_PREFIX,
            ttl_seconds=settings.cache_ttl_seconds,
            **kwargs,
        )

    raise ValueError(f"Unsupported cache backend: {settings.CACHE_BACKEND!r}")


def create_primary_store(settings: Settings) -> PrimaryStore:
    """Instantiate the configured Primary Store backend."""
    if settings.PRIMARY_BACKEND == "local":
        from .storage.local_primary_store import LocalPrimaryStore

        return LocalPrimaryStore(root=settings.PRIMARY_LOCAL_ROOT)

    if settings.PRIMARY_BACKEND == "s3":
        from .storage.s3_primary_store import S3PrimaryStore

        return S3PrimaryStore(
            retry_policy=RetryPolicy.for_primary_store(settings),
            region=settings.AWS_REGION,
            endpoint_url=settings.S3_ENDPOINT_URL,
        )

    raise ValueError(f"Unsupported primary backend: {settings.PRIMARY_BACKEND!r}")
