"""
Cache Engine

Composition root: builds one explicitly owned rate limiter, the two stores
and the services that share them.
"""

from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from .core.config import Settings, get_settings
from .domain.documents.converter import ItemConverter
from .domain.documents.repository_interfaces import CacheStore, PrimaryStore
from .infrastructure.factory import create_cache_store, create_primary_store
from .services.cache.cache_manager import CacheManager
from .services.cache.change_notifications import ChangeNotificationHandler
from .services.cache.fallback_reader import FallbackReader
from .services.cache.write_through import WriteThroughHandler
from .services.rate_limiting.rate_limiter import TokenBucketRateLimiter
from .services.retry import RetryPolicy

logger = structlog.get_logger(__name__)


@dataclass
class CacheEngine:
    """Wired engine components."""

    settings: Settings
    rate_limiter: TokenBucketRateLimiter
    cache_store: CacheStore
    primary_store: PrimaryStore
    cache_manager: CacheManager
    write_through: WriteThroughHandler
    notifications: ChangeNotificationHandler
    fallback_reader: FallbackReader

    async def close(self) -> None:
        """Release store connections."""
        await self.cache_store.close()
        await self.primary_store.close()
        logger.info("cache_engine_closed")


def build_engine(
    settings: Optional[Settings] = None,
    cache_store: Optional[CacheStore] = None,
    primary_store: Optional[PrimaryStore] = None,
    clock: Optional[Callable[[], float]] = None,
) -> CacheEngine:
    """
    Build a CacheEngine from settings.

    Args:
        settings: Engine settings; defaults to the environment
        cache_store: Cache Store to use instead of the configured backend
        primary_store: Primary Store to use instead of the configured backend
        clock: Wall clock for entry expiry checks

    Returns:
        Ready-to-use engine
    """
    settings = settings or get_settings()
    converter = ItemConverter(ttl_days=settings.CACHE_TTL_DAYS)
    rate_limiter = TokenBucketRateLimiter(settings.CACHE_REQUESTS_PER_SECOND)

    cache_store = cache_store or create_cache_store(settings, converter, clock)
    primary_store = primary_store or create_primary_store(settings)

    cache_manager = CacheManager(
        store=cache_store,
        rate_limiter=rate_limiter,
        converter=converter,
        retry_policy=RetryPolicy.for_cache_store(settings),
        primary_bucket=settings.PRIMARY_BUCKET,
        primary_key_prefix=settings.PRIMARY_KEY_PREFIX,
        page_size=settings.CACHE_QUERY_PAGE_SIZE,
    )

    engine = CacheEngine(
        settings=settings,
        rate_limiter=rate_limiter,
        cache_store=cache_store,
        primary_store=primary_store,
        cache_manager=cache_manager,
        write_through=WriteThroughHandler(
            cache_manager, primary_store, cache_enabled=settings.CACHE_ENABLED
        ),
        notifications=ChangeNotificationHandler(
            cache_manager,
            primary_store,
            cache_enabled=settings.CACHE_ENABLED,
            max_concurrency=settings.FANOUT_MAX_CONCURRENCY,
        ),
        fallback_reader=FallbackReader(
            cache_manager, primary_store, cache_enabled=settings.CACHE_ENABLED
        ),
    )
    logger.info(
        "cache_engine_built",
        cache_backend=settings.CACHE_BACKEND,
        primary_backend=settings.PRIMARY_BACKEND,
        cache_enabled=settings.CACHE_ENABLED,
        ttl_days=settings.CACHE_TTL_DAYS,
        requests_per_second=settings.CACHE_REQUESTS_PER_SECOND,
    )
    return engine
