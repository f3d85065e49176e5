"""Store adapters: Redis Cache Store and S3 / filesystem Primary Store."""

from .factory import create_cache_store, create_primary_store

__all__ = ["create_cache_store", "create_primary_store"]
