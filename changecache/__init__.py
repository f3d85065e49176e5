"""
Change Cache

Cache-consistency engine keeping a Redis Cache Store in step with an
authoritative S3 Primary Store for change records and announcements.
"""

from .core.config import Settings, get_settings
from .core.logging import configure_logging
from .domain.documents import (
    CacheEntry,
    Document,
    DocumentType,
    StorageLocator,
)
from .engine import CacheEngine, build_engine

__version__ = "0.1.0"

__all__ = [
    "CacheEngine",
    "CacheEntry",
    "Document",
    "DocumentType",
    "Settings",
    "StorageLocator",
    "build_engine",
    "configure_logging",
    "get_settings",
]
