"""
Cache consistency services: the cache manager and the handlers that keep
the Cache Store in step with the Primary Store.
"""

from .cache_manager import CacheManager, IndexQuery
from .change_notifications import (
    ChangeNotification,
    ChangeNotificationHandler,
    NotificationKind,
    NotificationMessage,
    NotificationResult,
    NotificationStatus,
    parse_change_notifications,
)
from .fallback_reader import FallbackReader
from .write_through import WriteResult, WriteThroughHandler

__all__ = [
    "CacheManager",
    "ChangeNotification",
    "ChangeNotificationHandler",
    "FallbackReader",
    "IndexQuery",
    "NotificationKind",
    "NotificationMessage",
    "NotificationResult",
    "NotificationStatus",
    "WriteResult",
    "WriteThroughHandler",
    "parse_change_notifications",
]
