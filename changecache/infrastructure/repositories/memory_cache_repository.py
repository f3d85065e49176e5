"""
In-Memory Document Cache Repository

Process-local Cache Store for development and tests. Entries are kept in
the flat item layout so conversion behaves exactly as with Redis.
"""

import asyncio
import time
from collections import defaultdict
from typing import Callable, Dict, List, Optional, Tuple

import structlog

from ...domain.documents.converter import ItemConverter
from ...domain.documents.entities import CacheEntry
from ...domain.documents.exceptions import NotFoundError
from ...domain.documents.repository_interfaces import CacheStore, QueryPage
from ...domain.documents.value_objects import IndexName
from .redis_cache_repository import decode_cursor, encode_cursor

logger = structlog.get_logger(__name__)


class InMemoryDocumentCacheRepository(CacheStore):
    """Dictionary-backed Cache Store with the same semantics as Redis."""

    def __init__(
        self,
        converter: ItemConverter,
        ttl_seconds: int,
        clock: Callable[[], float] = time.time,
    ):
        self.converter = converter
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._items: Dict[str, Dict[str, str]] = {}
        # (index, partition) -> id -> createdAt
        self._indexes: Dict[Tuple[IndexName, str], Dict[str, float]] = defaultdict(dict)
        self._lock = asyncio.Lock()

    def _unindex(self, entry: CacheEntry) -> None:
        for index, partition in entry.index_partitions().items():
            members = self._indexes.get((index, partition))
            if members is not None:
                members.pop(entry.id, None)
                if not members:
                    del self._indexes[(index, partition)]

    async def put_entry(self, entry: CacheEntry) -> None:
        item = self.converter.to_item(entry)
        async with self._lock:
            previous = self._items.get(entry.id)
            if previous is not None:
                self._unindex(self.converter.from_item(previous))
            self._items[entry.id] = item
            for index, partition in entry.index_partitions().items():
                self._indexes[(index, partition)][entry.id] = entry.created_at
        logger.debug("cache_entry_stored", document_id=entry.id)

    async def get_entry(self, document_id: str) -> CacheEntry:
        async with self._lock:
            item = self._items.get(document_id)
        if item is None:
            raise NotFoundError(f"Cache entry {document_id} not found", key=document_id)
        entry = self.converter.from_item(item)
        if entry.is_expired(self._clock()):
            raise NotFoundError(f"Cache entry {document_id} has expired", key=document_id)
        return entry

    async def delete_entry(self, document_id: str) -> bool:
        async with self._lock:
            item = self._items.pop(document_id, None)
            if item is None:
                return False
            self._unindex(self.converter.from_item(item))
        logger.debug("cache_entry_deleted", document_id=document_id)
        return True

    async def query_index(
        self,
        index: IndexName,
        partition: str,
        start: float,
        end: float,
        limit: int,
        cursor: Optional[str] = None,
    ) -> QueryPage:
        offset = decode_cursor(cursor)
        async with self._lock:
            members = sorted(
                (created_at, document_id)
                for document_id, created_at in self._indexes.get(
                    (index, partition), {}
                ).items()
                if start <= created_at <= end
            )
            window = members[offset : offset + limit + 1]
            items = [self._items[document_id] for _, document_id in window[:limit]]

        now = self._clock()
        entries: List[CacheEntry] = []
        for item in items:
            entry = self.converter.from_item(item)
            if not entry.is_expired(now):
                entries.append(entry)

        next_cursor = encode_cursor(offset + limit) if len(window) > limit else None
        return QueryPage(entries=entries, next_cursor=next_cursor)

    async def purge_expired(self) -> int:
        now = self._clock()
        removed = 0
        async with self._lock:
            for document_id, item in list(self._items.items()):
                entry = self.converter.from_item(item)
                if entry.is_expired(now):
                    del self._items[document_id]
                    self._unindex(entry)
                    removed += len(entry.index_partitions())
        logger.info("cache_projections_purged", removed=removed)
        return removed

    def __len__(self) -> int:
        return len(self._items)
