"""
Redis Document Cache Repository

Redis-backed Cache Store. Each entry is a hash with an absolute expiry;
each secondary index partition is a sorted set scored by created-at plus a
hash of item projections, so index queries never touch entry keys.

Key layout:
    {prefix}:entry:{id}                           entry hash
    {prefix}:idx:{index}:{partition}              sorted set, id -> createdAt
    {prefix}:idx:{index}:{partition}:items        hash, id -> item JSON
"""

import base64
import json
import math
import time
from typing import Callable, Dict, List, Mapping, Optional, Tuple

import structlog
from redis.asyncio import Redis
from redis.exceptions import WatchError

from ...domain.documents.converter import ItemConverter
from ...domain.documents.entities import CacheEntry
from ...domain.documents.exceptions import NotFoundError, ThrottlingError, ValidationError
from ...domain.documents.repository_interfaces import CacheStore, QueryPage
from ...domain.documents.value_objects import DocumentType, IndexName
from ..redis.connection_factory import RedisConnectionFactory

logger = structlog.get_logger(__name__)

_PROJECTION_SUFFIX = ":items"
# Optimistic transaction attempts before a contended key is reported as throttled
MAX_WATCH_ATTEMPTS = 5


def _contended(document_id: str) -> ThrottlingError:
    return ThrottlingError(
        f"Cache entry {document_id} kept changing during the write",
        details={"document_id": document_id, "attempts": MAX_WATCH_ATTEMPTS},
    )


def encode_cursor(offset: int) -> str:
    return base64.urlsafe_b64encode(json.dumps({"offset": offset}).encode()).decode()


def decode_cursor(cursor: Optional[str]) -> int:
    """Offset encoded in an opaque page cursor."""
    if not cursor:
        return 0
    try:
        offset = int(json.loads(base64.urlsafe_b64decode(cursor.encode()))["offset"])
    except (ValueError, KeyError, TypeError) as e:
        raise ValidationError(f"Invalid page cursor: {cursor!r}", field="cursor") from e
    if offset < 0:
        raise ValidationError(f"Invalid page cursor: {cursor!r}", field="cursor")
    return offset


class RedisDocumentCacheRepository(CacheStore):
    """Redis implementation of the Cache Store."""

    def __init__(
        self,
        connection_factory: RedisConnectionFactory,
        converter: ItemConverter,
        key_prefix: str,
        ttl_seconds: int,
        clock: Callable[[], float] = time.time,
    ):
        self.connection_factory = connection_factory
        self.converter = converter
        self.key_prefix = key_prefix
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def _entry_key(self, document_id: str) -> str:
        return f"{self.key_prefix}:entry:{document_id}"

    def _index_key(self, index: IndexName, partition: str) -> str:
        return f"{self.key_prefix}:idx:{index.value}:{partition}"

    def _projection_key(self, index: IndexName, partition: str) -> str:
        return self._index_key(index, partition) + _PROJECTION_SUFFIX

    def _stale_partitions(
        self, previous: Mapping[str, str], entry: Optional[CacheEntry]
    ) -> List[Tuple[IndexName, str]]:
        """Index partitions the previous item occupied that `entry` no longer does."""
        if not previous:
            return []
        try:
            old_partitions = {
                IndexName.TYPE_CREATED: DocumentType.parse(previous["type"]).value,
                IndexName.CUSTOMER_CREATED: previous["primaryCustomer"],
                IndexName.STATUS_CREATED: previous["status"],
            }
        except (KeyError, ValidationError):
            logger.warning(
                "cache_entry_unreadable_partitions", document_id=previous.get("id")
            )
            return []

        new_partitions = entry.index_partitions() if entry else {}
        return [
            (index, partition)
            for index, partition in old_partitions.items()
            if new_partitions.get(index) != partition
        ]

    async def put_entry(self, entry: CacheEntry) -> None:
        """Replace the entry hash and move its projections in one transaction."""
        entry_key = self._entry_key(entry.id)
        item = self.converter.to_item(entry)
        projection = json.dumps(item, sort_keys=True)

        async def _put(client: Redis) -> None:
            async with client.pipeline(transaction=True) as pipe:
                for _ in range(MAX_WATCH_ATTEMPTS):
                    try:
                        await pipe.watch(entry_key)
                        previous = await pipe.hgetall(entry_key)
                        stale = self._stale_partitions(previous, entry)

                        pipe.multi()
                        for index, partition in stale:
                            pipe.zrem(self._index_key(index, partition), entry.id)
                            pipe.hdel(self._projection_key(index, partition), entry.id)
                        pipe.delete(entry_key)
                        pipe.hset(entry_key, mapping=item)
                        pipe.expireat(entry_key, int(math.ceil(entry.expires_at)))
                        for index, partition in entry.index_partitions().items():
                            pipe.zadd(
                                self._index_key(index, partition),
                                {entry.id: entry.created_at},
                            )
                            pipe.hset(
                                self._projection_key(index, partition),
                                entry.id,
                                projection,
                            )
                        await pipe.execute()
                        return
                    except WatchError:
                        logger.debug("cache_entry_write_conflict", document_id=entry.id)
                        continue
            raise _contended(entry.id)

        await self.connection_factory.execute("put_entry", _put)
        logger.debug("cache_entry_stored", document_id=entry.id)

    async def get_entry(self, document_id: str) -> CacheEntry:
        entry_key = self._entry_key(document_id)

        async def _get(client: Redis) -> Dict[str, str]:
            return await client.hgetall(entry_key)

        item = await self.connection_factory.execute("get_entry", _get)
        if not item:
            raise NotFoundError(f"Cache entry {document_id} not found", key=entry_key)

        entry = self.converter.from_item(item)
        if entry.is_expired(self._clock()):
            raise NotFoundError(f"Cache entry {document_id} has expired", key=entry_key)
        return entry

    async def delete_entry(self, document_id: str) -> bool:
        entry_key = self._entry_key(document_id)

        async def _delete(client: Redis) -> bool:
            async with client.pipeline(transaction=True) as pipe:
                for _ in range(MAX_WATCH_ATTEMPTS):
                    try:
                        await pipe.watch(entry_key)
                        previous = await pipe.hgetall(entry_key)
                        if not previous:
                            await pipe.unwatch()
                            return False

                        pipe.multi()
                        pipe.delete(entry_key)
                        for index, partition in self._stale_partitions(previous, None):
                            pipe.zrem(self._index_key(index, partition), document_id)
                            pipe.hdel(self._projection_key(index, partition), document_id)
                        await pipe.execute()
                        return True
                    except WatchError:
                        logger.debug(
                            "cache_entry_delete_conflict", document_id=document_id
                        )
                        continue
            raise _contended(document_id)

        removed = await self.connection_factory.execute("delete_entry", _delete)
        logger.debug("cache_entry_deleted", document_id=document_id, existed=removed)
        return removed

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
        index_key = self._index_key(index, partition)
        projection_key = self._projection_key(index, partition)

        async def _query(client: Redis) -> Tuple[List[str], List[Optional[str]]]:
            # One extra member tells whether another page exists
            ids = await client.zrangebyscore(
                index_key, start, end, start=offset, num=limit + 1
            )
            if not ids:
                return [], []
            page_ids = ids[:limit]
            projections = await client.hmget(projection_key, page_ids)
            return ids, projections

        ids, projections = await self.connection_factory.execute("query_index", _query)

        now = self._clock()
        entries: List[CacheEntry] = []
        for raw in projections:
            if raw is None:
                continue
            entry = self.converter.from_item(json.loads(raw))
            if not entry.is_expired(now):
                entries.append(entry)

        next_cursor = encode_cursor(offset + limit) if len(ids) > limit else None
        return QueryPage(entries=entries, next_cursor=next_cursor)

    async def purge_expired(self) -> int:
        """Remove projections whose entries fell out of the TTL window."""
        cutoff = self._clock() - self.ttl_seconds
        pattern = f"{self.key_prefix}:idx:*"

        async def _purge(client: Redis) -> int:
            removed = 0
            async for index_key in client.scan_iter(match=pattern, _type="zset"):
                expired_ids = await client.zrangebyscore(index_key, "-inf", cutoff)
                if not expired_ids:
                    continue
                async with client.pipeline(transaction=True) as pipe:
                    pipe.zrem(index_key, *expired_ids)
                    pipe.hdel(index_key + _PROJECTION_SUFFIX, *expired_ids)
                    await pipe.execute()
                removed += len(expired_ids)
            return removed

        removed = await self.connection_factory.execute("purge_expired", _purge)
        logger.info("cache_projections_purged", removed=removed)
        return removed

    async def close(self) -> None:
        await self.connection_factory.close()
