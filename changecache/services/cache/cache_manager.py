"""
Cache Manager Service

Single entry point to the Cache Store. Every store attempt first takes a
token from the shared rate limiter and runs under the cache retry policy.
"""

from typing import AsyncIterator, Awaitable, Callable, List, Optional, TypeVar

import structlog
from opentelemetry import trace

from ...core.deadlines import run_with_deadline
from ...domain.documents.converter import ItemConverter
from ...domain.documents.entities import CacheEntry, Document
from ...domain.documents.exceptions import CacheEngineError, NotFoundError, ValidationError
from ...domain.documents.repository_interfaces import CacheStore, QueryPage
from ...domain.documents.value_objects import DocumentType, IndexName, StorageLocator
from ..rate_limiting.rate_limiter import TokenBucketRateLimiter
from ..retry import RetryPolicy, call_with_retry

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

T = TypeVar("T")


class IndexQuery:
    """
    Lazy result of an index query, ascending by created-at.

    Nothing is fetched until iteration starts. Each iteration re-issues the
    query from the first page, so the same object can be consumed again.
    """

    def __init__(
        self,
        manager: "CacheManager",
        index: IndexName,
        partition: str,
        start: float,
        end: float,
        page_size: int,
    ):
        self._manager = manager
        self.index = index
        self.partition = partition
        self.start = start
        self.end = end
        self.page_size = page_size

    async def pages(self) -> AsyncIterator[QueryPage]:
        """Yield pages until the store reports no further cursor."""
        cursor: Optional[str] = None
        while True:
            page = await self._manager._fetch_page(self, cursor)
            yield page
            if not page.next_cursor:
                return
            cursor = page.next_cursor

    async def _entries(self) -> AsyncIterator[CacheEntry]:
        async for page in self.pages():
            for entry in page.entries:
                yield entry

    def __aiter__(self) -> AsyncIterator[CacheEntry]:
        return self._entries()

    async def to_list(self) -> List[CacheEntry]:
        return [entry async for entry in self]

    def __repr__(self) -> str:
        return (
            f"IndexQuery(index={self.index.value!r}, partition={self.partition!r}, "
            f"start={self.start}, end={self.end})"
        )


class CacheManager:
    """
    High-level Cache Store operations.

    Safe for unbounded concurrent use: the only shared in-process state is
    the rate limiter, which never holds its lock across a store call.
    """

    def __init__(
        self,
        store: CacheStore,
        rate_limiter: TokenBucketRateLimiter,
        converter: ItemConverter,
        retry_policy: RetryPolicy,
        primary_bucket: str,
        primary_key_prefix: str = "",
        page_size: int = 100,
    ):
        self.store = store
        self.rate_limiter = rate_limiter
        self.converter = converter
        self.retry_policy = retry_policy
        self.primary_bucket = primary_bucket
        self.primary_key_prefix = primary_key_prefix
        self.page_size = page_size

    def locator_for(self, document_id: str) -> StorageLocator:
        """Canonical Primary Store location of a document."""
        return StorageLocator.canonical(
            self.primary_bucket, self.primary_key_prefix, document_id
        )

    async def _call(
        self, operation: str, func: Callable[[], Awaitable[T]], **context
    ) -> T:
        async def _attempt() -> T:
            await self.rate_limiter.acquire()
            return await func()

        return await call_with_retry(
            f"cache_{operation}", _attempt, self.retry_policy, **context
        )

    async def put(
        self,
        document: Document,
        locator: Optional[StorageLocator] = None,
        *,
        dry_run: bool = False,
        timeout: Optional[float] = None,
    ) -> CacheEntry:
        """
        Upsert the entry for a document and its three index projections.

        Args:
            document: Document to mirror
            locator: Primary Store location; defaults to the canonical one
            dry_run: Log the write instead of performing it
            timeout: Deadline in seconds

        Returns:
            The entry that was (or would be) stored

        Raises:
            ValidationError: If the document cannot be converted
            ThrottlingError, NetworkError: After retries are exhausted
            UnavailableError: If the Cache Store is unreachable
            OperationCancelledError: If the deadline expires
        """
        with tracer.start_as_current_span("cache_manager.put") as span:
            span.set_attribute("document.id", str(getattr(document, "id", "")))
            span.set_attribute("dry_run", dry_run)
            try:
                entry = self.converter.to_entry(
                    document, locator or self.locator_for(document.id)
                )
                if dry_run:
                    logger.info(
                        "dry_run_action",
                        action="cache_put",
                        document_id=entry.id,
                        locator=entry.storage_locator.uri,
                    )
                    return entry

                await run_with_deadline(
                    self._call(
                        "put",
                        lambda: self.store.put_entry(entry),
                        document_id=entry.id,
                    ),
                    timeout,
                    "cache_manager.put",
                )
                logger.debug("cache_put", document_id=entry.id)
                return entry

            except CacheEngineError as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                raise

    async def get(
        self, document_id: str, timeout: Optional[float] = None
    ) -> CacheEntry:
        """
        Point lookup of a live entry. Never consults the Primary Store.

        Raises:
            NotFoundError: If no live entry exists
        """
        with tracer.start_as_current_span("cache_manager.get") as span:
            span.set_attribute("document.id", document_id)
            try:
                entry = await run_with_deadline(
                    self._call(
                        "get",
                        lambda: self.store.get_entry(document_id),
                        document_id=document_id,
                    ),
                    timeout,
                    "cache_manager.get",
                )
                span.set_attribute("cache.hit", True)
                return entry

            except NotFoundError:
                span.set_attribute("cache.hit", False)
                raise
            except CacheEngineError as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                raise

    async def delete(
        self,
        document_id: str,
        *,
        dry_run: bool = False,
        timeout: Optional[float] = None,
    ) -> bool:
        """
        Remove an entry and its projections.

        Deleting an absent id is not an error.

        Returns:
            True if an entry was removed
        """
        with tracer.start_as_current_span("cache_manager.delete") as span:
            span.set_attribute("document.id", document_id)
            span.set_attribute("dry_run", dry_run)
            if dry_run:
                logger.info("dry_run_action", action="cache_delete", document_id=document_id)
                return False

            try:
                removed = await run_with_deadline(
                    self._call(
                        "delete",
                        lambda: self.store.delete_entry(document_id),
                        document_id=document_id,
                    ),
                    timeout,
                    "cache_manager.delete",
                )
                logger.debug("cache_delete", document_id=document_id, existed=removed)
                return removed

            except CacheEngineError as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                raise

    def _query(
        self, index: IndexName, partition: str, start: float, end: float
    ) -> IndexQuery:
        if not partition:
            raise ValidationError(f"{index.value} query needs a partition value")
        if start > end:
            raise ValidationError(
                f"Query range start {start} is after end {end}", field="start"
            )
        return IndexQuery(self, index, partition, start, end, self.page_size)

    def query_by_time_range(
        self, document_type, start: float, end: float
    ) -> IndexQuery:
        """Entries of one document type created within [start, end]."""
        return self._query(
            IndexName.TYPE_CREATED, DocumentType.parse(document_type).value, start, end
        )

    def query_by_customer_and_time(
        self, customer_code: str, start: float, end: float
    ) -> IndexQuery:
        """
        Entries whose primary customer is `customer_code`, created within
        [start, end]. Secondary customers of a document are not indexed.
        """
        return self._query(IndexName.CUSTOMER_CREATED, customer_code, start, end)

    def query_by_status_and_time(
        self, status: str, start: float, end: float
    ) -> IndexQuery:
        """Entries with `status`, created within [start, end]."""
        return self._query(IndexName.STATUS_CREATED, status, start, end)

    async def _fetch_page(self, query: IndexQuery, cursor: Optional[str]) -> QueryPage:
        with tracer.start_as_current_span("cache_manager.query") as span:
            span.set_attribute("cache.index", query.index.value)
            span.set_attribute("cache.partition", query.partition)
            try:
                page = await self._call(
                    "query",
                    lambda: self.store.query_index(
                        query.index,
                        query.partition,
                        query.start,
                        query.end,
                        query.page_size,
                        cursor,
                    ),
                    index=query.index.value,
                    partition=query.partition,
                )
                span.set_attribute("cache.page_size", len(page.entries))
                return page

            except CacheEngineError as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                raise

    async def purge_expired(self, timeout: Optional[float] = None) -> int:
        """Sweep index projections of entries past their expiry."""
        with tracer.start_as_current_span("cache_manager.purge_expired") as span:
            try:
                removed = await run_with_deadline(
                    self._call("purge_expired", self.store.purge_expired),
                    timeout,
                    "cache_manager.purge_expired",
                )
                span.set_attribute("cache.purged", removed)
                return removed

            except CacheEngineError as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                raise

    async def close(self) -> None:
        await self.store.close()
