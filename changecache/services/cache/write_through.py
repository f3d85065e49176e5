"""
Write-Through Handler

Writes a document to the Cache Store first and the Primary Store second.
A failed Primary Store write is compensated by deleting the cache entry
that was just written.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from opentelemetry import trace

from ...core.deadlines import run_with_deadline
from ...domain.documents.entities import Document
from ...domain.documents.exceptions import CacheEngineError
from ...domain.documents.repository_interfaces import PrimaryStore
from ...domain.documents.value_objects import StorageLocator
from .cache_manager import CacheManager

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(frozen=True)
class WriteResult:
    """Outcome of a successful write."""

    document_id: str
    locator: StorageLocator
    cache_written: bool
    dry_run: bool = False


class WriteThroughHandler:
    """Keeps the Cache Store and Primary Store in step on every write."""

    def __init__(
        self,
        cache_manager: CacheManager,
        primary_store: PrimaryStore,
        cache_enabled: bool = True,
    ):
        self.cache_manager = cache_manager
        self.primary_store = primary_store
        self.cache_enabled = cache_enabled

    async def write_document(
        self,
        document: Document,
        *,
        dry_run: bool = False,
        timeout: Optional[float] = None,
    ) -> WriteResult:
        """
        Write a document through the cache to the Primary Store.

        Args:
            document: Document to persist
            dry_run: Log the writes instead of performing them
            timeout: Deadline in seconds for the whole operation

        Returns:
            WriteResult describing what was written

        Raises:
            ValidationError: Invalid document; no store was touched
            CacheEngineError: Cache write failed (Primary Store untouched) or
                Primary Store write failed (cache entry rolled back)
            OperationCancelledError: If the deadline expires
        """
        return await run_with_deadline(
            self._write(document, dry_run),
            timeout,
            "write_through.write_document",
        )

    async def _write(self, document: Document, dry_run: bool) -> WriteResult:
        with tracer.start_as_current_span("write_through.write_document") as span:
            # Validate before any store is touched
            entry = self.cache_manager.converter.to_entry(
                document, self.cache_manager.locator_for(document.id)
            )
            locator = entry.storage_locator
            span.set_attribute("document.id", entry.id)
            span.set_attribute("dry_run", dry_run)

            if dry_run:
                logger.info(
                    "dry_run_action",
                    action="write_document",
                    document_id=entry.id,
                    locator=locator.uri,
                    cache_enabled=self.cache_enabled,
                )
                return WriteResult(
                    document_id=entry.id,
                    locator=locator,
                    cache_written=False,
                    dry_run=True,
                )

            if self.cache_enabled:
                try:
                    await self.cache_manager.put(document, locator)
                except CacheEngineError as e:
                    logger.error(
                        "write_aborted_cache_failed",
                        document_id=entry.id,
                        error_type=type(e).__name__,
                        error=str(e),
                    )
                    span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                    raise

            try:
                await self.primary_store.put(locator, document.to_bytes())
            except CacheEngineError as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                logger.error(
                    "primary_write_failed",
                    document_id=entry.id,
                    locator=locator.uri,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                if self.cache_enabled:
                    await self._rollback(entry.id, e)
                raise

            logger.info(
                "document_written",
                document_id=entry.id,
                locator=locator.uri,
                cache_written=self.cache_enabled,
            )
            return WriteResult(
                document_id=entry.id,
                locator=locator,
                cache_written=self.cache_enabled,
            )

    async def _rollback(self, document_id: str, cause: Exception) -> None:
        """Delete the entry written ahead of a failed Primary Store write."""
        try:
            await self.cache_manager.delete(document_id)
            logger.info("cache_write_rolled_back", document_id=document_id)
        except CacheEngineError as e:
            # Entry may outlive its object until TTL expiry or the next write
            logger.error(
                "cache_inconsistency",
                document_id=document_id,
                primary_error=str(cause),
                rollback_error_type=type(e).__name__,
                rollback_error=str(e),
            )
