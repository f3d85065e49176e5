"""
Fallback Reader

Reads a document from the cache and falls back to the Primary Store on a
miss or any Cache Store failure, backfilling the cache on the way out.
Only a Primary Store failure is ever surfaced to the caller.
"""

from typing import Optional

import structlog
from opentelemetry import trace

from ...core.deadlines import run_with_deadline
from ...domain.documents.entities import Document
from ...domain.documents.exceptions import (
    CacheEngineError,
    FallbackReadError,
    NotFoundError,
    OperationCancelledError,
    ValidationError,
)
from ...domain.documents.repository_interfaces import PrimaryStore
from ...domain.documents.value_objects import StorageLocator
from .cache_manager import CacheManager

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


class FallbackReader:
    """Cache-first document reads with Primary Store fallback."""

    def __init__(
        self,
        cache_manager: CacheManager,
        primary_store: PrimaryStore,
        cache_enabled: bool = True,
    ):
        self.cache_manager = cache_manager
        self.primary_store = primary_store
        self.cache_enabled = cache_enabled

    async def get_document_with_fallback(
        self,
        document_id: str,
        locator: Optional[StorageLocator] = None,
        timeout: Optional[float] = None,
    ) -> Document:
        """
        Get a document, preferring the cache.

        Args:
            document_id: Document identifier
            locator: Primary Store location; defaults to the canonical one
            timeout: Deadline in seconds

        Returns:
            The document

        Raises:
            FallbackReadError: If the Primary Store could not serve the read
            OperationCancelledError: If the deadline expires
        """
        return await run_with_deadline(
            self._read(document_id, locator or self.cache_manager.locator_for(document_id)),
            timeout,
            "fallback_reader.get_document",
        )

    async def _read(self, document_id: str, locator: StorageLocator) -> Document:
        with tracer.start_as_current_span("fallback_reader.get_document") as span:
            span.set_attribute("document.id", document_id)
            cache_error: Optional[Exception] = None

            if self.cache_enabled:
                try:
                    entry = await self.cache_manager.get(document_id)
                    document = self.cache_manager.converter.from_entry(entry)
                    span.set_attribute("cache.hit", True)
                    return document
                except NotFoundError as e:
                    cache_error = e
                except OperationCancelledError:
                    raise
                except CacheEngineError as e:
                    cache_error = e
                    logger.warning(
                        "cache_read_degraded",
                        document_id=document_id,
                        error_type=type(e).__name__,
                        error=str(e),
                    )

            span.set_attribute("cache.hit", False)
            try:
                body = await self.primary_store.get(locator)
                document = Document.from_payload(body)
                if document.id != document_id:
                    raise ValidationError(
                        f"Primary object {locator.uri} holds document {document.id}",
                        field="id",
                        expected=document_id,
                    )
            except CacheEngineError as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                logger.error(
                    "fallback_read_failed",
                    document_id=document_id,
                    locator=locator.uri,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                raise FallbackReadError(document_id, e, cache_error) from e

            if self.cache_enabled:
                await self._backfill(document, locator)
            return document

    async def _backfill(self, document: Document, locator: StorageLocator) -> None:
        """Best-effort cache population after a fallback read."""
        try:
            await self.cache_manager.put(document, locator)
            logger.debug("cache_backfilled", document_id=document.id)
        except CacheEngineError as e:
            logger.warning(
                "cache_backfill_failed",
                document_id=document.id,
                error_type=type(e).__name__,
                error=str(e),
            )
