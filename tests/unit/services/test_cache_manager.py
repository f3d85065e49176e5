"""
Unit tests for the Cache Manager service.

Runs against the in-memory Cache Store with a fixed wall clock.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from changecache.domain.documents import (
    Document,
    DocumentType,
    NotFoundError,
    OperationCancelledError,
    StorageLocator,
    ThrottlingError,
    UnavailableError,
    ValidationError,
)
from changecache.services.cache import CacheManager, IndexQuery


class TestPutAndGet:
    """Test point writes and reads."""

    async def test_put_then_get(self, cache_manager, document_factory):
        stored = await cache_manager.put(document_factory())
        fetched = await cache_manager.get("CHG-1")

        assert fetched == stored
        assert fetched.storage_locator.uri == "s3://change-metadata/archive/CHG-1.json"

    async def test_put_is_idempotent(self, cache_manager, memory_store, document_factory):
        document = document_factory()

        first = await cache_manager.put(document)
        second = await cache_manager.put(document)

        assert first == second
        assert len(memory_store) == 1
        assert await cache_manager.get("CHG-1") == first

    async def test_put_with_explicit_locator(self, cache_manager, document_factory):
        locator = StorageLocator(bucket="imports", key="customers/hts/CHG-1.json")

        await cache_manager.put(document_factory(), locator)

        assert (await cache_manager.get("CHG-1")).storage_locator == locator

    async def test_get_missing(self, cache_manager):
        with pytest.raises(NotFoundError):
            await cache_manager.get("CHG-404")

    async def test_every_store_call_takes_a_token(
        self, cache_manager, rate_limiter, document_factory
    ):
        await cache_manager.put(document_factory())
        await cache_manager.get("CHG-1")
        await cache_manager.query_by_time_range("change", 0, 2000).to_list()
        await cache_manager.delete("CHG-1")

        assert rate_limiter.get_metrics()["acquired"] == 4

    async def test_invalid_document_rejected(self, cache_manager, memory_store):
        document = Document.model_construct(
            id="CHG-5",
            type=DocumentType.CHANGE,
            customers=[],
            status="draft",
            created_at=1000.0,
            modified_at=1000.0,
        )

        with pytest.raises(ValidationError):
            await cache_manager.put(document)
        assert len(memory_store) == 0

    async def test_throttling_retried(
        self, cache_manager, memory_store, rate_limiter, document_factory
    ):
        with patch.object(
            memory_store,
            "put_entry",
            AsyncMock(side_effect=[ThrottlingError("slow"), ThrottlingError("slow"), None]),
        ) as put_entry:
            await cache_manager.put(document_factory())

        assert put_entry.await_count == 3
        assert rate_limiter.get_metrics()["acquired"] == 3

    async def test_unavailable_not_retried(self, cache_manager, memory_store, document_factory):
        with patch.object(
            memory_store, "put_entry", AsyncMock(side_effect=UnavailableError("down"))
        ) as put_entry:
            with pytest.raises(UnavailableError):
                await cache_manager.put(document_factory())

        assert put_entry.await_count == 1

    async def test_deadline(self, cache_manager, memory_store):
        async def slow_get(document_id):
            await asyncio.sleep(1)

        with patch.object(memory_store, "get_entry", side_effect=slow_get):
            with pytest.raises(OperationCancelledError):
                await cache_manager.get("CHG-1", timeout=0.01)


class TestDelete:
    """Test idempotent deletes."""

    async def test_delete_existing(self, cache_manager, document_factory):
        await cache_manager.put(document_factory())

        assert await cache_manager.delete("CHG-1") is True
        with pytest.raises(NotFoundError):
            await cache_manager.get("CHG-1")
        assert await cache_manager.query_by_status_and_time("draft", 0, 2000).to_list() == []

    async def test_delete_absent_is_not_an_error(self, cache_manager):
        assert await cache_manager.delete("CHG-404") is False
        assert await cache_manager.delete("CHG-404") is False


class TestDryRun:
    """Test dry-run mode on mutating operations."""

    async def test_dry_run_put(self, cache_manager, memory_store, rate_limiter, document_factory):
        entry = await cache_manager.put(document_factory(), dry_run=True)

        assert entry.id == "CHG-1"
        assert len(memory_store) == 0
        assert rate_limiter.get_metrics()["acquired"] == 0

    async def test_dry_run_delete(self, cache_manager, memory_store, document_factory):
        await cache_manager.put(document_factory())

        await cache_manager.delete("CHG-1", dry_run=True)

        assert len(memory_store) == 1

    async def test_dry_run_survives_store_outage(self, cache_manager, memory_store, document_factory):
        with patch.object(
            memory_store, "put_entry", AsyncMock(side_effect=UnavailableError("down"))
        ):
            entry = await cache_manager.put(document_factory(), dry_run=True)

        assert entry.id == "CHG-1"


class TestIndexQueries:
    """Test secondary index queries."""

    async def test_example_customer_query(self, cache_manager, document_factory):
        """Only the primary customer is indexed."""
        await cache_manager.put(document_factory())

        hts = await cache_manager.query_by_customer_and_time("hts", 0, 2000).to_list()
        cds = await cache_manager.query_by_customer_and_time("cds", 0, 2000).to_list()

        assert [entry.id for entry in hts] == ["CHG-1"]
        assert hts[0].primary_customer == "hts"
        assert cds == []

    async def test_ascending_by_created_at(self, cache_manager, document_factory):
        for document_id, created_at in [("C", 1300), ("A", 1100), ("B", 1200)]:
            await cache_manager.put(document_factory(id=document_id, createdAt=created_at))

        entries = await cache_manager.query_by_time_range(DocumentType.CHANGE, 0, 2000).to_list()

        assert [entry.id for entry in entries] == ["A", "B", "C"]

    async def test_range_is_inclusive(self, cache_manager, document_factory):
        for document_id, created_at in [("A", 1000), ("B", 1500), ("C", 1501)]:
            await cache_manager.put(document_factory(id=document_id, createdAt=created_at))

        entries = await cache_manager.query_by_time_range("change", 1000, 1500).to_list()

        assert [entry.id for entry in entries] == ["A", "B"]

    async def test_type_partitions_are_separate(self, cache_manager, document_factory):
        await cache_manager.put(document_factory(id="CHG-1"))
        await cache_manager.put(document_factory(id="ANN-1", type="announcement_cic"))

        changes = await cache_manager.query_by_time_range("change", 0, 2000).to_list()
        announcements = await cache_manager.query_by_time_range(
            "announcement", 0, 2000
        ).to_list()

        assert [entry.id for entry in changes] == ["CHG-1"]
        assert [entry.id for entry in announcements] == ["ANN-1"]

    async def test_status_change_moves_projection(self, cache_manager, document_factory):
        await cache_manager.put(document_factory(status="draft"))
        await cache_manager.put(document_factory(status="approved"))

        drafts = await cache_manager.query_by_status_and_time("draft", 0, 2000).to_list()
        approved = await cache_manager.query_by_status_and_time("approved", 0, 2000).to_list()

        assert drafts == []
        assert [entry.id for entry in approved] == ["CHG-1"]

    async def test_pagination_and_restart(
        self, memory_store, rate_limiter, converter, fast_retry_policy, document_factory
    ):
        manager = CacheManager(
            store=memory_store,
            rate_limiter=rate_limiter,
            converter=converter,
            retry_policy=fast_retry_policy,
            primary_bucket="change-metadata",
            primary_key_prefix="archive/",
            page_size=2,
        )
        for index in range(5):
            await manager.put(document_factory(id=f"CHG-{index}", createdAt=1000 + index))

        query = manager.query_by_status_and_time("draft", 0, 2000)
        pages = [page async for page in query.pages()]
        first_pass = [entry.id async for entry in query]
        second_pass = [entry.id async for entry in query]

        assert isinstance(query, IndexQuery)
        assert [len(page.entries) for page in pages] == [2, 2, 1]
        assert pages[-1].next_cursor is None
        assert first_pass == [f"CHG-{index}" for index in range(5)]
        assert second_pass == first_pass

    async def test_query_is_lazy(self, cache_manager, rate_limiter):
        cache_manager.query_by_time_range("change", 0, 2000)
        assert rate_limiter.get_metrics()["acquired"] == 0

    async def test_invalid_range(self, cache_manager):
        with pytest.raises(ValidationError):
            cache_manager.query_by_time_range("change", 2000, 1000)

    async def test_unknown_type(self, cache_manager):
        with pytest.raises(ValidationError):
            cache_manager.query_by_time_range("incident", 0, 2000)


class TestExpiry:
    """Test TTL handling."""

    async def test_expired_entries_hidden(self, cache_manager, clock, document_factory):
        entry = await cache_manager.put(document_factory())
        clock.now = entry.expires_at

        with pytest.raises(NotFoundError):
            await cache_manager.get("CHG-1")
        assert await cache_manager.query_by_time_range("change", 0, 2000).to_list() == []

    async def test_purge_expired(self, cache_manager, clock, memory_store, document_factory):
        await cache_manager.put(document_factory(id="OLD", createdAt=1000))
        await cache_manager.put(document_factory(id="NEW", createdAt=1000 + 86400))
        clock.now = 1000 + 90 * 86400 + 1

        removed = await cache_manager.purge_expired()

        assert removed == 3
        assert len(memory_store) == 1
        assert (await cache_manager.get("NEW")).id == "NEW"

    async def test_expiry_leaves_primary_store_untouched(
        self, cache_manager, primary_store, clock, document_factory
    ):
        document = document_factory()
        locator = cache_manager.locator_for(document.id)
        await primary_store.put(locator, document.to_bytes())
        await cache_manager.put(document)

        clock.now = 1000 + 91 * 86400
        await cache_manager.purge_expired()

        assert await primary_store.get(locator) == document.to_bytes()
