"""
Shared pytest fixtures.

Everything runs against the in-memory Cache Store and a filesystem Primary
Store under tmp_path, with a controllable wall clock and millisecond
backoff delays.
"""

import os
from typing import Any, Dict

import pytest

os.environ["ENVIRONMENT"] = "test"

from changecache.core.config import Settings
from changecache.domain.documents import Document, ItemConverter, StorageLocator
from changecache.infrastructure.repositories import InMemoryDocumentCacheRepository
from changecache.infrastructure.storage import LocalPrimaryStore
from changecache.services.cache import CacheManager
from changecache.services.rate_limiting import TokenBucketRateLimiter
from changecache.services.retry import BackoffRule, RetryPolicy

# Well inside the 90 day TTL window of documents created at t=1000
NOW = 2000.0


class FixedClock:
    """Wall clock that only moves when told to."""

    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Sleep replacement that records delays without waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def document_payload(**overrides: Any) -> Dict[str, Any]:
    payload = {
        "id": "CHG-1",
        "type": "change",
        "customers": ["hts", "cds"],
        "status": "draft",
        "createdAt": 1000,
        "title": "Rotate edge certificates",
    }
    payload.update(overrides)
    return payload


def make_document(**overrides: Any) -> Document:
    return Document.from_payload(document_payload(**overrides))


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Test settings: memory cache, local primary store, fast retries."""
    return Settings(
        ENVIRONMENT="test",
        LOG_JSON=False,
        CACHE_BACKEND="memory",
        CACHE_TTL_DAYS=90,
        CACHE_REQUESTS_PER_SECOND=1000,
        CACHE_QUERY_PAGE_SIZE=100,
        CIRCUIT_BREAKER_FAILURE_THRESHOLD=2,
        PRIMARY_BACKEND="local",
        PRIMARY_BUCKET="change-metadata",
        PRIMARY_KEY_PREFIX="archive/",
        PRIMARY_LOCAL_ROOT=tmp_path / "primary",
        CACHE_THROTTLE_BASE_DELAY=0.001,
        CACHE_NETWORK_BASE_DELAY=0.001,
        PRIMARY_RETRY_BASE_DELAY=0.001,
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fast_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        throttling=BackoffRule(base_delay_seconds=0.001, max_attempts=5),
        network=BackoffRule(base_delay_seconds=0.001, max_attempts=3),
    )


@pytest.fixture
def converter() -> ItemConverter:
    return ItemConverter(ttl_days=90)


@pytest.fixture
def memory_store(converter, clock) -> InMemoryDocumentCacheRepository:
    return InMemoryDocumentCacheRepository(
        converter=converter, ttl_seconds=90 * 86400, clock=clock
    )


@pytest.fixture
def primary_store(tmp_path) -> LocalPrimaryStore:
    return LocalPrimaryStore(root=tmp_path / "primary")


@pytest.fixture
def rate_limiter() -> TokenBucketRateLimiter:
    return TokenBucketRateLimiter(requests_per_second=1000)


@pytest.fixture
def cache_manager(memory_store, rate_limiter, converter, fast_retry_policy) -> CacheManager:
    return CacheManager(
        store=memory_store,
        rate_limiter=rate_limiter,
        converter=converter,
        retry_policy=fast_retry_policy,
        primary_bucket="change-metadata",
        primary_key_prefix="archive/",
    )


@pytest.fixture
def canonical_locator() -> StorageLocator:
    return StorageLocator(bucket="change-metadata", key="archive/CHG-1.json")


@pytest.fixture
def document_factory():
    """Build a valid Document, overriding any payload attribute."""
    return make_document


@pytest.fixture
def payload_factory():
    return document_payload
