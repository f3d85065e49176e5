"""
Document Store Interfaces

Abstract contracts for the two stores the engine keeps consistent.
Implementations raise only the kinds in `exceptions`.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

from .entities import CacheEntry
from .value_objects import IndexName, StorageLocator


@dataclass
class QueryPage:
    """One page of an index query, ascending by created-at."""

    entries: List[CacheEntry] = field(default_factory=list)
    next_cursor: Optional[str] = None


class CacheStore(ABC):
    """
    Low-latency, TTL-governed, secondary-indexed store of cache entries.

    An upsert or delete changes the entry and its three index projections
    in one logical write.
    """

    @abstractmethod
    async def put_entry(self, entry: CacheEntry) -> None:
        """Create or replace an entry and its index projections."""
        pass

    @abstractmethod
    async def get_entry(self, document_id: str) -> CacheEntry:
        """
        Point lookup.

        Raises:
            NotFoundError: If no live entry exists
        """
        pass

    @abstractmethod
    async def delete_entry(self, document_id: str) -> bool:
        """Remove an entry and its projections. Returns False if it was absent."""
        pass

    @abstractmethod
    async def query_index(
        self,
        index: IndexName,
        partition: str,
        start: float,
        end: float,
        limit: int,
        cursor: Optional[str] = None,
    ) -> QueryPage:
        """Fetch one page of live entries with start <= created_at <= end."""
        pass

    @abstractmethod
    async def purge_expired(self) -> int:
        """Drop index projections of expired entries. Returns the count removed."""
        pass

    async def close(self) -> None:
        """Release connections held by the store."""
        return None


class PrimaryStore(ABC):
    """
    Durable, authoritative object store.

    Strongly consistent per object; owns its own retry policy.
    """

    @abstractmethod
    async def put(self, locator: StorageLocator, body: bytes) -> None:
        """Write (overwrite) the object at `locator`."""
        pass

    @abstractmethod
    async def get(self, locator: StorageLocator) -> bytes:
        """
        Read the object at `locator`.

        Raises:
            NotFoundError: If no object exists there
        """
        pass

    @abstractmethod
    async def delete(self, locator: StorageLocator) -> None:
        """Delete the object at `locator`; absent objects are not an error."""
        pass

    async def close(self) -> None:
        """Release clients held by the store."""
        return None
