"""
Document Value Objects

Immutable value objects for the document cache domain.
"""

import posixpath
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlparse

from .exceptions import ValidationError


class DocumentType(str, Enum):
    """Closed set of document kinds mirrored by the cache."""

    CHANGE = "change"
    ANNOUNCEMENT = "announcement"

    @classmethod
    def parse(cls, value: str) -> "DocumentType":
        """Parse a type tag, folding announcement subtypes into ANNOUNCEMENT."""
        if isinstance(value, cls):
            return value
        tag = str(value).strip().lower()
        if tag.startswith("announcement_"):
            return cls.ANNOUNCEMENT
        try:
            return cls(tag)
        except ValueError:
            raise ValidationError(
                f"Unknown document type: {value!r}", field="type"
            ) from None


class IndexName(str, Enum):
    """Secondary indexes over cache entries, all ordered by created-at."""

    TYPE_CREATED = "type-created"
    CUSTOMER_CREATED = "customer-created"
    STATUS_CREATED = "status-created"


@dataclass(frozen=True)
class TTL:
    """
    Time To Live value object for cache expiration.

    Configured per deployment, never per document.
    """

    seconds: int

    def __post_init__(self) -> None:
        """Validate TTL value."""
        if self.seconds <= 0:
            raise ValueError("TTL must be positive")

    @classmethod
    def days(cls, days: int) -> "TTL":
        """Create TTL from days."""
        return cls(days * 86400)

    def __str__(self) -> str:
        return f"{self.seconds}s"


@dataclass(frozen=True)
class StorageLocator:
    """Opaque bucket/key address of a Primary Store object."""

    bucket: str
    key: str

    def __post_init__(self) -> None:
        if not self.bucket:
            raise ValidationError("Storage locator bucket cannot be empty", field="bucket")
        if not self.key or self.key.endswith("/"):
            raise ValidationError(
                f"Storage locator key must name an object: {self.key!r}", field="key"
            )

    @classmethod
    def canonical(cls, bucket: str, prefix: str, document_id: str) -> "StorageLocator":
        """Canonical location of a document written through the engine."""
        return cls(bucket=bucket, key=f"{prefix}{document_id}.json")

    @classmethod
    def from_uri(cls, uri: str) -> "StorageLocator":
        """Parse an 's3://bucket/key' URI."""
        parsed = urlparse(uri)
        if parsed.scheme != "s3":
            raise ValidationError(f"Unsupported locator URI: {uri!r}", field="locator")
        return cls(bucket=parsed.netloc, key=parsed.path.lstrip("/"))

    @property
    def uri(self) -> str:
        return f"s3://{self.bucket}/{self.key}"

    @property
    def document_id(self) -> str:
        """Identifier implied by the key: its basename without '.json'."""
        name = posixpath.basename(self.key)
        if name.endswith(".json"):
            name = name[: -len(".json")]
        if not name:
            raise ValidationError(
                f"Cannot resolve a document id from key {self.key!r}", field="key"
            )
        return name

    def __str__(self) -> str:
        return self.uri
