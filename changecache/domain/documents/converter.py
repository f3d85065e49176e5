"""
Item Converter

Pure, stateless mapping between Documents, CacheEntries and the flat item
layout persisted by Cache Store backends.
"""

import json
from typing import Any, Dict, Mapping

from .entities import CacheEntry, Document
from .exceptions import ValidationError
from .value_objects import TTL, DocumentType, StorageLocator

# Persisted item attribute names
ITEM_ATTRIBUTES = (
    "id",
    "type",
    "primaryCustomer",
    "customers",
    "status",
    "createdAt",
    "modifiedAt",
    "storageLocator",
    "expiresAt",
    "serializedDocument",
)


def compute_expiry(created_at: float, ttl_days: int) -> float:
    """Expiration timestamp of an entry created at `created_at`."""
    return created_at + TTL.days(ttl_days).seconds


def primary_customer(customers) -> str:
    """
    First customer code, exactly as provided.

    No canonical ordering is applied: reordering the list between writes
    changes the primary customer.
    """
    if not customers:
        raise ValidationError("Document has no customer codes", field="customers")
    return customers[0]


class ItemConverter:
    """Deterministic Document <-> CacheEntry <-> item conversion."""

    def __init__(self, ttl_days: int):
        self.ttl_days = ttl_days

    def to_entry(self, document: Document, locator: StorageLocator) -> CacheEntry:
        """
        Project a document into a cache entry.

        Raises:
            ValidationError: If the document lacks an id, type or customers
        """
        if not getattr(document, "id", None):
            raise ValidationError("Document has no identifier", field="id")
        if getattr(document, "type", None) is None:
            raise ValidationError(f"Document {document.id} has no type", field="type")
        customers = tuple(getattr(document, "customers", None) or ())
        primary = primary_customer(customers)
        if document.created_at is None:
            raise ValidationError(
                f"Document {document.id} has no creation timestamp", field="createdAt"
            )

        modified_at = (
            document.modified_at
            if document.modified_at is not None
            else document.created_at
        )
        return CacheEntry(
            id=document.id,
            type=DocumentType.parse(document.type),
            primary_customer=primary,
            customers=customers,
            status=document.status,
            created_at=float(document.created_at),
            modified_at=float(modified_at),
            storage_locator=locator,
            expires_at=compute_expiry(float(document.created_at), self.ttl_days),
            serialized_document=document.to_json(),
        )

    def from_entry(self, entry: CacheEntry) -> Document:
        """
        Rebuild the document from an entry's serialized copy.

        Raises:
            ValidationError: If the entry is partially written
        """
        if not entry.id or not entry.serialized_document:
            raise ValidationError(
                f"Cache entry {entry.id or '<unknown>'} has no serialized document",
                field="serializedDocument",
            )
        document = Document.from_payload(entry.serialized_document)
        if document.id != entry.id:
            raise ValidationError(
                f"Cache entry {entry.id} holds document {document.id}", field="id"
            )
        return document

    def to_item(self, entry: CacheEntry) -> Dict[str, str]:
        """Flatten an entry into string attributes for storage."""
        return {
            "id": entry.id,
            "type": entry.type.value,
            "primaryCustomer": entry.primary_customer,
            "customers": json.dumps(list(entry.customers)),
            "status": entry.status,
            "createdAt": repr(entry.created_at),
            "modifiedAt": repr(entry.modified_at),
            "storageLocator": entry.storage_locator.uri,
            "expiresAt": repr(entry.expires_at),
            "serializedDocument": entry.serialized_document,
        }

    def from_item(self, item: Mapping[str, Any]) -> CacheEntry:
        """
        Rebuild an entry from stored attributes.

        Raises:
            ValidationError: If required attributes are absent or unreadable
        """
        missing = [name for name in ITEM_ATTRIBUTES if item.get(name) in (None, "")]
        if missing:
            raise ValidationError(
                f"Cache item {item.get('id', '<unknown>')} is missing attributes: "
                f"{', '.join(missing)}",
                missing=missing,
            )
        try:
            customers = tuple(json.loads(item["customers"]))
            return CacheEntry(
                id=item["id"],
                type=DocumentType.parse(item["type"]),
                primary_customer=item["primaryCustomer"],
                customers=customers,
                status=item["status"],
                created_at=float(item["createdAt"]),
                modified_at=float(item["modifiedAt"]),
                storage_locator=StorageLocator.from_uri(item["storageLocator"]),
                expires_at=float(item["expiresAt"]),
                serialized_document=item["serializedDocument"],
            )
        except (TypeError, ValueError) as e:
            raise ValidationError(
                f"Cache item {item['id']} has unreadable attributes: {e}"
            ) from e
