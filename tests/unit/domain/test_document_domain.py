"""
Unit tests for the document domain.

Covers value objects, the Document model and its alias handling.
"""

import json

import pytest

from changecache.domain.documents import (
    TTL,
    Document,
    DocumentType,
    IndexName,
    StorageLocator,
    ValidationError,
)


class TestDocumentType:
    """Test DocumentType parsing."""

    def test_parse_change(self):
        assert DocumentType.parse("change") is DocumentType.CHANGE
        assert DocumentType.parse(" Change ") is DocumentType.CHANGE

    def test_announcement_subtypes_fold(self):
        """Announcement subtypes share one type partition."""
        for tag in ("announcement_cic", "announcement_finops", "announcement_innersource"):
            assert DocumentType.parse(tag) is DocumentType.ANNOUNCEMENT

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError, match="Unknown document type"):
            DocumentType.parse("incident")


class TestTTL:
    """Test TTL value object."""

    def test_days(self):
        assert TTL.days(90).seconds == 90 * 86400

    def test_invalid_ttl(self):
        with pytest.raises(ValueError, match="TTL must be positive"):
            TTL(0)


class TestStorageLocator:
    """Test StorageLocator value object."""

    def test_canonical(self):
        locator = StorageLocator.canonical("change-metadata", "archive/", "CHG-1")

        assert locator.key == "archive/CHG-1.json"
        assert locator.uri == "s3://change-metadata/archive/CHG-1.json"
        assert str(locator) == locator.uri

    def test_from_uri(self):
        locator = StorageLocator.from_uri("s3://bucket/customers/hts/CHG-9.json")

        assert locator.bucket == "bucket"
        assert locator.key == "customers/hts/CHG-9.json"

    def test_document_id_from_key(self):
        locator = StorageLocator(bucket="b", key="archive/CHG-1.json")
        assert locator.document_id == "CHG-1"

    def test_rejects_non_s3_uri(self):
        with pytest.raises(ValidationError):
            StorageLocator.from_uri("https://bucket/key.json")

    def test_rejects_folder_key(self):
        with pytest.raises(ValidationError):
            StorageLocator(bucket="b", key="archive/")

    def test_rejects_empty_bucket(self):
        with pytest.raises(ValidationError):
            StorageLocator(bucket="", key="archive/CHG-1.json")


class TestDocument:
    """Test Document model parsing and serialization."""

    def test_from_payload_minimal(self, payload_factory):
        document = Document.from_payload(json.dumps(payload_factory()))

        assert document.id == "CHG-1"
        assert document.type is DocumentType.CHANGE
        assert document.customers == ["hts", "cds"]
        assert document.created_at == 1000.0
        assert document.modified_at == 1000.0

    def test_alias_field_names(self):
        document = Document.from_payload(
            {
                "announcement_id": "ANN-7",
                "object_type": "announcement_finops",
                "customers": ["hts"],
                "status": "submitted",
                "created_at": "1970-01-01T00:16:40Z",
                "modified_at": "1970-01-01T00:33:20+00:00",
            }
        )

        assert document.id == "ANN-7"
        assert document.type is DocumentType.ANNOUNCEMENT
        assert document.created_at == 1000.0
        assert document.modified_at == 2000.0

    def test_change_id_alias(self, payload_factory):
        payload = payload_factory()
        payload["changeId"] = payload.pop("id")

        assert Document.from_payload(payload).id == "CHG-1"

    def test_extra_fields_preserved(self, payload_factory):
        document = Document.from_payload(payload_factory(implementationPlan={"steps": 3}))
        data = document.to_dict()

        assert data["title"] == "Rotate edge certificates"
        assert data["implementationPlan"] == {"steps": 3}
        assert data["createdAt"] == 1000.0

    def test_serialization_is_canonical(self, payload_factory):
        first = Document.from_payload(payload_factory())
        second = Document.from_payload(json.loads(first.to_json()))

        assert first.to_bytes() == second.to_bytes()
        assert list(json.loads(first.to_json()).keys()) == sorted(first.to_dict().keys())

    def test_empty_customers_rejected(self, payload_factory):
        with pytest.raises(ValidationError) as exc_info:
            Document.from_payload(payload_factory(customers=[]))

        assert exc_info.value.details["problems"]

    @pytest.mark.parametrize("created_at", ["nan", "inf", "-inf", float("nan"), float("inf")])
    def test_non_finite_timestamp_rejected(self, payload_factory, created_at):
        with pytest.raises(ValidationError):
            Document.from_payload(payload_factory(createdAt=created_at))

    def test_missing_identifier_rejected(self, payload_factory):
        payload = payload_factory()
        del payload["id"]

        with pytest.raises(ValidationError, match="Malformed document payload"):
            Document.from_payload(payload)

    def test_identifier_with_slash_rejected(self, payload_factory):
        with pytest.raises(ValidationError):
            Document.from_payload(payload_factory(id="archive/CHG-1"))

    def test_not_json_rejected(self):
        with pytest.raises(ValidationError):
            Document.from_payload(b"<html>not json</html>")


class TestCacheEntryPartitions:
    """Test index partition derivation."""

    def test_index_partitions(self, converter, document_factory, canonical_locator):
        entry = converter.to_entry(document_factory(), canonical_locator)

        assert entry.index_partitions() == {
            IndexName.TYPE_CREATED: "change",
            IndexName.CUSTOMER_CREATED: "hts",
            IndexName.STATUS_CREATED: "draft",
        }

    def test_is_expired_boundary(self, converter, document_factory, canonical_locator):
        entry = converter.to_entry(document_factory(), canonical_locator)

        assert not entry.is_expired(entry.expires_at - 1)
        assert entry.is_expired(entry.expires_at)
