"""
Document Domain Entities

The Document is owned by callers and only mirrored here; the CacheEntry is
the cache's projection of it.
"""

import json
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)

from .exceptions import ValidationError
from .value_objects import DocumentType, IndexName, StorageLocator


def to_epoch_seconds(value: Any) -> float:
    """Normalize epoch numbers and ISO-8601 / RFC 3339 strings to epoch seconds."""
    if isinstance(value, bool):
        raise ValueError("timestamp must be a number or ISO-8601 string")
    if isinstance(value, (int, float)):
        return _finite(float(value))
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            seconds = float(text)
        except ValueError:
            pass
        else:
            return _finite(seconds)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        moment = datetime.fromisoformat(text)
    else:
        raise ValueError("timestamp must be a number or ISO-8601 string")

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.timestamp()


def _finite(seconds: float) -> float:
    if not math.isfinite(seconds):
        raise ValueError("timestamp must be finite")
    return seconds


class Document(BaseModel):
    """
    Semi-structured business document (change record or announcement).

    Only the attributes the cache indexes are modelled; every other field
    of the original JSON is preserved as an extra and round-trips verbatim.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(
        validation_alias=AliasChoices("id", "changeId", "announcement_id"),
        serialization_alias="id",
    )
    type: DocumentType = Field(
        validation_alias=AliasChoices("type", "object_type"),
        serialization_alias="type",
    )
    customers: List[str] = Field(min_length=1)
    status: str = Field(min_length=1)
    created_at: float = Field(
        validation_alias=AliasChoices("createdAt", "created_at"),
        serialization_alias="createdAt",
    )
    modified_at: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("modifiedAt", "modified_at"),
        serialization_alias="modifiedAt",
    )

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("document id cannot be empty")
        if "/" in v or any(char.isspace() for char in v):
            raise ValueError("document id cannot contain '/' or whitespace")
        return v

    @field_validator("type", mode="before")
    @classmethod
    def validate_type(cls, v: Any) -> DocumentType:
        try:
            return DocumentType.parse(v)
        except ValidationError as e:
            raise ValueError(e.message) from None

    @field_validator("customers")
    @classmethod
    def validate_customers(cls, v: List[str]) -> List[str]:
        codes = [code.strip() for code in v]
        if any(not code for code in codes):
            raise ValueError("customer codes cannot be empty")
        return codes

    @field_validator("created_at", "modified_at", mode="before")
    @classmethod
    def validate_timestamp(cls, v: Any) -> Optional[float]:
        if v is None:
            return None
        return to_epoch_seconds(v)

    @model_validator(mode="after")
    def default_modified_at(self) -> "Document":
        if self.modified_at is None:
            self.modified_at = self.created_at
        return self

    @classmethod
    def from_payload(cls, payload: Union[bytes, str, Dict[str, Any]]) -> "Document":
        """
        Parse a serialized document.

        Raises:
            ValidationError: If the payload is not JSON or lacks required attributes
        """
        try:
            if isinstance(payload, dict):
                return cls.model_validate(payload)
            return cls.model_validate_json(payload)
        except PydanticValidationError as e:
            problems = [
                f"{'.'.join(str(p) for p in err['loc']) or 'document'}: {err['msg']}"
                for err in e.errors()
            ]
            raise ValidationError(
                f"Malformed document payload: {'; '.join(problems)}",
                problems=problems,
            ) from e

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))

    def to_bytes(self) -> bytes:
        return self.to_json().encode("utf-8")


@dataclass(frozen=True)
class CacheEntry:
    """
    Cache projection of a Document.

    Exists while the Primary Store object exists or existed within the TTL
    window; expiry never touches the Primary Store object.
    """

    id: str
    type: DocumentType
    primary_customer: str
    customers: Tuple[str, ...]
    status: str
    created_at: float
    modified_at: float
    storage_locator: StorageLocator
    expires_at: float
    serialized_document: str

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def index_partitions(self) -> Dict[IndexName, str]:
        """Partition value of this entry in each secondary index."""
        return {
            IndexName.TYPE_CREATED: self.type.value,
            IndexName.CUSTOMER_CREATED: self.primary_customer,
            IndexName.STATUS_CREATED: self.status,
        }
