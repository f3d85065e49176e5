"""Primary Store implementations."""

from .local_primary_store import LocalPrimaryStore
from .s3_primary_store import S3PrimaryStore, classify_s3_error

__all__ = ["LocalPrimaryStore", "S3PrimaryStore", "classify_s3_error"]
