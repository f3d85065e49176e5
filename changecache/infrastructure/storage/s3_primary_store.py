"""
S3 Primary Store

Authoritative object storage for documents on AWS S3 or any S3-compatible
endpoint. boto3 is synchronous, so every call runs in a worker thread.
Transient failures are retried here under the primary store policy.
"""

import asyncio
from typing import Any, Optional

import boto3
import structlog
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    EndpointConnectionError,
    HTTPClientError,
    ReadTimeoutError,
)

from ...domain.documents.exceptions import (
    CacheEngineError,
    NetworkError,
    NotFoundError,
    ThrottlingError,
    UnavailableError,
)
from ...domain.documents.repository_interfaces import PrimaryStore
from ...domain.documents.value_objects import StorageLocator
from ...services.retry import RetryPolicy, call_with_retry

logger = structlog.get_logger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}
_THROTTLING_CODES = {
    "SlowDown",
    "Throttling",
    "ThrottlingException",
    "RequestLimitExceeded",
    "ProvisionedThroughputExceededException",
    "TooManyRequestsException",
}
_NETWORK_CODES = {"RequestTimeout", "RequestTimeoutException", "InternalError"}


def classify_s3_error(error: Exception, locator: StorageLocator) -> CacheEngineError:
    """
    Translate a boto3/botocore exception into an engine error kind.

    Args:
        error: Exception raised by the S3 client
        locator: Object the call addressed

    Returns:
        Engine error chained to the original exception
    """
    details = {
        "locator": locator.uri,
        "original_error": str(error),
        "original_error_type": type(error).__name__,
    }

    if isinstance(error, ClientError):
        code = str(error.response.get("Error", {}).get("Code", ""))
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        details["error_code"] = code
        if code in _NOT_FOUND_CODES or (status == 404 and code != "NoSuchBucket"):
            classified: CacheEngineError = NotFoundError(
                f"Primary object {locator.uri} not found", key=locator.key
            )
        elif code in _THROTTLING_CODES or status in (429, 503):
            classified = ThrottlingError(
                f"Primary store throttled {locator.uri}: {code}", details=details
            )
        elif code in _NETWORK_CODES or status >= 500:
            classified = NetworkError(
                f"Primary store transient failure on {locator.uri}: {code}",
                details=details,
            )
        else:
            classified = UnavailableError(
                f"Primary store rejected {locator.uri}: {code}", details=details
            )
    elif isinstance(
        error,
        (EndpointConnectionError, BotoConnectionError, HTTPClientError, ReadTimeoutError),
    ):
        classified = NetworkError(
            f"Primary store unreachable for {locator.uri}: {error}", details=details
        )
    elif isinstance(error, (TimeoutError, ConnectionError)):
        classified = NetworkError(
            f"Primary store connection failed for {locator.uri}: {error}",
            details=details,
        )
    else:
        classified = UnavailableError(
            f"Primary store call failed for {locator.uri}: {error}", details=details
        )

    classified.__cause__ = error
    return classified


class S3PrimaryStore(PrimaryStore):
    """Primary Store backed by S3."""

    def __init__(
        self,
        retry_policy: RetryPolicy,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        client: Any = None,
    ):
        self.retry_policy = retry_policy
        if client is None:
            kwargs: dict = {"config": BotoConfig(retries={"max_attempts": 1})}
            if region:
                kwargs["region_name"] = region
            if endpoint_url:
                kwargs["endpoint_url"] = endpoint_url
            client = boto3.client("s3", **kwargs)
        self._s3 = client

    async def _call(
        self, operation: str, locator: StorageLocator, method, read_body=False, **kwargs
    ):
        def _invoke():
            response = method(Bucket=locator.bucket, Key=locator.key, **kwargs)
            return response["Body"].read() if read_body else response

        async def _attempt():
            try:
                return await asyncio.to_thread(_invoke)
            except (ClientError, BotoCoreError, OSError) as e:
                raise classify_s3_error(e, locator) from e

        return await call_with_retry(
            f"primary_{operation}",
            _attempt,
            self.retry_policy,
            locator=locator.uri,
        )

    async def put(self, locator: StorageLocator, body: bytes) -> None:
        await self._call(
            "put",
            locator,
            self._s3.put_object,
            Body=body,
            ContentType="application/json",
        )
        logger.debug("primary_object_written", locator=locator.uri, size_bytes=len(body))

    async def get(self, locator: StorageLocator) -> bytes:
        return await self._call("get", locator, self._s3.get_object, read_body=True)

    async def delete(self, locator: StorageLocator) -> None:
        await self._call("delete", locator, self._s3.delete_object)
        logger.debug("primary_object_deleted", locator=locator.uri)

    async def close(self) -> None:
        self._s3.close()
