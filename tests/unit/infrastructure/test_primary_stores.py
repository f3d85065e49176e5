"""
Unit tests for the Primary Store backends.
"""

import io
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, ReadTimeoutError

from changecache.domain.documents import (
    NetworkError,
    NotFoundError,
    StorageLocator,
    ThrottlingError,
    UnavailableError,
    ValidationError,
)
from changecache.infrastructure.storage import (
    LocalPrimaryStore,
    S3PrimaryStore,
    classify_s3_error,
)
from changecache.services.retry import BackoffRule, RetryPolicy

LOCATOR = StorageLocator(bucket="change-metadata", key="archive/CHG-1.json")


def client_error(code: str, status: int, operation: str = "GetObject") -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": f"{code} message"},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


@pytest.fixture
def s3_client():
    return MagicMock()


@pytest.fixture
def s3_store(s3_client):
    rule = BackoffRule(base_delay_seconds=0.001, max_attempts=3)
    return S3PrimaryStore(
        retry_policy=RetryPolicy(throttling=rule, network=rule), client=s3_client
    )


class TestClassifyS3Error:
    """Test botocore error translation."""

    @pytest.mark.parametrize(
        "error, expected",
        [
            (client_error("NoSuchKey", 404), NotFoundError),
            (client_error("404", 404, "HeadObject"), NotFoundError),
            (client_error("SlowDown", 503), ThrottlingError),
            (client_error("ThrottlingException", 400), ThrottlingError),
            (client_error("RequestLimitExceeded", 400), ThrottlingError),
            (client_error("RequestTimeout", 400), NetworkError),
            (client_error("InternalError", 500), NetworkError),
            (client_error("AccessDenied", 403), UnavailableError),
            (client_error("NoSuchBucket", 404), UnavailableError),
            (EndpointConnectionError(endpoint_url="https://s3.example.com"), NetworkError),
            (ReadTimeoutError(endpoint_url="https://s3.example.com"), NetworkError),
        ],
    )
    def test_classify(self, error, expected):
        classified = classify_s3_error(error, LOCATOR)

        assert type(classified) is expected
        assert classified.__cause__ is error

    def test_details_carry_locator(self):
        classified = classify_s3_error(client_error("AccessDenied", 403), LOCATOR)

        assert classified.details["locator"] == "s3://change-metadata/archive/CHG-1.json"
        assert classified.details["error_code"] == "AccessDenied"


class TestS3PrimaryStore:
    """Test the S3 backend against a mocked boto3 client."""

    async def test_put(self, s3_store, s3_client):
        await s3_store.put(LOCATOR, b'{"id": "CHG-1"}')

        s3_client.put_object.assert_called_once_with(
            Bucket="change-metadata",
            Key="archive/CHG-1.json",
            Body=b'{"id": "CHG-1"}',
            ContentType="application/json",
        )

    async def test_get(self, s3_store, s3_client):
        s3_client.get_object.return_value = {"Body": io.BytesIO(b'{"id": "CHG-1"}')}

        assert await s3_store.get(LOCATOR) == b'{"id": "CHG-1"}'
        s3_client.get_object.assert_called_once_with(
            Bucket="change-metadata", Key="archive/CHG-1.json"
        )

    async def test_delete(self, s3_store, s3_client):
        await s3_store.delete(LOCATOR)

        s3_client.delete_object.assert_called_once_with(
            Bucket="change-metadata", Key="archive/CHG-1.json"
        )

    async def test_retries_throttling(self, s3_store, s3_client):
        s3_client.put_object.side_effect = [client_error("SlowDown", 503, "PutObject"), {}]

        await s3_store.put(LOCATOR, b"{}")

        assert s3_client.put_object.call_count == 2

    async def test_retries_bounded(self, s3_store, s3_client):
        s3_client.get_object.side_effect = EndpointConnectionError(
            endpoint_url="https://s3.example.com"
        )

        with pytest.raises(NetworkError) as exc_info:
            await s3_store.get(LOCATOR)

        assert s3_client.get_object.call_count == 3
        assert exc_info.value.attempts == 3

    async def test_not_found_not_retried(self, s3_store, s3_client):
        s3_client.get_object.side_effect = client_error("NoSuchKey", 404)

        with pytest.raises(NotFoundError):
            await s3_store.get(LOCATOR)

        assert s3_client.get_object.call_count == 1

    async def test_access_denied_not_retried(self, s3_store, s3_client):
        s3_client.put_object.side_effect = client_error("AccessDenied", 403, "PutObject")

        with pytest.raises(UnavailableError):
            await s3_store.put(LOCATOR, b"{}")

        assert s3_client.put_object.call_count == 1

    async def test_close(self, s3_store, s3_client):
        await s3_store.close()
        s3_client.close.assert_called_once()


class TestLocalPrimaryStore:
    """Test the filesystem backend."""

    @pytest.fixture
    def store(self, tmp_path):
        return LocalPrimaryStore(root=tmp_path)

    async def test_put_get(self, store, tmp_path):
        await store.put(LOCATOR, b'{"id": "CHG-1"}')

        assert await store.get(LOCATOR) == b'{"id": "CHG-1"}'
        assert (tmp_path / "change-metadata" / "archive" / "CHG-1.json").exists()

    async def test_overwrite_leaves_no_temp_files(self, store, tmp_path):
        await store.put(LOCATOR, b"first")
        await store.put(LOCATOR, b"second")

        assert await store.get(LOCATOR) == b"second"
        directory = tmp_path / "change-metadata" / "archive"
        assert [p.name for p in directory.iterdir()] == ["CHG-1.json"]

    async def test_missing_object(self, store):
        with pytest.raises(NotFoundError):
            await store.get(LOCATOR)

    async def test_delete(self, store):
        await store.put(LOCATOR, b"{}")

        await store.delete(LOCATOR)

        with pytest.raises(NotFoundError):
            await store.get(LOCATOR)

    async def test_delete_missing_is_noop(self, store):
        await store.delete(LOCATOR)

    @pytest.mark.parametrize(
        "locator",
        [
            StorageLocator(bucket="change-metadata", key="../../outside.json"),
            StorageLocator(bucket="..", key="outside.json"),
        ],
    )
    async def test_rejects_paths_outside_root(self, store, locator):
        with pytest.raises(ValidationError):
            await store.put(locator, b"{}")
