"""
Change Notification Handler

Re-synchronizes the Cache Store when the Primary Store is changed by a path
that bypasses the write-through handler. Notifications arrive as S3 event
JSON, optionally wrapped in SQS messages: at least once, possibly out of
order, possibly duplicated. Every operation is idempotent and keyed by
document id, so re-applying a notification is always safe.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union
from urllib.parse import unquote_plus

import structlog
from opentelemetry import trace

from ...core.deadlines import run_with_deadline
from ...domain.documents.entities import Document
from ...domain.documents.exceptions import CacheEngineError, NotFoundError, ValidationError
from ...domain.documents.repository_interfaces import PrimaryStore
from ...domain.documents.value_objects import StorageLocator
from ..fanout import process_concurrently
from .cache_manager import CacheManager

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

Payload = Union[bytes, str, Mapping[str, Any]]


class NotificationKind(str, Enum):
    UPSERT = "upsert"
    DELETE = "delete"


class NotificationStatus(str, Enum):
    APPLIED = "applied"  # entry written from the Primary Store object
    DELETED = "deleted"  # entry removed (or already absent)
    DROPPED = "dropped"  # poison payload, logged and discarded
    DRY_RUN = "dry_run"
    SKIPPED = "skipped"  # cache disabled


@dataclass(frozen=True)
class ChangeNotification:
    """One Primary Store mutation reported by the notification source."""

    kind: NotificationKind
    locator: StorageLocator
    event_name: str = ""
    event_time: Optional[str] = None


@dataclass(frozen=True)
class NotificationResult:
    status: NotificationStatus
    locator: StorageLocator
    document_id: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class NotificationMessage:
    """A delivered message carrying one notification payload."""

    message_id: str
    body: Payload

    @classmethod
    def from_sqs_event(cls, event: Mapping[str, Any]) -> List["NotificationMessage"]:
        """Split a Lambda SQS event into its messages."""
        records = event.get("Records")
        if not isinstance(records, list):
            raise ValidationError("SQS event has no Records list", field="Records")
        return [
            cls(message_id=record.get("messageId", ""), body=record.get("body", ""))
            for record in records
        ]


def _load(payload: Payload) -> Dict[str, Any]:
    if isinstance(payload, Mapping):
        return dict(payload)
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Notification payload is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError("Notification payload is not a JSON object")
    return data


def _is_test_event(data: Mapping[str, Any]) -> bool:
    return data.get("Event") == "s3:TestEvent"


def _kind_for(event_name: str) -> Optional[NotificationKind]:
    name = event_name[3:] if event_name.startswith("s3:") else event_name
    if name.startswith("ObjectCreated:"):
        return NotificationKind.UPSERT
    if name.startswith("ObjectRemoved:"):
        return NotificationKind.DELETE
    return None


def _from_s3_record(record: Mapping[str, Any]) -> Optional[ChangeNotification]:
    event_name = record.get("eventName", "")
    try:
        bucket = record["s3"]["bucket"]["name"]
        key = unquote_plus(record["s3"]["object"]["key"])
    except (KeyError, TypeError) as e:
        raise ValidationError(f"S3 event record lacks bucket or key: {e}") from e

    kind = _kind_for(event_name)
    if kind is None:
        logger.debug("notification_event_ignored", event_name=event_name, key=key)
        return None
    if not key.endswith(".json"):
        logger.debug("notification_key_ignored", event_name=event_name, key=key)
        return None

    return ChangeNotification(
        kind=kind,
        locator=StorageLocator(bucket=bucket, key=key),
        event_name=event_name,
        event_time=record.get("eventTime"),
    )


def parse_change_notifications(payload: Payload) -> List[ChangeNotification]:
    """
    Extract change notifications from an S3 event payload.

    Accepts an S3 event notification, an SQS message wrapping one in its
    body, or an SQS batch event. S3 test events, other event kinds and
    non-JSON objects yield nothing.

    Raises:
        ValidationError: If the payload is not an S3 event
    """
    data = _load(payload)
    if _is_test_event(data):
        logger.debug("notification_test_event_ignored")
        return []

    body = data.get("body", data.get("Body"))
    if body is not None and "Records" not in data:
        return parse_change_notifications(body)

    records = data.get("Records")
    if not isinstance(records, list) or not records:
        raise ValidationError("Payload is not an S3 event notification", field="Records")

    notifications: List[ChangeNotification] = []
    for record in records:
        if not isinstance(record, Mapping):
            raise ValidationError("S3 event record is not an object", field="Records")
        if "s3" in record:
            notification = _from_s3_record(record)
            if notification is not None:
                notifications.append(notification)
        elif "body" in record:
            notifications.extend(parse_change_notifications(record["body"]))
        else:
            raise ValidationError("Record is neither an S3 event nor an SQS message")
    return notifications


class ChangeNotificationHandler:
    """
    Applies Primary Store change notifications to the Cache Store.

    Transient failures are retried once, inside the store that raised them:
    the Cache Manager and the Primary Store each bound their own attempts.
    """

    def __init__(
        self,
        cache_manager: CacheManager,
        primary_store: PrimaryStore,
        cache_enabled: bool = True,
        max_concurrency: int = 10,
    ):
        self.cache_manager = cache_manager
        self.primary_store = primary_store
        self.cache_enabled = cache_enabled
        self.max_concurrency = max_concurrency

    async def handle_upsert_notification(
        self,
        locator: StorageLocator,
        *,
        dry_run: bool = False,
        timeout: Optional[float] = None,
    ) -> NotificationResult:
        """
        Mirror the object at `locator` into the cache.

        An object that no longer exists removes the cached entry instead.

        Raises:
            ValidationError: Malformed object; the notification must not be retried
            CacheEngineError: Store failure after that store's own retries
        """
        with tracer.start_as_current_span("change_notifications.upsert") as span:
            span.set_attribute("storage.locator", locator.uri)
            if not self.cache_enabled:
                return NotificationResult(NotificationStatus.SKIPPED, locator)
            if dry_run:
                logger.info("dry_run_action", action="cache_upsert", locator=locator.uri)
                return NotificationResult(
                    NotificationStatus.DRY_RUN, locator, locator.document_id
                )

            try:
                return await run_with_deadline(
                    self._apply_upsert(locator),
                    timeout,
                    "change_notifications.upsert",
                )
            except CacheEngineError as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                raise

    async def _apply_upsert(self, locator: StorageLocator) -> NotificationResult:
        try:
            body = await self.primary_store.get(locator)
        except NotFoundError:
            # Object removed since the event was emitted; the Primary Store wins
            document_id = locator.document_id
            await self.cache_manager.delete(document_id)
            logger.info(
                "notification_object_missing",
                locator=locator.uri,
                document_id=document_id,
            )
            return NotificationResult(NotificationStatus.DELETED, locator, document_id)

        document = Document.from_payload(body)
        await self.cache_manager.put(document, locator)
        logger.info("notification_applied", locator=locator.uri, document_id=document.id)
        return NotificationResult(NotificationStatus.APPLIED, locator, document.id)

    async def handle_delete_notification(
        self,
        locator: StorageLocator,
        *,
        dry_run: bool = False,
        timeout: Optional[float] = None,
    ) -> NotificationResult:
        """Remove the entry implied by `locator`; absent entries are fine."""
        with tracer.start_as_current_span("change_notifications.delete") as span:
            span.set_attribute("storage.locator", locator.uri)
            document_id = locator.document_id
            if not self.cache_enabled:
                return NotificationResult(NotificationStatus.SKIPPED, locator, document_id)
            if dry_run:
                logger.info(
                    "dry_run_action",
                    action="cache_delete",
                    locator=locator.uri,
                    document_id=document_id,
                )
                return NotificationResult(NotificationStatus.DRY_RUN, locator, document_id)

            try:
                await run_with_deadline(
                    self.cache_manager.delete(document_id),
                    timeout,
                    "change_notifications.delete",
                )
            except CacheEngineError as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                raise

            logger.info("notification_deleted", locator=locator.uri, document_id=document_id)
            return NotificationResult(NotificationStatus.DELETED, locator, document_id)

    async def handle(
        self,
        notification: ChangeNotification,
        *,
        dry_run: bool = False,
        timeout: Optional[float] = None,
    ) -> NotificationResult:
        """
        Dispatch one notification by kind.

        Poison objects are logged and reported as dropped rather than raised.
        """
        try:
            if notification.kind is NotificationKind.DELETE:
                return await self.handle_delete_notification(
                    notification.locator, dry_run=dry_run, timeout=timeout
                )
            return await self.handle_upsert_notification(
                notification.locator, dry_run=dry_run, timeout=timeout
            )
        except ValidationError as e:
            logger.error(
                "poison_notification_dropped",
                locator=notification.locator.uri,
                event_name=notification.event_name,
                error=str(e),
            )
            return NotificationResult(
                NotificationStatus.DROPPED, notification.locator, error=str(e)
            )

    async def handle_payload(
        self, payload: Payload, *, dry_run: bool = False
    ) -> List[NotificationResult]:
        """Parse one payload and apply its notifications in order."""
        return [
            await self.handle(notification, dry_run=dry_run)
            for notification in parse_change_notifications(payload)
        ]

    async def handle_batch(
        self, messages: Sequence[NotificationMessage], *, dry_run: bool = False
    ) -> List[str]:
        """
        Process a delivery batch; messages are handled independently.

        Returns:
            Ids of messages that failed with a retryable error and must be
            redelivered. Poison messages are logged and not redelivered.
        """

        async def _process(message: NotificationMessage) -> List[NotificationResult]:
            try:
                return await self.handle_payload(message.body, dry_run=dry_run)
            except ValidationError as e:
                logger.error(
                    "poison_notification_dropped",
                    message_id=message.message_id,
                    error=str(e),
                )
                return []

        results = await process_concurrently(messages, _process, self.max_concurrency)
        redeliver = [result.item.message_id for result in results if not result.success]
        logger.info(
            "notification_batch_processed",
            messages=len(messages),
            redeliver=len(redeliver),
        )
        return redeliver
