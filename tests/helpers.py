from __future__ import annotations

from uuid import uuid4

from services.shared.config import RuntimeConfig
from services.shared.contracts import (
    ImageRecord,
    MessageAttribute,
    ObjectCreatedNotification,
    QueueRecord,
    TopicDelivery,
)
from services.shared.db import InMemoryImageStore
from services.shared.errors import NotificationDeliveryFailure, StoreWriteFailure


def make_config(**overrides: object) -> RuntimeConfig:
    base = RuntimeConfig(
        region="eu-west-1",
        project_id="p",
        store_backend="memory",
        database_url="",
        image_table="images",
        topic_name="new-image-topic",
        primary_queue_name="img-created-queue",
        dlq_name="dead-letter-queue",
        ingest_batch_size=5,
        ingest_max_batching_window_seconds=0.0,
        ingest_timeout_seconds=5.0,
        ingest_concurrency=1,
        ingest_report_batch_item_failures=False,
        primary_visibility_timeout_seconds=30.0,
        primary_retention_seconds=600.0,
        primary_max_receive_count=1,
        rejection_batch_size=5,
        rejection_max_batching_window_seconds=0.0,
        rejection_timeout_seconds=5.0,
        rejection_concurrency=1,
        dlq_visibility_timeout_seconds=30.0,
        dlq_retention_seconds=345600.0,
        populate_image_type_attribute=True,
        email_backend="log",
        email_api_url="",
        email_api_key="",
        email_sender="images@example.com",
        email_recipients=("uploads@example.com",),
        email_timeout_seconds=10,
        start_pollers=False,
    )
    return RuntimeConfig(**{**base.__dict__, **overrides})


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[list[str], str, str]] = []

    def send(self, to: list[str], subject: str, body: str) -> None:
        self.sent.append((list(to), subject, body))

    def subjects(self) -> list[str]:
        return [subject for _, subject, _ in self.sent]


class FailingNotifier:
    def __init__(self) -> None:
        self.attempts = 0

    def send(self, to: list[str], subject: str, body: str) -> None:
        self.attempts += 1
        raise NotificationDeliveryFailure("mail service unavailable")


class FailingStore(InMemoryImageStore):
    """Fails writes for the listed file names, or for every write when none are listed."""

    def __init__(self, fail_on: set[str] | None = None):
        super().__init__()
        self.fail_on = fail_on
        self.attempts: list[str] = []

    def put_image(self, record: ImageRecord) -> None:
        self.attempts.append(record.FileName)
        if self.fail_on is None or record.FileName in self.fail_on:
            raise StoreWriteFailure(f"write rejected for {record.FileName}")
        super().put_image(record)


def notification(*keys: str, bucket: str = "imgs") -> ObjectCreatedNotification:
    return ObjectCreatedNotification.model_validate(
        {
            "Records": [
                {
                    "eventSource": "aws:s3",
                    "eventName": "ObjectCreated:Put",
                    "eventTime": "2026-10-18T10:00:00.000Z",
                    "s3": {"bucket": {"name": bucket}, "object": {"key": key, "size": 1024}},
                }
                for key in keys
            ]
        }
    )


def delivery(*keys: str, attributes: dict[str, str] | None = None) -> TopicDelivery:
    return TopicDelivery(
        MessageId=str(uuid4()),
        TopicName="new-image-topic",
        Message=notification(*keys).model_dump_json(exclude_none=True),
        Timestamp="2026-10-18T10:00:01Z",
        MessageAttributes={name: MessageAttribute(Value=value) for name, value in (attributes or {}).items()},
    )


def queue_record(body: str, *, message_id: str | None = None, receive_count: int = 1) -> QueueRecord:
    return QueueRecord(
        messageId=message_id or str(uuid4()),
        receiptHandle=str(uuid4()),
        body=body,
        attributes={"ApproximateReceiveCount": str(receive_count)},
        eventSourceName="img-created-queue",
    )


def record_for(*keys: str, message_id: str | None = None) -> QueueRecord:
    return queue_record(delivery(*keys).model_dump_json(), message_id=message_id)
