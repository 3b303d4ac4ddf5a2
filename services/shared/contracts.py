from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class S3Bucket(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)


class S3Object(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str = Field(..., min_length=1, description="Percent-encoded object key, '+' for spaces")
    size: int | None = Field(default=None, ge=0)
    eTag: str | None = None


class S3Entity(BaseModel):
    model_config = ConfigDict(frozen=True)

    bucket: S3Bucket
    object: S3Object


class ObjectCreatedRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    eventSource: str | None = None
    eventName: str | None = None
    eventTime: str | None = None
    s3: S3Entity


class ObjectCreatedNotification(BaseModel):
    """Raw notification envelope as emitted by the object store."""

    model_config = ConfigDict(frozen=True)

    # Storage test events carry no records at all.
    Records: list[ObjectCreatedRecord] = Field(default_factory=list)


class MessageAttribute(BaseModel):
    Type: str = "String"
    Value: str


class TopicDelivery(BaseModel):
    """Outer envelope wrapping one published message, as seen by every subscriber."""

    Type: str = "Notification"
    MessageId: str
    TopicName: str
    Message: str
    Timestamp: str
    MessageAttributes: dict[str, MessageAttribute] = Field(default_factory=dict)

    def attribute(self, name: str) -> str | None:
        attr = self.MessageAttributes.get(name)
        return attr.Value if attr is not None else None


class QueueRecord(BaseModel):
    messageId: str
    receiptHandle: str
    body: str
    attributes: dict[str, str] = Field(default_factory=dict)
    eventSourceName: str | None = None

    @property
    def receive_count(self) -> int:
        return int(self.attributes.get("ApproximateReceiveCount", "0"))


class QueueEvent(BaseModel):
    Records: list[QueueRecord] = Field(default_factory=list)


class BatchItemFailure(BaseModel):
    itemIdentifier: str


class BatchResponse(BaseModel):
    batchItemFailures: list[BatchItemFailure] = Field(default_factory=list)

    @classmethod
    def for_failures(cls, message_ids: list[str]) -> BatchResponse:
        return cls(batchItemFailures=[BatchItemFailure(itemIdentifier=item) for item in message_ids])

    def failed_ids(self) -> set[str]:
        return {item.itemIdentifier for item in self.batchItemFailures}


class ImageRecord(BaseModel):
    FileName: str = Field(..., min_length=1, description="Decoded object key")


class PubSubPushMessage(BaseModel):
    data: str
    messageId: str | None = None
    publishTime: str | None = None
    attributes: dict[str, str] = Field(default_factory=dict)


class PubSubPushEnvelope(BaseModel):
    message: PubSubPushMessage
    subscription: str | None = None


def now_iso8601() -> str:
    return datetime.now(timezone.utc).isoformat()
