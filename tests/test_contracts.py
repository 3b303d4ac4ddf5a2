import pytest

from services.shared.contracts import (
    BatchResponse,
    ImageRecord,
    ObjectCreatedNotification,
    QueueRecord,
    TopicDelivery,
)


def test_object_created_notification_contract() -> None:
    payload = {
        "Records": [
            {
                "eventSource": "aws:s3",
                "eventTime": "2026-10-18T10:00:00.000Z",
                "s3": {"bucket": {"name": "imgs"}, "object": {"key": "cat.jpeg", "size": 10}},
                "userIdentity": {"principalId": "ignored"},
            }
        ]
    }
    model = ObjectCreatedNotification.model_validate(payload)
    assert model.Records[0].s3.bucket.name == "imgs"
    assert model.Records[0].s3.object.key == "cat.jpeg"


def test_notification_without_records_is_empty() -> None:
    model = ObjectCreatedNotification.model_validate({"Event": "s3:TestEvent"})
    assert model.Records == []


def test_notification_rejects_empty_key() -> None:
    with pytest.raises(ValueError):
        ObjectCreatedNotification.model_validate(
            {"Records": [{"s3": {"bucket": {"name": "imgs"}, "object": {"key": ""}}}]}
        )


def test_topic_delivery_attribute_lookup() -> None:
    delivery = TopicDelivery.model_validate(
        {
            "MessageId": "m1",
            "TopicName": "new-image-topic",
            "Message": "{}",
            "Timestamp": "2026-10-18T10:00:00Z",
            "MessageAttributes": {"imageType": {"Type": "String", "Value": ".png"}},
        }
    )
    assert delivery.Type == "Notification"
    assert delivery.attribute("imageType") == ".png"
    assert delivery.attribute("missing") is None


def test_queue_record_receive_count() -> None:
    record = QueueRecord(
        messageId="m1",
        receiptHandle="r1",
        body="{}",
        attributes={"ApproximateReceiveCount": "3"},
    )
    assert record.receive_count == 3


def test_batch_response_wire_shape() -> None:
    response = BatchResponse.for_failures(["m1", "m2"])
    assert response.model_dump() == {
        "batchItemFailures": [{"itemIdentifier": "m1"}, {"itemIdentifier": "m2"}]
    }
    assert response.failed_ids() == {"m1", "m2"}


def test_image_record_requires_file_name() -> None:
    with pytest.raises(ValueError):
        ImageRecord.model_validate({"FileName": ""})
