import json

from services.shared.envelopes import EnvelopeParseError, ParsedDelivery, parse_topic_delivery
from services.shared.errors import MalformedEnvelope

from tests.helpers import delivery


def test_parse_topic_delivery_unwraps_inner_records() -> None:
    body = delivery("cat.jpeg", attributes={"imageType": ".jpeg"}).model_dump_json()
    parsed = parse_topic_delivery(body)
    assert isinstance(parsed, ParsedDelivery)
    assert parsed.delivery.attribute("imageType") == ".jpeg"
    assert [record.s3.object.key for record in parsed.notification.Records] == ["cat.jpeg"]


def test_parse_topic_delivery_accepts_bytes() -> None:
    parsed = parse_topic_delivery(delivery("a.png").model_dump_json().encode("utf-8"))
    assert isinstance(parsed, ParsedDelivery)


def test_parse_topic_delivery_rejects_invalid_json() -> None:
    parsed = parse_topic_delivery("not json")
    assert isinstance(parsed, EnvelopeParseError)
    assert "Invalid JSON in queue body" in parsed.reason
    assert isinstance(parsed.to_error(), MalformedEnvelope)


def test_parse_topic_delivery_rejects_non_object() -> None:
    parsed = parse_topic_delivery("[1, 2]")
    assert isinstance(parsed, EnvelopeParseError)


def test_parse_topic_delivery_requires_message_field() -> None:
    body = json.dumps({"MessageId": "m1", "TopicName": "t", "Timestamp": "now"})
    parsed = parse_topic_delivery(body)
    assert isinstance(parsed, EnvelopeParseError)
    assert "Message" in parsed.reason


def test_parse_topic_delivery_rejects_non_json_message() -> None:
    body = json.dumps({"MessageId": "m1", "TopicName": "t", "Timestamp": "now", "Message": "plain text"})
    parsed = parse_topic_delivery(body)
    assert isinstance(parsed, EnvelopeParseError)
    assert "topic message" in parsed.reason


def test_parse_topic_delivery_rejects_record_without_bucket() -> None:
    inner = {"Records": [{"s3": {"object": {"key": "cat.jpeg"}}}]}
    body = json.dumps({"MessageId": "m1", "TopicName": "t", "Timestamp": "now", "Message": json.dumps(inner)})
    parsed = parse_topic_delivery(body)
    assert isinstance(parsed, EnvelopeParseError)
    assert "Unexpected notification shape" in parsed.reason


def test_parse_topic_delivery_allows_test_event_without_records() -> None:
    inner = {"Service": "Amazon S3", "Event": "s3:TestEvent"}
    body = json.dumps({"MessageId": "m1", "TopicName": "t", "Timestamp": "now", "Message": json.dumps(inner)})
    parsed = parse_topic_delivery(body)
    assert isinstance(parsed, ParsedDelivery)
    assert parsed.notification.Records == []
