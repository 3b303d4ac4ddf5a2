from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from services.shared.contracts import ObjectCreatedNotification, TopicDelivery
from services.shared.errors import MalformedEnvelope


@dataclass(frozen=True)
class ParsedDelivery:
    delivery: TopicDelivery
    notification: ObjectCreatedNotification


@dataclass(frozen=True)
class EnvelopeParseError:
    reason: str

    def to_error(self) -> MalformedEnvelope:
        return MalformedEnvelope(self.reason)


def parse_topic_delivery(body: str | bytes) -> ParsedDelivery | EnvelopeParseError:
    """Unwraps a queue body into the topic delivery and the object-store records inside it."""
    outer = _load_json_object(body, "queue body")
    if isinstance(outer, EnvelopeParseError):
        return outer
    try:
        delivery = TopicDelivery.model_validate(outer)
    except ValidationError as exc:
        return EnvelopeParseError(f"Unexpected topic delivery shape: {_first_error(exc)}")
    return parse_delivery(delivery)


def parse_delivery(delivery: TopicDelivery) -> ParsedDelivery | EnvelopeParseError:
    inner = _load_json_object(delivery.Message, "topic message")
    if isinstance(inner, EnvelopeParseError):
        return inner
    notification = parse_notification(inner)
    if isinstance(notification, EnvelopeParseError):
        return notification
    return ParsedDelivery(delivery=delivery, notification=notification)


def parse_notification(payload: dict[str, Any]) -> ObjectCreatedNotification | EnvelopeParseError:
    try:
        return ObjectCreatedNotification.model_validate(payload)
    except ValidationError as exc:
        return EnvelopeParseError(f"Unexpected notification shape: {_first_error(exc)}")


def _load_json_object(raw: str | bytes, label: str) -> dict[str, Any] | EnvelopeParseError:
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        payload = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        return EnvelopeParseError(f"Invalid JSON in {label}: {exc}")
    if not isinstance(payload, dict):
        return EnvelopeParseError(f"Expected a JSON object in {label}")
    return payload


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg', 'invalid')}"
