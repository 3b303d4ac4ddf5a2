from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from typing import Callable, Mapping
from uuid import uuid4

from services.shared.classification import IMAGE_TYPE_ATTRIBUTE, image_type_attribute
from services.shared.contracts import MessageAttribute, ObjectCreatedNotification, TopicDelivery, now_iso8601
from services.shared.logging_utils import log_event
from services.shared.queues import MessageQueue


@dataclass(frozen=True)
class FilterPolicy:
    """Allow-list or deny-list over one string message attribute.

    A message that does not carry the attribute matches neither kind of policy.
    """

    attribute: str
    allowlist: tuple[str, ...] | None = None
    denylist: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        if (self.allowlist is None) == (self.denylist is None):
            raise ValueError("exactly one of allowlist or denylist is required")

    @classmethod
    def allow(cls, attribute: str, values: list[str]) -> FilterPolicy:
        return cls(attribute=attribute, allowlist=tuple(values))

    @classmethod
    def deny(cls, attribute: str, values: list[str]) -> FilterPolicy:
        return cls(attribute=attribute, denylist=tuple(values))

    def matches(self, attributes: Mapping[str, str]) -> bool:
        value = attributes.get(self.attribute)
        if value is None:
            return False
        if self.allowlist is not None:
            return value in self.allowlist
        return value not in (self.denylist or ())


@dataclass(frozen=True)
class Subscription:
    name: str
    deliver: Callable[[TopicDelivery], None]
    filter_policy: FilterPolicy | None = None

    def accepts(self, attributes: Mapping[str, str]) -> bool:
        return self.filter_policy is None or self.filter_policy.matches(attributes)


def queue_subscription(queue: MessageQueue, filter_policy: FilterPolicy | None = None) -> Subscription:
    def deliver(delivery: TopicDelivery) -> None:
        queue.send(delivery.model_dump_json())

    return Subscription(name=f"queue:{queue.name}", deliver=deliver, filter_policy=filter_policy)


def function_subscription(
    name: str,
    handler: Callable[[TopicDelivery], None],
    filter_policy: FilterPolicy | None = None,
) -> Subscription:
    return Subscription(name=f"function:{name}", deliver=handler, filter_policy=filter_policy)


@dataclass
class PublishResult:
    message_id: str
    attributes: dict[str, str]
    delivered: list[str] = field(default_factory=list)
    filtered: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


class FanoutTopic:
    def __init__(self, name: str):
        self.name = name
        self._subscriptions: list[Subscription] = []
        self._lock = threading.Lock()

    @property
    def subscriptions(self) -> list[Subscription]:
        with self._lock:
            return list(self._subscriptions)

    def subscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if any(existing.name == subscription.name for existing in self._subscriptions):
                raise ValueError(f"duplicate subscription: {subscription.name}")
            self._subscriptions.append(subscription)

    def publish(self, message: str, attributes: Mapping[str, str] | None = None) -> PublishResult:
        attrs = {str(key): str(value) for key, value in (attributes or {}).items()}
        delivery = TopicDelivery(
            MessageId=str(uuid4()),
            TopicName=self.name,
            Message=message,
            Timestamp=now_iso8601(),
            MessageAttributes={key: MessageAttribute(Value=value) for key, value in attrs.items()},
        )
        result = PublishResult(message_id=delivery.MessageId, attributes=attrs)

        for subscription in self.subscriptions:
            if not subscription.accepts(attrs):
                result.filtered.append(subscription.name)
                continue
            # Each subscriber gets its own copy; one failing never blocks the rest.
            try:
                subscription.deliver(delivery.model_copy(deep=True))
            except Exception as exc:
                result.failed[subscription.name] = str(exc)
                log_event(
                    "error",
                    "subscriber_delivery_failed",
                    message_id=delivery.MessageId,
                    topic=self.name,
                    subscription=subscription.name,
                    error=str(exc),
                )
                continue
            result.delivered.append(subscription.name)

        log_event(
            "info",
            "topic_message_published",
            message_id=delivery.MessageId,
            topic=self.name,
            attributes=attrs,
            delivered=result.delivered,
            filtered=result.filtered,
            failed=sorted(result.failed),
        )
        return result


def publish_notification(
    topic: FanoutTopic,
    notification: ObjectCreatedNotification,
    *,
    populate_image_type: bool,
) -> list[PublishResult]:
    """Publishes one classified message per object-store record.

    Raw object-store events never carry an imageType attribute. It is only set
    here when ``populate_image_type`` is on; without it the allow and deny
    filters match nothing and only unfiltered subscribers see the message.
    """
    results: list[PublishResult] = []
    for record in notification.Records:
        single = ObjectCreatedNotification(Records=[record])
        attributes: dict[str, str] = {}
        if populate_image_type:
            attributes[IMAGE_TYPE_ATTRIBUTE] = image_type_attribute(record.s3.object.key)
        message = json.dumps(single.model_dump(mode="json", exclude_none=True), separators=(",", ":"))
        results.append(topic.publish(message, attributes))
    return results
