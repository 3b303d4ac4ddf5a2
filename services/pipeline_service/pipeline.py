from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from services.ingest_consumer.handler import IngestConsumer
from services.rejection_consumer.handler import RejectionConsumer
from services.shared.classification import IMAGE_TYPE_ATTRIBUTE, accepted_attribute_values
from services.shared.config import RuntimeConfig
from services.shared.contracts import ObjectCreatedNotification
from services.shared.db import ImageStore, build_image_store
from services.shared.event_source import QueueEventSource
from services.shared.fanout import (
    FanoutTopic,
    FilterPolicy,
    PublishResult,
    function_subscription,
    publish_notification,
    queue_subscription,
)
from services.shared.logging_utils import log_event
from services.shared.notifier import EmailNotifier, build_email_notifier
from services.shared.queues import MessageQueue, QueueStats, RedrivePolicy
from services.success_mailer.handler import SuccessMailer


@dataclass
class Pipeline:
    config: RuntimeConfig
    topic: FanoutTopic
    primary_queue: MessageQueue
    dead_letter_queue: MessageQueue
    store: ImageStore
    notifier: EmailNotifier
    ingest_consumer: IngestConsumer
    rejection_consumer: RejectionConsumer
    success_mailer: SuccessMailer
    ingest_source: QueueEventSource
    rejection_source: QueueEventSource

    def publish(self, notification: ObjectCreatedNotification) -> list[PublishResult]:
        return publish_notification(
            self.topic,
            notification,
            populate_image_type=self.config.populate_image_type_attribute,
        )

    def start(self) -> None:
        self.ingest_source.start()
        self.rejection_source.start()

    def stop(self) -> None:
        self.ingest_source.stop()
        self.rejection_source.stop()

    def run_until_idle(self, max_rounds: int = 100) -> int:
        """Polls both queues without waiting until neither returns messages."""
        handled = 0
        for _ in range(max_rounds):
            ingest = self.ingest_source.poll_once()
            rejection = self.rejection_source.poll_once()
            if ingest.received == 0 and rejection.received == 0:
                break
            handled += ingest.received + rejection.received
        return handled

    def queue_stats(self) -> list[QueueStats]:
        return [self.primary_queue.stats(), self.dead_letter_queue.stats()]


def build_pipeline(
    config: RuntimeConfig,
    *,
    store: ImageStore | None = None,
    notifier: EmailNotifier | None = None,
    clock: Callable[[], float] = time.time,
) -> Pipeline:
    """Constructs every client and consumer once; handlers receive them by reference."""
    store = store if store is not None else build_image_store(config)
    notifier = notifier if notifier is not None else build_email_notifier(config)
    recipients = list(config.email_recipients)

    dead_letter_queue = MessageQueue(
        config.dlq_name,
        visibility_timeout=config.dlq_visibility_timeout_seconds,
        retention_period=config.dlq_retention_seconds,
        clock=clock,
    )
    primary_queue = MessageQueue(
        config.primary_queue_name,
        visibility_timeout=config.primary_visibility_timeout_seconds,
        retention_period=config.primary_retention_seconds,
        redrive_policy=RedrivePolicy(
            dead_letter_queue=dead_letter_queue,
            max_receive_count=config.primary_max_receive_count,
        ),
        clock=clock,
    )

    ingest_consumer = IngestConsumer(
        store,
        report_batch_item_failures=config.ingest_report_batch_item_failures,
    )
    rejection_consumer = RejectionConsumer(notifier, recipients)
    success_mailer = SuccessMailer(notifier, recipients)

    accepted = accepted_attribute_values()
    topic = FanoutTopic(config.topic_name)
    topic.subscribe(queue_subscription(primary_queue, FilterPolicy.allow(IMAGE_TYPE_ATTRIBUTE, accepted)))
    topic.subscribe(queue_subscription(dead_letter_queue, FilterPolicy.deny(IMAGE_TYPE_ATTRIBUTE, accepted)))
    topic.subscribe(function_subscription("success-mailer", success_mailer))

    ingest_source = QueueEventSource(
        primary_queue,
        ingest_consumer,
        batch_size=config.ingest_batch_size,
        max_batching_window=config.ingest_max_batching_window_seconds,
        invocation_timeout=config.ingest_timeout_seconds,
        report_batch_item_failures=config.ingest_report_batch_item_failures,
        concurrency=config.ingest_concurrency,
        name="ingest-consumer",
    )
    rejection_source = QueueEventSource(
        dead_letter_queue,
        rejection_consumer,
        batch_size=config.rejection_batch_size,
        max_batching_window=config.rejection_max_batching_window_seconds,
        invocation_timeout=config.rejection_timeout_seconds,
        report_batch_item_failures=True,
        concurrency=config.rejection_concurrency,
        name="rejection-consumer",
    )

    log_event(
        "info",
        "pipeline_built",
        topic=config.topic_name,
        region=config.region,
        store_backend=config.store_backend,
        email_backend=config.email_backend,
        populate_image_type_attribute=config.populate_image_type_attribute,
        report_batch_item_failures=config.ingest_report_batch_item_failures,
    )
    return Pipeline(
        config=config,
        topic=topic,
        primary_queue=primary_queue,
        dead_letter_queue=dead_letter_queue,
        store=store,
        notifier=notifier,
        ingest_consumer=ingest_consumer,
        rejection_consumer=rejection_consumer,
        success_mailer=success_mailer,
        ingest_source=ingest_source,
        rejection_source=rejection_source,
    )
