from __future__ import annotations

from services.shared.classification import Rejected, classify_object_key
from services.shared.contracts import BatchResponse, QueueRecord
from services.shared.envelopes import EnvelopeParseError, parse_topic_delivery
from services.shared.errors import NotificationDeliveryFailure
from services.shared.logging_utils import log_event
from services.shared.notifier import EmailNotifier, EmailTemplate, rejection_email


RETRY_EXHAUSTED_REASON = "processing failed after all retries"


class RejectionConsumer:
    """Sends one rejection email per dead-lettered message; never writes to the store."""

    def __init__(self, notifier: EmailNotifier, recipients: list[str]):
        self.notifier = notifier
        self.recipients = list(recipients)

    def __call__(self, records: list[QueueRecord]) -> BatchResponse:
        return self.handle_batch(records)

    def handle_batch(self, records: list[QueueRecord]) -> BatchResponse:
        failed: list[str] = []
        for record in records:
            try:
                self.process_record(record)
            except NotificationDeliveryFailure as exc:
                failed.append(record.messageId)
                log_event(
                    "error",
                    "rejection_notification_failed",
                    message_id=record.messageId,
                    queue=record.eventSourceName,
                    receive_count=record.receive_count,
                    error=str(exc),
                )
        return BatchResponse.for_failures(failed)

    def process_record(self, record: QueueRecord) -> EmailTemplate:
        template = self.build_email(record)
        self.notifier.send(self.recipients, template.subject, template.body)
        log_event(
            "info",
            "rejection_notified",
            message_id=record.messageId,
            queue=record.eventSourceName,
            source_queue=record.attributes.get("DeadLetterSourceQueue"),
            subject=template.subject,
        )
        return template

    def build_email(self, record: QueueRecord) -> EmailTemplate:
        parsed = parse_topic_delivery(record.body)
        if isinstance(parsed, EnvelopeParseError):
            return rejection_email([], parsed.reason)

        file_names: list[str] = []
        reason = RETRY_EXHAUSTED_REASON
        for s3_record in parsed.notification.Records:
            outcome = classify_object_key(s3_record.s3.object.key)
            file_names.append(outcome.file_name)
            if isinstance(outcome, Rejected) and reason == RETRY_EXHAUSTED_REASON:
                reason = outcome.detail
        return rejection_email(file_names, reason)
