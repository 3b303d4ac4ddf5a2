from __future__ import annotations

from services.shared.classification import classify_object_key
from services.shared.contracts import TopicDelivery
from services.shared.envelopes import EnvelopeParseError, parse_delivery
from services.shared.logging_utils import log_event
from services.shared.notifier import EmailNotifier, success_email


class SuccessMailer:
    """Unfiltered topic subscriber that mails on every publication.

    It fires on publication, not on persistence, so a success mail can go out
    for an upload that is later rejected. It has no queue: a failed send is
    logged by the topic and never retried.
    """

    def __init__(self, notifier: EmailNotifier, recipients: list[str]):
        self.notifier = notifier
        self.recipients = list(recipients)

    def __call__(self, delivery: TopicDelivery) -> None:
        parsed = parse_delivery(delivery)
        if isinstance(parsed, EnvelopeParseError):
            log_event(
                "warning",
                "success_mail_skipped",
                message_id=delivery.MessageId,
                error=parsed.reason,
            )
            return

        for s3_record in parsed.notification.Records:
            # Undecodable keys are mailed under their raw form.
            file_name = classify_object_key(s3_record.s3.object.key).file_name
            template = success_email(file_name, s3_record.s3.bucket.name)
            self.notifier.send(self.recipients, template.subject, template.body)
            log_event(
                "info",
                "success_notified",
                message_id=delivery.MessageId,
                file_name=file_name,
                bucket=s3_record.s3.bucket.name,
            )
