from __future__ import annotations

from services.shared.classification import Rejected, classify_object_key
from services.shared.contracts import BatchResponse, ImageRecord, QueueRecord
from services.shared.db import ImageStore
from services.shared.envelopes import EnvelopeParseError, parse_topic_delivery
from services.shared.errors import PipelineError, StoreWriteFailure
from services.shared.logging_utils import log_event


class IngestConsumer:
    """Persists an image record for every accepted object-created notification.

    By default any failure fails the whole batch, so every message in it is
    redelivered. With ``report_batch_item_failures`` each message is handled on
    its own and only the failed ones are returned for redelivery.
    """

    def __init__(self, store: ImageStore, *, report_batch_item_failures: bool = False):
        self.store = store
        self.report_batch_item_failures = report_batch_item_failures

    def __call__(self, records: list[QueueRecord]) -> BatchResponse:
        return self.handle_batch(records)

    def handle_batch(self, records: list[QueueRecord]) -> BatchResponse:
        if self.report_batch_item_failures:
            return self._handle_per_item(records)
        return self._handle_whole_batch(records)

    def process_record(self, record: QueueRecord) -> list[ImageRecord]:
        planned = self.plan_record(record)
        if isinstance(planned, (Rejected, EnvelopeParseError)):
            raise planned.to_error()
        for image in planned:
            self._write(image, record)
        return planned

    def plan_record(self, record: QueueRecord) -> list[ImageRecord] | Rejected | EnvelopeParseError:
        parsed = parse_topic_delivery(record.body)
        if isinstance(parsed, EnvelopeParseError):
            log_event(
                "error",
                "ingest_envelope_malformed",
                message_id=record.messageId,
                queue=record.eventSourceName,
                error=parsed.reason,
            )
            return parsed

        if not parsed.notification.Records:
            log_event(
                "warning",
                "ingest_notification_without_records",
                message_id=record.messageId,
                queue=record.eventSourceName,
                topic_message_id=parsed.delivery.MessageId,
            )
            return []

        images: list[ImageRecord] = []
        for s3_record in parsed.notification.Records:
            outcome = classify_object_key(s3_record.s3.object.key)
            if isinstance(outcome, Rejected):
                log_event(
                    "error",
                    "ingest_image_rejected",
                    message_id=record.messageId,
                    file_name=outcome.file_name,
                    queue=record.eventSourceName,
                    reason=outcome.reason.value,
                    image_type=outcome.image_type,
                )
                return outcome
            images.append(ImageRecord(FileName=outcome.file_name))
        return images

    def _handle_whole_batch(self, records: list[QueueRecord]) -> BatchResponse:
        # Validate every item first so an invalid item fails the batch before any write.
        planned: list[tuple[ImageRecord, QueueRecord]] = []
        for record in records:
            outcome = self.plan_record(record)
            if isinstance(outcome, (Rejected, EnvelopeParseError)):
                error = outcome.to_error()
                self._log_batch_failure(records, record, error)
                raise error
            planned.extend((image, record) for image in outcome)

        for image, record in planned:
            try:
                self._write(image, record)
            except StoreWriteFailure as exc:
                self._log_batch_failure(records, record, exc)
                raise
        return BatchResponse()

    def _handle_per_item(self, records: list[QueueRecord]) -> BatchResponse:
        failed: list[str] = []
        for record in records:
            try:
                self.process_record(record)
            except PipelineError as exc:
                failed.append(record.messageId)
                log_event(
                    "error",
                    "ingest_item_failed",
                    message_id=record.messageId,
                    queue=record.eventSourceName,
                    error_type=type(exc).__name__,
                    error=str(exc),
                    receive_count=record.receive_count,
                )
        return BatchResponse.for_failures(failed)

    def _write(self, image: ImageRecord, record: QueueRecord) -> None:
        try:
            self.store.put_image(image)
        except StoreWriteFailure:
            raise
        except Exception as exc:
            raise StoreWriteFailure(f"Failed to upsert image {image.FileName!r}: {exc}") from exc
        log_event(
            "info",
            "image_ingested",
            message_id=record.messageId,
            file_name=image.FileName,
            queue=record.eventSourceName,
            receive_count=record.receive_count,
        )

    def _log_batch_failure(self, records: list[QueueRecord], failing: QueueRecord, error: Exception) -> None:
        log_event(
            "error",
            "ingest_batch_failed",
            message_id=failing.messageId,
            queue=failing.eventSourceName,
            batch_size=len(records),
            error_type=type(error).__name__,
            error=str(error),
            receive_count=failing.receive_count,
        )
