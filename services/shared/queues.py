from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable
from uuid import uuid4

from services.shared.contracts import QueueRecord
from services.shared.logging_utils import log_event


@dataclass(frozen=True)
class RedrivePolicy:
    dead_letter_queue: MessageQueue
    max_receive_count: int

    def __post_init__(self) -> None:
        if self.max_receive_count < 1:
            raise ValueError("max_receive_count must be >= 1")


@dataclass(frozen=True)
class QueueStats:
    name: str
    visible: int
    in_flight: int
    total: int


@dataclass
class _StoredMessage:
    message_id: str
    body: str
    sent_at: float
    receive_count: int = 0
    first_received_at: float | None = None
    visible_at: float = 0.0
    receipt_handle: str | None = None
    attributes: dict[str, str] = field(default_factory=dict)


class MessageQueue:
    """In-process queue with visibility timeouts, retention and a redrive policy.

    Receiving a message hides it until its visibility timeout elapses; a consumer
    that does not delete it in time sees it again with a higher receive count.
    Once the receive count would exceed ``max_receive_count`` the message moves to
    the redrive policy's dead-letter queue instead of being delivered again.
    """

    def __init__(
        self,
        name: str,
        *,
        visibility_timeout: float,
        retention_period: float,
        redrive_policy: RedrivePolicy | None = None,
        clock: Callable[[], float] = time.time,
    ):
        if visibility_timeout < 0:
            raise ValueError("visibility_timeout must be >= 0")
        if retention_period <= 0:
            raise ValueError("retention_period must be > 0")
        self.name = name
        self.visibility_timeout = visibility_timeout
        self.retention_period = retention_period
        self.redrive_policy = redrive_policy
        self._clock = clock
        self._messages: dict[str, _StoredMessage] = {}
        self._cond = threading.Condition()

    def send(self, body: str, attributes: dict[str, str] | None = None) -> str:
        message = _StoredMessage(
            message_id=str(uuid4()),
            body=body,
            sent_at=self._clock(),
            attributes=dict(attributes or {}),
        )
        self._enqueue(message)
        return message.message_id

    def receive(self, max_messages: int = 1, wait_seconds: float = 0.0) -> list[QueueRecord]:
        if max_messages < 1:
            raise ValueError("max_messages must be >= 1")
        deadline = time.monotonic() + max(0.0, wait_seconds)
        with self._cond:
            while True:
                received = self._take_visible(max_messages)
                remaining = deadline - time.monotonic()
                if received or remaining <= 0:
                    return received
                # Visibility expiry is not signalled, so wake up periodically.
                self._cond.wait(timeout=min(remaining, 0.5))

    def delete(self, receipt_handle: str) -> bool:
        with self._cond:
            message = self._find_in_flight(receipt_handle)
            if message is None:
                return False
            del self._messages[message.message_id]
            return True

    def change_visibility(self, receipt_handle: str, timeout: float) -> bool:
        with self._cond:
            message = self._find_in_flight(receipt_handle)
            if message is None:
                return False
            message.visible_at = self._clock() + max(0.0, timeout)
            if timeout <= 0:
                message.receipt_handle = None
                self._cond.notify_all()
            return True

    def stats(self) -> QueueStats:
        with self._cond:
            now = self._clock()
            self._expire(now)
            visible = sum(1 for message in self._messages.values() if message.visible_at <= now)
            total = len(self._messages)
            return QueueStats(name=self.name, visible=visible, in_flight=total - visible, total=total)

    def purge(self) -> int:
        with self._cond:
            count = len(self._messages)
            self._messages.clear()
            return count

    def _enqueue(self, message: _StoredMessage) -> None:
        with self._cond:
            self._messages[message.message_id] = message
            self._cond.notify_all()

    def _take_visible(self, max_messages: int) -> list[QueueRecord]:
        now = self._clock()
        self._expire(now)
        received: list[QueueRecord] = []
        for message in sorted(self._messages.values(), key=lambda item: item.sent_at):
            if len(received) >= max_messages:
                break
            if message.visible_at > now:
                continue
            policy = self.redrive_policy
            if policy is not None and message.receive_count >= policy.max_receive_count:
                self._redrive(message, policy)
                continue
            message.receive_count += 1
            if message.first_received_at is None:
                message.first_received_at = now
            message.visible_at = now + self.visibility_timeout
            message.receipt_handle = str(uuid4())
            received.append(self._to_record(message))
        return received

    def _redrive(self, message: _StoredMessage, policy: RedrivePolicy) -> None:
        del self._messages[message.message_id]
        target = policy.dead_letter_queue
        target._enqueue(
            _StoredMessage(
                message_id=message.message_id,
                body=message.body,
                # Retention keeps counting from the original send.
                sent_at=message.sent_at,
                attributes={**message.attributes, "DeadLetterSourceQueue": self.name},
            )
        )
        log_event(
            "warning",
            "message_dead_lettered",
            message_id=message.message_id,
            queue=self.name,
            dead_letter_queue=target.name,
            receive_count=message.receive_count,
        )

    def _expire(self, now: float) -> None:
        expired = [
            message for message in self._messages.values() if now - message.sent_at >= self.retention_period
        ]
        for message in expired:
            del self._messages[message.message_id]
            log_event(
                "warning",
                "message_expired",
                message_id=message.message_id,
                queue=self.name,
                receive_count=message.receive_count,
            )

    def _find_in_flight(self, receipt_handle: str) -> _StoredMessage | None:
        now = self._clock()
        for message in self._messages.values():
            if message.receipt_handle == receipt_handle and message.visible_at > now:
                return message
        return None

    def _to_record(self, message: _StoredMessage) -> QueueRecord:
        attributes = {
            **message.attributes,
            "ApproximateReceiveCount": str(message.receive_count),
            "SentTimestamp": str(int(message.sent_at * 1000)),
            "ApproximateFirstReceiveTimestamp": str(int((message.first_received_at or 0.0) * 1000)),
        }
        return QueueRecord(
            messageId=message.message_id,
            receiptHandle=message.receipt_handle or "",
            body=message.body,
            attributes=attributes,
            eventSourceName=self.name,
        )
