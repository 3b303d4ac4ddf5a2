from __future__ import annotations

import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Callable

from services.shared.contracts import BatchResponse, QueueRecord
from services.shared.logging_utils import log_event
from services.shared.queues import MessageQueue


BatchHandler = Callable[[list[QueueRecord]], BatchResponse | None]


@dataclass
class PollOutcome:
    received: int = 0
    deleted: int = 0
    failed_ids: list[str] = field(default_factory=list)
    error: str | None = None


class QueueEventSource:
    """Polls a queue in batches and invokes a consumer, deleting what it handled.

    A batch is sent to the handler once ``batch_size`` messages are collected or
    ``max_batching_window`` seconds have passed since the first one arrived. A
    handler that raises or exceeds ``invocation_timeout`` fails the whole batch;
    its messages stay in flight and reappear after the visibility timeout. With
    ``report_batch_item_failures`` the handler's ``BatchResponse`` names the
    messages to keep and everything else is deleted.

    A timed-out handler is abandoned, not stopped. It runs to completion on its
    own thread, but its result is ignored and its messages are still redelivered.
    """

    def __init__(
        self,
        queue: MessageQueue,
        handler: BatchHandler,
        *,
        batch_size: int,
        max_batching_window: float,
        invocation_timeout: float,
        report_batch_item_failures: bool = False,
        concurrency: int = 1,
        name: str | None = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.queue = queue
        self.handler = handler
        self.batch_size = batch_size
        self.max_batching_window = max_batching_window
        self.invocation_timeout = invocation_timeout
        self.report_batch_item_failures = report_batch_item_failures
        self.concurrency = concurrency
        self.name = name or f"{queue.name}-poller"
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    def collect_batch(self, wait_seconds: float = 0.0) -> list[QueueRecord]:
        batch = self.queue.receive(self.batch_size, wait_seconds=wait_seconds)
        if not batch:
            return batch
        deadline = time.monotonic() + self.max_batching_window
        while len(batch) < self.batch_size and not self._stop.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            batch.extend(self.queue.receive(self.batch_size - len(batch), wait_seconds=remaining))
        return batch

    def poll_once(self, wait_seconds: float = 0.0) -> PollOutcome:
        batch = self.collect_batch(wait_seconds)
        if not batch:
            return PollOutcome()
        return self.invoke(batch)

    def invoke(self, batch: list[QueueRecord]) -> PollOutcome:
        outcome = PollOutcome(received=len(batch))
        all_ids = [record.messageId for record in batch]
        abandoned = threading.Event()
        future = self._start_invocation(batch, abandoned)
        try:
            response = future.result(timeout=self.invocation_timeout)
        except FutureTimeoutError:
            abandoned.set()
            outcome.failed_ids = all_ids
            outcome.error = f"invocation exceeded {self.invocation_timeout}s"
            log_event(
                "error",
                "consumer_invocation_timed_out",
                queue=self.queue.name,
                batch_size=len(batch),
                timeout_seconds=self.invocation_timeout,
            )
            return outcome
        except Exception as exc:
            outcome.failed_ids = all_ids
            outcome.error = str(exc)
            log_event(
                "error",
                "consumer_invocation_failed",
                queue=self.queue.name,
                batch_size=len(batch),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return outcome

        failed: set[str] = set()
        if self.report_batch_item_failures and response is not None:
            failed = response.failed_ids()
            unknown = failed.difference(all_ids)
            if unknown:
                outcome.failed_ids = all_ids
                outcome.error = f"unknown batch item identifiers: {sorted(unknown)}"
                log_event(
                    "error",
                    "consumer_invalid_batch_response",
                    queue=self.queue.name,
                    unknown_ids=sorted(unknown),
                )
                return outcome

        for record in batch:
            if record.messageId in failed:
                outcome.failed_ids.append(record.messageId)
                continue
            if self.queue.delete(record.receiptHandle):
                outcome.deleted += 1
        return outcome

    def _start_invocation(self, batch: list[QueueRecord], abandoned: threading.Event) -> Future:
        # A timed-out handler keeps its own thread; later batches never queue behind it.
        future: Future = Future()

        def run() -> None:
            future.set_running_or_notify_cancel()
            try:
                future.set_result(self.handler(batch))
            except Exception as exc:
                future.set_exception(exc)
            if abandoned.is_set():
                log_event(
                    "warning",
                    "consumer_invocation_finished_after_timeout",
                    queue=self.queue.name,
                    batch_size=len(batch),
                    error=str(future.exception()) if future.exception() else None,
                )

        threading.Thread(target=run, name=f"{self.name}-invocation", daemon=True).start()
        return future

    def start(self, poll_wait_seconds: float = 1.0) -> None:
        if self._threads:
            return
        self._stop.clear()
        for index in range(self.concurrency):
            thread = threading.Thread(
                target=self._run,
                args=(poll_wait_seconds,),
                name=f"{self.name}-{index}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)
        log_event("info", "event_source_started", queue=self.queue.name, concurrency=self.concurrency)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []
        log_event("info", "event_source_stopped", queue=self.queue.name)

    def _run(self, poll_wait_seconds: float) -> None:
        while not self._stop.is_set():
            try:
                self.poll_once(wait_seconds=poll_wait_seconds)
            except Exception as exc:  # pragma: no cover
                log_event("error", "event_source_poll_failed", queue=self.queue.name, error=str(exc))
                self._stop.wait(1.0)
