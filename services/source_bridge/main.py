#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

import requests

from services.shared.config import get_env
from services.shared.logging_utils import log_event
from services.shared.pubsub_client import PubSubSubscriber


class Subscriber(Protocol):
    def pull(self, subscription_name: str, max_messages: int) -> list[Any]: ...

    def acknowledge(self, subscription_name: str, ack_ids: list[str]) -> None: ...

    def nack(self, subscription_name: str, ack_ids: list[str]) -> None: ...


@dataclass
class ForwardSummary:
    pulled: int = 0
    forwarded: int = 0
    dropped: int = 0
    retried: int = 0
    forwarded_message_ids: list[str] = field(default_factory=list)


def forward_batch(
    *,
    subscriber: Subscriber,
    session: requests.Session,
    subscription: str,
    pipeline_url: str,
    max_messages: int,
    timeout_seconds: int = 30,
) -> ForwardSummary:
    """Moves raw object-created notifications from a Pub/Sub subscription into the pipeline.

    Forwarded and permanently invalid messages are acknowledged; transport or
    server errors are nacked so Pub/Sub redelivers them.
    """
    received = subscriber.pull(subscription, max_messages)
    summary = ForwardSummary(pulled=len(received))
    ack_ids: list[str] = []
    nack_ids: list[str] = []
    endpoint = pipeline_url.rstrip("/") + "/v1/notifications"

    for item in received:
        message_id = item.message.message_id
        try:
            payload = json.loads(item.message.data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            summary.dropped += 1
            ack_ids.append(item.ack_id)
            log_event("error", "bridge_message_dropped", message_id=message_id, error=str(exc))
            continue

        try:
            response = session.post(endpoint, json=payload, timeout=timeout_seconds)
        except requests.RequestException as exc:
            summary.retried += 1
            nack_ids.append(item.ack_id)
            log_event("error", "bridge_forward_failed", message_id=message_id, error=str(exc))
            continue

        if response.status_code >= 500:
            summary.retried += 1
            nack_ids.append(item.ack_id)
            log_event(
                "error",
                "bridge_forward_failed",
                message_id=message_id,
                status_code=response.status_code,
                error=response.text[:200],
            )
        elif response.status_code >= 400:
            summary.dropped += 1
            ack_ids.append(item.ack_id)
            log_event(
                "error",
                "bridge_message_dropped",
                message_id=message_id,
                status_code=response.status_code,
                error=response.text[:200],
            )
        else:
            summary.forwarded += 1
            summary.forwarded_message_ids.append(message_id)
            ack_ids.append(item.ack_id)

    subscriber.acknowledge(subscription, ack_ids)
    subscriber.nack(subscription, nack_ids)
    log_event(
        "info",
        "bridge_batch_completed",
        subscription=subscription,
        pulled=summary.pulled,
        forwarded=summary.forwarded,
        dropped=summary.dropped,
        retried=summary.retried,
    )
    return summary


def main() -> int:
    parser = argparse.ArgumentParser(description="Forward object-created notifications from Pub/Sub to the pipeline.")
    parser.add_argument("--project-id", default=get_env("PROJECT_ID", ""))
    parser.add_argument("--subscription", default=get_env("SOURCE_SUBSCRIPTION", "image-created-sub"))
    parser.add_argument("--pipeline-url", default=get_env("PIPELINE_URL", "http://localhost:8080"))
    parser.add_argument("--max-messages", type=int, default=10)
    parser.add_argument("--idle-sleep-seconds", type=float, default=2.0)
    parser.add_argument("--once", action="store_true")
    args = parser.parse_args()

    if not args.project_id:
        raise RuntimeError("Missing required env var: PROJECT_ID")

    subscriber = PubSubSubscriber(args.project_id)
    session = requests.Session()
    while True:
        summary = forward_batch(
            subscriber=subscriber,
            session=session,
            subscription=args.subscription,
            pipeline_url=args.pipeline_url,
            max_messages=args.max_messages,
        )
        if args.once:
            return 0
        if summary.pulled == 0:
            time.sleep(args.idle_sleep_seconds)


if __name__ == "__main__":
    raise SystemExit(main())
