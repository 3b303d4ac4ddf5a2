from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import requests

from services.shared.config import RuntimeConfig
from services.shared.errors import NotificationDeliveryFailure
from services.shared.logging_utils import log_event


class EmailNotifier(Protocol):
    def send(self, to: list[str], subject: str, body: str) -> None: ...


@dataclass(frozen=True)
class EmailTemplate:
    subject: str
    body: str


def success_email(file_name: str, bucket: str) -> EmailTemplate:
    return EmailTemplate(
        subject="New image upload",
        body=f"We received your image {file_name!r} in bucket {bucket!r}.",
    )


def rejection_email(file_names: list[str], reason: str) -> EmailTemplate:
    subject = "Image upload rejected"
    if not file_names:
        return EmailTemplate(subject=subject, body=f"An upload could not be processed: {reason}.")
    names = ", ".join(repr(name) for name in file_names)
    return EmailTemplate(
        subject=subject,
        body=f"Your upload {names} was rejected: {reason}. Only .jpeg and .png images are accepted.",
    )


class LogEmailNotifier:
    def send(self, to: list[str], subject: str, body: str) -> None:
        log_event("info", "email_logged", to=to, subject=subject, body=body)


class HttpEmailNotifier:
    """Sends mail through a JSON email API (from/to/subject/text payload, bearer key)."""

    def __init__(self, api_url: str, api_key: str, sender: str, timeout_seconds: int = 10):
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self.timeout_seconds = timeout_seconds
        self._session = requests.Session()

    def send(self, to: list[str], subject: str, body: str) -> None:
        if not to:
            raise NotificationDeliveryFailure("No recipients configured")
        payload = {"from": self.sender, "to": to, "subject": subject, "text": body}
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            response = self._session.post(self.api_url, json=payload, headers=headers, timeout=self.timeout_seconds)
        except requests.RequestException as exc:
            raise NotificationDeliveryFailure(f"Email request failed: {exc}") from exc
        if response.status_code >= 400:
            raise NotificationDeliveryFailure(
                f"Email API rejected message ({response.status_code}): {response.text[:200]}"
            )


def build_email_notifier(config: RuntimeConfig) -> EmailNotifier:
    if config.email_backend == "http":
        return HttpEmailNotifier(
            api_url=config.email_api_url,
            api_key=config.email_api_key,
            sender=config.email_sender,
            timeout_seconds=config.email_timeout_seconds,
        )
    return LogEmailNotifier()
