from __future__ import annotations

import os
from dataclasses import dataclass


def get_env(name: str, default: str | None = None, required: bool = False) -> str:
    value = os.getenv(name, default)
    if required and (value is None or value == ""):
        raise RuntimeError(f"Missing required env var: {name}")
    return value or ""


def get_env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return int(raw)


def get_env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return float(raw)


def get_env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def get_env_csv(name: str, default: str = "") -> tuple[str, ...]:
    raw = os.getenv(name, default) or ""
    parts = [item.strip() for item in raw.split(",")]
    return tuple(item for item in parts if item)


@dataclass(frozen=True)
class RuntimeConfig:
    region: str
    project_id: str
    store_backend: str
    database_url: str
    image_table: str
    topic_name: str
    primary_queue_name: str
    dlq_name: str
    ingest_batch_size: int
    ingest_max_batching_window_seconds: float
    ingest_timeout_seconds: float
    ingest_concurrency: int
    ingest_report_batch_item_failures: bool
    primary_visibility_timeout_seconds: float
    primary_retention_seconds: float
    primary_max_receive_count: int
    rejection_batch_size: int
    rejection_max_batching_window_seconds: float
    rejection_timeout_seconds: float
    rejection_concurrency: int
    dlq_visibility_timeout_seconds: float
    dlq_retention_seconds: float
    populate_image_type_attribute: bool
    email_backend: str
    email_api_url: str
    email_api_key: str
    email_sender: str
    email_recipients: tuple[str, ...]
    email_timeout_seconds: int
    start_pollers: bool

    def validate(self) -> None:
        if self.store_backend not in {"memory", "postgres"}:
            raise RuntimeError(f"Unsupported STORE_BACKEND: {self.store_backend}")
        if self.store_backend == "postgres" and not self.database_url:
            raise RuntimeError("Missing required env var: DATABASE_URL")
        if self.email_backend not in {"log", "http"}:
            raise RuntimeError(f"Unsupported EMAIL_BACKEND: {self.email_backend}")
        if self.email_backend == "http" and not self.email_api_url:
            raise RuntimeError("Missing required env var: EMAIL_API_URL")
        if self.primary_max_receive_count < 1:
            raise RuntimeError("PRIMARY_MAX_RECEIVE_COUNT must be >= 1")
        # A batch that is still running when its messages reappear gets processed twice.
        if self.primary_visibility_timeout_seconds < self.ingest_timeout_seconds:
            raise RuntimeError("PRIMARY_VISIBILITY_TIMEOUT_SECONDS must be >= INGEST_TIMEOUT_SECONDS")
        if self.dlq_visibility_timeout_seconds < self.rejection_timeout_seconds:
            raise RuntimeError("DLQ_VISIBILITY_TIMEOUT_SECONDS must be >= REJECTION_TIMEOUT_SECONDS")
        max_latency = self.ingest_max_batching_window_seconds + self.ingest_timeout_seconds
        if self.primary_retention_seconds <= max_latency:
            raise RuntimeError("PRIMARY_RETENTION_SECONDS must exceed batching window plus ingest timeout")


def load_runtime_config() -> RuntimeConfig:
    config = RuntimeConfig(
        region=get_env("REGION", "eu-west-1"),
        project_id=get_env("PROJECT_ID", ""),
        store_backend=get_env("STORE_BACKEND", "memory").strip().lower(),
        database_url=get_env("DATABASE_URL", ""),
        image_table=get_env("IMAGE_TABLE", "images"),
        topic_name=get_env("TOPIC_NAME", "new-image-topic"),
        primary_queue_name=get_env("PRIMARY_QUEUE_NAME", "img-created-queue"),
        dlq_name=get_env("DLQ_NAME", "dead-letter-queue"),
        ingest_batch_size=max(1, get_env_int("INGEST_BATCH_SIZE", 5)),
        ingest_max_batching_window_seconds=max(0.0, get_env_float("INGEST_MAX_BATCHING_WINDOW_SECONDS", 10.0)),
        ingest_timeout_seconds=max(1.0, get_env_float("INGEST_TIMEOUT_SECONDS", 15.0)),
        ingest_concurrency=max(1, get_env_int("INGEST_CONCURRENCY", 2)),
        ingest_report_batch_item_failures=get_env_bool("INGEST_REPORT_BATCH_ITEM_FAILURES", False),
        primary_visibility_timeout_seconds=get_env_float("PRIMARY_VISIBILITY_TIMEOUT_SECONDS", 30.0),
        primary_retention_seconds=get_env_float("PRIMARY_RETENTION_SECONDS", 60.0),
        primary_max_receive_count=get_env_int("PRIMARY_MAX_RECEIVE_COUNT", 1),
        rejection_batch_size=max(1, get_env_int("REJECTION_BATCH_SIZE", 5)),
        rejection_max_batching_window_seconds=max(0.0, get_env_float("REJECTION_MAX_BATCHING_WINDOW_SECONDS", 10.0)),
        rejection_timeout_seconds=max(1.0, get_env_float("REJECTION_TIMEOUT_SECONDS", 3.0)),
        rejection_concurrency=max(1, get_env_int("REJECTION_CONCURRENCY", 1)),
        dlq_visibility_timeout_seconds=get_env_float("DLQ_VISIBILITY_TIMEOUT_SECONDS", 30.0),
        dlq_retention_seconds=get_env_float("DLQ_RETENTION_SECONDS", 345600.0),
        populate_image_type_attribute=get_env_bool("POPULATE_IMAGE_TYPE_ATTRIBUTE", True),
        email_backend=get_env("EMAIL_BACKEND", "log").strip().lower(),
        email_api_url=get_env("EMAIL_API_URL", ""),
        email_api_key=get_env("EMAIL_API_KEY", ""),
        email_sender=get_env("EMAIL_SENDER", "images@example.com"),
        email_recipients=get_env_csv("EMAIL_RECIPIENT", "uploads@example.com"),
        email_timeout_seconds=max(1, get_env_int("EMAIL_TIMEOUT_SECONDS", 10)),
        start_pollers=get_env_bool("START_POLLERS", True),
    )
    config.validate()
    return config
