from __future__ import annotations

import base64
import binascii
import json
import os
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from services.pipeline_service.pipeline import Pipeline, build_pipeline
from services.shared.classification import IMAGE_TYPE_ATTRIBUTE
from services.shared.config import load_runtime_config
from services.shared.contracts import (
    BatchResponse,
    ImageRecord,
    ObjectCreatedNotification,
    PubSubPushEnvelope,
    QueueEvent,
)
from services.shared.envelopes import EnvelopeParseError, parse_notification
from services.shared.errors import PipelineError
from services.shared.logging_utils import log_event


class HealthResponse(BaseModel):
    status: str


class PublishedMessage(BaseModel):
    message_id: str
    image_type: str | None = None
    delivered: list[str] = Field(default_factory=list)
    filtered: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)


class PublishResponse(BaseModel):
    trace_id: str
    records: int
    published: list[PublishedMessage]


class QueueStatsResponse(BaseModel):
    name: str
    visible: int
    in_flight: int
    total: int


def create_app(pipeline: Pipeline | None = None) -> FastAPI:
    if pipeline is None:
        pipeline = build_pipeline(load_runtime_config())

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        if pipeline.config.start_pollers:
            pipeline.start()
        try:
            yield
        finally:
            if pipeline.config.start_pollers:
                pipeline.stop()

    app = FastAPI(title="image-pipeline-service", version="0.1.0", lifespan=lifespan)
    app.state.pipeline = pipeline

    @app.get("/v1/healthz", response_model=HealthResponse)
    def healthz() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get("/v1/readyz", response_model=HealthResponse)
    def readyz() -> HealthResponse:
        try:
            pipeline.store.ping()
            return HealthResponse(status="ready")
        except Exception as exc:  # pragma: no cover
            raise HTTPException(status_code=503, detail=f"Image store not ready: {exc}") from exc

    @app.post("/v1/notifications", response_model=PublishResponse)
    def publish_notification(notification: ObjectCreatedNotification) -> PublishResponse:
        return _publish(pipeline, notification)

    @app.post("/v1/notifications/pubsub", response_model=PublishResponse)
    def publish_pubsub_notification(envelope: PubSubPushEnvelope) -> PublishResponse:
        try:
            decoded = base64.b64decode(envelope.message.data, validate=True).decode("utf-8")
            payload = json.loads(decoded)
        except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise HTTPException(status_code=400, detail=f"Invalid Pub/Sub envelope: {exc}") from exc
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid Pub/Sub envelope: data must be a JSON object")
        notification = parse_notification(payload)
        if isinstance(notification, EnvelopeParseError):
            raise HTTPException(status_code=400, detail=f"Invalid Pub/Sub envelope: {notification.reason}")
        return _publish(pipeline, notification)

    @app.post("/v1/invoke/ingest", response_model=BatchResponse)
    def invoke_ingest(event: QueueEvent) -> BatchResponse:
        try:
            return pipeline.ingest_consumer.handle_batch(event.Records)
        except PipelineError as exc:
            raise HTTPException(status_code=500, detail=f"{type(exc).__name__}: {exc}") from exc

    @app.post("/v1/invoke/rejection", response_model=BatchResponse)
    def invoke_rejection(event: QueueEvent) -> BatchResponse:
        return pipeline.rejection_consumer.handle_batch(event.Records)

    @app.get("/v1/queues", response_model=list[QueueStatsResponse])
    def queue_stats() -> list[QueueStatsResponse]:
        return [
            QueueStatsResponse(name=stats.name, visible=stats.visible, in_flight=stats.in_flight, total=stats.total)
            for stats in pipeline.queue_stats()
        ]

    @app.get("/v1/images/{file_name:path}", response_model=ImageRecord)
    def get_image(file_name: str) -> ImageRecord:
        record = pipeline.store.get_image(file_name)
        if record is None:
            raise HTTPException(status_code=404, detail="Image not found")
        return record

    return app


def _publish(pipeline: Pipeline, notification: ObjectCreatedNotification) -> PublishResponse:
    trace_id = str(uuid4())
    results = pipeline.publish(notification)
    log_event(
        "info",
        "notification_accepted",
        trace_id=trace_id,
        records=len(notification.Records),
        published=[result.message_id for result in results],
    )
    return PublishResponse(
        trace_id=trace_id,
        records=len(notification.Records),
        published=[
            PublishedMessage(
                message_id=result.message_id,
                image_type=result.attributes.get(IMAGE_TYPE_ATTRIBUTE),
                delivered=result.delivered,
                filtered=result.filtered,
                failed=result.failed,
            )
            for result in results
        ],
    )


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8080"))
    uvicorn.run("services.pipeline_service.main:create_app", factory=True, host="0.0.0.0", port=port)
