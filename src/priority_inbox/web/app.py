"""FastAPI application exposing ingestion, interaction, and learning APIs."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from datetime import datetime
from typing import Any

from fastapi import FastAPI, Request, status as http_status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from priority_inbox.core import AppSettings, ServiceContainer, load_app_settings
from priority_inbox.core.interfaces import NotFoundError
from priority_inbox.core.models import (
    IngestResult,
    InteractionEvent,
    InteractionType,
    NewMessage,
    SchedulerStatus,
)
from priority_inbox.ingestion import MessagePipeline
from priority_inbox.intelligence import LLMClient
from priority_inbox.jobs import JobScheduler
from priority_inbox.learning import InteractionTracker, PreferenceLearner
from priority_inbox.services import build_container

LOGGER = logging.getLogger(__name__)

MAX_BATCH = 500


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class MessagePayload(_CamelModel):
    """Normalized inbound message as posted by a source adapter."""

    user_id: str = Field(alias="userId", min_length=1)
    platform: str = Field(min_length=1)
    body: str
    subject: str | None = None
    snippet: str | None = None
    sender: str | None = Field(default=None, alias="from")
    sender_name: str | None = Field(default=None, alias="fromName")
    contact_id: str | None = Field(default=None, alias="fromContactId")
    external_id: str | None = Field(default=None, alias="externalId")
    thread_id: str | None = Field(default=None, alias="threadId")
    received_at: datetime | None = Field(default=None, alias="receivedAt")
    is_read: bool = Field(default=False, alias="isRead")

    def to_new_message(self) -> NewMessage:
        return NewMessage(
            user_id=self.user_id,
            platform=self.platform,
            body=self.body,
            subject=self.subject,
            snippet=self.snippet,
            sender=self.sender,
            sender_name=self.sender_name,
            contact_id=self.contact_id,
            external_id=self.external_id,
            thread_id=self.thread_id,
            received_at=self.received_at,
            is_read=self.is_read,
        )


class BatchPayload(_CamelModel):
    batch: list[MessagePayload] = Field(min_length=1, max_length=MAX_BATCH)


class InteractionPayload(_CamelModel):
    user_id: str = Field(alias="userId", min_length=1)
    event_type: InteractionType = Field(alias="eventType")
    message_id: str | None = Field(default=None, alias="messageId")
    contact_id: str | None = Field(default=None, alias="contactId")
    metadata: dict[str, Any] = Field(default_factory=dict)


class LearningPayload(_CamelModel):
    user_id: str | None = Field(default=None, alias="userId")
    all_users: bool = Field(default=False, alias="allUsers")


def create_app(
    settings: AppSettings | None = None,
    *,
    llm_client: LLMClient | None = None,
    container: ServiceContainer | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    app_settings = settings or load_app_settings()
    services = container or build_container(app_settings, llm_client=llm_client)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        periodic: asyncio.Task[None] | None = None
        interval = app_settings.learning.interval_minutes
        if interval > 0:
            learner: PreferenceLearner = services.resolve("learner")
            periodic = asyncio.create_task(learner.run_periodically(interval * 60))
            LOGGER.info("Scheduled learning every %d minutes", interval)
        try:
            yield
        finally:
            if periodic is not None:
                periodic.cancel()
                with suppress(asyncio.CancelledError):
                    await periodic
            scheduler: JobScheduler = services.resolve("scheduler")
            await scheduler.shutdown()
            services.close()
            LOGGER.info("Services closed")

    app = FastAPI(title="Priority Inbox", lifespan=lifespan)
    app.state.services = services

    @app.exception_handler(NotFoundError)
    async def not_found_handler(_request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(
            status_code=http_status.HTTP_404_NOT_FOUND,
            content={"success": False, "error": str(exc)},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(_request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(
            status_code=http_status.HTTP_400_BAD_REQUEST,
            content={"success": False, "error": str(exc)},
        )

    @app.post("/api/messages/process")
    async def process_messages(
        payload: BatchPayload | MessagePayload,
    ) -> dict[str, Any]:
        """Ingest one message, or a batch under ``{"batch": [...]}``."""
        pipeline: MessagePipeline = services.resolve("pipeline")
        if isinstance(payload, BatchPayload):
            results = await pipeline.ingest_batch(
                [item.to_new_message() for item in payload.batch]
            )
            return {
                "success": True,
                "processed": len(results),
                "results": [_serialize_result(result) for result in results],
            }
        result = await pipeline.ingest(payload.to_new_message())
        return {"success": True, "message": _serialize_result(result)}

    @app.get("/api/messages/process")
    @app.get("/api/jobs/status")
    async def job_status() -> dict[str, Any]:
        """Report the background job queue status."""
        scheduler: JobScheduler = services.resolve("scheduler")
        return {"success": True, "queue": _serialize_status(scheduler.status())}

    @app.post("/api/messages/{message_id}/rescore")
    async def rescore_message(message_id: str) -> dict[str, Any]:
        pipeline: MessagePipeline = services.resolve("pipeline")
        priority = await asyncio.to_thread(pipeline.recalculate_priority, message_id)
        return {"success": True, "id": message_id, "priority": priority}

    @app.post("/api/interactions/track")
    async def track_interaction(payload: InteractionPayload) -> dict[str, Any]:
        tracker: InteractionTracker = services.resolve("tracker")
        event = InteractionEvent(
            user_id=payload.user_id,
            event_type=payload.event_type,
            message_id=payload.message_id,
            contact_id=payload.contact_id,
            metadata=dict(payload.metadata),
        )
        tracked = await asyncio.to_thread(tracker.track, event)
        return {"success": tracked}

    @app.get("/api/interactions/summary")
    async def interaction_summary(userId: str, days: int = 7) -> dict[str, Any]:  # noqa: N803
        if days < 1:
            raise ValueError("days must be positive")
        tracker: InteractionTracker = services.resolve("tracker")
        summary = await asyncio.to_thread(tracker.interaction_summary, userId, days=days)
        return {"success": True, "summary": summary.to_dict()}

    @app.post("/api/learning/run")
    async def run_learning(payload: LearningPayload) -> dict[str, Any]:
        learner: PreferenceLearner = services.resolve("learner")
        if payload.all_users:
            outcomes = await learner.learn_all_users()
            return {
                "success": True,
                "outcomes": [outcome.to_dict() for outcome in outcomes],
            }
        if not payload.user_id:
            raise ValueError("userId or allUsers is required")
        outcome = await learner.learn(payload.user_id)
        return {"success": True, "outcome": outcome.to_dict()}

    return app


def _serialize_result(result: IngestResult) -> dict[str, Any]:
    return {"id": result.id, "priority": result.priority, "processingTier": result.tier}


def _serialize_status(status: SchedulerStatus) -> dict[str, Any]:
    return {
        "queuedJobs": status.queued,
        "activeJobs": status.active,
        "processing": status.running,
        "failedJobs": status.failed,
    }


__all__ = ["create_app"]
