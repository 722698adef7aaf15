"""Wire repositories, analysis, scheduling, and learning into a container."""

from __future__ import annotations

import logging

from priority_inbox.core import AppSettings, ServiceContainer
from priority_inbox.ingestion import AnalysisJobHandlers, MessagePipeline
from priority_inbox.intelligence import (
    LLMClient,
    LlmAnalysisService,
    OllamaClient,
    PriorityScorer,
)
from priority_inbox.jobs import JobScheduler
from priority_inbox.learning import InteractionTracker, PreferenceLearner
from priority_inbox.storage import SqliteInboxRepository

LOGGER = logging.getLogger(__name__)


def build_container(
    settings: AppSettings, *, llm_client: LLMClient | None = None
) -> ServiceContainer:
    """Register every service lazily; ``llm_client`` overrides the default."""
    container = ServiceContainer()
    container.register_instance("settings", settings)
    container.register(
        "repository", lambda _c: SqliteInboxRepository(settings.storage)
    )
    if llm_client is not None:
        container.register_instance("llm_client", llm_client)
    else:
        container.register("llm_client", lambda _c: _default_llm_client(settings))
    container.register(
        "analysis", lambda c: LlmAnalysisService(c.resolve("llm_client"))
    )
    container.register("scorer", lambda c: PriorityScorer(c.resolve("repository")))
    container.register(
        "handlers",
        lambda c: AnalysisJobHandlers(
            c.resolve("repository"),
            c.resolve("analysis"),
            fallback_enabled=settings.llm.fallback_enabled,
            embedding_model=settings.llm.embedding_model,
        ),
    )
    container.register(
        "tracker",
        lambda c: InteractionTracker(c.resolve("repository"), settings.tracking),
    )
    container.register(
        "learner",
        lambda c: PreferenceLearner(
            c.resolve("repository"),
            c.resolve("analysis"),
            settings.learning,
            keyword_limit=settings.tracking.keyword_limit,
        ),
    )
    container.register("scheduler", _build_scheduler)
    container.register(
        "pipeline",
        lambda c: MessagePipeline(
            c.resolve("repository"),
            c.resolve("scorer"),
            c.resolve("scheduler"),
            settings.pipeline,
        ),
    )
    return container


def _build_scheduler(container: ServiceContainer) -> JobScheduler:
    settings: AppSettings = container.resolve("settings")
    scheduler = JobScheduler(settings.scheduler)
    container.resolve("handlers").register(scheduler)
    container.resolve("learner").register(scheduler)
    return scheduler


def _default_llm_client(settings: AppSettings) -> LLMClient | None:
    if not settings.llm.enabled:
        LOGGER.info("LLM analysis disabled; background analysis returns empty results")
        return None
    return OllamaClient(settings.llm)


__all__ = ["build_container"]
