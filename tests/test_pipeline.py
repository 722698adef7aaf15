"""Tests for the three-tier ingestion pipeline."""

from __future__ import annotations

import asyncio
import random
import threading
import time
from collections.abc import Iterator
from pathlib import Path

import pytest

from priority_inbox.core.config import PipelineSettings, SchedulerSettings, StorageSettings
from priority_inbox.core.interfaces import NotFoundError
from priority_inbox.core.models import IngestResult, Job, JobType, NewMessage, WeightKind
from priority_inbox.ingestion import MessagePipeline
from priority_inbox.intelligence import PriorityScorer
from priority_inbox.intelligence.priority import MessageContext, ScoringResult
from priority_inbox.jobs import JobScheduler
from priority_inbox.storage import SqliteInboxRepository


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[SqliteInboxRepository]:
    repo = SqliteInboxRepository(StorageSettings(db_path=tmp_path / "inbox.db"))
    try:
        yield repo
    finally:
        repo.close()


class RecordingHandlers:
    """Register a handler per job type that records the jobs it receives."""

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.jobs: list[Job] = []

    def register(self, scheduler: JobScheduler) -> None:
        for job_type in JobType:
            scheduler.register(job_type, self.handle)

    async def handle(self, job: Job) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.jobs.append(job)

    def types(self) -> list[JobType]:
        return [job.type for job in self.jobs]


def _build(
    repository: SqliteInboxRepository,
    handlers: RecordingHandlers,
    **pipeline_settings: object,
) -> tuple[MessagePipeline, JobScheduler]:
    scheduler = JobScheduler(SchedulerSettings(drain_poll_seconds=0.01))
    handlers.register(scheduler)
    settings = PipelineSettings.model_validate(
        {"goal_sampling_rate": 0.0, **pipeline_settings}
    )
    pipeline = MessagePipeline(repository, PriorityScorer(repository), scheduler, settings)
    return pipeline, scheduler


def _message(body: str = "Can you review the draft?", **fields: object) -> NewMessage:
    values: dict[str, object] = {
        "user_id": "user-1",
        "platform": "gmail",
        "body": body,
        "subject": "Draft review",
        "sender": "Alice Example <Alice@Example.com>",
        "sender_name": "Alice Example",
    }
    values.update(fields)
    return NewMessage(**values)  # type: ignore[arg-type]


def test_ingest_persists_scores_and_queues_analysis(
    repository: SqliteInboxRepository,
) -> None:
    handlers = RecordingHandlers()
    pipeline, scheduler = _build(repository, handlers)

    async def run() -> IngestResult:
        result = await pipeline.ingest(_message())
        await scheduler.drain()
        return result

    result = asyncio.run(run())

    assert result.tier == 2
    stored = repository.fetch_message(result.id)
    assert stored is not None
    assert stored.priority == result.priority == 50
    assert stored.contact_id == "alice@example.com"
    assert sorted(handlers.types()) == sorted(
        [JobType.EXTRACT_TODOS, JobType.EXTRACT_TOPICS, JobType.GENERATE_EMBEDDING]
    )
    embedding_job = next(
        job for job in handlers.jobs if job.type is JobType.GENERATE_EMBEDDING
    )
    assert embedding_job.payload["text"] == "Draft review\n\nCan you review the draft?"
    assert all(job.message_id == result.id for job in handlers.jobs)


def test_ingest_returns_before_background_jobs_finish(
    repository: SqliteInboxRepository,
) -> None:
    handlers = RecordingHandlers(delay=0.5)
    pipeline, scheduler = _build(repository, handlers)

    async def run() -> tuple[float, int]:
        started = time.perf_counter()
        await pipeline.ingest(_message())
        elapsed = time.perf_counter() - started
        pending = scheduler.status().active + scheduler.status().queued
        await scheduler.shutdown()
        return elapsed, pending

    elapsed, pending = asyncio.run(run())

    assert elapsed < 0.5
    assert pending == 3
    assert handlers.jobs == []


def test_urgent_message_is_scored_in_tier_two(
    repository: SqliteInboxRepository,
) -> None:
    repository.adjust_contact_importance(
        "user-1", "alice@example.com", 0.0, initial_score=9.0
    )
    repository.nudge_weights("user-1", WeightKind.PLATFORM, {"gmail": 0.4})
    pipeline, scheduler = _build(repository, RecordingHandlers())

    async def run() -> int:
        result = await pipeline.ingest(
            _message(
                "Please sign the attached contract.",
                subject="URGENT: contract deadline today",
            )
        )
        await scheduler.drain()
        return result.priority

    assert asyncio.run(run()) >= 90


def test_scoring_failure_keeps_default_priority(
    repository: SqliteInboxRepository,
) -> None:
    class FailingScorer:
        def score(self, context: object) -> object:
            raise RuntimeError("scorer unavailable")

    handlers = RecordingHandlers()
    scheduler = JobScheduler(SchedulerSettings(drain_poll_seconds=0.01))
    handlers.register(scheduler)
    pipeline = MessagePipeline(
        repository,
        FailingScorer(),  # type: ignore[arg-type]
        scheduler,
        PipelineSettings(goal_sampling_rate=0.0),
    )

    async def run() -> str:
        result = await pipeline.ingest(_message())
        await scheduler.drain()
        assert result.priority == 50
        return result.id

    message_id = asyncio.run(run())

    stored = repository.fetch_message(message_id)
    assert stored is not None
    assert stored.priority == 50
    assert len(handlers.jobs) == 3


def test_invalid_message_is_rejected(repository: SqliteInboxRepository) -> None:
    pipeline, _ = _build(repository, RecordingHandlers())

    with pytest.raises(ValueError):
        asyncio.run(pipeline.ingest(_message(user_id="")))


def test_goal_extraction_follows_sampling_rate(
    repository: SqliteInboxRepository,
) -> None:
    always = RecordingHandlers()
    never = RecordingHandlers()
    always_pipeline, always_scheduler = _build(
        repository, always, goal_sampling_rate=1.0
    )
    never_pipeline, never_scheduler = _build(repository, never, goal_sampling_rate=0.0)

    async def run() -> None:
        await always_pipeline.ingest(_message())
        await never_pipeline.ingest(_message())
        await always_scheduler.drain()
        await never_scheduler.drain()

    asyncio.run(run())

    assert JobType.EXTRACT_GOALS in always.types()
    assert JobType.EXTRACT_GOALS not in never.types()


def test_goal_sampling_is_reproducible_with_seed(
    repository: SqliteInboxRepository,
) -> None:
    def sampled_goals(seed: int) -> int:
        handlers = RecordingHandlers()
        scheduler = JobScheduler(SchedulerSettings(drain_poll_seconds=0.01))
        handlers.register(scheduler)
        pipeline = MessagePipeline(
            repository,
            PriorityScorer(repository),
            scheduler,
            PipelineSettings(goal_sampling_rate=0.5),
            rng=random.Random(seed),
        )

        async def run() -> None:
            for _ in range(20):
                await pipeline.ingest(_message())
            await scheduler.drain()

        asyncio.run(run())
        return handlers.types().count(JobType.EXTRACT_GOALS)

    assert sampled_goals(42) == sampled_goals(42)


def test_ingest_batch_processes_every_message(
    repository: SqliteInboxRepository,
) -> None:
    handlers = RecordingHandlers()
    pipeline, scheduler = _build(repository, handlers, batch_size=2)
    messages = [_message(f"Message number {index}") for index in range(5)]

    async def run() -> list[str]:
        results = await pipeline.ingest_batch(messages)
        await scheduler.drain()
        return [result.id for result in results]

    ids = asyncio.run(run())

    assert len(ids) == 5
    assert len(set(ids)) == 5
    stored = repository.fetch_messages(ids)
    assert {message.body for message in stored.values()} == {
        message.body for message in messages
    }
    assert len(handlers.jobs) == 15


class SlowScorer(PriorityScorer):
    """Scorer that sleeps and records when each message is being scored."""

    def __init__(self, repository: SqliteInboxRepository, delay: float) -> None:
        super().__init__(repository)
        self.delay = delay
        self.events: list[tuple[str, str]] = []
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def score(self, context: MessageContext) -> ScoringResult:
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
            self.events.append(("start", context.body))
        time.sleep(self.delay)
        with self._lock:
            self.active -= 1
            self.events.append(("end", context.body))
        return super().score(context)


def test_ingest_batch_runs_chunks_concurrently_in_order(
    repository: SqliteInboxRepository,
) -> None:
    handlers = RecordingHandlers()
    scheduler = JobScheduler(SchedulerSettings(drain_poll_seconds=0.01))
    handlers.register(scheduler)
    scorer = SlowScorer(repository, delay=0.2)
    pipeline = MessagePipeline(
        repository,
        scorer,
        scheduler,
        PipelineSettings(batch_size=2, goal_sampling_rate=0.0),
    )
    bodies = [f"Message number {index}" for index in range(5)]

    async def run() -> None:
        await pipeline.ingest_batch([_message(body) for body in bodies])
        await scheduler.drain()

    asyncio.run(run())

    assert scorer.peak == 2
    chunks = [bodies[0:2], bodies[2:4], bodies[4:]]
    position = {event: index for index, event in enumerate(scorer.events)}
    for current, following in zip(chunks, chunks[1:]):
        last_end = max(position[("end", body)] for body in current)
        first_start = min(position[("start", body)] for body in following)
        assert last_end < first_start


def test_recalculate_priority_uses_current_preferences(
    repository: SqliteInboxRepository,
) -> None:
    pipeline, scheduler = _build(repository, RecordingHandlers())

    async def run() -> str:
        result = await pipeline.ingest(_message("The invoice is attached"))
        await scheduler.drain()
        return result.id

    message_id = asyncio.run(run())
    repository.nudge_weights("user-1", WeightKind.KEYWORD, {"invoice": 0.4})

    priority = pipeline.recalculate_priority(message_id)

    assert priority > 50
    stored = repository.fetch_message(message_id)
    assert stored is not None
    assert stored.priority == priority
    assert pipeline.recalculate_user_priorities("user-1") == 1


def test_recalculate_unknown_message_raises(
    repository: SqliteInboxRepository,
) -> None:
    pipeline, _ = _build(repository, RecordingHandlers())

    with pytest.raises(NotFoundError):
        pipeline.recalculate_priority("missing")
