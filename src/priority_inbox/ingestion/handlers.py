"""Handlers that turn deferred analysis jobs into stored artifacts."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from priority_inbox.core.datetime_utils import parse_datetime, utcnow
from priority_inbox.core.interfaces import AnalysisError, AnalysisService, InboxRepository
from priority_inbox.core.models import (
    ConversationTopic,
    Job,
    JobType,
    MessageEmbedding,
    TodoItem,
    UserGoal,
)
from priority_inbox.intelligence.analysis import TodoSuggestion
from priority_inbox.intelligence.fallback import estimate_due_at, extract_todos_with_regex
from priority_inbox.intelligence.similarity import (
    MIN_EMBEDDING_TEXT,
    clean_text_for_embedding,
)
from priority_inbox.jobs import JobScheduler

LOGGER = logging.getLogger(__name__)

TODO_MIN_CONFIDENCE = 0.6
TOPIC_MIN_IMPORTANCE = 6
TOPIC_CONTEXT_MESSAGES = 5
GOAL_MIN_CONFIDENCE = 0.6
GOAL_CONTEXT_MESSAGES = 10


class AnalysisJobHandlers:
    """Job handlers for todo, topic, goal, and embedding extraction.

    Every handler is safe to run more than once for the same message: todos,
    goals, and embeddings are upserted on natural keys and topics merge into
    an existing topic of the same name. Analysis failures propagate to the
    scheduler so the retry policy applies. The synchronous analysis and
    storage calls run in a worker thread.
    """

    def __init__(
        self,
        repository: InboxRepository,
        analysis: AnalysisService,
        *,
        fallback_enabled: bool = True,
        embedding_model: str = "unknown",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._analysis = analysis
        self._fallback_enabled = fallback_enabled
        self._embedding_model = embedding_model
        self._clock = clock

    def register(self, scheduler: JobScheduler) -> None:
        scheduler.register(JobType.EXTRACT_TODOS, self.extract_todos)
        scheduler.register(JobType.EXTRACT_TOPICS, self.extract_topics)
        scheduler.register(JobType.EXTRACT_GOALS, self.extract_goals)
        scheduler.register(JobType.GENERATE_EMBEDDING, self.generate_embedding)

    async def extract_todos(self, job: Job) -> None:
        await asyncio.to_thread(self.process_todos, job)

    async def extract_topics(self, job: Job) -> None:
        await asyncio.to_thread(self.process_topic, job)

    async def extract_goals(self, job: Job) -> None:
        await asyncio.to_thread(self.process_goals, job)

    async def generate_embedding(self, job: Job) -> None:
        await asyncio.to_thread(self.process_embedding, job)

    def process_todos(self, job: Job) -> list[TodoItem]:
        """Extract and store action items for the job's message."""
        message_id = _require_message_id(job)
        body = str(job.payload.get("body") or "")
        subject = job.payload.get("subject")
        if not f"{subject or ''}{body}".strip():
            LOGGER.debug("Skipping todo extraction for empty message %s", message_id)
            return []
        source = "ai"
        try:
            suggestions = [
                suggestion
                for suggestion in self._analysis.analyze(
                    "todo",
                    {
                        "body": body,
                        "subject": subject,
                        "sender_name": job.payload.get("sender_name"),
                    },
                )
                if suggestion.confidence > TODO_MIN_CONFIDENCE
            ]
        except AnalysisError as exc:
            if not (self._fallback_enabled and job.final_attempt):
                LOGGER.warning("Todo extraction failed for message %s: %s", message_id, exc)
                raise
            LOGGER.warning(
                "Todo extraction failed for message %s; using regex fallback", message_id
            )
            suggestions = extract_todos_with_regex(f"{subject or ''}\n{body}")
            source = "regex"

        now = self._clock()
        stored = [
            self._repository.upsert_todo(
                _build_todo(job.user_id, message_id, suggestion, source=source, now=now)
            )
            for suggestion in suggestions
        ]
        if stored:
            LOGGER.info("Stored %d todos for message %s", len(stored), message_id)
        return stored

    def process_topic(self, job: Job) -> ConversationTopic | None:
        """Update the conversation topic for the message's contact."""
        contact_id = job.payload.get("contact_id")
        if not contact_id:
            LOGGER.debug("Skipping topic extraction without contact for job %s", job.id)
            return None
        recent = self._repository.list_recent_messages(
            job.user_id, limit=TOPIC_CONTEXT_MESSAGES, contact_id=contact_id
        )
        if len(recent) < 2:
            LOGGER.debug("Not enough conversation context for contact %s", contact_id)
            return None

        suggestion = self._analysis.analyze(
            "topic",
            {
                "messages": [
                    {
                        "from": message.sender_name or message.sender or "Unknown",
                        "subject": message.subject,
                        "body": message.body,
                    }
                    for message in recent
                ]
            },
        )
        if suggestion is None or suggestion.importance < TOPIC_MIN_IMPORTANCE:
            return None

        now = self._clock()
        platform = job.payload.get("platform")
        return self._repository.merge_topic(
            ConversationTopic(
                id=None,
                user_id=job.user_id,
                name=suggestion.name.strip(),
                description=suggestion.description,
                category=suggestion.category,
                importance=suggestion.importance,
                keywords=tuple(suggestion.keywords),
                sentiment=suggestion.sentiment,
                participant_ids=(contact_id,),
                message_ids=(job.message_id,) if job.message_id else (),
                platforms=(platform,) if platform else (),
                message_count=1,
                first_seen_at=now,
                last_activity_at=now,
            )
        )

    def process_goals(self, job: Job) -> list[UserGoal]:
        """Infer new goals from the user's recent messages."""
        existing = self._repository.list_goals(job.user_id)
        recent = self._repository.list_recent_messages(
            job.user_id, limit=GOAL_CONTEXT_MESSAGES
        )
        texts = [
            f"[{message.subject}] {message.body}" if message.subject else message.body
            for message in recent
        ]
        if not texts and job.payload.get("body"):
            texts.append(str(job.payload["body"]))
        if not texts:
            return []

        suggestions = self._analysis.analyze(
            "goal",
            {
                "messages_text": "\n\n".join(texts),
                "existing_goals": [goal.goal for goal in existing],
            },
        )
        now = self._clock()
        stored = []
        for suggestion in suggestions:
            if suggestion.confidence < GOAL_MIN_CONFIDENCE:
                continue
            stored.append(
                self._repository.upsert_goal(
                    UserGoal(
                        id=None,
                        user_id=job.user_id,
                        goal=suggestion.goal.strip(),
                        category=suggestion.category,
                        priority=suggestion.priority,
                        confidence=suggestion.confidence,
                        keywords=tuple(suggestion.keywords),
                        evidence=suggestion.evidence,
                        source_message_id=job.message_id,
                        created_at=now,
                    )
                )
            )
        if stored:
            LOGGER.info("Stored %d goals for user %s", len(stored), job.user_id)
        return stored

    def process_embedding(self, job: Job) -> MessageEmbedding | None:
        """Generate and store the embedding for the job's message."""
        message_id = _require_message_id(job)
        text = clean_text_for_embedding(str(job.payload.get("text") or ""))
        if len(text) < MIN_EMBEDDING_TEXT:
            LOGGER.debug("Text too short to embed for message %s", message_id)
            return None
        vector = self._analysis.analyze("embedding", {"text": text})
        if not vector:
            return None
        embedding = MessageEmbedding(
            message_id=message_id,
            user_id=job.user_id,
            vector=tuple(float(value) for value in vector),
            model=self._embedding_model,
            created_at=self._clock(),
        )
        self._repository.upsert_embedding(embedding)
        LOGGER.debug("Stored embedding for message %s", message_id)
        return embedding


def _require_message_id(job: Job) -> str:
    if not job.message_id:
        raise ValueError(f"Job {job.id} ({job.type}) requires a message id")
    return job.message_id


def _build_todo(
    user_id: str,
    message_id: str,
    suggestion: TodoSuggestion,
    *,
    source: str,
    now: datetime,
) -> TodoItem:
    due_at = None
    if suggestion.due_date:
        try:
            due_at = parse_datetime(suggestion.due_date)
        except ValueError:
            LOGGER.debug("Ignoring unparseable due date %r", suggestion.due_date)
    if due_at is None:
        due_at = estimate_due_at(
            f"{suggestion.title} {suggestion.snippet or ''}", reference=now
        )
    return TodoItem(
        id=None,
        user_id=user_id,
        message_id=message_id,
        title=suggestion.title.strip(),
        description=suggestion.description,
        priority=suggestion.priority,
        due_at=due_at,
        confidence=suggestion.confidence,
        snippet=suggestion.snippet,
        status="pending",
        source=source,
        created_at=now,
    )


__all__ = ["AnalysisJobHandlers"]
