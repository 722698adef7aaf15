"""Three-tier message ingestion pipeline."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Sequence
from dataclasses import replace

from priority_inbox.core.config import PipelineSettings
from priority_inbox.core.interfaces import InboxRepository, NotFoundError
from priority_inbox.core.models import IngestResult, Job, JobType, Message, NewMessage
from priority_inbox.intelligence.priority import MessageContext, PriorityScorer
from priority_inbox.jobs import JobScheduler

LOGGER = logging.getLogger(__name__)


class MessagePipeline:
    """Persist, score, and schedule analysis for inbound messages.

    Tier 1 stores the message at the neutral default priority. Tier 2 scores
    it against the user's current preference state and overwrites the stored
    priority. Tier 3 queues background analysis jobs and returns without
    waiting for them.
    """

    def __init__(
        self,
        repository: InboxRepository,
        scorer: PriorityScorer,
        scheduler: JobScheduler,
        settings: PipelineSettings | None = None,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self._repository = repository
        self._scorer = scorer
        self._scheduler = scheduler
        self._settings = settings or PipelineSettings()
        self._rng = rng or random.Random(self._settings.random_seed)

    async def ingest(self, message: NewMessage) -> IngestResult:
        """Run tiers 1 and 2 and queue tier 3. Returns the tier-2 result."""
        stored = await asyncio.to_thread(self._persist, message)
        priority = await asyncio.to_thread(self._fast_priority, stored)
        # Enqueue stays on the loop thread that owns the scheduler.
        self._queue_analysis(stored)
        return IngestResult(id=stored.id, priority=priority, tier=2)

    async def ingest_batch(self, messages: Sequence[NewMessage]) -> list[IngestResult]:
        """Ingest ``messages`` in fixed-size concurrent chunks."""
        results: list[IngestResult] = []
        size = self._settings.batch_size
        total = len(messages)
        for start in range(0, total, size):
            chunk = messages[start : start + size]
            results.extend(await asyncio.gather(*(self.ingest(item) for item in chunk)))
            LOGGER.info("Ingested %d/%d messages", min(start + size, total), total)
        return results

    def recalculate_priority(self, message_id: str) -> int:
        """Re-score a stored message and persist the new priority."""
        message = self._repository.fetch_message(message_id)
        if message is None:
            raise NotFoundError(f"Message {message_id} not found")
        result = self._scorer.score(MessageContext.from_message(message))
        self._repository.update_priority(message_id, result.priority)
        return result.priority

    def recalculate_user_priorities(self, user_id: str, *, limit: int = 100) -> int:
        """Re-score a user's newest messages, skipping individual failures."""
        messages = self._repository.list_recent_messages(user_id, limit=limit)
        updated = 0
        for message in messages:
            try:
                self.recalculate_priority(message.id)
            except Exception:  # pylint: disable=broad-except
                LOGGER.warning(
                    "Failed to recalculate priority for message %s",
                    message.id,
                    exc_info=True,
                )
                continue
            updated += 1
        LOGGER.info("Recalculated %d/%d priorities for user %s", updated, len(messages), user_id)
        return updated

    def _persist(self, message: NewMessage) -> Message:
        if not message.contact_id and message.sender:
            message = replace(message, contact_id=_normalize_contact(message.sender))
        return self._repository.create_message(
            message, priority=self._settings.default_priority
        )

    def _fast_priority(self, message: Message) -> int:
        try:
            result = self._scorer.score(MessageContext.from_message(message))
            self._repository.update_priority(message.id, result.priority)
        except Exception:  # pylint: disable=broad-except
            LOGGER.warning(
                "Fast priority failed for message %s; keeping default",
                message.id,
                exc_info=True,
            )
            return self._settings.default_priority
        if result.confidence > 0.7 or result.priority > 80 or result.priority < 20:
            LOGGER.info(
                "Message %s scored %d (confidence %.2f): %s",
                message.id[:8],
                result.priority,
                result.confidence,
                ", ".join(result.explanation),
            )
        return result.priority

    def _queue_analysis(self, message: Message) -> None:
        content = {"body": message.body, "subject": message.subject}
        jobs = [
            Job(
                type=JobType.EXTRACT_TODOS,
                user_id=message.user_id,
                message_id=message.id,
                payload={**content, "sender_name": message.sender_name},
            ),
            Job(
                type=JobType.EXTRACT_TOPICS,
                user_id=message.user_id,
                message_id=message.id,
                payload={
                    **content,
                    "contact_id": message.contact_id,
                    "platform": message.platform,
                },
            ),
            Job(
                type=JobType.GENERATE_EMBEDDING,
                user_id=message.user_id,
                message_id=message.id,
                payload={"text": f"{message.subject or ''}\n\n{message.body}"},
            ),
        ]
        if self._rng.random() < self._settings.goal_sampling_rate:
            jobs.append(
                Job(
                    type=JobType.EXTRACT_GOALS,
                    user_id=message.user_id,
                    message_id=message.id,
                    payload=dict(content),
                )
            )
        for job in jobs:
            try:
                self._scheduler.enqueue(job)
            except ValueError:
                LOGGER.warning(
                    "Could not queue %s for message %s", job.type, message.id, exc_info=True
                )


def _normalize_contact(sender: str) -> str:
    """Reduce ``"Name <addr@host>"`` style senders to a lower-cased address."""
    value = sender.strip()
    if "<" in value and value.endswith(">"):
        value = value[value.rfind("<") + 1 : -1]
    return value.strip().lower()


__all__ = ["MessagePipeline"]
