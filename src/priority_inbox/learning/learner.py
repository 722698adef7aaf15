"""Incremental preference learning from interaction history."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from priority_inbox.core.config import LearningSettings
from priority_inbox.core.datetime_utils import ensure_utc, utcnow
from priority_inbox.core.interfaces import AnalysisError, AnalysisService, InboxRepository
from priority_inbox.core.models import (
    InteractionEvent,
    InteractionType,
    Job,
    JobType,
    LearningPlan,
    Message,
    WeightKind,
)
from priority_inbox.intelligence.keywords import extract_keywords
from priority_inbox.jobs import JobScheduler

LOGGER = logging.getLogger(__name__)

_QUICK_REPLY = timedelta(hours=1)
_IGNORED_AFTER = timedelta(hours=24)
_HIGH_PRIORITY = 70
_PATTERN_CONTEXT_MESSAGES = 100


class LearningStatus(StrEnum):
    COMMITTED = "committed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(slots=True)
class LearningOutcome:
    """Result of one learning run for one user."""

    user_id: str
    status: LearningStatus
    samples: int = 0
    reason: str | None = None
    patterns: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "status": self.status.value,
            "samples": self.samples,
            "reason": self.reason,
            "patterns": self.patterns,
        }


class PreferenceLearner:
    """Derive weight and contact-importance adjustments from interactions.

    A run reads the user's recent interactions, builds a :class:`LearningPlan`
    from read, reply, and override patterns (plus AI pattern discovery once
    enough samples exist), and commits it in one repository call. A run that
    fails before the commit leaves the stored state untouched. At most one
    run per user is active at a time; a second concurrent request is skipped.
    """

    def __init__(
        self,
        repository: InboxRepository,
        analysis: AnalysisService | None = None,
        settings: LearningSettings | None = None,
        *,
        keyword_limit: int = 10,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._analysis = analysis
        self._settings = settings or LearningSettings()
        self._keyword_limit = keyword_limit
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    def register(self, scheduler: JobScheduler) -> None:
        scheduler.register(JobType.RUN_LEARNING, self.handle_job)

    async def handle_job(self, job: Job) -> None:
        outcome = await self.learn(job.user_id)
        if outcome.status is LearningStatus.FAILED:
            raise RuntimeError(f"Learning failed for user {job.user_id}: {outcome.reason}")

    async def learn(self, user_id: str) -> LearningOutcome:
        """Run the learning pipeline for ``user_id``."""
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        if lock.locked():
            LOGGER.info("Learning already running for user %s", user_id)
            return LearningOutcome(user_id, LearningStatus.SKIPPED, reason="already_running")
        async with lock:
            try:
                return await asyncio.to_thread(self.run, user_id)
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.error("Learning failed for user %s", user_id, exc_info=True)
                return LearningOutcome(user_id, LearningStatus.FAILED, reason=str(exc))

    async def learn_all_users(self) -> list[LearningOutcome]:
        """Run learning for every known user, one after another."""
        user_ids = await asyncio.to_thread(self._repository.list_user_ids)
        LOGGER.info("Running learning for %d users", len(user_ids))
        outcomes = [await self.learn(user_id) for user_id in user_ids]
        committed = sum(1 for item in outcomes if item.status is LearningStatus.COMMITTED)
        LOGGER.info("Learning complete: %d/%d users committed", committed, len(outcomes))
        return outcomes

    async def run_periodically(self, interval_seconds: float) -> None:
        """Call :meth:`learn_all_users` every ``interval_seconds`` until cancelled."""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.learn_all_users()
            except Exception:  # pylint: disable=broad-except
                LOGGER.error("Periodic learning run failed", exc_info=True)

    def run(self, user_id: str) -> LearningOutcome:
        """Synchronous learning run; raises on store failure."""
        settings = self._settings
        now = self._clock()
        interactions = self._repository.list_interactions(
            user_id,
            since=now - timedelta(days=settings.window_days),
            limit=settings.max_interactions,
        )
        samples = len(interactions)
        if samples < settings.min_samples:
            LOGGER.info(
                "Not enough interactions for user %s (%d < %d)",
                user_id,
                samples,
                settings.min_samples,
            )
            return LearningOutcome(
                user_id, LearningStatus.SKIPPED, samples=samples, reason="insufficient_samples"
            )

        message_ids = [
            event.message_id
            for event in interactions
            if event.message_id
            and (
                event.event_type is InteractionType.MESSAGE_READ
                or event.event_type.is_priority_override
            )
        ]
        messages = self._repository.fetch_messages(message_ids)

        plan = LearningPlan()
        self._learn_from_reads(plan, interactions, messages)
        self._learn_from_replies(plan, interactions)
        self._learn_from_overrides(plan, interactions, messages)
        if samples >= settings.ai_min_samples:
            self._learn_ai_patterns(plan, user_id, interactions, now=now)

        if plan.is_empty:
            LOGGER.debug("No preference adjustments derived for user %s", user_id)
        self._repository.commit_learning(user_id, plan, ran_at=now, samples=samples)
        LOGGER.info("Learning complete for user %s - analyzed %d interactions", user_id, samples)
        return LearningOutcome(
            user_id,
            LearningStatus.COMMITTED,
            samples=samples,
            patterns=len(plan.patterns or ()),
        )

    def _learn_from_reads(
        self,
        plan: LearningPlan,
        interactions: Sequence[InteractionEvent],
        messages: Mapping[str, Message],
    ) -> None:
        threshold = timedelta(minutes=self._settings.fast_read_minutes)
        boost = self._settings.read_boost * self._settings.learning_rate
        seen: set[str] = set()
        for event in interactions:
            if event.event_type is not InteractionType.MESSAGE_READ or not event.message_id:
                continue
            message = messages.get(event.message_id)
            if message is None or message.id in seen or not message.contact_id:
                continue
            seen.add(message.id)
            latency = _elapsed(message.created_at, event.timestamp)
            if latency is not None and latency < threshold:
                plan.add_contact_delta(message.contact_id, boost)

    def _learn_from_replies(
        self, plan: LearningPlan, interactions: Sequence[InteractionEvent]
    ) -> None:
        settings = self._settings
        counts = Counter(
            event.contact_id
            for event in interactions
            if event.event_type is InteractionType.MESSAGE_REPLIED and event.contact_id
        )
        for contact_id, count in counts.items():
            boost = min(count * settings.reply_step, settings.reply_cap)
            plan.add_contact_delta(contact_id, boost * settings.learning_rate)

    def _learn_from_overrides(
        self,
        plan: LearningPlan,
        interactions: Sequence[InteractionEvent],
        messages: Mapping[str, Message],
    ) -> None:
        step = self._settings.override_step * self._settings.learning_rate
        for event in interactions:
            if not event.event_type.is_priority_override or not event.message_id:
                continue
            message = messages.get(event.message_id)
            if message is None:
                continue
            delta = step if event.event_type is InteractionType.PRIORITY_INCREASED else -step
            plan.add_weight_delta(WeightKind.PLATFORM, message.platform, delta)
            for keyword in extract_keywords(message.text, limit=self._keyword_limit):
                plan.add_weight_delta(WeightKind.KEYWORD, keyword, delta)

    def _learn_ai_patterns(
        self,
        plan: LearningPlan,
        user_id: str,
        interactions: Sequence[InteractionEvent],
        *,
        now: datetime,
    ) -> None:
        if self._analysis is None:
            return
        try:
            recent = self._repository.list_recent_messages(
                user_id, limit=_PATTERN_CONTEXT_MESSAGES
            )
            summary = summarize_behaviour(
                interactions, recent, now=now, keyword_limit=self._keyword_limit
            )
            LOGGER.info("Running AI pattern discovery for user %s", user_id)
            suggestion = self._analysis.analyze("priority_patterns", {"summary": summary})
        except AnalysisError as exc:
            LOGGER.warning("AI pattern discovery failed for user %s: %s", user_id, exc)
            return

        for kind, weights in (
            (WeightKind.SENDER, suggestion.sender_weights),
            (WeightKind.KEYWORD, suggestion.keyword_weights),
            (WeightKind.PLATFORM, suggestion.platform_weights),
        ):
            for term, weight in weights.items():
                if not term.strip():
                    continue
                try:
                    plan.override_weight(kind, term.strip(), weight)
                except ValueError:
                    LOGGER.debug("Discarding invalid %s weight for %r", kind, term)
        plan.patterns = tuple(pattern for pattern in suggestion.patterns if pattern.strip())
        LOGGER.info(
            "AI patterns updated for user %s - discovered %d patterns",
            user_id,
            len(plan.patterns),
        )


def summarize_behaviour(
    interactions: Sequence[InteractionEvent],
    messages: Sequence[Message],
    *,
    now: datetime,
    keyword_limit: int = 10,
) -> dict[str, Any]:
    """Condense interactions and messages into counts for pattern discovery."""
    by_id = {message.id: message for message in messages}
    immediate_reads = 0
    quick_replies = 0
    read_ids: set[str] = set()
    for event in interactions:
        message = by_id.get(event.message_id or "")
        if event.event_type is InteractionType.MESSAGE_READ and event.message_id:
            read_ids.add(event.message_id)
        if message is None:
            continue
        elapsed = _elapsed(message.created_at, event.timestamp)
        if elapsed is None:
            continue
        if event.event_type is InteractionType.MESSAGE_READ and elapsed < timedelta(minutes=5):
            immediate_reads += 1
        elif event.event_type is InteractionType.MESSAGE_REPLIED and elapsed < _QUICK_REPLY:
            quick_replies += 1

    ignored = sum(
        1
        for message in messages
        if message.id not in read_ids
        and not message.is_read
        and ensure_utc(now) - ensure_utc(message.created_at) > _IGNORED_AFTER
    )
    senders = Counter(
        event.contact_id
        for event in interactions
        if event.event_type is InteractionType.MESSAGE_REPLIED and event.contact_id
    )
    high_priority_text = " ".join(
        message.text for message in messages if message.priority > _HIGH_PRIORITY
    )
    return {
        "immediate_reads": immediate_reads,
        "quick_replies": quick_replies,
        "ignored": ignored,
        "top_senders": [contact_id for contact_id, _count in senders.most_common(5)],
        "keywords": extract_keywords(high_priority_text, limit=keyword_limit, min_length=5),
    }


def _elapsed(start: datetime, end: datetime | None) -> timedelta | None:
    if end is None:
        return None
    return ensure_utc(end) - ensure_utc(start)


__all__ = [
    "LearningOutcome",
    "LearningStatus",
    "PreferenceLearner",
    "summarize_behaviour",
]
