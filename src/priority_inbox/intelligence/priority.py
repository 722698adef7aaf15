"""Priority scoring from learned preferences and static urgency heuristics."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from priority_inbox.core.datetime_utils import ensure_utc, utcnow
from priority_inbox.core.interfaces import InboxRepository
from priority_inbox.core.models import (
    NEUTRAL_WEIGHT,
    ContactImportance,
    Message,
    NewMessage,
    UserPreference,
    clamp,
)

LOGGER = logging.getLogger(__name__)

BASE_SCORE = 50.0
BASE_CONFIDENCE = 0.5
NEUTRAL_IMPORTANCE = 5.0

_URGENCY_PHRASES = {
    "urgent": 15,
    "asap": 15,
    "immediately": 12,
    "critical": 12,
    "emergency": 10,
    "deadline": 10,
    "important": 8,
    "priority": 8,
    "time-sensitive": 10,
    "needs attention": 8,
}
_URGENCY_CAP = 25.0
_KEYWORD_CAP = 20.0
_ACTIVE_HOURS = 2.0
_RECENT_HOURS = 24.0


@dataclass(slots=True)
class MessageContext:
    """The parts of a message the scorer looks at."""

    user_id: str
    platform: str
    body: str
    subject: str | None = None
    contact_id: str | None = None

    @property
    def text(self) -> str:
        return f"{self.subject or ''} {self.body}".lower()

    @classmethod
    def from_message(cls, message: Message | NewMessage) -> MessageContext:
        return cls(
            user_id=message.user_id,
            platform=message.platform,
            body=message.body,
            subject=message.subject,
            contact_id=message.contact_id,
        )


@dataclass(frozen=True, slots=True)
class ScoreFactors:
    """Additive contributions to the final score, each already bounded."""

    contact_importance: float = 0.0
    platform_weight: float = 0.0
    keyword_match: float = 0.0
    urgency: float = 0.0
    recency: float = 0.0
    sender_bias: float = 0.0

    def total(self) -> float:
        return (
            self.contact_importance
            + self.platform_weight
            + self.keyword_match
            + self.urgency
            + self.recency
            + self.sender_bias
        )


@dataclass(frozen=True, slots=True)
class ScoringResult:
    priority: int
    confidence: float
    factors: ScoreFactors = field(default_factory=ScoreFactors)
    explanation: tuple[str, ...] = ()


DEFAULT_RESULT = ScoringResult(
    priority=int(BASE_SCORE),
    confidence=0.3,
    explanation=("Default priority (error during scoring)",),
)


def score_priority(
    context: MessageContext,
    preferences: UserPreference,
    contact: ContactImportance | None,
    *,
    now: datetime,
) -> ScoringResult:
    """Return a 0-100 priority with confidence and explanation.

    The function is pure: identical inputs give identical output. ``now`` is
    only used for the recency factor.
    """
    contact_importance = 0.0
    recency = 0.0
    sender_bias = 0.0
    explanation: list[str] = []
    confidence = BASE_CONFIDENCE
    text = context.text

    if contact is not None:
        importance = contact.importance_score
        contact_importance = clamp((importance - NEUTRAL_IMPORTANCE) * 6, -30, 30)
        if importance > 7:
            explanation.append(f"High-priority contact (importance: {importance:.1f})")
            confidence += 0.2
        elif importance < 3:
            explanation.append(f"Low-priority contact (importance: {importance:.1f})")
            confidence += 0.1

    platform_weight = preferences.platforms.get(context.platform, NEUTRAL_WEIGHT)
    platform_score = clamp((platform_weight - NEUTRAL_WEIGHT) * 20, -10, 10)
    if platform_weight > 0.7:
        explanation.append(f"Preferred platform: {context.platform}")
        confidence += 0.1

    keyword_score = 0.0
    matched: list[str] = []
    for keyword, weight in preferences.keywords.items():
        if keyword.lower() in text:
            keyword_score += (weight - NEUTRAL_WEIGHT) * 15
            matched.append(keyword)
    keyword_score = clamp(keyword_score, -_KEYWORD_CAP, _KEYWORD_CAP)
    if matched:
        explanation.append(f"Keyword match: {', '.join(matched[:3])}")
        confidence += 0.15

    urgency = sum(score for phrase, score in _URGENCY_PHRASES.items() if phrase in text)
    urgency_score = min(float(urgency), _URGENCY_CAP)
    if urgency > 0:
        explanation.append("Urgent keywords detected")
        confidence += 0.2

    last_interaction = ensure_utc(contact.last_interaction) if contact else None
    if last_interaction is not None:
        hours = (ensure_utc(now) - last_interaction).total_seconds() / 3600
        if hours < _ACTIVE_HOURS:
            recency = 15.0
            explanation.append("Active conversation")
            confidence += 0.15
        elif hours < _RECENT_HOURS:
            recency = 8.0
            explanation.append("Recent conversation")
            confidence += 0.1

    if context.contact_id is not None:
        sender_weight = preferences.senders.get(context.contact_id)
        if sender_weight is not None:
            sender_bias = clamp((sender_weight - NEUTRAL_WEIGHT) * 10, -5, 5)
            confidence += 0.05

    factors = ScoreFactors(
        contact_importance=contact_importance,
        platform_weight=platform_score,
        keyword_match=keyword_score,
        urgency=urgency_score,
        recency=recency,
        sender_bias=sender_bias,
    )
    return ScoringResult(
        priority=round(clamp(BASE_SCORE + factors.total(), 0, 100)),
        confidence=clamp(confidence, 0.0, 1.0),
        factors=factors,
        explanation=tuple(explanation),
    )


class PriorityScorer:
    """Fetch scoring state from the repository and score messages.

    Scoring never raises: any failure while loading state or scoring yields
    :data:`DEFAULT_RESULT`.
    """

    def __init__(
        self,
        repository: InboxRepository,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._clock = clock

    def score(self, context: MessageContext) -> ScoringResult:
        try:
            preferences = self._repository.fetch_preferences(context.user_id)
            contact = None
            if context.contact_id:
                contact = self._repository.fetch_contact_importance(
                    context.user_id, context.contact_id
                )
            return score_priority(context, preferences, contact, now=self._clock())
        except Exception:  # pylint: disable=broad-except
            LOGGER.warning(
                "Priority scoring failed for user %s; using default",
                context.user_id,
                exc_info=True,
            )
            return DEFAULT_RESULT


__all__ = [
    "DEFAULT_RESULT",
    "MessageContext",
    "PriorityScorer",
    "ScoreFactors",
    "ScoringResult",
    "score_priority",
]
