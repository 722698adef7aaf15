"""Core domain models used across the application."""

from __future__ import annotations

import math
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

NEUTRAL_WEIGHT = 0.5


class InteractionType(StrEnum):
    """User actions recorded as learning signal."""

    MESSAGE_OPENED = "message_opened"
    MESSAGE_READ = "message_read"
    MESSAGE_REPLIED = "message_replied"
    MESSAGE_STARRED = "message_starred"
    MESSAGE_ARCHIVED = "message_archived"
    MESSAGE_DELETED = "message_deleted"
    PRIORITY_INCREASED = "priority_increased"
    PRIORITY_DECREASED = "priority_decreased"
    CONTACT_CLICKED = "contact_clicked"
    TODO_COMPLETED = "todo_completed"
    TODO_DISMISSED = "todo_dismissed"

    @property
    def is_priority_override(self) -> bool:
        """Return ``True`` for manual priority adjustments."""
        return self in (
            InteractionType.PRIORITY_INCREASED,
            InteractionType.PRIORITY_DECREASED,
        )


class JobType(StrEnum):
    """Kinds of deferred work accepted by the scheduler."""

    EXTRACT_TODOS = "extract_todos"
    EXTRACT_TOPICS = "extract_topics"
    EXTRACT_GOALS = "extract_goals"
    GENERATE_EMBEDDING = "generate_embedding"
    RUN_LEARNING = "run_learning"


class WeightKind(StrEnum):
    """The three independent weight maps held in a user's preference state."""

    KEYWORD = "keyword"
    PLATFORM = "platform"
    SENDER = "sender"


def clamp(value: float, lower: float, upper: float) -> float:
    """Clamp ``value`` into ``[lower, upper]``."""
    return max(lower, min(upper, value))


def clamp_weight(value: float) -> float:
    """Return ``value`` as a float bounded to ``[0, 1]``."""
    number = float(value)
    if math.isnan(number):
        raise ValueError("Weight must be a number")
    return clamp(number, 0.0, 1.0)


class WeightMap:
    """Term to weight mapping whose values always stay within ``[0, 1]``."""

    __slots__ = ("_weights",)

    def __init__(self, weights: Mapping[str, float] | None = None) -> None:
        self._weights: dict[str, float] = {}
        for term, weight in (weights or {}).items():
            self.set(term, weight)

    def set(self, term: str, weight: float) -> float:
        """Store ``weight`` for ``term`` after clamping and return it."""
        key = term.strip()
        if not key:
            raise ValueError("Weight terms must be non-empty")
        bounded = clamp_weight(weight)
        self._weights[key] = bounded
        return bounded

    def get(self, term: str, default: float | None = None) -> float | None:
        return self._weights.get(term, default)

    def items(self) -> list[tuple[str, float]]:
        return list(self._weights.items())

    def to_dict(self) -> dict[str, float]:
        return dict(self._weights)

    def __getitem__(self, term: str) -> float:
        return self._weights[term]

    def __contains__(self, term: object) -> bool:
        return term in self._weights

    def __iter__(self) -> Iterator[str]:
        return iter(self._weights)

    def __len__(self) -> int:
        return len(self._weights)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, WeightMap):
            return self._weights == other._weights
        if isinstance(other, Mapping):
            return self._weights == dict(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"WeightMap({self._weights!r})"


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class NewMessage:
    """Normalized message payload supplied by a source adapter."""

    user_id: str
    platform: str
    body: str
    subject: str | None = None
    snippet: str | None = None
    sender: str | None = None
    sender_name: str | None = None
    contact_id: str | None = None
    external_id: str | None = None
    thread_id: str | None = None
    received_at: datetime | None = None
    is_read: bool = False


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class Message:
    """Stored message record owned by the pipeline."""

    id: str
    user_id: str
    platform: str
    contact_id: str | None
    sender: str | None
    sender_name: str | None
    subject: str | None
    body: str
    snippet: str | None
    external_id: str | None
    thread_id: str | None
    received_at: datetime
    created_at: datetime
    is_read: bool
    priority: int

    @property
    def text(self) -> str:
        """Subject and body joined for keyword analysis."""
        return f"{self.subject or ''} {self.body}".strip()


@dataclass(slots=True)
class ContactImportance:
    """Learned importance of a contact for a user, bounded to ``[0, 10]``."""

    user_id: str
    contact_id: str
    importance_score: float
    interaction_count: int
    last_interaction: datetime | None


@dataclass(slots=True)
class UserPreference:
    """Per-user preference state consumed by the priority scorer."""

    user_id: str
    keywords: WeightMap = field(default_factory=WeightMap)
    platforms: WeightMap = field(default_factory=WeightMap)
    senders: WeightMap = field(default_factory=WeightMap)
    patterns: tuple[str, ...] = ()
    last_learning_run: datetime | None = None
    samples_analyzed: int = 0

    def weights(self, kind: WeightKind) -> WeightMap:
        """Return the weight map for ``kind``."""
        if kind is WeightKind.KEYWORD:
            return self.keywords
        if kind is WeightKind.PLATFORM:
            return self.platforms
        return self.senders

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-compatible representation."""
        return {
            "user_id": self.user_id,
            "keywords": self.keywords.to_dict(),
            "platforms": self.platforms.to_dict(),
            "senders": self.senders.to_dict(),
            "patterns": list(self.patterns),
            "last_learning_run": (
                self.last_learning_run.isoformat() if self.last_learning_run else None
            ),
            "samples_analyzed": self.samples_analyzed,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> UserPreference:
        """Rebuild preference state, re-validating every weight."""
        last_run = payload.get("last_learning_run")
        return cls(
            user_id=str(payload["user_id"]),
            keywords=WeightMap(payload.get("keywords") or {}),
            platforms=WeightMap(payload.get("platforms") or {}),
            senders=WeightMap(payload.get("senders") or {}),
            patterns=tuple(str(item) for item in payload.get("patterns") or ()),
            last_learning_run=datetime.fromisoformat(last_run) if last_run else None,
            samples_analyzed=int(payload.get("samples_analyzed") or 0),
        )


@dataclass(slots=True)
class InteractionEvent:
    """Append-only log entry describing a user action."""

    user_id: str
    event_type: InteractionType
    message_id: str | None = None
    contact_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime | None = None
    id: int | None = None


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class Job:
    """Unit of deferred, retryable work. Held in memory only."""

    type: JobType
    user_id: str
    message_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    id: str = ""
    retries: int = 0
    max_retries: int = 0
    created_at: datetime | None = None

    @property
    def final_attempt(self) -> bool:
        """Return ``True`` when a failure of this attempt drops the job."""
        return self.retries >= self.max_retries


@dataclass(slots=True)
class FailedJob:
    """Terminal failure record kept for observability."""

    job_id: str
    job_type: JobType
    user_id: str
    attempts: int
    error: str
    failed_at: datetime


@dataclass(slots=True)
class SchedulerStatus:
    """Point-in-time scheduler snapshot."""

    queued: int
    active: int
    running: bool
    failed: int = 0


@dataclass(slots=True)
class IngestResult:
    """Synchronous outcome of ingesting one message."""

    id: str
    priority: int
    tier: int


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class TodoItem:
    """Action item extracted from a message."""

    id: int | None
    user_id: str
    message_id: str
    title: str
    description: str | None
    priority: int
    due_at: datetime | None
    confidence: float
    snippet: str | None
    status: str
    source: str
    created_at: datetime


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class ConversationTopic:
    """Theme spanning one or more messages for a user."""

    id: int | None
    user_id: str
    name: str
    description: str
    category: str
    importance: int
    keywords: tuple[str, ...]
    sentiment: str
    participant_ids: tuple[str, ...]
    message_ids: tuple[str, ...]
    platforms: tuple[str, ...]
    message_count: int
    first_seen_at: datetime
    last_activity_at: datetime


@dataclass(slots=True)
class MessageEmbedding:
    """Semantic vector for a message."""

    message_id: str
    user_id: str
    vector: tuple[float, ...]
    model: str
    created_at: datetime


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class UserGoal:
    """Goal or intention inferred from a user's messages."""

    id: int | None
    user_id: str
    goal: str
    category: str
    priority: int
    confidence: float
    keywords: tuple[str, ...]
    evidence: str | None
    source_message_id: str | None
    created_at: datetime


@dataclass(slots=True)
class LearningPlan:
    """Adjustments derived by one learning run, committed atomically."""

    contact_deltas: dict[str, float] = field(default_factory=dict)
    weight_deltas: dict[WeightKind, dict[str, float]] = field(default_factory=dict)
    weight_overrides: dict[WeightKind, dict[str, float]] = field(default_factory=dict)
    patterns: tuple[str, ...] | None = None

    def add_contact_delta(self, contact_id: str, delta: float) -> None:
        self.contact_deltas[contact_id] = self.contact_deltas.get(contact_id, 0.0) + delta

    def add_weight_delta(self, kind: WeightKind, term: str, delta: float) -> None:
        bucket = self.weight_deltas.setdefault(kind, {})
        bucket[term] = bucket.get(term, 0.0) + delta

    def override_weight(self, kind: WeightKind, term: str, weight: float) -> None:
        self.weight_overrides.setdefault(kind, {})[term] = clamp_weight(weight)

    @property
    def is_empty(self) -> bool:
        return not (
            self.contact_deltas
            or any(self.weight_deltas.values())
            or any(self.weight_overrides.values())
            or self.patterns
        )


__all__ = [
    "NEUTRAL_WEIGHT",
    "ContactImportance",
    "ConversationTopic",
    "FailedJob",
    "IngestResult",
    "InteractionEvent",
    "InteractionType",
    "Job",
    "JobType",
    "LearningPlan",
    "Message",
    "MessageEmbedding",
    "NewMessage",
    "SchedulerStatus",
    "TodoItem",
    "UserGoal",
    "UserPreference",
    "WeightKind",
    "WeightMap",
    "clamp",
    "clamp_weight",
]
