"""Protocol interfaces and error types for decoupling components."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any, Protocol

from .models import (
    ContactImportance,
    ConversationTopic,
    InteractionEvent,
    LearningPlan,
    Message,
    MessageEmbedding,
    NewMessage,
    TodoItem,
    UserGoal,
    UserPreference,
    WeightKind,
)


class StoreError(RuntimeError):
    """Raised when the persistent store cannot complete an operation."""


class NotFoundError(LookupError):
    """Raised when a requested record does not exist."""


class AnalysisError(RuntimeError):
    """Raised when the AI analysis service fails or returns malformed output."""


class InboxRepository(Protocol):
    """Abstraction over the persistent store used by the pipeline."""

    # Messages ---------------------------------------------------------------
    def create_message(self, message: NewMessage, *, priority: int) -> Message:
        """Insert a new message record with the supplied priority."""
        raise NotImplementedError

    def fetch_message(self, message_id: str) -> Message | None:
        """Return a stored message by id."""
        raise NotImplementedError

    def fetch_messages(self, message_ids: Sequence[str]) -> dict[str, Message]:
        """Return stored messages keyed by id; unknown ids are omitted."""
        raise NotImplementedError

    def list_recent_messages(
        self, user_id: str, *, limit: int, contact_id: str | None = None
    ) -> list[Message]:
        """Return a user's newest messages, optionally for a single contact."""
        raise NotImplementedError

    def update_priority(self, message_id: str, priority: int) -> None:
        """Overwrite the priority of a stored message."""
        raise NotImplementedError

    def mark_read(self, message_id: str) -> bool:
        """Set the read flag. Returns ``True`` if a row was updated."""
        raise NotImplementedError

    def list_user_ids(self) -> list[str]:
        """Return every user known to the store."""
        raise NotImplementedError

    # Preference state -------------------------------------------------------
    def fetch_preferences(self, user_id: str) -> UserPreference:
        """Return preference state, empty if the user has none yet."""
        raise NotImplementedError

    def nudge_weights(
        self, user_id: str, kind: WeightKind, deltas: Mapping[str, float]
    ) -> None:
        """Atomically shift weights by ``deltas`` starting from neutral."""
        raise NotImplementedError

    def fetch_contact_importance(
        self, user_id: str, contact_id: str
    ) -> ContactImportance | None:
        """Return contact importance if recorded."""
        raise NotImplementedError

    def adjust_contact_importance(
        self,
        user_id: str,
        contact_id: str,
        delta: float,
        *,
        initial_score: float,
        count_increment: int = 0,
        touched_at: datetime | None = None,
    ) -> ContactImportance:
        """Atomically create or shift a contact's importance score."""
        raise NotImplementedError

    def commit_learning(
        self,
        user_id: str,
        plan: LearningPlan,
        *,
        ran_at: datetime,
        samples: int,
    ) -> UserPreference:
        """Apply a learning plan and bookkeeping in one transaction."""
        raise NotImplementedError

    # Interactions -----------------------------------------------------------
    def record_interaction(self, event: InteractionEvent) -> InteractionEvent:
        """Append an interaction event and return it with id and timestamp."""
        raise NotImplementedError

    def list_interactions(
        self, user_id: str, *, since: datetime, limit: int
    ) -> list[InteractionEvent]:
        """Return a user's interactions newer than ``since``, newest first."""
        raise NotImplementedError

    # Derived artifacts ------------------------------------------------------
    def upsert_todo(self, todo: TodoItem) -> TodoItem:
        """Insert or refresh a todo keyed by message and title."""
        raise NotImplementedError

    def list_todos(self, user_id: str, *, status: str | None = None) -> list[TodoItem]:
        """Return a user's todos."""
        raise NotImplementedError

    def update_todo_status(self, todo_id: int, status: str) -> bool:
        """Set the status of a todo."""
        raise NotImplementedError

    def merge_topic(self, topic: ConversationTopic) -> ConversationTopic:
        """Create a topic or merge into the existing one with the same name."""
        raise NotImplementedError

    def list_topics(self, user_id: str) -> list[ConversationTopic]:
        """Return a user's topics ordered by last activity."""
        raise NotImplementedError

    def upsert_embedding(self, embedding: MessageEmbedding) -> None:
        """Insert or overwrite the embedding for a message."""
        raise NotImplementedError

    def fetch_embedding(self, message_id: str) -> MessageEmbedding | None:
        """Return the stored embedding for a message."""
        raise NotImplementedError

    def list_embeddings(self, user_id: str) -> list[MessageEmbedding]:
        """Return every stored embedding for a user."""
        raise NotImplementedError

    def upsert_goal(self, goal: UserGoal) -> UserGoal:
        """Insert or refresh a goal keyed by user and goal text."""
        raise NotImplementedError

    def list_goals(self, user_id: str) -> list[UserGoal]:
        """Return a user's goals."""
        raise NotImplementedError

    def close(self) -> None:
        """Close database connections if necessary."""
        raise NotImplementedError


class AnalysisService(Protocol):
    """Remote text-analysis capability consumed by job handlers and learning."""

    def analyze(self, kind: str, payload: Mapping[str, Any]) -> Any:
        """Return a kind-specific structured result or raise ``AnalysisError``."""
        raise NotImplementedError


__all__ = [
    "AnalysisError",
    "AnalysisService",
    "InboxRepository",
    "NotFoundError",
    "StoreError",
]
