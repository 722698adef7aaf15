"""SQLite-backed repository implementation."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from types import TracebackType
from typing import Any, cast

from ..core.config import StorageSettings
from ..core.datetime_utils import parse_datetime, serialize_datetime, utcnow
from ..core.interfaces import InboxRepository, StoreError
from ..core.models import (
    NEUTRAL_WEIGHT,
    ContactImportance,
    ConversationTopic,
    InteractionEvent,
    InteractionType,
    LearningPlan,
    Message,
    MessageEmbedding,
    NewMessage,
    TodoItem,
    UserGoal,
    UserPreference,
    WeightKind,
    clamp_weight,
)

LOGGER = logging.getLogger(__name__)

NEUTRAL_CONTACT_SCORE = 5.0

_MESSAGE_COLUMNS = """
    id, user_id, platform, contact_id, sender, sender_name, subject, body,
    snippet, external_id, thread_id, received_at, created_at, is_read, priority
"""

_NUDGE_WEIGHT_SQL = """
    INSERT INTO preference_weights (user_id, kind, term, weight, updated_at)
    VALUES (?, ?, ?, MIN(1.0, MAX(0.0, ? + ?)), ?)
    ON CONFLICT(user_id, kind, term) DO UPDATE SET
        weight = MIN(1.0, MAX(0.0, preference_weights.weight + ?)),
        updated_at = excluded.updated_at
"""

_SET_WEIGHT_SQL = """
    INSERT INTO preference_weights (user_id, kind, term, weight, updated_at)
    VALUES (?, ?, ?, ?, ?)
    ON CONFLICT(user_id, kind, term) DO UPDATE SET
        weight = excluded.weight,
        updated_at = excluded.updated_at
"""

_ADJUST_CONTACT_SQL = """
    INSERT INTO contact_importance (
        user_id, contact_id, importance_score, interaction_count, last_interaction
    ) VALUES (?, ?, MIN(10.0, MAX(0.0, ?)), ?, ?)
    ON CONFLICT(user_id, contact_id) DO UPDATE SET
        importance_score = MIN(10.0, MAX(0.0, contact_importance.importance_score + ?)),
        interaction_count = contact_importance.interaction_count + ?,
        last_interaction = COALESCE(
            excluded.last_interaction, contact_importance.last_interaction
        )
    RETURNING user_id, contact_id, importance_score, interaction_count, last_interaction
"""


class SqliteInboxRepository(InboxRepository):
    """Persist messages, learning state, and job artifacts using SQLite.

    All statements run under one re-entrant lock so the repository can be
    shared between the event loop and worker threads. Score and weight
    adjustments are single ``INSERT ... ON CONFLICT`` statements with the
    clamping done in SQL, which keeps concurrent nudges for the same user
    from overwriting each other.
    """

    def __init__(self, settings: StorageSettings) -> None:
        """Initialise the repository and apply migrations."""
        self._settings = settings
        db_path = Path(settings.db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._connection = sqlite3.connect(db_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._enable_foreign_keys()
        self._apply_migrations()
        self._ensure_indexes()

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> SqliteInboxRepository:
        """Enter context manager scope."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Ensure the connection is closed when exiting context manager."""
        self.close()

    # Messages ----------------------------------------------------------------
    def create_message(self, message: NewMessage, *, priority: int) -> Message:
        """Insert ``message`` and return the stored record."""
        if not message.user_id:
            raise ValueError("Message user_id is required")
        if not message.platform:
            raise ValueError("Message platform is required")
        if message.body is None:
            raise ValueError("Message body is required")

        now = utcnow()
        stored = Message(
            id=uuid.uuid4().hex,
            user_id=message.user_id,
            platform=message.platform,
            contact_id=message.contact_id,
            sender=message.sender,
            sender_name=message.sender_name,
            subject=message.subject,
            body=message.body,
            snippet=message.snippet,
            external_id=message.external_id,
            thread_id=message.thread_id,
            received_at=message.received_at or now,
            created_at=now,
            is_read=message.is_read,
            priority=priority,
        )
        LOGGER.debug("Persisting message %s for user %s", stored.id, stored.user_id)
        with self._write() as conn:
            conn.execute(
                f"INSERT INTO messages ({_MESSAGE_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    stored.id,
                    stored.user_id,
                    stored.platform,
                    stored.contact_id,
                    stored.sender,
                    stored.sender_name,
                    stored.subject,
                    stored.body,
                    stored.snippet,
                    stored.external_id,
                    stored.thread_id,
                    serialize_datetime(stored.received_at),
                    serialize_datetime(stored.created_at),
                    1 if stored.is_read else 0,
                    stored.priority,
                ),
            )
        return stored

    def fetch_message(self, message_id: str) -> Message | None:
        """Retrieve a stored message."""
        row = self._query_one(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?", (message_id,)
        )
        return _row_to_message(row) if row is not None else None

    def fetch_messages(self, message_ids: Sequence[str]) -> dict[str, Message]:
        """Return stored messages for ``message_ids`` keyed by id."""
        if not message_ids:
            return {}
        unique_ids = tuple(dict.fromkeys(message_ids))
        placeholders = ",".join("?" for _ in unique_ids)
        rows = self._query_all(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id IN ({placeholders})",
            unique_ids,
        )
        return {row["id"]: _row_to_message(row) for row in rows}

    def list_recent_messages(
        self, user_id: str, *, limit: int, contact_id: str | None = None
    ) -> list[Message]:
        """Return the newest messages for a user."""
        query = [f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE user_id = ?"]
        params: list[object] = [user_id]
        if contact_id is not None:
            query.append(" AND contact_id = ?")
            params.append(contact_id)
        query.append(" ORDER BY received_at DESC, created_at DESC LIMIT ?")
        params.append(limit)
        return [_row_to_message(row) for row in self._query_all("".join(query), params)]

    def update_priority(self, message_id: str, priority: int) -> None:
        """Overwrite the stored priority."""
        with self._write() as conn:
            conn.execute(
                "UPDATE messages SET priority = ? WHERE id = ?",
                (int(priority), message_id),
            )

    def mark_read(self, message_id: str) -> bool:
        """Set the read flag on a message."""
        with self._write() as conn:
            cur = conn.execute(
                "UPDATE messages SET is_read = 1 WHERE id = ?", (message_id,)
            )
        return cur.rowcount > 0

    def list_user_ids(self) -> list[str]:
        """Return all users that own messages, interactions, or preferences."""
        rows = self._query_all(
            """
            SELECT user_id FROM messages
            UNION SELECT user_id FROM interactions
            UNION SELECT user_id FROM user_preferences
            ORDER BY user_id
            """
        )
        return [row["user_id"] for row in rows]

    # Preference state --------------------------------------------------------
    def fetch_preferences(self, user_id: str) -> UserPreference:
        """Load the preference state for ``user_id``."""
        preference = UserPreference(user_id=user_id)
        row = self._query_one(
            """
            SELECT patterns, last_learning_run, samples_analyzed
            FROM user_preferences WHERE user_id = ?
            """,
            (user_id,),
        )
        if row is not None:
            preference.patterns = tuple(json.loads(row["patterns"] or "[]"))
            preference.last_learning_run = parse_datetime(row["last_learning_run"])
            preference.samples_analyzed = int(row["samples_analyzed"])

        rows = self._query_all(
            "SELECT kind, term, weight FROM preference_weights WHERE user_id = ?",
            (user_id,),
        )
        for weight_row in rows:
            preference.weights(WeightKind(weight_row["kind"])).set(
                weight_row["term"], weight_row["weight"]
            )
        return preference

    def nudge_weights(
        self, user_id: str, kind: WeightKind, deltas: Mapping[str, float]
    ) -> None:
        """Shift each weight in ``deltas``; unseen terms start at neutral."""
        if not deltas:
            return
        now = serialize_datetime(utcnow())
        with self._write() as conn:
            self._touch_preferences(conn, user_id, now)
            conn.executemany(
                _NUDGE_WEIGHT_SQL,
                [
                    (user_id, kind.value, term, NEUTRAL_WEIGHT, delta, now, delta)
                    for term, delta in deltas.items()
                ],
            )

    def fetch_contact_importance(
        self, user_id: str, contact_id: str
    ) -> ContactImportance | None:
        """Return the stored importance for a contact."""
        row = self._query_one(
            """
            SELECT user_id, contact_id, importance_score, interaction_count, last_interaction
            FROM contact_importance
            WHERE user_id = ? AND contact_id = ?
            """,
            (user_id, contact_id),
        )
        return _row_to_contact(row) if row is not None else None

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
        """Create the contact row at ``initial_score`` or shift it by ``delta``."""
        with self._write() as conn:
            row = conn.execute(
                _ADJUST_CONTACT_SQL,
                (
                    user_id,
                    contact_id,
                    initial_score,
                    count_increment,
                    serialize_datetime(touched_at),
                    delta,
                    count_increment,
                ),
            ).fetchall()[0]
        return _row_to_contact(row)

    def commit_learning(
        self,
        user_id: str,
        plan: LearningPlan,
        *,
        ran_at: datetime,
        samples: int,
    ) -> UserPreference:
        """Apply ``plan`` and update learning bookkeeping in one transaction."""
        now = serialize_datetime(utcnow())
        with self._write() as conn:
            for contact_id, delta in plan.contact_deltas.items():
                conn.execute(
                    _ADJUST_CONTACT_SQL,
                    (
                        user_id,
                        contact_id,
                        NEUTRAL_CONTACT_SCORE + delta,
                        1,
                        None,
                        delta,
                        1,
                    ),
                ).fetchall()
            for kind, deltas in plan.weight_deltas.items():
                conn.executemany(
                    _NUDGE_WEIGHT_SQL,
                    [
                        (user_id, kind.value, term, NEUTRAL_WEIGHT, delta, now, delta)
                        for term, delta in deltas.items()
                    ],
                )
            for kind, weights in plan.weight_overrides.items():
                conn.executemany(
                    _SET_WEIGHT_SQL,
                    [
                        (user_id, kind.value, term, clamp_weight(weight), now)
                        for term, weight in weights.items()
                    ],
                )
            conn.execute(
                """
                INSERT INTO user_preferences (
                    user_id, patterns, last_learning_run, samples_analyzed, updated_at
                ) VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    patterns = CASE WHEN ? THEN excluded.patterns
                                    ELSE user_preferences.patterns END,
                    last_learning_run = excluded.last_learning_run,
                    samples_analyzed = user_preferences.samples_analyzed + excluded.samples_analyzed,
                    updated_at = excluded.updated_at
                """,
                (
                    user_id,
                    json.dumps(list(plan.patterns or ())),
                    serialize_datetime(ran_at),
                    samples,
                    now,
                    1 if plan.patterns is not None else 0,
                ),
            )
        LOGGER.debug(
            "Committed learning for user %s (%d contacts, %d weight groups)",
            user_id,
            len(plan.contact_deltas),
            len(plan.weight_deltas) + len(plan.weight_overrides),
        )
        return self.fetch_preferences(user_id)

    # Interactions ------------------------------------------------------------
    def record_interaction(self, event: InteractionEvent) -> InteractionEvent:
        """Append ``event`` to the interaction log."""
        timestamp = event.timestamp or utcnow()
        with self._write() as conn:
            cur = conn.execute(
                """
                INSERT INTO interactions (
                    user_id, event_type, message_id, contact_id, metadata, timestamp
                ) VALUES (?, ?, ?, ?, ?, ?)
                RETURNING id
                """,
                (
                    event.user_id,
                    event.event_type.value,
                    event.message_id,
                    event.contact_id,
                    json.dumps(event.metadata) if event.metadata else None,
                    serialize_datetime(timestamp),
                ),
            )
            row = cur.fetchall()[0]
        return InteractionEvent(
            user_id=event.user_id,
            event_type=event.event_type,
            message_id=event.message_id,
            contact_id=event.contact_id,
            metadata=dict(event.metadata),
            timestamp=timestamp,
            id=row[0],
        )

    def list_interactions(
        self, user_id: str, *, since: datetime, limit: int
    ) -> list[InteractionEvent]:
        """Return recent interactions newest first."""
        rows = self._query_all(
            """
            SELECT id, user_id, event_type, message_id, contact_id, metadata, timestamp
            FROM interactions
            WHERE user_id = ? AND timestamp >= ?
            ORDER BY timestamp DESC, id DESC
            LIMIT ?
            """,
            (user_id, serialize_datetime(since), limit),
        )
        return [
            InteractionEvent(
                id=row["id"],
                user_id=row["user_id"],
                event_type=InteractionType(row["event_type"]),
                message_id=row["message_id"],
                contact_id=row["contact_id"],
                metadata=json.loads(row["metadata"]) if row["metadata"] else {},
                timestamp=parse_datetime(row["timestamp"]),
            )
            for row in rows
        ]

    # Derived artifacts -------------------------------------------------------
    def upsert_todo(self, todo: TodoItem) -> TodoItem:
        """Insert a todo or refresh the existing one for the same message/title."""
        with self._write() as conn:
            row = conn.execute(
                """
                INSERT INTO todos (
                    user_id, message_id, title, title_key, description, priority,
                    due_at, confidence, snippet, status, source, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(message_id, title_key) DO UPDATE SET
                    description = COALESCE(excluded.description, todos.description),
                    priority = excluded.priority,
                    due_at = COALESCE(excluded.due_at, todos.due_at),
                    confidence = MAX(todos.confidence, excluded.confidence),
                    snippet = COALESCE(excluded.snippet, todos.snippet)
                RETURNING id, status, created_at
                """,
                (
                    todo.user_id,
                    todo.message_id,
                    todo.title,
                    _normalize_key(todo.title),
                    todo.description,
                    todo.priority,
                    serialize_datetime(todo.due_at),
                    todo.confidence,
                    todo.snippet,
                    todo.status,
                    todo.source,
                    serialize_datetime(todo.created_at),
                ),
            ).fetchall()[0]
        return TodoItem(
            id=row["id"],
            user_id=todo.user_id,
            message_id=todo.message_id,
            title=todo.title,
            description=todo.description,
            priority=todo.priority,
            due_at=todo.due_at,
            confidence=todo.confidence,
            snippet=todo.snippet,
            status=row["status"],
            source=todo.source,
            created_at=cast(datetime, parse_datetime(row["created_at"])),
        )

    def list_todos(self, user_id: str, *, status: str | None = None) -> list[TodoItem]:
        """Return todos for a user ordered by priority."""
        query = """
            SELECT id, user_id, message_id, title, description, priority, due_at,
                   confidence, snippet, status, source, created_at
            FROM todos
            WHERE user_id = ? {status_clause}
            ORDER BY priority DESC, created_at ASC
        """
        params: list[object] = [user_id]
        status_clause = ""
        if status:
            status_clause = "AND status = ?"
            params.append(status)
        rows = self._query_all(query.format(status_clause=status_clause), params)
        return [
            TodoItem(
                id=row["id"],
                user_id=row["user_id"],
                message_id=row["message_id"],
                title=row["title"],
                description=row["description"],
                priority=row["priority"],
                due_at=parse_datetime(row["due_at"]),
                confidence=row["confidence"],
                snippet=row["snippet"],
                status=row["status"],
                source=row["source"],
                created_at=cast(datetime, parse_datetime(row["created_at"])),
            )
            for row in rows
        ]

    def update_todo_status(self, todo_id: int, status: str) -> bool:
        """Set the status for a todo entry."""
        with self._write() as conn:
            cur = conn.execute(
                "UPDATE todos SET status = ? WHERE id = ?", (status, todo_id)
            )
        return cur.rowcount > 0

    def merge_topic(self, topic: ConversationTopic) -> ConversationTopic:
        """Create ``topic`` or merge it into the stored topic of the same name."""
        name_key = _normalize_key(topic.name)
        with self._write() as conn:
            row = conn.execute(
                f"SELECT {_TOPIC_COLUMNS} FROM topics WHERE user_id = ? AND name_key = ?",
                (topic.user_id, name_key),
            ).fetchone()
            if row is None:
                cur = conn.execute(
                    """
                    INSERT INTO topics (
                        user_id, name, name_key, description, category, importance,
                        keywords, sentiment, participant_ids, message_ids, platforms,
                        message_count, first_seen_at, last_activity_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    RETURNING id
                    """,
                    (
                        topic.user_id,
                        topic.name,
                        name_key,
                        topic.description,
                        topic.category,
                        topic.importance,
                        json.dumps(list(topic.keywords)),
                        topic.sentiment,
                        json.dumps(list(topic.participant_ids)),
                        json.dumps(list(topic.message_ids)),
                        json.dumps(list(topic.platforms)),
                        max(topic.message_count, 1),
                        serialize_datetime(topic.first_seen_at),
                        serialize_datetime(topic.last_activity_at),
                    ),
                )
                topic_id = cur.fetchall()[0][0]
                LOGGER.debug("Created topic %r for user %s", topic.name, topic.user_id)
                return _replace_topic_id(topic, topic_id)

            existing = _row_to_topic(row)
            new_messages = [
                message_id
                for message_id in topic.message_ids
                if message_id not in existing.message_ids
            ]
            merged = ConversationTopic(
                id=existing.id,
                user_id=existing.user_id,
                name=existing.name,
                description=existing.description,
                category=existing.category,
                importance=max(existing.importance, topic.importance),
                keywords=_union(existing.keywords, topic.keywords),
                sentiment=topic.sentiment,
                participant_ids=_union(existing.participant_ids, topic.participant_ids),
                message_ids=_union(existing.message_ids, topic.message_ids),
                platforms=_union(existing.platforms, topic.platforms),
                message_count=existing.message_count + (1 if new_messages else 0),
                first_seen_at=existing.first_seen_at,
                last_activity_at=max(existing.last_activity_at, topic.last_activity_at),
            )
            conn.execute(
                """
                UPDATE topics SET
                    importance = ?, keywords = ?, sentiment = ?, participant_ids = ?,
                    message_ids = ?, platforms = ?, message_count = ?, last_activity_at = ?
                WHERE id = ?
                """,
                (
                    merged.importance,
                    json.dumps(list(merged.keywords)),
                    merged.sentiment,
                    json.dumps(list(merged.participant_ids)),
                    json.dumps(list(merged.message_ids)),
                    json.dumps(list(merged.platforms)),
                    merged.message_count,
                    serialize_datetime(merged.last_activity_at),
                    merged.id,
                ),
            )
        LOGGER.debug("Merged into topic %r for user %s", merged.name, merged.user_id)
        return merged

    def list_topics(self, user_id: str) -> list[ConversationTopic]:
        """Return topics for a user, most recently active first."""
        rows = self._query_all(
            f"SELECT {_TOPIC_COLUMNS} FROM topics WHERE user_id = ? "
            "ORDER BY last_activity_at DESC",
            (user_id,),
        )
        return [_row_to_topic(row) for row in rows]

    def upsert_embedding(self, embedding: MessageEmbedding) -> None:
        """Insert or overwrite the embedding for a message."""
        with self._write() as conn:
            conn.execute(
                """
                INSERT INTO message_embeddings (message_id, user_id, vector, model, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(message_id) DO UPDATE SET
                    vector = excluded.vector,
                    model = excluded.model,
                    created_at = excluded.created_at
                """,
                (
                    embedding.message_id,
                    embedding.user_id,
                    json.dumps(list(embedding.vector)),
                    embedding.model,
                    serialize_datetime(embedding.created_at),
                ),
            )

    def fetch_embedding(self, message_id: str) -> MessageEmbedding | None:
        """Return the stored embedding for ``message_id``."""
        row = self._query_one(
            """
            SELECT message_id, user_id, vector, model, created_at
            FROM message_embeddings WHERE message_id = ?
            """,
            (message_id,),
        )
        return _row_to_embedding(row) if row is not None else None

    def list_embeddings(self, user_id: str) -> list[MessageEmbedding]:
        """Return all embeddings for a user."""
        rows = self._query_all(
            """
            SELECT message_id, user_id, vector, model, created_at
            FROM message_embeddings WHERE user_id = ?
            """,
            (user_id,),
        )
        return [_row_to_embedding(row) for row in rows]

    def upsert_goal(self, goal: UserGoal) -> UserGoal:
        """Insert a goal or raise the stored goal's priority and confidence."""
        with self._write() as conn:
            row = conn.execute(
                """
                INSERT INTO goals (
                    user_id, goal, goal_key, category, priority, confidence,
                    keywords, evidence, source_message_id, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, goal_key) DO UPDATE SET
                    priority = MAX(goals.priority, excluded.priority),
                    confidence = MAX(goals.confidence, excluded.confidence),
                    evidence = COALESCE(excluded.evidence, goals.evidence)
                RETURNING id, priority, confidence, created_at
                """,
                (
                    goal.user_id,
                    goal.goal,
                    _normalize_key(goal.goal),
                    goal.category,
                    goal.priority,
                    goal.confidence,
                    json.dumps(list(goal.keywords)),
                    goal.evidence,
                    goal.source_message_id,
                    serialize_datetime(goal.created_at),
                ),
            ).fetchall()[0]
        return UserGoal(
            id=row["id"],
            user_id=goal.user_id,
            goal=goal.goal,
            category=goal.category,
            priority=row["priority"],
            confidence=row["confidence"],
            keywords=goal.keywords,
            evidence=goal.evidence,
            source_message_id=goal.source_message_id,
            created_at=cast(datetime, parse_datetime(row["created_at"])),
        )

    def list_goals(self, user_id: str) -> list[UserGoal]:
        """Return goals for a user by descending priority."""
        rows = self._query_all(
            """
            SELECT id, user_id, goal, category, priority, confidence, keywords,
                   evidence, source_message_id, created_at
            FROM goals WHERE user_id = ?
            ORDER BY priority DESC, created_at ASC
            """,
            (user_id,),
        )
        return [
            UserGoal(
                id=row["id"],
                user_id=row["user_id"],
                goal=row["goal"],
                category=row["category"],
                priority=row["priority"],
                confidence=row["confidence"],
                keywords=tuple(json.loads(row["keywords"] or "[]")),
                evidence=row["evidence"],
                source_message_id=row["source_message_id"],
                created_at=cast(datetime, parse_datetime(row["created_at"])),
            )
            for row in rows
        ]

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        with self._lock:
            self._connection.close()

    # Internal helpers --------------------------------------------------------
    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        """Run statements in a transaction, translating driver errors."""
        with self._lock:
            try:
                with self._connection:
                    yield self._connection
            except sqlite3.IntegrityError as exc:
                LOGGER.error("Database integrity error: %s", exc, exc_info=True)
                raise StoreError(f"Integrity error: {exc}") from exc
            except sqlite3.Error as exc:
                LOGGER.error("Database error: %s", exc, exc_info=True)
                raise StoreError(f"Database error: {exc}") from exc

    def _query_one(
        self, sql: str, params: Sequence[Any] = ()
    ) -> sqlite3.Row | None:
        with self._lock:
            try:
                return self._connection.execute(sql, params).fetchone()
            except sqlite3.Error as exc:
                raise StoreError(f"Database error: {exc}") from exc

    def _query_all(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._connection.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise StoreError(f"Database error: {exc}") from exc

    @staticmethod
    def _touch_preferences(
        conn: sqlite3.Connection, user_id: str, now: str | None
    ) -> None:
        conn.execute(
            """
            INSERT INTO user_preferences (user_id, updated_at) VALUES (?, ?)
            ON CONFLICT(user_id) DO UPDATE SET updated_at = excluded.updated_at
            """,
            (user_id, now),
        )

    def _enable_foreign_keys(self) -> None:
        with self._connection:
            self._connection.execute("PRAGMA foreign_keys = ON")

    def _apply_migrations(self) -> None:
        schema_dir = Path(__file__).resolve().parent / "schema"
        migrations = sorted(schema_dir.glob("*.sql"))
        for migration in migrations:
            LOGGER.debug("Applying migration %s", migration.name)
            script = migration.read_text(encoding="utf-8")
            with self._connection:
                self._connection.executescript(script)

    def _ensure_indexes(self) -> None:
        """Create supporting indexes that may be missing from older schemas."""
        index_statements = (
            "CREATE INDEX IF NOT EXISTS idx_messages_user_received ON messages(user_id, received_at DESC)",
            "CREATE INDEX IF NOT EXISTS idx_messages_user_contact ON messages(user_id, contact_id)",
            "CREATE INDEX IF NOT EXISTS idx_interactions_user_time ON interactions(user_id, timestamp DESC)",
            "CREATE INDEX IF NOT EXISTS idx_todos_user_status ON todos(user_id, status)",
        )
        with self._connection:
            for statement in index_statements:
                self._connection.execute(statement)


_TOPIC_COLUMNS = """
    id, user_id, name, description, category, importance, keywords, sentiment,
    participant_ids, message_ids, platforms, message_count, first_seen_at,
    last_activity_at
"""


def _normalize_key(value: str) -> str:
    return " ".join(value.lower().split())


def _union(left: Sequence[str], right: Sequence[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys([*left, *right]))


def _row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        id=row["id"],
        user_id=row["user_id"],
        platform=row["platform"],
        contact_id=row["contact_id"],
        sender=row["sender"],
        sender_name=row["sender_name"],
        subject=row["subject"],
        body=row["body"],
        snippet=row["snippet"],
        external_id=row["external_id"],
        thread_id=row["thread_id"],
        received_at=cast(datetime, parse_datetime(row["received_at"])),
        created_at=cast(datetime, parse_datetime(row["created_at"])),
        is_read=bool(row["is_read"]),
        priority=row["priority"],
    )


def _row_to_contact(row: sqlite3.Row) -> ContactImportance:
    return ContactImportance(
        user_id=row["user_id"],
        contact_id=row["contact_id"],
        importance_score=float(row["importance_score"]),
        interaction_count=int(row["interaction_count"]),
        last_interaction=parse_datetime(row["last_interaction"]),
    )


def _row_to_topic(row: sqlite3.Row) -> ConversationTopic:
    return ConversationTopic(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        description=row["description"],
        category=row["category"],
        importance=row["importance"],
        keywords=tuple(json.loads(row["keywords"] or "[]")),
        sentiment=row["sentiment"],
        participant_ids=tuple(json.loads(row["participant_ids"] or "[]")),
        message_ids=tuple(json.loads(row["message_ids"] or "[]")),
        platforms=tuple(json.loads(row["platforms"] or "[]")),
        message_count=row["message_count"],
        first_seen_at=cast(datetime, parse_datetime(row["first_seen_at"])),
        last_activity_at=cast(datetime, parse_datetime(row["last_activity_at"])),
    )


def _replace_topic_id(topic: ConversationTopic, topic_id: int) -> ConversationTopic:
    return ConversationTopic(
        id=topic_id,
        user_id=topic.user_id,
        name=topic.name,
        description=topic.description,
        category=topic.category,
        importance=topic.importance,
        keywords=topic.keywords,
        sentiment=topic.sentiment,
        participant_ids=topic.participant_ids,
        message_ids=topic.message_ids,
        platforms=topic.platforms,
        message_count=max(topic.message_count, 1),
        first_seen_at=topic.first_seen_at,
        last_activity_at=topic.last_activity_at,
    )


def _row_to_embedding(row: sqlite3.Row) -> MessageEmbedding:
    return MessageEmbedding(
        message_id=row["message_id"],
        user_id=row["user_id"],
        vector=tuple(float(value) for value in json.loads(row["vector"])),
        model=row["model"],
        created_at=cast(datetime, parse_datetime(row["created_at"])),
    )


__all__ = ["NEUTRAL_CONTACT_SCORE", "SqliteInboxRepository"]
