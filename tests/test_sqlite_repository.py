"""Tests for the SQLite repository implementation."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
from threading import Thread

import pytest

from priority_inbox.core.config import StorageSettings
from priority_inbox.core.models import (
    ConversationTopic,
    InteractionEvent,
    InteractionType,
    LearningPlan,
    NewMessage,
    UserGoal,
    UserPreference,
    WeightKind,
)
from priority_inbox.intelligence import MessageContext, score_priority
from priority_inbox.storage import SqliteInboxRepository

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def _repository(tmp_path: Path) -> SqliteInboxRepository:
    return SqliteInboxRepository(StorageSettings(db_path=tmp_path / "inbox.db"))


def _message(**fields: object) -> NewMessage:
    values: dict[str, object] = {
        "user_id": "user-1",
        "platform": "gmail",
        "body": "Hello there",
        "subject": "Greetings",
        "contact_id": "alice@example.com",
    }
    values.update(fields)
    return NewMessage(**values)  # type: ignore[arg-type]


def test_repository_applies_migrations(tmp_path: Path) -> None:
    """Repository should create all tables when initialised."""

    repository = _repository(tmp_path)
    repository.close()

    connection = sqlite3.connect(tmp_path / "inbox.db")
    try:
        tables = {
            row[0]
            for row in connection.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            )
        }
    finally:
        connection.close()

    assert {
        "messages",
        "contact_importance",
        "user_preferences",
        "preference_weights",
        "interactions",
        "todos",
        "topics",
        "message_embeddings",
        "goals",
    } <= tables


def test_create_and_fetch_message(tmp_path: Path) -> None:
    with _repository(tmp_path) as repository:
        stored = repository.create_message(_message(is_read=True), priority=50)
        fetched = repository.fetch_message(stored.id)
        repository.update_priority(stored.id, 77)
        updated = repository.fetch_message(stored.id)

    assert fetched == stored
    assert updated is not None
    assert updated.priority == 77
    assert updated.is_read is True


def test_create_message_validates_required_fields(tmp_path: Path) -> None:
    with _repository(tmp_path) as repository:
        with pytest.raises(ValueError):
            repository.create_message(_message(platform=""), priority=50)


def test_list_recent_messages_filters_by_contact(tmp_path: Path) -> None:
    with _repository(tmp_path) as repository:
        repository.create_message(
            _message(received_at=datetime(2024, 4, 1, tzinfo=UTC)), priority=50
        )
        newest = repository.create_message(
            _message(received_at=datetime(2024, 4, 2, tzinfo=UTC)), priority=50
        )
        repository.create_message(_message(contact_id="bob@example.com"), priority=50)
        repository.create_message(_message(user_id="user-2"), priority=50)

        for_alice = repository.list_recent_messages(
            "user-1", limit=5, contact_id="alice@example.com"
        )
        everything = repository.list_recent_messages("user-1", limit=10)

    assert len(for_alice) == 2
    assert for_alice[0].id == newest.id
    assert len(everything) == 3


def test_mark_read_reports_unknown_message(tmp_path: Path) -> None:
    with _repository(tmp_path) as repository:
        stored = repository.create_message(_message(), priority=50)

        assert repository.mark_read(stored.id) is True
        assert repository.mark_read("missing") is False


def test_nudge_weights_clamps_in_storage(tmp_path: Path) -> None:
    with _repository(tmp_path) as repository:
        repository.nudge_weights("user-1", WeightKind.KEYWORD, {"invoice": 0.3})
        repository.nudge_weights("user-1", WeightKind.KEYWORD, {"invoice": 0.3})
        repository.nudge_weights("user-1", WeightKind.PLATFORM, {"sms": -0.8})
        preferences = repository.fetch_preferences("user-1")

    assert preferences.keywords["invoice"] == pytest.approx(1.0)
    assert preferences.platforms["sms"] == pytest.approx(0.0)


def test_concurrent_nudges_are_not_lost(tmp_path: Path) -> None:
    with _repository(tmp_path) as repository:

        def nudge() -> None:
            for _ in range(20):
                repository.nudge_weights("user-1", WeightKind.KEYWORD, {"invoice": 0.005})

        threads = [Thread(target=nudge) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        preferences = repository.fetch_preferences("user-1")

    assert preferences.keywords["invoice"] == pytest.approx(0.5 + 80 * 0.005)


def test_commit_learning_applies_plan_atomically(tmp_path: Path) -> None:
    plan = LearningPlan()
    plan.add_contact_delta("alice@example.com", 0.2)
    plan.add_weight_delta(WeightKind.KEYWORD, "invoice", 0.1)
    plan.add_weight_delta(WeightKind.KEYWORD, "invoice", 0.1)
    plan.override_weight(WeightKind.SENDER, "alice@example.com", 0.9)
    plan.patterns = ("Reads billing mail first",)

    with _repository(tmp_path) as repository:
        preferences = repository.commit_learning("user-1", plan, ran_at=NOW, samples=12)
        again = repository.commit_learning("user-1", LearningPlan(), ran_at=NOW, samples=3)
        contact = repository.fetch_contact_importance("user-1", "alice@example.com")

    assert preferences.keywords["invoice"] == pytest.approx(0.7)
    assert preferences.senders["alice@example.com"] == pytest.approx(0.9)
    assert preferences.patterns == ("Reads billing mail first",)
    assert preferences.last_learning_run == NOW
    assert again.samples_analyzed == 15
    assert again.patterns == ("Reads billing mail first",)
    assert contact is not None
    assert contact.importance_score == pytest.approx(5.2)
    assert contact.interaction_count == 1


def test_preferences_round_trip_reproduces_scores(tmp_path: Path) -> None:
    with _repository(tmp_path) as repository:
        repository.nudge_weights(
            "user-1", WeightKind.KEYWORD, {"invoice": 0.25, "newsletter": -0.3}
        )
        repository.nudge_weights("user-1", WeightKind.PLATFORM, {"gmail": 0.2})
        repository.nudge_weights("user-1", WeightKind.SENDER, {"alice@example.com": 0.1})
        stored = repository.fetch_preferences("user-1")

    reloaded = UserPreference.from_dict(json.loads(json.dumps(stored.to_dict())))
    context = MessageContext(
        user_id="user-1",
        platform="gmail",
        body="Invoice and newsletter inside",
        contact_id="alice@example.com",
    )

    assert reloaded == stored
    assert score_priority(context, reloaded, None, now=NOW) == score_priority(
        context, stored, None, now=NOW
    )


def test_list_user_ids_spans_all_sources(tmp_path: Path) -> None:
    with _repository(tmp_path) as repository:
        repository.create_message(_message(user_id="from-message"), priority=50)
        repository.record_interaction(
            InteractionEvent(
                user_id="from-interaction", event_type=InteractionType.MESSAGE_OPENED
            )
        )
        repository.nudge_weights("from-preference", WeightKind.KEYWORD, {"x": 0.1})

        assert repository.list_user_ids() == [
            "from-interaction",
            "from-message",
            "from-preference",
        ]


def test_record_interaction_round_trip(tmp_path: Path) -> None:
    with _repository(tmp_path) as repository:
        recorded = repository.record_interaction(
            InteractionEvent(
                user_id="user-1",
                event_type=InteractionType.TODO_DISMISSED,
                metadata={"todo_id": 4},
                timestamp=NOW,
            )
        )
        events = repository.list_interactions("user-1", since=NOW, limit=10)

    assert recorded.id is not None
    assert events == [recorded]


def test_merge_topic_unions_fields(tmp_path: Path) -> None:
    def topic(message_id: str, importance: int, keywords: tuple[str, ...]) -> ConversationTopic:
        return ConversationTopic(
            id=None,
            user_id="user-1",
            name="Office Move",
            description="Moving to the new office",
            category="project",
            importance=importance,
            keywords=keywords,
            sentiment="neutral",
            participant_ids=("alice@example.com",),
            message_ids=(message_id,),
            platforms=("gmail",),
            message_count=1,
            first_seen_at=NOW,
            last_activity_at=NOW,
        )

    with _repository(tmp_path) as repository:
        first = repository.merge_topic(topic("m-1", 6, ("move",)))
        repository.merge_topic(topic("m-2", 9, ("boxes", "move")))
        merged = repository.merge_topic(replace(topic("m-2", 7, ()), name="office  move"))
        topics = repository.list_topics("user-1")

    assert len(topics) == 1
    assert merged.id == first.id
    assert merged.importance == 9
    assert merged.keywords == ("move", "boxes")
    assert merged.message_ids == ("m-1", "m-2")
    assert merged.message_count == 2


def test_upsert_goal_keeps_highest_scores(tmp_path: Path) -> None:
    def goal(priority: int, confidence: float) -> UserGoal:
        return UserGoal(
            id=None,
            user_id="user-1",
            goal="Run a marathon",
            category="personal",
            priority=priority,
            confidence=confidence,
            keywords=("running",),
            evidence=None,
            source_message_id=None,
            created_at=NOW,
        )

    with _repository(tmp_path) as repository:
        repository.upsert_goal(goal(8, 0.7))
        updated = repository.upsert_goal(goal(5, 0.9))
        goals = repository.list_goals("user-1")

    assert len(goals) == 1
    assert updated.priority == 8
    assert updated.confidence == pytest.approx(0.9)
