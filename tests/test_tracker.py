"""Tests for interaction tracking and immediate adjustments."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from priority_inbox.core.config import StorageSettings
from priority_inbox.core.models import (
    InteractionEvent,
    InteractionType,
    Message,
    NewMessage,
    TodoItem,
)
from priority_inbox.intelligence import MessageContext, PriorityScorer
from priority_inbox.learning import InteractionTracker
from priority_inbox.storage import SqliteInboxRepository

NOW = datetime(2024, 5, 1, 9, 0, tzinfo=UTC)


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[SqliteInboxRepository]:
    repo = SqliteInboxRepository(StorageSettings(db_path=tmp_path / "inbox.db"))
    try:
        yield repo
    finally:
        repo.close()


def _store(repository: SqliteInboxRepository, body: str, **fields: object) -> Message:
    values: dict[str, object] = {
        "user_id": "user-1",
        "platform": "gmail",
        "body": body,
        "subject": "Billing",
        "contact_id": "billing@vendor.com",
    }
    values.update(fields)
    return repository.create_message(NewMessage(**values), priority=50)  # type: ignore[arg-type]


def _event(event_type: InteractionType, **fields: object) -> InteractionEvent:
    return InteractionEvent(user_id="user-1", event_type=event_type, **fields)  # type: ignore[arg-type]


def test_priority_increase_raises_future_scores(
    repository: SqliteInboxRepository,
) -> None:
    message = _store(repository, "Your invoice for April is attached.")
    scorer = PriorityScorer(repository, clock=lambda: NOW)
    context = MessageContext(
        user_id="user-1",
        platform="gmail",
        subject="Billing",
        body="Your invoice for May is attached.",
        contact_id="billing@vendor.com",
    )
    before = scorer.score(context).priority

    tracker = InteractionTracker(repository, clock=lambda: NOW)
    assert tracker.track(_event(InteractionType.PRIORITY_INCREASED, message_id=message.id))

    after = scorer.score(context).priority
    assert after > before
    preferences = repository.fetch_preferences("user-1")
    assert preferences.keywords["invoice"] == pytest.approx(0.6)
    assert preferences.platforms["gmail"] == pytest.approx(0.6)
    contact = repository.fetch_contact_importance("user-1", "billing@vendor.com")
    assert contact is not None
    assert contact.importance_score == pytest.approx(5.3)


def test_priority_decrease_lowers_weights(repository: SqliteInboxRepository) -> None:
    message = _store(repository, "Weekly newsletter digest")
    tracker = InteractionTracker(repository, clock=lambda: NOW)

    tracker.track(_event(InteractionType.PRIORITY_DECREASED, message_id=message.id))
    tracker.track(_event(InteractionType.PRIORITY_DECREASED, message_id=message.id))

    preferences = repository.fetch_preferences("user-1")
    assert preferences.keywords["newsletter"] == pytest.approx(0.3)
    assert preferences.platforms["gmail"] == pytest.approx(0.3)
    contact = repository.fetch_contact_importance("user-1", "billing@vendor.com")
    assert contact is not None
    assert contact.importance_score == pytest.approx(4.4)


def test_reply_creates_then_bumps_contact(repository: SqliteInboxRepository) -> None:
    tracker = InteractionTracker(repository, clock=lambda: NOW)

    tracker.track(_event(InteractionType.MESSAGE_REPLIED, contact_id="bob@example.com"))
    first = repository.fetch_contact_importance("user-1", "bob@example.com")
    tracker.track(_event(InteractionType.MESSAGE_REPLIED, contact_id="bob@example.com"))
    second = repository.fetch_contact_importance("user-1", "bob@example.com")

    assert first is not None and second is not None
    assert first.importance_score == pytest.approx(6.0)
    assert first.interaction_count == 1
    assert second.importance_score == pytest.approx(6.1)
    assert second.interaction_count == 2
    assert second.last_interaction == NOW


def test_contact_importance_never_exceeds_ten(
    repository: SqliteInboxRepository,
) -> None:
    tracker = InteractionTracker(repository, clock=lambda: NOW)

    for _ in range(50):
        tracker.track(_event(InteractionType.MESSAGE_REPLIED, contact_id="bob@example.com"))

    contact = repository.fetch_contact_importance("user-1", "bob@example.com")
    assert contact is not None
    assert contact.importance_score == pytest.approx(10.0)


def test_read_event_marks_message_read(repository: SqliteInboxRepository) -> None:
    message = _store(repository, "Lunch?")
    tracker = InteractionTracker(repository, clock=lambda: NOW)

    assert tracker.track(_event(InteractionType.MESSAGE_READ, message_id=message.id))

    stored = repository.fetch_message(message.id)
    assert stored is not None
    assert stored.is_read is True


def test_todo_events_update_status(repository: SqliteInboxRepository) -> None:
    message = _store(repository, "Please pay the invoice.")
    todo = repository.upsert_todo(
        TodoItem(
            id=None,
            user_id="user-1",
            message_id=message.id,
            title="Pay the invoice",
            description=None,
            priority=7,
            due_at=None,
            confidence=0.9,
            snippet=None,
            status="pending",
            source="ai",
            created_at=NOW,
        )
    )
    tracker = InteractionTracker(repository, clock=lambda: NOW)

    tracker.track(_event(InteractionType.TODO_COMPLETED, metadata={"todo_id": todo.id}))

    assert repository.list_todos("user-1", status="completed")[0].id == todo.id


def test_every_event_is_recorded(repository: SqliteInboxRepository) -> None:
    tracker = InteractionTracker(repository, clock=lambda: NOW)

    tracker.track(_event(InteractionType.MESSAGE_OPENED, message_id="unknown"))
    tracker.track(_event(InteractionType.MESSAGE_ARCHIVED))

    events = repository.list_interactions(
        "user-1", since=NOW - timedelta(days=1), limit=10
    )
    assert {event.event_type for event in events} == {
        InteractionType.MESSAGE_OPENED,
        InteractionType.MESSAGE_ARCHIVED,
    }
    assert all(event.timestamp == NOW for event in events)


class FailingRepository:
    """Repository double that fails on every write."""

    def record_interaction(self, event: InteractionEvent) -> InteractionEvent:
        raise RuntimeError("disk full")


def test_tracking_failures_are_swallowed(caplog: pytest.LogCaptureFixture) -> None:
    tracker = InteractionTracker(FailingRepository())  # type: ignore[arg-type]

    with caplog.at_level("ERROR"):
        tracked = tracker.track(_event(InteractionType.MESSAGE_READ, message_id="m-1"))

    assert tracked is False
    assert "Failed to track" in caplog.text


def test_interaction_summary_counts_recent_events(
    repository: SqliteInboxRepository,
) -> None:
    tracker = InteractionTracker(repository, clock=lambda: NOW)
    for contact in ("alice", "alice", "bob"):
        tracker.track(_event(InteractionType.MESSAGE_REPLIED, contact_id=contact))
    tracker.track(_event(InteractionType.MESSAGE_READ, message_id="m-1"))
    tracker.track(
        _event(
            InteractionType.MESSAGE_READ,
            message_id="m-2",
            timestamp=NOW - timedelta(days=30),
        )
    )

    summary = tracker.interaction_summary("user-1", days=7).to_dict()

    assert summary["totalInteractions"] == 4
    assert summary["messageReads"] == 1
    assert summary["messageReplies"] == 3
    assert summary["priorityOverrides"] == 0
    assert summary["topContacts"][0] == {"contactId": "alice", "count": 2}
