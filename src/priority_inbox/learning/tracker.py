"""Interaction tracking with immediate preference adjustments."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from priority_inbox.core.config import TrackingSettings
from priority_inbox.core.datetime_utils import utcnow
from priority_inbox.core.interfaces import InboxRepository
from priority_inbox.core.models import InteractionEvent, InteractionType, WeightKind
from priority_inbox.intelligence.keywords import extract_keywords

LOGGER = logging.getLogger(__name__)

NEUTRAL_CONTACT_SCORE = 5.0
_TODO_STATUSES = {
    InteractionType.TODO_COMPLETED: "completed",
    InteractionType.TODO_DISMISSED: "dismissed",
}


@dataclass(slots=True)
class InteractionSummary:
    total_interactions: int = 0
    message_reads: int = 0
    message_replies: int = 0
    priority_overrides: int = 0
    top_contacts: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalInteractions": self.total_interactions,
            "messageReads": self.message_reads,
            "messageReplies": self.message_replies,
            "priorityOverrides": self.priority_overrides,
            "topContacts": list(self.top_contacts),
        }


class InteractionTracker:
    """Record user interactions and apply small immediate adjustments.

    Tracking never raises: failures are logged and the event is dropped or
    left partially applied. Each adjustment is a single atomic repository
    call, so concurrent events for the same user do not lose updates.
    """

    def __init__(
        self,
        repository: InboxRepository,
        settings: TrackingSettings | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._settings = settings or TrackingSettings()
        self._clock = clock

    def track(self, event: InteractionEvent) -> bool:
        """Append ``event`` and apply its side effects. Returns success."""
        try:
            if event.timestamp is None:
                event.timestamp = self._clock()
            self._repository.record_interaction(event)
            self._apply(event)
        except Exception:  # pylint: disable=broad-except
            LOGGER.error(
                "Failed to track %s for user %s",
                event.event_type,
                event.user_id,
                exc_info=True,
            )
            return False
        return True

    def interaction_summary(self, user_id: str, *, days: int = 7) -> InteractionSummary:
        """Summarise a user's interactions over the last ``days`` days."""
        since = self._clock() - timedelta(days=days)
        events = self._repository.list_interactions(user_id, since=since, limit=10_000)
        contacts = Counter(event.contact_id for event in events if event.contact_id)
        return InteractionSummary(
            total_interactions=len(events),
            message_reads=sum(
                1 for event in events if event.event_type is InteractionType.MESSAGE_READ
            ),
            message_replies=sum(
                1 for event in events if event.event_type is InteractionType.MESSAGE_REPLIED
            ),
            priority_overrides=sum(
                1 for event in events if event.event_type.is_priority_override
            ),
            top_contacts=[
                {"contactId": contact_id, "count": count}
                for contact_id, count in contacts.most_common(10)
            ],
        )

    def _apply(self, event: InteractionEvent) -> None:
        kind = event.event_type
        if kind is InteractionType.MESSAGE_REPLIED and event.contact_id:
            self._repository.adjust_contact_importance(
                event.user_id,
                event.contact_id,
                self._settings.reply_delta,
                initial_score=self._settings.reply_initial_score,
                count_increment=1,
                touched_at=event.timestamp,
            )
        elif kind is InteractionType.MESSAGE_READ and event.message_id:
            if not self._repository.mark_read(event.message_id):
                LOGGER.debug("Read event for unknown message %s", event.message_id)
        elif kind.is_priority_override and event.message_id:
            self._apply_override(event)
        elif kind in _TODO_STATUSES:
            todo_id = event.metadata.get("todo_id")
            if todo_id is not None:
                self._repository.update_todo_status(int(todo_id), _TODO_STATUSES[kind])

    def _apply_override(self, event: InteractionEvent) -> None:
        message = self._repository.fetch_message(event.message_id or "")
        if message is None:
            LOGGER.debug("Override for unknown message %s", event.message_id)
            return
        sign = 1.0 if event.event_type is InteractionType.PRIORITY_INCREASED else -1.0
        keywords = extract_keywords(message.text, limit=self._settings.keyword_limit)
        if keywords:
            delta = sign * self._settings.override_keyword_delta
            self._repository.nudge_weights(
                event.user_id, WeightKind.KEYWORD, {keyword: delta for keyword in keywords}
            )
        self._repository.nudge_weights(
            event.user_id,
            WeightKind.PLATFORM,
            {message.platform: sign * self._settings.override_platform_delta},
        )
        contact_id = event.contact_id or message.contact_id
        if contact_id:
            delta = sign * self._settings.override_contact_delta
            self._repository.adjust_contact_importance(
                event.user_id,
                contact_id,
                delta,
                initial_score=NEUTRAL_CONTACT_SCORE + delta,
            )
        LOGGER.debug(
            "Applied %s override for user %s (%d keywords)",
            event.event_type,
            event.user_id,
            len(keywords),
        )


__all__ = ["InteractionSummary", "InteractionTracker"]
