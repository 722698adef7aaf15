"""Deterministic heuristics used when the LLM is unavailable."""

from __future__ import annotations

import re
from datetime import datetime, timedelta

from .analysis import TodoSuggestion

_MAX_TODOS = 5

# (pattern, priority, confidence)
_TODO_PATTERNS = (
    (re.compile(r"can you ([^.?!]+)[.?!]", re.IGNORECASE), 6, 0.6),
    (re.compile(r"please ([^.?!]+)[.?!]", re.IGNORECASE), 7, 0.7),
    (re.compile(r"need (?:you )?to ([^.?!]+)[.?!]", re.IGNORECASE), 7, 0.65),
)


def extract_todos_with_regex(text: str) -> list[TodoSuggestion]:
    """Find request phrases such as "can you ..." and turn them into todos."""
    todos: list[TodoSuggestion] = []
    for pattern, priority, confidence in _TODO_PATTERNS:
        for match in pattern.finditer(text):
            title = _normalise_line(match.group(1))
            if not title:
                continue
            todos.append(
                TodoSuggestion(
                    title=title,
                    priority=priority,
                    confidence=confidence,
                    snippet=match.group(0).strip(),
                )
            )
    return todos[:_MAX_TODOS]


def estimate_due_at(
    text: str, *, reference: datetime, default_days: int | None = None
) -> datetime | None:
    """Derive a due date from relative phrases like "tomorrow"."""
    lowered = text.lower()
    if "today" in lowered or "eod" in lowered:
        return reference
    if "tomorrow" in lowered:
        return reference + timedelta(days=1)
    if "next week" in lowered:
        return reference + timedelta(days=7)
    if "next month" in lowered:
        return reference + timedelta(days=30)
    if default_days is None:
        return None
    return reference + timedelta(days=default_days)


def _normalise_line(line: str) -> str:
    return re.sub(r"\s+", " ", line.strip())


__all__ = ["estimate_due_at", "extract_todos_with_regex"]
