"""AI text-analysis service backed by an LLM client."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, Field, ValidationError

from priority_inbox.core.interfaces import AnalysisError, AnalysisService

from .llm import LLMClient, LLMError
from .prompts import (
    build_goal_prompt,
    build_patterns_prompt,
    build_todo_prompt,
    build_topic_prompt,
)

LOGGER = logging.getLogger(__name__)


class TodoSuggestion(BaseModel):
    """An action item proposed for the recipient of a message."""

    title: str = Field(min_length=1)
    description: str | None = None
    due_date: str | None = Field(
        default=None, validation_alias=AliasChoices("due_date", "dueDate")
    )
    priority: int = Field(default=5, ge=1, le=10)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    snippet: str | None = None


class TodoExtraction(BaseModel):
    todos: list[TodoSuggestion] = Field(default_factory=list)


class TopicSuggestion(BaseModel):
    """Main theme of a conversation with one contact."""

    name: str = Field(min_length=1)
    description: str = Field(min_length=1)
    category: Literal[
        "project", "relationship", "transaction", "support", "general"
    ] = "general"
    importance: int = Field(ge=1, le=10)
    keywords: list[str] = Field(default_factory=list)
    sentiment: Literal["positive", "neutral", "negative"] = "neutral"


class GoalSuggestion(BaseModel):
    """Goal or intention inferred from recent messages."""

    goal: str = Field(min_length=1)
    category: Literal["work", "personal", "learning", "relationship", "financial"] = (
        "work"
    )
    priority: int = Field(default=5, ge=1, le=10)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    keywords: list[str] = Field(default_factory=list)
    evidence: str | None = None


class GoalExtraction(BaseModel):
    goals: list[GoalSuggestion] = Field(default_factory=list)


class PatternSuggestion(BaseModel):
    """Weight suggestions derived from a summary of user behaviour."""

    sender_weights: dict[str, float] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("sender_weights", "senderWeights"),
    )
    keyword_weights: dict[str, float] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("keyword_weights", "keywordWeights"),
    )
    platform_weights: dict[str, float] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("platform_weights", "platformWeights"),
    )
    patterns: list[str] = Field(default_factory=list)


class LlmAnalysisService(AnalysisService):
    """Dispatch analysis requests to prompt builders and validate replies.

    Without an LLM client every kind returns an empty result, so callers can
    run unconfigured. Transport failures and replies that are not valid JSON
    matching the expected schema raise :class:`AnalysisError`.
    """

    def __init__(self, llm_client: LLMClient | None) -> None:
        self._llm_client = llm_client

    @property
    def configured(self) -> bool:
        return self._llm_client is not None

    def analyze(self, kind: str, payload: Mapping[str, Any]) -> Any:
        """Return the structured result for ``kind``."""
        if kind == "todo":
            return self.extract_todos(payload)
        if kind == "topic":
            return self.extract_topic(payload)
        if kind == "goal":
            return self.extract_goals(payload)
        if kind == "embedding":
            return self.embed(payload)
        if kind == "priority_patterns":
            return self.learn_patterns(payload)
        raise ValueError(f"Unknown analysis kind: {kind}")

    def extract_todos(self, payload: Mapping[str, Any]) -> list[TodoSuggestion]:
        if self._llm_client is None:
            return []
        body = payload.get("body") or ""
        subject = payload.get("subject") or ""
        if not f"{subject}{body}".strip():
            raise ValueError("Todo analysis requires a subject or body")
        prompt = build_todo_prompt(
            body=body,
            subject=subject or None,
            sender_name=payload.get("sender_name"),
        )
        return self._complete(prompt, TodoExtraction, kind="todo").todos

    def extract_topic(self, payload: Mapping[str, Any]) -> TopicSuggestion | None:
        if self._llm_client is None:
            return None
        messages = payload.get("messages")
        if not messages:
            raise ValueError("Topic analysis requires 'messages'")
        return self._complete(build_topic_prompt(messages), TopicSuggestion, kind="topic")

    def extract_goals(self, payload: Mapping[str, Any]) -> list[GoalSuggestion]:
        if self._llm_client is None:
            return []
        prompt = build_goal_prompt(
            _require(payload, "messages_text"), payload.get("existing_goals") or ()
        )
        return self._complete(prompt, GoalExtraction, kind="goal").goals

    def embed(self, payload: Mapping[str, Any]) -> list[float]:
        if self._llm_client is None:
            return []
        text = _require(payload, "text")
        try:
            return self._llm_client.embed(text)
        except LLMError as exc:
            raise AnalysisError(f"Embedding request failed: {exc}") from exc

    def learn_patterns(self, payload: Mapping[str, Any]) -> PatternSuggestion:
        if self._llm_client is None:
            return PatternSuggestion()
        prompt = build_patterns_prompt(payload.get("summary") or {})
        return self._complete(prompt, PatternSuggestion, kind="priority_patterns")

    def _complete(self, prompt: str, model: type[Any], *, kind: str) -> Any:
        if self._llm_client is None:
            raise AnalysisError("LLM client is not configured")
        try:
            raw_output = self._llm_client.generate(prompt)
        except LLMError as exc:
            LOGGER.warning("LLM %s analysis failed: %s", kind, exc)
            raise AnalysisError(f"{kind} analysis failed: {exc}") from exc
        try:
            return model.model_validate(json.loads(_strip_code_fence(raw_output)))
        except (json.JSONDecodeError, ValidationError) as exc:
            LOGGER.warning("Malformed LLM output for %s analysis: %s", kind, exc)
            raise AnalysisError(f"Malformed {kind} analysis output") from exc


def _require(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Analysis payload requires '{key}'")
    return value


def _strip_code_fence(raw: str) -> str:
    text = raw.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        text = text.rsplit("```", 1)[0]
    return text.strip()


__all__ = [
    "GoalSuggestion",
    "LlmAnalysisService",
    "PatternSuggestion",
    "TodoSuggestion",
    "TopicSuggestion",
]
