"""Prompt templates for LLM-driven message analysis."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from textwrap import dedent
from typing import Any


def build_todo_prompt(
    *, body: str, subject: str | None = None, sender_name: str | None = None
) -> str:
    """Compose a JSON-only prompt asking for the recipient's action items."""
    prompt = f"""
    You extract action items from messages. Be conservative: only extract
    clear tasks for the RECIPIENT, not general discussion.
    Respond strictly with JSON using this schema:
    {{
      "todos": [
        {{
          "title": string,
          "description": string|null,
          "due_date": string|null,   # ISO date YYYY-MM-DD if mentioned
          "priority": number,        # 1 (low) to 10 (critical)
          "confidence": number,      # 0.0 to 1.0
          "snippet": string          # text where the task was found
        }}
      ]
    }}

    From: {sender_name or "Unknown"}
    Subject: {subject or "N/A"}
    Body:
    {body}
    """
    return dedent(prompt).strip()


def build_topic_prompt(messages: Sequence[Mapping[str, Any]]) -> str:
    """Compose a prompt asking for the main theme of a conversation."""
    conversation = "\n\n".join(
        "{sender}: {subject}{body}".format(
            sender=item.get("from") or "Unknown",
            subject=f"[{item['subject']}] " if item.get("subject") else "",
            body=item.get("body") or "",
        )
        for item in messages
    )
    prompt = f"""
    Analyze this conversation thread and identify its main topic.
    Respond strictly with JSON using this schema:
    {{
      "name": string,
      "description": string,
      "category": "project"|"relationship"|"transaction"|"support"|"general",
      "importance": number,   # 1-10, 9-10 critical, 1-2 small talk
      "keywords": [string, ...],
      "sentiment": "positive"|"neutral"|"negative"
    }}

    Conversation:
    {conversation}
    """
    return dedent(prompt).strip()


def build_goal_prompt(messages_text: str, existing_goals: Sequence[str]) -> str:
    """Compose a prompt that infers new user goals from recent messages."""
    existing = "\n".join(f"- {goal}" for goal in existing_goals) or "None yet"
    prompt = f"""
    You are analyzing a user's messages to understand their goals.
    Only extract specific, actionable goals that are NOT already listed.
    Respond strictly with JSON using this schema:
    {{
      "goals": [
        {{
          "goal": string,
          "category": "work"|"personal"|"learning"|"relationship"|"financial",
          "priority": number,     # 1-10
          "confidence": number,   # 0.0-1.0
          "keywords": [string, ...],
          "evidence": string
        }}
      ]
    }}

    Existing goals:
    {existing}

    Recent messages:
    {messages_text}
    """
    return dedent(prompt).strip()


def build_patterns_prompt(summary: Mapping[str, Any]) -> str:
    """Compose a prompt that turns interaction statistics into weights."""
    top_senders = ", ".join(summary.get("top_senders", ())) or "(none)"
    keywords = ", ".join(summary.get("keywords", ())) or "(none)"
    prompt = f"""
    You learn a user's message priority preferences from their behavior.
    Respond strictly with JSON using this schema, weights between 0 and 1:
    {{
      "sender_weights": {{string: number}},
      "keyword_weights": {{string: number}},
      "platform_weights": {{string: number}},
      "patterns": [string, ...]
    }}

    Messages read within five minutes: {summary.get("immediate_reads", 0)}
    Messages replied to within an hour: {summary.get("quick_replies", 0)}
    Messages never opened after a day: {summary.get("ignored", 0)}
    Most interacted senders: {top_senders}
    Common keywords in high priority messages: {keywords}
    """
    return dedent(prompt).strip()


__all__ = [
    "build_goal_prompt",
    "build_patterns_prompt",
    "build_todo_prompt",
    "build_topic_prompt",
]
