"""Application configuration models and loader utilities."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

from dotenv import dotenv_values
from pydantic import BaseModel, Field


class LlmSettings(BaseModel):
    """Settings for the local LLM provider backing the analysis service."""

    enabled: bool = Field(default=True, description="Toggle AI analysis calls")
    base_url: str = Field(
        default="http://localhost:11434", description="Ollama server URL"
    )
    model: str = Field(default="gpt-oss:20b", description="Completion model")
    embedding_model: str = Field(
        default="nomic-embed-text", description="Embedding model identifier"
    )
    timeout_seconds: int = Field(
        default=30, ge=1, description="Request timeout for LLM calls"
    )
    temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Sampling temperature for LLM completions",
    )
    max_output_tokens: int | None = Field(
        default=800,
        ge=32,
        description="Maximum tokens to request from the provider",
    )
    fallback_enabled: bool = Field(
        default=True, description="Use deterministic fallback when LLM fails"
    )


class StorageSettings(BaseModel):
    """Settings for local persistence."""

    db_path: Path = Field(
        default=Path("./priority_inbox.db"), description="SQLite database path"
    )


class LoggingSettings(BaseModel):
    """Logging preferences."""

    level: str = Field(default="INFO", description="Root logging level")
    structured: bool = Field(
        default=False, description="Toggle JSON structured logging"
    )


class SchedulerSettings(BaseModel):
    """Bounds for the background job scheduler."""

    concurrency: int = Field(default=3, ge=1, description="Jobs run at once")
    max_retries: int = Field(
        default=3, ge=0, description="Retries before a job is dropped"
    )
    job_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Upper bound for one job attempt"
    )
    drain_poll_seconds: float = Field(
        default=0.1, gt=0, description="Polling interval used by drain()"
    )


class PipelineSettings(BaseModel):
    """Settings for the three-tier ingestion pipeline."""

    default_priority: int = Field(
        default=50, ge=0, le=100, description="Neutral priority for new messages"
    )
    batch_size: int = Field(
        default=10, ge=1, description="Messages ingested concurrently per chunk"
    )
    goal_sampling_rate: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Probability of scheduling goal extraction for a message",
    )
    random_seed: int | None = Field(
        default=None, description="Seed for the goal sampling generator"
    )


class TrackingSettings(BaseModel):
    """Immediate adjustments applied when interactions are tracked."""

    reply_delta: float = Field(default=0.1, description="Importance bump per reply")
    reply_initial_score: float = Field(
        default=6.0, ge=0.0, le=10.0, description="Score for newly replied contacts"
    )
    override_keyword_delta: float = Field(default=0.1)
    override_platform_delta: float = Field(default=0.1)
    override_contact_delta: float = Field(default=0.3)
    keyword_limit: int = Field(
        default=10, ge=1, description="Keywords extracted per override"
    )


class LearningSettings(BaseModel):
    """Settings for the batch preference learner."""

    min_samples: int = Field(default=10, ge=1)
    ai_min_samples: int = Field(default=50, ge=1)
    window_days: int = Field(default=7, ge=1)
    max_interactions: int = Field(default=500, ge=1)
    learning_rate: float = Field(default=0.1, gt=0.0, le=1.0)
    fast_read_minutes: float = Field(default=5.0, gt=0.0)
    read_boost: float = Field(default=0.2)
    reply_step: float = Field(default=0.1)
    reply_cap: float = Field(default=1.0)
    override_step: float = Field(default=0.5)
    interval_minutes: int = Field(
        default=0, ge=0, description="Periodic learning cadence; 0 disables it"
    )


class AppSettings(BaseModel):
    """Aggregated application configuration."""

    llm: LlmSettings = Field(default_factory=LlmSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    tracking: TrackingSettings = Field(default_factory=TrackingSettings)
    learning: LearningSettings = Field(default_factory=LearningSettings)


ENV_PREFIX = "PRIORITY_INBOX_"


def _normalize_key(raw_key: str) -> list[str]:
    """Convert an environment variable key into a nested attribute path."""
    trimmed = raw_key.removeprefix(ENV_PREFIX)
    return [segment.lower() for segment in trimmed.split("__") if segment]


def _merge_into_tree(tree: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a value to a nested dictionary given a path."""
    cursor = tree
    for segment in path[:-1]:
        next_node = cursor.setdefault(segment, {})
        cursor = cast(dict[str, Any], next_node)
    cursor[path[-1]] = value


def _collect_env_values(
    env_file: Path | str | None, *, include_environment: bool = True
) -> dict[str, Any]:
    """Load configuration values from environment variables and optional file."""
    collected: dict[str, Any] = {}

    file_values = {}
    if env_file:
        env_path = Path(env_file)
        if env_path.is_file():
            file_values = {
                key: value
                for key, value in dotenv_values(env_path).items()
                if key and key.startswith(ENV_PREFIX)
            }

    env_values = {}
    if include_environment:
        env_values = {
            key: value
            for key, value in os.environ.items()
            if key.startswith(ENV_PREFIX)
        }

    combined: dict[str, Any] = {**file_values, **env_values}

    for key, value in combined.items():
        path = _normalize_key(key)
        if not path:
            continue
        normalized_value: Any = value
        if isinstance(value, str) and value == "":
            normalized_value = None
        elif isinstance(value, str):
            lowercase_value = value.lower()
            if lowercase_value == "true":
                normalized_value = True
            elif lowercase_value == "false":
                normalized_value = False
        _merge_into_tree(collected, path, normalized_value)

    return collected


@lru_cache(maxsize=1)
def load_app_settings(
    env_file: Path | str | None = None,
    include_environment: bool = True,
    **overrides: Any,
) -> AppSettings:
    """Load application settings, applying env files and overrides."""
    collected = _collect_env_values(env_file, include_environment=include_environment)
    if overrides:
        collected.update(overrides)
    return AppSettings.model_validate(collected)


__all__ = [
    "AppSettings",
    "LearningSettings",
    "LlmSettings",
    "LoggingSettings",
    "PipelineSettings",
    "SchedulerSettings",
    "StorageSettings",
    "TrackingSettings",
    "load_app_settings",
]
