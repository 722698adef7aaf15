"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from priority_inbox.core.config import load_app_settings


@pytest.fixture(autouse=True)
def clear_settings_cache() -> None:
    """Ensure each test sees a fresh settings instance."""

    load_app_settings.cache_clear()


def test_defaults_loaded_without_env_file() -> None:
    """Default values should be returned when no overrides are present."""

    settings = load_app_settings(include_environment=False)
    assert settings.storage.db_path == Path("./priority_inbox.db")
    assert settings.scheduler.concurrency == 3
    assert settings.scheduler.max_retries == 3
    assert settings.scheduler.job_timeout_seconds == 30.0
    assert settings.pipeline.default_priority == 50
    assert settings.pipeline.goal_sampling_rate == pytest.approx(0.1)
    assert settings.learning.min_samples == 10
    assert settings.learning.ai_min_samples == 50
    assert settings.tracking.reply_initial_score == 6.0


def test_env_file_overrides(tmp_path: Path) -> None:
    """Values defined in an env file should override defaults."""

    env_file = tmp_path / "test.env"
    env_file.write_text(
        "PRIORITY_INBOX_SCHEDULER__CONCURRENCY=5\n"
        "PRIORITY_INBOX_LLM__ENABLED=false\n"
        "PRIORITY_INBOX_PIPELINE__RANDOM_SEED=7\n"
        "UNRELATED_SETTING=ignored\n",
        encoding="utf-8",
    )

    settings = load_app_settings(env_file=env_file, include_environment=False)
    assert settings.scheduler.concurrency == 5
    assert settings.llm.enabled is False
    assert settings.pipeline.random_seed == 7


def test_environment_overrides_env_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    env_file = tmp_path / "test.env"
    env_file.write_text("PRIORITY_INBOX_LEARNING__MIN_SAMPLES=20\n", encoding="utf-8")
    monkeypatch.setenv("PRIORITY_INBOX_LEARNING__MIN_SAMPLES", "30")

    settings = load_app_settings(env_file=env_file)
    assert settings.learning.min_samples == 30


def test_invalid_values_are_rejected(tmp_path: Path) -> None:
    env_file = tmp_path / "invalid.env"
    env_file.write_text("PRIORITY_INBOX_SCHEDULER__CONCURRENCY=0\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_app_settings(env_file=env_file, include_environment=False)
