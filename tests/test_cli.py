"""Tests for the command-line entry point."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from priority_inbox.cli import main
from priority_inbox.core.config import load_app_settings


@pytest.fixture(autouse=True)
def clear_settings_cache() -> None:
    load_app_settings.cache_clear()


@pytest.fixture()
def env_file(tmp_path: Path) -> Path:
    path = tmp_path / "cli.env"
    path.write_text(
        f"PRIORITY_INBOX_STORAGE__DB_PATH={tmp_path / 'cli.db'}\n"
        "PRIORITY_INBOX_LLM__ENABLED=false\n"
        "PRIORITY_INBOX_PIPELINE__GOAL_SAMPLING_RATE=0\n",
        encoding="utf-8",
    )
    return path


def test_info_command(env_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--env-file", str(env_file), "info"]) == 0

    output = capsys.readouterr().out
    assert "Priority Inbox is ready." in output
    assert "cli.db" in output


def test_ingest_requires_file(env_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--env-file", str(env_file), "ingest"]) == 2
    assert "requires --file" in capsys.readouterr().out


def test_ingest_then_status(
    tmp_path: Path, env_file: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    messages = tmp_path / "messages.json"
    messages.write_text(
        json.dumps(
            [
                {"userId": "user-1", "platform": "gmail", "body": "Can you call me?"},
                {"userId": "user-2", "platform": "slack", "body": "URGENT: server down"},
            ]
        ),
        encoding="utf-8",
    )

    assert main(["--env-file", str(env_file), "ingest", "--file", str(messages)]) == 0
    ingest_output = capsys.readouterr().out
    assert "Ingested 2 message(s)" in ingest_output
    assert "(0 job(s) failed)" in ingest_output

    assert main(["--env-file", str(env_file), "status"]) == 0
    status_output = capsys.readouterr().out
    assert "user-1" in status_output
    assert "user-2" in status_output


def test_learn_reports_skipped_users(
    tmp_path: Path, env_file: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    messages = tmp_path / "messages.json"
    messages.write_text(
        json.dumps({"userId": "user-1", "platform": "gmail", "body": "Hello"}),
        encoding="utf-8",
    )
    main(["--env-file", str(env_file), "ingest", "--file", str(messages)])
    capsys.readouterr()

    assert main(["--env-file", str(env_file), "learn"]) == 0
    assert "user-1: skipped (insufficient_samples)" in capsys.readouterr().out


def test_ingest_accepts_subject_only_message(
    tmp_path: Path, env_file: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    messages = tmp_path / "messages.json"
    messages.write_text(
        json.dumps(
            {"userId": "user-1", "platform": "gmail", "subject": "Call me", "body": ""}
        ),
        encoding="utf-8",
    )

    assert main(["--env-file", str(env_file), "ingest", "--file", str(messages)]) == 0
    assert "Ingested 1 message(s)" in capsys.readouterr().out


def test_ingest_rejects_missing_body(tmp_path: Path, env_file: Path) -> None:
    messages = tmp_path / "messages.json"
    messages.write_text(
        json.dumps({"userId": "user-1", "platform": "gmail"}), encoding="utf-8"
    )

    with pytest.raises(ValueError, match="body"):
        main(["--env-file", str(env_file), "ingest", "--file", str(messages)])
