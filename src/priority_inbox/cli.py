"""Command-line entry point for Priority Inbox."""

from __future__ import annotations

import argparse
import asyncio
import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from priority_inbox.core import AppSettings, configure_logging, load_app_settings
from priority_inbox.core.datetime_utils import parse_datetime
from priority_inbox.core.models import NewMessage
from priority_inbox.ingestion import MessagePipeline
from priority_inbox.jobs import JobScheduler
from priority_inbox.learning import PreferenceLearner
from priority_inbox.services import build_container
from priority_inbox.storage import SqliteInboxRepository


def build_parser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser."""
    parser = argparse.ArgumentParser(description="Priority Inbox message pipeline")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to a .env file containing configuration overrides.",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="info",
        choices=["info", "ingest", "learn", "status"],
        help="Operation to execute.",
    )
    parser.add_argument(
        "--file",
        dest="file",
        type=Path,
        default=None,
        help="JSON file with a message payload or list of payloads (ingest).",
    )
    parser.add_argument(
        "--user",
        dest="user_id",
        default=None,
        help="Restrict learn or status to one user; learn runs all users otherwise.",
    )
    return parser


def execute(args: argparse.Namespace, settings: AppSettings) -> int:
    """Execute the requested CLI command and return an exit code."""
    command = args.command
    if command == "info":
        print("Priority Inbox is ready.")
        print(f"Database path: {settings.storage.db_path}")
        print(f"LLM: {settings.llm.model} at {settings.llm.base_url}")
        print(
            f"Scheduler: concurrency={settings.scheduler.concurrency}, "
            f"max_retries={settings.scheduler.max_retries}"
        )
        return 0
    if command == "ingest":
        if args.file is None:
            print("The ingest command requires --file.")
            return 2
        payloads = _load_payloads(args.file)
        return asyncio.run(_run_ingest(settings, payloads))
    if command == "learn":
        return asyncio.run(_run_learn(settings, args.user_id))
    if command == "status":
        return _run_status(settings, args.user_id)
    return 2


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = load_app_settings(env_file=args.env_file)
    configure_logging(settings.logging)
    return execute(args, settings)


def _load_payloads(path: Path) -> list[NewMessage]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("batch", [data])
    if not isinstance(data, list):
        raise ValueError("Expected a JSON object or list of message payloads")
    return [_to_new_message(item) for item in data]


def _to_new_message(item: dict[str, Any]) -> NewMessage:
    for key in ("userId", "platform"):
        if not item.get(key):
            raise ValueError(f"Message payload is missing '{key}'")
    if not isinstance(item.get("body"), str):
        raise ValueError("Message payload is missing 'body'")
    return NewMessage(
        user_id=str(item["userId"]),
        platform=str(item["platform"]),
        body=str(item["body"]),
        subject=item.get("subject"),
        snippet=item.get("snippet"),
        sender=item.get("from"),
        sender_name=item.get("fromName"),
        contact_id=item.get("fromContactId"),
        external_id=item.get("externalId"),
        thread_id=item.get("threadId"),
        received_at=parse_datetime(item.get("receivedAt")),
        is_read=bool(item.get("isRead", False)),
    )


async def _run_ingest(settings: AppSettings, messages: list[NewMessage]) -> int:
    container = build_container(settings)
    try:
        pipeline: MessagePipeline = container.resolve("pipeline")
        scheduler: JobScheduler = container.resolve("scheduler")
        results = await pipeline.ingest_batch(messages)
        for result in results:
            print(f"{result.id}  priority={result.priority:>3}  tier={result.tier}")
        print(f"Ingested {len(results)} message(s); waiting for background analysis...")
        await scheduler.drain()
        status = scheduler.status()
        print(f"Background analysis finished ({status.failed} job(s) failed).")
    finally:
        container.close()
    return 0


async def _run_learn(settings: AppSettings, user_id: str | None) -> int:
    container = build_container(settings)
    try:
        learner: PreferenceLearner = container.resolve("learner")
        if user_id:
            outcomes = [await learner.learn(user_id)]
        else:
            outcomes = await learner.learn_all_users()
    finally:
        container.close()

    if not outcomes:
        print("No users found.")
        return 0
    for outcome in outcomes:
        reason = f" ({outcome.reason})" if outcome.reason else ""
        print(
            f"{outcome.user_id}: {outcome.status.value}{reason}, "
            f"{outcome.samples} interaction(s)"
        )
    return 0


def _run_status(settings: AppSettings, user_id: str | None) -> int:
    with SqliteInboxRepository(settings.storage) as repository:
        user_ids = [user_id] if user_id else repository.list_user_ids()
        if not user_ids:
            print("No users found.")
            return 0
        header = f"{'User':<24}  {'Last learning run':<25}  {'Samples':>7}  {'Keywords':>8}  {'Todos':>5}"
        print(header)
        print("-" * len(header))
        for uid in user_ids:
            preference = repository.fetch_preferences(uid)
            last_run = (
                preference.last_learning_run.isoformat(timespec="seconds")
                if preference.last_learning_run
                else "-"
            )
            todos = len(repository.list_todos(uid, status="pending"))
            print(
                f"{uid:<24}  {last_run:<25}  {preference.samples_analyzed:>7}  "
                f"{len(preference.keywords):>8}  {todos:>5}"
            )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
