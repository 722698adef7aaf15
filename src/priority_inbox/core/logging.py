"""Logging configuration helpers."""

from __future__ import annotations

import logging
import logging.config
from contextvars import ContextVar, Token
from typing import Any

from .config import LoggingSettings

_NOISY_LOGGERS = ("httpx", "httpcore")
_NO_JOB = "-"

_current_job: ContextVar[str] = ContextVar("priority_inbox_job", default=_NO_JOB)


def bind_job(job_id: str, job_type: str) -> Token[str]:
    """Tag log records emitted in the current context with a job."""
    return _current_job.set(f"{job_type}:{job_id}")


def unbind_job(token: Token[str]) -> None:
    _current_job.reset(token)


class JobContextFilter(logging.Filter):
    """Expose the job bound to the current context as ``record.job``.

    Contexts are copied into asyncio tasks and ``asyncio.to_thread`` workers,
    so handler code running off the loop thread keeps its job tag.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.job = _current_job.get()
        return True


def _structured_formatter() -> dict[str, Any]:
    """Return a dictConfig fragment for key/value logs."""
    return {
        "format": "{asctime} level={levelname} logger={name} job={job} {message}",
        "style": "{",
    }


def _plain_formatter() -> dict[str, Any]:
    return {
        "format": "%(asctime)s %(levelname)s %(name)s [%(job)s] %(message)s",
    }


def configure_logging(settings: LoggingSettings) -> None:
    """Route application logs to the console at the configured level."""
    formatter = _structured_formatter() if settings.structured else _plain_formatter()

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"job_context": {"()": JobContextFilter}},
            "formatters": {"inbox": formatter},
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "inbox",
                    "filters": ["job_context"],
                    "level": settings.level,
                },
            },
            "loggers": {
                name: {"level": "WARNING", "propagate": True} for name in _NOISY_LOGGERS
            },
            "root": {"handlers": ["console"], "level": settings.level},
        }
    )


__all__ = ["JobContextFilter", "bind_job", "configure_logging", "unbind_job"]
