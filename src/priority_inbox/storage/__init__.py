"""Persistence backends."""

from .sqlite import SqliteInboxRepository

__all__ = ["SqliteInboxRepository"]
