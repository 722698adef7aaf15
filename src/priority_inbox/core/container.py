"""Simple service container for dependency management."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, TypeVar

T = TypeVar("T")

LOGGER = logging.getLogger(__name__)


class ServiceContainer:
    """Minimal dependency container with lazy singleton semantics."""

    def __init__(self) -> None:
        """Initialise container storage."""
        self._factories: dict[str, Callable[[ServiceContainer], Any]] = {}
        self._instances: dict[str, Any] = {}

    def register(self, key: str, factory: Callable[[ServiceContainer], T]) -> None:
        """Register a factory under a given key."""
        self._factories[key] = factory
        self._instances.pop(key, None)

    def register_instance(self, key: str, instance: Any) -> None:
        """Register an already constructed service."""
        self._factories[key] = lambda _container: instance
        self._instances[key] = instance

    def resolve(self, key: str) -> Any:
        """Resolve a dependency by key, invoking its factory once."""
        if key in self._instances:
            return self._instances[key]
        if key not in self._factories:
            msg = f"Service '{key}' is not registered"
            raise KeyError(msg)
        instance = self._factories[key](self)
        self._instances[key] = instance
        return instance

    def close(self) -> None:
        """Close resolved services that expose ``close`` and drop the cache."""
        for key, instance in reversed(list(self._instances.items())):
            closer = getattr(instance, "close", None)
            if not callable(closer):
                continue
            try:
                closer()
            except Exception:  # pylint: disable=broad-except
                LOGGER.warning("Failed to close service %s", key, exc_info=True)
        self._instances.clear()


__all__ = ["ServiceContainer"]
