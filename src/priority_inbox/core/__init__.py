"""Core utilities for configuration, logging, and dependency wiring."""

from .config import AppSettings, SchedulerSettings, load_app_settings
from .container import ServiceContainer
from .logging import configure_logging

__all__ = [
    "AppSettings",
    "SchedulerSettings",
    "ServiceContainer",
    "configure_logging",
    "load_app_settings",
]
