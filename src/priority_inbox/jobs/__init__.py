"""Background job scheduling."""

from .scheduler import JobHandler, JobScheduler

__all__ = ["JobHandler", "JobScheduler"]
