"""Bounded-concurrency background job scheduler."""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from collections import deque
from collections.abc import Awaitable, Callable

from priority_inbox.core.config import SchedulerSettings
from priority_inbox.core.datetime_utils import utcnow
from priority_inbox.core.logging import bind_job, unbind_job
from priority_inbox.core.models import FailedJob, Job, JobType, SchedulerStatus

LOGGER = logging.getLogger(__name__)

JobHandler = Callable[[Job], Awaitable[None]]

_FAILURE_HISTORY = 50


class JobScheduler:
    """Run jobs on the event loop with a fixed concurrency limit.

    Pending jobs wait in an in-memory deque. A failed job goes back to the
    head of the deque until it has been retried ``max_retries`` times, after
    which it is dropped and recorded as a terminal failure. Queue and active
    count share one lock that is never held across an ``await``.

    Jobs exist only in memory: stopping the process loses anything queued or
    running. Public methods must be called from the thread running the event
    loop that executes the jobs.
    """

    def __init__(self, settings: SchedulerSettings | None = None) -> None:
        self._settings = settings or SchedulerSettings()
        self._lock = threading.Lock()
        self._queue: deque[Job] = deque()
        self._active = 0
        self._running = True
        self._handlers: dict[JobType, JobHandler] = {}
        self._failures: deque[FailedJob] = deque(maxlen=_FAILURE_HISTORY)
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def concurrency(self) -> int:
        return self._settings.concurrency

    def register(self, job_type: JobType, handler: JobHandler) -> None:
        """Route jobs of ``job_type`` to ``handler``."""
        self._handlers[job_type] = handler

    def enqueue(self, job: Job) -> Job:
        """Queue ``job`` and start it if capacity allows. Never waits for it."""
        if job.type not in self._handlers:
            raise ValueError(f"No handler registered for job type {job.type}")
        if not job.user_id:
            raise ValueError("Job user_id is required")
        job.id = f"job_{uuid.uuid4().hex}"
        job.retries = 0
        job.max_retries = self._settings.max_retries
        job.created_at = utcnow()
        with self._lock:
            self._queue.append(job)
        LOGGER.debug("Enqueued job %s (%s) for user %s", job.id, job.type, job.user_id)
        self._dispatch()
        return job

    def status(self) -> SchedulerStatus:
        """Return a point-in-time snapshot of the scheduler."""
        with self._lock:
            return SchedulerStatus(
                queued=len(self._queue),
                active=self._active,
                running=self._running,
                failed=len(self._failures),
            )

    def failures(self) -> list[FailedJob]:
        """Return recent terminal failures, oldest first."""
        with self._lock:
            return list(self._failures)

    def pause(self) -> None:
        """Stop starting new jobs. Running jobs finish normally."""
        with self._lock:
            self._running = False
        LOGGER.info("Job processing paused")

    def resume(self) -> None:
        """Resume dispatching queued jobs."""
        with self._lock:
            self._running = True
        LOGGER.info("Job processing resumed")
        self._dispatch()

    def clear(self) -> int:
        """Drop every queued job and return how many were removed."""
        with self._lock:
            dropped = len(self._queue)
            self._queue.clear()
        LOGGER.info("Cleared %d queued jobs", dropped)
        return dropped

    async def drain(self) -> None:
        """Wait until no job is queued or running."""
        while True:
            with self._lock:
                if not self._queue and self._active == 0:
                    return
            await asyncio.sleep(self._settings.drain_poll_seconds)

    async def shutdown(self) -> None:
        """Pause, drop queued jobs and cancel running ones."""
        self.pause()
        self.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        # Tasks cancelled before their first step never decrement the count.
        with self._lock:
            self._active = 0

    def _dispatch(self) -> None:
        started: list[Job] = []
        with self._lock:
            while (
                self._running
                and self._queue
                and self._active < self._settings.concurrency
            ):
                started.append(self._queue.popleft())
                self._active += 1
        for job in started:
            task = asyncio.get_running_loop().create_task(
                self._execute(job), name=job.id
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _execute(self, job: Job) -> None:
        handler = self._handlers[job.type]
        error: Exception | None = None
        token = bind_job(job.id, job.type)
        LOGGER.debug("Processing job %s (%s)", job.id, job.type)
        try:
            await asyncio.wait_for(
                handler(job), timeout=self._settings.job_timeout_seconds
            )
        except asyncio.CancelledError:
            with self._lock:
                self._active -= 1
            raise
        except Exception as exc:  # pylint: disable=broad-except
            error = exc

        failed: FailedJob | None = None
        with self._lock:
            self._active -= 1
            if error is not None:
                if job.retries < job.max_retries:
                    job.retries += 1
                    self._queue.appendleft(job)
                else:
                    failed = FailedJob(
                        job_id=job.id,
                        job_type=job.type,
                        user_id=job.user_id,
                        attempts=job.retries + 1,
                        error=str(error) or type(error).__name__,
                        failed_at=utcnow(),
                    )
                    self._failures.append(failed)

        if failed is not None:
            LOGGER.error(
                "Job %s (%s) dropped after %d attempts: %s",
                job.id,
                job.type,
                failed.attempts,
                failed.error,
                exc_info=error,
            )
        elif error is not None:
            LOGGER.warning(
                "Retrying job %s (%s), attempt %d/%d: %s",
                job.id,
                job.type,
                job.retries,
                job.max_retries,
                error,
            )
        else:
            LOGGER.debug("Completed job %s (%s)", job.id, job.type)
        unbind_job(token)
        self._dispatch()


__all__ = ["JobHandler", "JobScheduler"]
