"""Job scheduler: named recurring batch jobs with persisted run state.

Each registered job gets one timer lane (a cancellable asyncio task) that
fires ``run_job`` on the job's interval. Run state lives in ``batch_jobs``
and every attempt is appended to ``batch_job_history``, so a restarted
process resumes the cadence from the stored ``next_run``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from .errors import DuplicateJobError, JobExecutionError, JobNotFoundError
from .utils import Clock

if TYPE_CHECKING:
    from .database import AnalyticsDatabase

JobHandler = Callable[[], Awaitable[Any]]


class JobStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"


@dataclass
class JobDescriptor:
    name: str
    handler: JobHandler
    interval: timedelta
    is_running: bool = False

    @property
    def interval_ms(self) -> int:
        return int(self.interval.total_seconds() * 1000)


# ══════════════════════════════════════════════════════════
#  Run notifications
# ══════════════════════════════════════════════════════════

@dataclass(frozen=True)
class JobStarted:
    name: str
    started_at: int


@dataclass(frozen=True)
class JobCompleted:
    name: str
    records_processed: int
    duration_ms: int


@dataclass(frozen=True)
class JobFailed:
    name: str
    error: JobExecutionError
    duration_ms: int


class JobObserver:
    """Receives per-run notifications. Subclasses override what they need."""

    async def on_job_started(self, event: JobStarted) -> None:
        pass

    async def on_job_completed(self, event: JobCompleted) -> None:
        pass

    async def on_job_failed(self, event: JobFailed) -> None:
        pass


class ScheduledTask:
    """Cancellable handle around a job's timer lane."""

    def __init__(self, name: str, task: asyncio.Task) -> None:
        self.name = name
        self._task = task

    def cancel(self) -> None:
        self._task.cancel()

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled()

    @property
    def task(self) -> asyncio.Task:
        return self._task


def _records_from(result: Any) -> int:
    """Handlers return a count; a JobResult-like object is accepted too."""
    if result is None:
        return 0
    records = getattr(result, "records_processed", result)
    return int(records or 0)


class JobScheduler:
    """Owns the job registry and drives execution on a wall-clock cadence."""

    def __init__(
        self,
        database: AnalyticsDatabase,
        logger: logging.Logger | None = None,
        clock: Clock | None = None,
        shutdown_poll_seconds: float = 1.0,
    ) -> None:
        self._db = database
        self._logger = logger or logging.getLogger("analytics.scheduler")
        self._clock = clock or Clock()
        self._poll_seconds = shutdown_poll_seconds
        self._jobs: dict[str, JobDescriptor] = {}
        self._timers: dict[str, ScheduledTask] = {}
        self._inflight: set[asyncio.Task] = set()
        self._observers: list[JobObserver] = []
        self._running = False
        self.last_shutdown: dict | None = None

    # ══════════════════════════════════════════════════════════
    #  Lifecycle
    # ══════════════════════════════════════════════════════════

    async def init(self) -> None:
        """Create tables and load the previous shutdown state.

        Raises PersistenceUnavailableError if the store cannot be opened.
        """
        await self._db.initialize()
        self.last_shutdown = await self._load_state()
        self._logger.info("Batch scheduler initialized")

    def register(self, name: str, handler: JobHandler, interval: timedelta) -> JobDescriptor:
        """Register a recurring job. In-memory only."""
        if name in self._jobs:
            raise DuplicateJobError(name)
        if interval.total_seconds() <= 0:
            raise ValueError(f"Job {name} interval must be positive")
        job = JobDescriptor(name=name, handler=handler, interval=interval)
        self._jobs[name] = job
        self._logger.info(
            "Registered batch job: %s (runs every %.2f hours)",
            name, interval.total_seconds() / 3600,
        )
        return job

    def add_observer(self, observer: JobObserver) -> None:
        self._observers.append(observer)

    async def start(self) -> None:
        """Compute each job's schedule from persisted state and arm its timer."""
        self._running = True
        for name in list(self._jobs):
            await self._schedule_job(self._jobs[name])
        self._logger.info("Batch scheduler started (%d jobs)", len(self._jobs))

    async def stop(self, timeout: float = 300.0) -> None:
        """Cancel timers, wait (bounded) for in-flight runs, persist shutdown state."""
        self._running = False

        timers = list(self._timers.values())
        for timer in timers:
            timer.cancel()
            self._logger.info("Stopped job: %s", timer.name)
        await asyncio.gather(*(t.task for t in timers), return_exceptions=True)
        self._timers.clear()

        running = [job for job in self._jobs.values() if job.is_running]
        if running:
            self._logger.info("Waiting for %d jobs to complete...", len(running))
            await asyncio.gather(*(self._wait_for_job(job, timeout) for job in running))

        try:
            await self._save_state()
        except Exception:
            self._logger.exception("Failed to persist scheduler shutdown state")
        self._logger.info("Batch scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def job_names(self) -> list[str]:
        return list(self._jobs)

    def get_job(self, name: str) -> JobDescriptor | None:
        return self._jobs.get(name)

    # ══════════════════════════════════════════════════════════
    #  Scheduling
    # ══════════════════════════════════════════════════════════

    async def _schedule_job(self, job: JobDescriptor) -> None:
        state = await self._db.get(
            "SELECT * FROM batch_jobs WHERE job_name = ?", (job.name,),
        )
        now = self._clock.now_ms()
        delay = 0.0

        if state is None:
            # Cold start: persist the first next_run and run now
            await self._db.run(
                "INSERT INTO batch_jobs (job_name, next_run) VALUES (?, ?)",
                (job.name, now + job.interval_ms),
            )
            self._logger.info("Job %s has no prior state, running now", job.name)
        elif state["status"] == JobStatus.RUNNING.value and not job.is_running:
            self._logger.warning(
                "Job %s was left 'running' by a previous process, running now", job.name,
            )
        elif state["next_run"] and state["next_run"] > now:
            delay = (state["next_run"] - now) / 1000
            self._logger.info(
                "Job %s scheduled to run in %d minutes", job.name, round(delay / 60),
            )
        else:
            self._logger.info("Job %s is overdue, running now", job.name)

        task = asyncio.create_task(self._timer_lane(job, delay), name=f"batch:{job.name}")
        self._timers[job.name] = ScheduledTask(job.name, task)

    async def _timer_lane(self, job: JobDescriptor, initial_delay: float) -> None:
        """Fire once after *initial_delay*, then re-arm every interval."""
        if initial_delay > 0:
            await self._clock.sleep(initial_delay)
        while self._running:
            self._fire(job.name)
            await self._clock.sleep(job.interval.total_seconds())

    def _fire(self, name: str) -> None:
        task = asyncio.create_task(self.run_job(name))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _wait_for_job(self, job: JobDescriptor, timeout: float) -> None:
        deadline = time.monotonic() + timeout
        while job.is_running and time.monotonic() < deadline:
            await asyncio.sleep(self._poll_seconds)
        if job.is_running:
            self._logger.warning("Job %s did not complete within timeout", job.name)

    # ══════════════════════════════════════════════════════════
    #  Execution
    # ══════════════════════════════════════════════════════════

    async def run_job(self, name: str) -> None:
        """Run a job once. No-op while the same job is already executing."""
        job = self._jobs.get(name)
        if job is None:
            self._logger.warning("run_job called for unknown job %s", name)
            return
        if job.is_running:
            self._logger.debug("Job %s still running, skipping this firing", name)
            return

        job.is_running = True
        started_at = self._clock.now_ms()
        self._logger.info("Starting batch job: %s", name)

        try:
            # A run before start() still leaves a schedule for start() to honor
            await self._db.run(
                "INSERT OR IGNORE INTO batch_jobs (job_name, next_run) VALUES (?, ?)",
                (name, started_at + job.interval_ms),
            )
            await self._db.run(
                "UPDATE batch_jobs SET status = ?, updated_at = CURRENT_TIMESTAMP "
                "WHERE job_name = ?",
                (JobStatus.RUNNING.value, name),
            )
            history = await self._db.run(
                "INSERT INTO batch_job_history (job_name, started_at, status) VALUES (?, ?, ?)",
                (name, started_at, "running"),
            )
            await self._notify("on_job_started", JobStarted(name, started_at))

            try:
                result = await job.handler()
            except Exception as e:
                error = JobExecutionError(name, e)
                await self._record_failure(job, error, history.lastrowid, started_at)
                return

            await self._record_success(job, _records_from(result), history.lastrowid, started_at)
        except Exception:
            self._logger.exception("Scheduler bookkeeping failed for job %s", name)
        finally:
            job.is_running = False

    async def run_job_now(self, name: str) -> None:
        """Run a registered job immediately (admin/debug)."""
        if name not in self._jobs:
            raise JobNotFoundError(name)
        await self.run_job(name)

    def trigger(self, name: str) -> bool:
        """Start a registered job in the background.

        Returns False when the job is already running. Raises
        JobNotFoundError for unknown names.
        """
        job = self._jobs.get(name)
        if job is None:
            raise JobNotFoundError(name)
        if job.is_running:
            return False
        self._fire(name)
        return True

    async def _record_success(
        self, job: JobDescriptor, records: int, history_id: int | None, started_at: int,
    ) -> None:
        completed_at = self._clock.now_ms()
        duration = completed_at - started_at
        await self._db.run(
            "UPDATE batch_job_history SET completed_at = ?, status = ?, "
            "records_processed = ?, duration_ms = ? WHERE id = ?",
            (completed_at, "completed", records, duration, history_id),
        )
        await self._db.run(
            "UPDATE batch_jobs SET last_run = ?, next_run = ?, status = ?, error_count = 0, "
            "last_error = NULL, updated_at = CURRENT_TIMESTAMP WHERE job_name = ?",
            (started_at, completed_at + job.interval_ms, JobStatus.IDLE.value, job.name),
        )
        self._logger.info(
            "Completed batch job: %s (%dms, %d records)", job.name, duration, records,
        )
        await self._notify("on_job_completed", JobCompleted(job.name, records, duration))

    async def _record_failure(
        self,
        job: JobDescriptor,
        error: JobExecutionError,
        history_id: int | None,
        started_at: int,
    ) -> None:
        completed_at = self._clock.now_ms()
        duration = completed_at - started_at
        self._logger.error(
            "Batch job failed: %s (%dms): %s", job.name, duration, error,
            exc_info=error.cause,
        )
        # next_run is left alone: the timer lane keeps its cadence
        await self._db.run(
            "UPDATE batch_jobs SET status = ?, error_count = error_count + 1, "
            "last_error = ?, updated_at = CURRENT_TIMESTAMP WHERE job_name = ?",
            (JobStatus.ERROR.value, str(error), job.name),
        )
        await self._db.run(
            "UPDATE batch_job_history SET completed_at = ?, status = ?, error_message = ?, "
            "duration_ms = ? WHERE id = ?",
            (completed_at, "failed", str(error), duration, history_id),
        )
        await self._notify("on_job_failed", JobFailed(job.name, error, duration))

    async def _notify(self, method: str, event: Any) -> None:
        for observer in self._observers:
            try:
                await getattr(observer, method)(event)
            except Exception:
                self._logger.exception("Job observer %s failed on %s", observer, method)

    # ══════════════════════════════════════════════════════════
    #  Status
    # ══════════════════════════════════════════════════════════

    async def get_job_status(self, name: str) -> dict | None:
        return await self._db.get("SELECT * FROM batch_jobs WHERE job_name = ?", (name,))

    async def get_job_history(self, name: str, limit: int = 10) -> list[dict]:
        return await self._db.all(
            "SELECT * FROM batch_job_history WHERE job_name = ? ORDER BY id DESC LIMIT ?",
            (name, limit),
        )

    async def get_all_job_statuses(self) -> list[dict]:
        return await self._db.all("SELECT * FROM batch_jobs ORDER BY job_name")

    # ══════════════════════════════════════════════════════════
    #  Shutdown state
    # ══════════════════════════════════════════════════════════

    async def _save_state(self) -> None:
        await self._db.run(
            """
            INSERT INTO batch_scheduler_state (id, registered_jobs, stopped_at)
            VALUES (1, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                registered_jobs = excluded.registered_jobs,
                stopped_at = excluded.stopped_at,
                updated_at = CURRENT_TIMESTAMP
            """,
            (json.dumps(list(self._jobs)), self._clock.now_ms()),
        )

    async def _load_state(self) -> dict | None:
        row = await self._db.get(
            "SELECT registered_jobs, stopped_at FROM batch_scheduler_state WHERE id = 1"
        )
        if not row:
            return None
        state = {
            "jobs": json.loads(row["registered_jobs"] or "[]"),
            "stopped_at": row["stopped_at"],
        }
        self._logger.info("Loaded batch scheduler state from %s", row["stopped_at"])
        return state
