"""Sync scheduler: periodic and on-demand sync cycles with retry/backoff.

At most one sync job runs at a time. Immediate requests are coalesced: a
request replaces any immediate job that has not started yet instead of
queuing a second one.
"""

import asyncio
import itertools
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..context import TenantContext

if TYPE_CHECKING:
    from ..remote import ConnectivityMonitor
    from .push import PushSynchronizer, SyncResult

logger = logging.getLogger(__name__)


class JobKind(str, Enum):
    PERIODIC = "periodic"
    IMMEDIATE = "immediate"


class JobState(str, Enum):
    """Lifecycle of one scheduled job.

    PENDING -> RUNNING -> SUCCESS | RETRY_SCHEDULED -> RUNNING | FAILED.
    CANCELLED marks a job replaced or shut down before it finished.
    """

    PENDING = "pending"
    RUNNING = "running"
    RETRY_SCHEDULED = "retry_scheduled"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({JobState.SUCCESS, JobState.FAILED, JobState.CANCELLED})

_job_ids = itertools.count(1)


@dataclass
class SyncJob:
    """One scheduled sync job and its attempt history."""

    kind: JobKind
    id: int = field(default_factory=lambda: next(_job_ids))
    state: JobState = JobState.PENDING
    attempts: int = 0
    last_result: "SyncResult | None" = None
    error: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    finished_at: datetime | None = None

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "state": self.state.value,
            "attempts": self.attempts,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class SyncScheduler:
    """Drives the push synchronizer under a connectivity gate."""

    def __init__(
        self,
        synchronizer: "PushSynchronizer",
        connectivity: "ConnectivityMonitor",
        interval_minutes: float = 15,
        max_attempts: int = 3,
        backoff_base_seconds: float = 10.0,
        backoff_max_seconds: float = 300.0,
        connectivity_poll_seconds: float = 30.0,
        history_size: int = 50,
    ):
        """Initialize the scheduler.

        Args:
            synchronizer: Runs one sync cycle per job attempt.
            connectivity: Jobs wait until this reports online.
            interval_minutes: Period of the periodic trigger.
            max_attempts: Attempts per job before it is marked FAILED.
            backoff_base_seconds: Delay before the first retry; doubles after.
            backoff_max_seconds: Upper bound for the retry delay.
            connectivity_poll_seconds: How often a waiting job re-checks.
            history_size: Finished jobs kept for status reporting.
        """
        self._synchronizer = synchronizer
        self._connectivity = connectivity
        self._interval = interval_minutes * 60
        self.max_attempts = max_attempts
        self._backoff_base = backoff_base_seconds
        self._backoff_max = backoff_max_seconds
        self._poll = connectivity_poll_seconds

        self._ctx: TenantContext | None = None
        self._running = False
        self._stop_event = asyncio.Event()
        self._run_lock = asyncio.Lock()
        self._periodic_task: asyncio.Task | None = None
        self._pending_immediate: tuple[SyncJob, asyncio.Task] | None = None
        self._job_tasks: set[asyncio.Task] = set()
        self._current: SyncJob | None = None
        self.history: deque[SyncJob] = deque(maxlen=history_size)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def current_job(self) -> SyncJob | None:
        """Job currently holding the run slot, if any."""
        return self._current

    async def start(self, ctx: TenantContext, periodic: bool = True) -> None:
        """Start scheduling sync cycles for a tenant.

        Args:
            ctx: Tenant every cycle runs for.
            periodic: Whether to run the periodic trigger.
        """
        if self._running:
            logger.warning("SyncScheduler already running")
            return

        self._ctx = ctx
        self._running = True
        self._stop_event = asyncio.Event()
        if periodic:
            self._periodic_task = asyncio.create_task(self._periodic_loop())
        logger.info(
            f"Sync scheduler started for restaurant {ctx.tenant_id} "
            f"(interval={self._interval / 60:g}min, max_attempts={self.max_attempts})"
        )

    async def stop(self) -> None:
        """Stop scheduling.

        Jobs that have not started are cancelled. A running job finishes
        its current cycle but schedules no further retries.
        """
        if not self._running:
            return
        self._running = False
        self._stop_event.set()

        current = self._current
        if self._periodic_task and not (current and current.kind == JobKind.PERIODIC):
            self._periodic_task.cancel()
        if self._pending_immediate:
            job, task = self._pending_immediate
            job.state = JobState.CANCELLED
            task.cancel()
            self._pending_immediate = None

        tasks = [t for t in (self._periodic_task, *self._job_tasks) if t is not None]
        await asyncio.gather(*tasks, return_exceptions=True)
        self._periodic_task = None
        self._job_tasks.clear()
        self._ctx = None
        logger.info("Sync scheduler stopped")

    def request_immediate(self) -> SyncJob | None:
        """Request a sync as soon as connectivity allows.

        Returns:
            The new job, or None when the scheduler is not running.
        """
        if not self._running:
            logger.debug("Immediate sync requested while scheduler is stopped")
            return None

        if self._pending_immediate:
            old_job, old_task = self._pending_immediate
            old_job.state = JobState.CANCELLED
            old_job.finished_at = datetime.now()
            old_task.cancel()
            self.history.append(old_job)
            logger.debug(f"Immediate sync job {old_job.id} replaced")

        job = SyncJob(kind=JobKind.IMMEDIATE)
        task = asyncio.create_task(self._run_job(job))
        self._job_tasks.add(task)
        task.add_done_callback(self._job_tasks.discard)
        self._pending_immediate = (job, task)
        return job

    def _backoff(self, attempts: int) -> float:
        return min(self._backoff_base * (2 ** (attempts - 1)), self._backoff_max)

    async def _wait_for_connectivity(self) -> None:
        while not await self._connectivity.is_online():
            logger.debug(f"Offline, re-checking in {self._poll}s")
            await asyncio.sleep(self._poll)

    async def _pause(self, seconds: float) -> bool:
        """Sleep unless stopped first. Returns False if stopped."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            return False
        except asyncio.TimeoutError:
            return True

    async def _run_job(self, job: SyncJob) -> SyncJob:
        """Run a job to a terminal state."""
        try:
            await self._wait_for_connectivity()
            async with self._run_lock:
                if self._pending_immediate and self._pending_immediate[0] is job:
                    self._pending_immediate = None
                self._current = job
                try:
                    await self._attempt_until_done(job)
                finally:
                    self._current = None
        except asyncio.CancelledError:
            if not job.done:
                job.state = JobState.CANCELLED
            raise
        finally:
            if job.done:
                job.finished_at = job.finished_at or datetime.now()
                if job not in self.history:
                    self.history.append(job)
        return job

    async def _attempt_until_done(self, job: SyncJob) -> None:
        while True:
            job.attempts += 1
            job.state = JobState.RUNNING
            logger.debug(f"Sync job {job.id} ({job.kind.value}) attempt {job.attempts}")

            failed = False
            try:
                job.last_result = await self._synchronizer.sync_cycle(self._ctx)
                failed = job.last_result.has_failures
                job.error = None
            except Exception as e:
                logger.error(f"Sync job {job.id} error: {e}", exc_info=True)
                job.error = str(e)
                failed = True

            if not failed:
                job.state = JobState.SUCCESS
                return
            if job.attempts >= self.max_attempts:
                logger.warning(
                    f"Sync job {job.id} failed after {job.attempts} attempts"
                )
                job.state = JobState.FAILED
                return

            delay = self._backoff(job.attempts)
            job.state = JobState.RETRY_SCHEDULED
            logger.warning(f"Retrying sync job {job.id} in {delay:g}s (failures detected)")
            if not await self._pause(delay):
                job.state = JobState.CANCELLED
                return

    async def _periodic_loop(self) -> None:
        """Run a periodic job every interval while online."""
        while self._running:
            if await self._connectivity.is_online():
                try:
                    await self._run_job(SyncJob(kind=JobKind.PERIODIC))
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Periodic sync error: {e}", exc_info=True)
            else:
                logger.debug("Offline, skipping periodic sync")

            if not await self._pause(self._interval):
                break

    def get_status(self) -> dict[str, Any]:
        """Scheduler state for status output."""
        return {
            "running": self._running,
            "tenant_id": self._ctx.tenant_id if self._ctx else None,
            "current_job": self._current.to_dict() if self._current else None,
            "pending_immediate": (
                self._pending_immediate[0].to_dict() if self._pending_immediate else None
            ),
            "recent_jobs": [job.to_dict() for job in list(self.history)[-10:]],
        }
