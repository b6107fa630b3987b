"""Interval job scheduler driving the execution guard from a daemon thread.

Every instance of the fleet runs one of these. Each tick, every job whose
interval has elapsed is handed to the :class:`ExecutionGuard`; the guard's
lock decides which instance actually executes it.

::

    JobScheduler(guard, tick_seconds=10)
      │
      start()
      │
      ▼
    Daemon Thread (loop)
      while not stop_event.wait(tick_seconds):
          tick()
              for job in due jobs:
                  guard.run(job.name, job.fn, ttl_seconds=job.ttl, ...)
                  job.next_run_at = now + job.interval   (even on failure)
      │
      stop()  ──► stop_event.set(); thread.join(timeout=5.0)
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from coordspine.core.errors import JobExecutionFailed, StoreUnavailable
from coordspine.core.logging import get_logger
from coordspine.core.timestamps import utc_now
from coordspine.scheduling.guard import ExecutionGuard, GuardedRun

logger = get_logger(__name__)


@dataclass
class ScheduledJob:
    """A job registered with the scheduler."""

    name: str
    fn: Callable[[], Any]
    interval: timedelta
    ttl_seconds: float
    job_group: str = "default"
    lock_key: str | None = None
    next_run_at: datetime | None = None
    last_outcome: str | None = field(default=None)


class JobScheduler:
    """Runs registered jobs at fixed intervals through an ExecutionGuard.

    Example:
        >>> scheduler = JobScheduler(guard, tick_seconds=10)
        >>> scheduler.register("nightly-cleanup", cleanup, interval_seconds=86400, ttl_seconds=600)
        >>> scheduler.start()
        >>> # ... later ...
        >>> scheduler.stop()
    """

    def __init__(
        self,
        guard: ExecutionGuard,
        tick_seconds: float = 10.0,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.guard = guard
        self.tick_seconds = tick_seconds
        self._clock = clock
        self._jobs: dict[str, ScheduledJob] = {}
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._tick_count = 0
        self._last_tick: datetime | None = None
        self._lock = threading.Lock()

    def register(
        self,
        job_name: str,
        fn: Callable[[], Any],
        interval_seconds: float,
        ttl_seconds: float = 300,
        job_group: str = "default",
        *,
        lock_key: str | None = None,
        run_immediately: bool = True,
    ) -> ScheduledJob:
        """Register a job.

        Args:
            job_name: Unique job name (also the default lock key)
            fn: Zero-argument job body
            interval_seconds: Time between runs
            ttl_seconds: Lock TTL passed to the guard
            job_group: History grouping
            lock_key: Override the lock key
            run_immediately: First run on the next tick instead of after one interval
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        now = self._clock()
        job = ScheduledJob(
            name=job_name,
            fn=fn,
            interval=timedelta(seconds=interval_seconds),
            ttl_seconds=ttl_seconds,
            job_group=job_group,
            lock_key=lock_key,
            next_run_at=now if run_immediately else now + timedelta(seconds=interval_seconds),
        )
        with self._lock:
            self._jobs[job_name] = job
        logger.info("job_registered", job_name=job_name, interval_seconds=interval_seconds, job_group=job_group)
        return job

    def unregister(self, job_name: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_name, None) is not None

    @property
    def jobs(self) -> list[ScheduledJob]:
        with self._lock:
            return list(self._jobs.values())

    def tick(self, now: datetime | None = None) -> list[GuardedRun]:
        """Run every due job once.

        A failing job is logged and does not stop the other due jobs.

        Returns:
            Outcomes of the jobs that reached the guard without raising
        """
        now = now or self._clock()
        with self._lock:
            self._tick_count += 1
            self._last_tick = now
            due = [job for job in self._jobs.values() if job.next_run_at is None or job.next_run_at <= now]

        outcomes: list[GuardedRun] = []
        for job in due:
            job.next_run_at = now + job.interval
            try:
                outcome = self.guard.run(
                    job.name,
                    job.fn,
                    lock_key=job.lock_key,
                    ttl_seconds=job.ttl_seconds,
                    job_group=job.job_group,
                )
            except JobExecutionFailed as e:
                job.last_outcome = "failed"
                logger.warning("scheduled_job_failed", job_name=job.name, error=str(e.cause))
                continue
            except StoreUnavailable as e:
                job.last_outcome = "store_unavailable"
                logger.error("scheduled_job_store_unavailable", job_name=job.name, error=str(e))
                continue
            except Exception as e:
                job.last_outcome = "error"
                logger.exception("scheduled_job_error", job_name=job.name, error=str(e))
                continue
            job.last_outcome = "executed" if outcome.executed else "skipped"
            outcomes.append(outcome)
        return outcomes

    def start(self) -> None:
        """Start the tick loop in a daemon thread."""
        if self.is_running:
            logger.warning("scheduler_already_started")
            return

        self._stop_event.clear()

        def _loop() -> None:
            logger.info("scheduler_started", tick_seconds=self.tick_seconds, owner_id=self.guard.owner_id)
            while not self._stop_event.wait(self.tick_seconds):
                try:
                    self.tick()
                except Exception as e:
                    logger.exception("scheduler_tick_failed", error=str(e))
            logger.info("scheduler_stopped")

        self._thread = threading.Thread(target=_loop, daemon=True, name="coord-spine-scheduler")
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the tick loop, waiting up to ``timeout`` for the current tick."""
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            logger.warning("scheduler_thread_did_not_stop")
        self._thread = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    def health(self) -> dict[str, Any]:
        """Return scheduler health."""
        return {
            "healthy": self.is_running,
            "tick_count": self._tick_count,
            "last_tick": self._last_tick.isoformat() if self._last_tick else None,
            "tick_seconds": self.tick_seconds,
            "jobs": {job.name: job.last_outcome for job in self.jobs},
            "owner_id": self.guard.owner_id,
        }


__all__ = ["JobScheduler", "ScheduledJob"]
