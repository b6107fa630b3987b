"""Execution guard - run a job body at most once concurrently across the fleet.

Manifesto:
    Every instance of a horizontally scaled service fires the same timers.
    The guard turns "every instance fires" into "exactly one instance runs,
    the others record a skip". It is an explicit wrapper: the job body is a
    plain callable, and the guard owns lock acquisition, history recording
    and lock release.

Tags:
    coord-spine, scheduling, execution-guard, distributed-locks, history

Doc-Types:
    api-reference, architecture-diagram


    Guarded Run::

        run(job_name, fn)
          │
          ├── try_lock(lock_key or job_name, ttl) ── StoreUnavailable ──► propagate (fn not run)
          │        │
          │        └── not acquired ──► SKIPPED record ──► GuardedRun(executed=False)
          │
          ├── save(RUNNING)
          ├── fn()
          │     ├── returns ──► SUCCESS (message, items_processed, duration_ms)
          │     └── raises  ──► FAILED (error) ──► raise JobExecutionFailed from exc
          │
          └── finally: unlock ── failure logged, lock_released=False, TTL reclaims

Example:
    >>> guard = ExecutionGuard(lock_manager, history)
    >>> outcome = guard.run("nightly-cleanup", cleanup, ttl_seconds=600, job_group="maintenance")
    >>> outcome.executed
    True
"""

from __future__ import annotations

import functools
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from coordspine.core.errors import CoordError, JobExecutionFailed, LockUnavailable
from coordspine.core.logging import LogContext, get_logger
from coordspine.scheduling.history import ExecutionHistoryRepository, ExecutionRecord
from coordspine.scheduling.lock_manager import DistributedLockManager

logger = get_logger(__name__)

SKIP_MESSAGE = "Lock held by another instance"
DEFAULT_SUCCESS_MESSAGE = "Completed successfully"


@dataclass(frozen=True)
class JobResult:
    """What a job body may return to report its outcome."""

    message: str
    items_processed: int | None = None


@dataclass
class GuardedRun:
    """Outcome of a single :meth:`ExecutionGuard.run` call."""

    job_name: str
    executed: bool
    value: Any = None
    result: JobResult | None = None
    record: ExecutionRecord | None = None
    skip_reason: LockUnavailable | None = None
    lock_released: bool | None = None

    @property
    def skipped(self) -> bool:
        return not self.executed


def interpret_result(value: Any) -> JobResult:
    """Map a job body's return value to a message and item count."""
    if isinstance(value, JobResult):
        return value
    if isinstance(value, bool):
        return JobResult(DEFAULT_SUCCESS_MESSAGE)
    if isinstance(value, int):
        return JobResult(f"Processed {value} items", value)
    if (
        isinstance(value, tuple)
        and len(value) == 2
        and isinstance(value[0], str)
        and isinstance(value[1], int)
        and not isinstance(value[1], bool)
    ):
        return JobResult(value[0], value[1])
    return JobResult(DEFAULT_SUCCESS_MESSAGE)


class ExecutionGuard:
    """Wraps job bodies with a distributed lock and execution history."""

    def __init__(
        self,
        lock_manager: DistributedLockManager,
        history: ExecutionHistoryRepository | None = None,
    ) -> None:
        self.lock_manager = lock_manager
        self.history = history

    @property
    def owner_id(self) -> str:
        return self.lock_manager.owner_id

    def run(
        self,
        job_name: str,
        fn: Callable[[], Any],
        *,
        lock_key: str | None = None,
        ttl_seconds: float = 300,
        job_group: str = "default",
        record_history: bool = True,
        skip_if_locked: bool = True,
    ) -> GuardedRun:
        """Run ``fn`` iff this instance wins the job's lock.

        Args:
            job_name: Name recorded in history and logs
            fn: Zero-argument job body
            lock_key: Lock to take (defaults to ``job_name``)
            ttl_seconds: Lock TTL; must exceed the body's worst-case duration
            job_group: Grouping recorded in history
            record_history: Write ExecutionRecords when a history repo is set
            skip_if_locked: Record a SKIPPED run when the lock is held.
                Waiting for the lock is not supported; when False the call
                returns not-executed without a record.

        Returns:
            GuardedRun describing what happened

        Raises:
            StoreUnavailable: Lock status unknown; ``fn`` was not run.
            JobExecutionFailed: ``fn`` raised; the failure is already recorded.
        """
        key = lock_key or job_name
        recording = record_history and self.history is not None

        with LogContext(job_name=job_name, lock_key=key):
            if not self.lock_manager.try_lock(key, ttl_seconds):
                return self._skip(job_name, key, job_group, recording and skip_if_locked)

            record = ExecutionRecord.start(job_name, job_group, self.owner_id)
            try:
                if recording:
                    self.history.save(record)
                logger.info("job_started", job_group=job_group, execution_id=record.id)

                try:
                    value = fn()
                except Exception as exc:
                    record.mark_failed(str(exc) or exc.__class__.__name__)
                    if recording:
                        self.history.save(record)
                    logger.error(
                        "job_failed",
                        execution_id=record.id,
                        duration_ms=record.duration_ms,
                        error=str(exc),
                        error_type=exc.__class__.__name__,
                    )
                    raise JobExecutionFailed(job_name, cause=exc).with_context(
                        lock_key=key, owner_id=self.owner_id
                    ) from exc

                result = interpret_result(value)
                record.mark_success(result.message, result.items_processed)
                if recording:
                    self.history.save(record)
                logger.info(
                    "job_completed",
                    execution_id=record.id,
                    duration_ms=record.duration_ms,
                    items_processed=result.items_processed,
                )
                outcome = GuardedRun(job_name, executed=True, value=value, result=result, record=record)
            finally:
                released = self._release(key)

            outcome.lock_released = released
            return outcome

    def _skip(self, job_name: str, key: str, job_group: str, record_skip: bool) -> GuardedRun:
        reason = LockUnavailable(key, SKIP_MESSAGE).with_context(job_name=job_name, owner_id=self.owner_id)
        record = None
        if record_skip:
            record = ExecutionRecord.skipped(job_name, job_group, self.owner_id, SKIP_MESSAGE)
            self.history.save(record)
        logger.info("job_skipped", reason="lock_held")
        return GuardedRun(job_name, executed=False, record=record, skip_reason=reason)

    def _release(self, key: str) -> bool:
        try:
            released = self.lock_manager.unlock(key)
        except CoordError as exc:
            logger.error("lock_release_failed", error=str(exc), **exc.context.to_dict())
            return False
        if not released:
            logger.warning("lock_release_failed", reason="lock_expired_or_taken_over")
        return released

    def wrap(self, job_name: str, **options: Any) -> Callable[[Callable[[], Any]], Callable[[], GuardedRun]]:
        """Decorator form of :meth:`run`.

        Example:
            >>> @guard.wrap("process-dlq", ttl_seconds=600, job_group="notification")
            ... def process_dlq():
            ...     return engine.sweep().processed
            >>> process_dlq().executed
            True
        """

        def decorator(fn: Callable[[], Any]) -> Callable[[], GuardedRun]:
            @functools.wraps(fn)
            def wrapper() -> GuardedRun:
                return self.run(job_name, fn, **options)

            return wrapper

        return decorator


__all__ = ["DEFAULT_SUCCESS_MESSAGE", "ExecutionGuard", "GuardedRun", "JobResult", "SKIP_MESSAGE", "interpret_result"]
