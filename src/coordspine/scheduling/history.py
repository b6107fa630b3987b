"""Execution history log - one durable record per guarded run.

Manifesto:
    Locks vanish with their TTL. What ran, where, for how long and with what
    outcome must survive them, so every guarded run writes an
    ExecutionRecord: RUNNING when it starts, then exactly one terminal state.
    Skipped ticks are recorded too, so "why didn't the nightly job run?" has
    an answer.

Tags:
    coord-spine, scheduling, history, repository, monitoring

Doc-Types:
    api-reference, architecture-diagram


    History Lifecycle::

        guard acquires lock ──► save(RUNNING)
                                   │
                   ┌───────────────┼────────────────┐
                   ▼                                ▼
           mark_success(...)                 mark_failed(error)
           SUCCESS + duration_ms             FAILED + duration_ms
                   │                                │
                   └───────────► save(record) ◄─────┘

        guard loses lock race ──► SKIPPED ("Lock held by another instance")

    Terminal states (SUCCESS, FAILED, SKIPPED) are final.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from coordspine.core.errors import InvalidTransitionError
from coordspine.core.logging import get_logger
from coordspine.core.protocols import Connection
from coordspine.core.timestamps import from_iso8601, to_iso8601, utc_now

logger = get_logger(__name__)


class JobStatus(str, Enum):
    """Status of a guarded run."""

    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.RUNNING


@dataclass
class ExecutionRecord:
    """A single guarded run of a job."""

    job_name: str
    job_group: str = "default"
    status: JobStatus = JobStatus.RUNNING
    owner_id: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None
    duration_ms: int | None = None
    result_message: str | None = None
    error_message: str | None = None
    items_processed: int | None = None
    created_at: datetime = field(default_factory=utc_now)

    @classmethod
    def start(cls, job_name: str, job_group: str, owner_id: str) -> ExecutionRecord:
        return cls(job_name=job_name, job_group=job_group, owner_id=owner_id)

    @classmethod
    def skipped(cls, job_name: str, job_group: str, owner_id: str, reason: str) -> ExecutionRecord:
        now = utc_now()
        return cls(
            job_name=job_name,
            job_group=job_group,
            owner_id=owner_id,
            status=JobStatus.SKIPPED,
            started_at=now,
            finished_at=now,
            duration_ms=0,
            result_message=reason,
        )

    def _finish(self, target: JobStatus, now: datetime | None) -> None:
        if self.status.is_terminal:
            raise InvalidTransitionError(self.status.value, target.value, "ExecutionRecord")
        self.status = target
        self.finished_at = now or utc_now()
        self.duration_ms = max(0, int((self.finished_at - self.started_at).total_seconds() * 1000))

    def mark_success(
        self, message: str, items_processed: int | None = None, *, now: datetime | None = None
    ) -> None:
        """Complete the run successfully."""
        self._finish(JobStatus.SUCCESS, now)
        self.result_message = message
        self.items_processed = items_processed

    def mark_failed(self, error_message: str, *, now: datetime | None = None) -> None:
        """Complete the run with a failure."""
        self._finish(JobStatus.FAILED, now)
        self.error_message = error_message

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "job_name": self.job_name,
            "job_group": self.job_group,
            "status": self.status.value,
            "owner_id": self.owner_id,
            "started_at": to_iso8601(self.started_at),
            "finished_at": to_iso8601(self.finished_at),
            "duration_ms": self.duration_ms,
            "result_message": self.result_message,
            "error_message": self.error_message,
            "items_processed": self.items_processed,
        }


_COLUMNS = """
    id, job_name, job_group, status, owner_id, started_at, finished_at,
    duration_ms, result_message, error_message, items_processed, created_at
"""


class ExecutionHistoryRepository:
    """Persistence and queries for ExecutionRecord rows in ``core_job_history``.

    Example:
        >>> repo = ExecutionHistoryRepository(conn)
        >>> record = ExecutionRecord.start("nightly-cleanup", "maintenance", "worker-1")
        >>> repo.save(record)
        >>> repo.latest("nightly-cleanup").status
        <JobStatus.RUNNING: 'RUNNING'>
    """

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def save(self, record: ExecutionRecord) -> ExecutionRecord:
        """Insert or update a record (upsert on id)."""
        self._conn.execute(
            f"""
            INSERT INTO core_job_history ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                status = excluded.status,
                finished_at = excluded.finished_at,
                duration_ms = excluded.duration_ms,
                result_message = excluded.result_message,
                error_message = excluded.error_message,
                items_processed = excluded.items_processed
            """,
            (
                record.id,
                record.job_name,
                record.job_group,
                record.status.value,
                record.owner_id,
                to_iso8601(record.started_at),
                to_iso8601(record.finished_at),
                record.duration_ms,
                record.result_message,
                record.error_message,
                record.items_processed,
                to_iso8601(record.created_at),
            ),
        )
        self._conn.commit()
        return record

    def get(self, record_id: str) -> ExecutionRecord | None:
        row = self._conn.execute(
            f"SELECT {_COLUMNS} FROM core_job_history WHERE id = ?", (record_id,)
        ).fetchone()
        return self._row_to_record(row) if row else None

    def list_by_job(self, job_name: str, limit: int = 50, offset: int = 0) -> list[ExecutionRecord]:
        """Records for one job, newest first."""
        rows = self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM core_job_history
            WHERE job_name = ?
            ORDER BY started_at DESC LIMIT ? OFFSET ?
            """,
            (job_name, limit, offset),
        ).fetchall()
        return [self._row_to_record(r) for r in rows]

    def list_by_status(self, status: JobStatus, limit: int = 50, offset: int = 0) -> list[ExecutionRecord]:
        rows = self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM core_job_history
            WHERE status = ?
            ORDER BY started_at DESC LIMIT ? OFFSET ?
            """,
            (JobStatus(status).value, limit, offset),
        ).fetchall()
        return [self._row_to_record(r) for r in rows]

    def list_recent(self, hours: int = 24, *, now: datetime | None = None) -> list[ExecutionRecord]:
        """Records started within the last ``hours``, newest first."""
        since = (now or utc_now()) - timedelta(hours=hours)
        rows = self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM core_job_history
            WHERE started_at >= ?
            ORDER BY started_at DESC
            """,
            (to_iso8601(since),),
        ).fetchall()
        return [self._row_to_record(r) for r in rows]

    def latest(self, job_name: str, status: JobStatus | None = None) -> ExecutionRecord | None:
        """Most recent record for ``job_name``, optionally restricted to ``status``."""
        query = f"SELECT {_COLUMNS} FROM core_job_history WHERE job_name = ?"
        params: list[Any] = [job_name]
        if status is not None:
            query += " AND status = ?"
            params.append(JobStatus(status).value)
        query += " ORDER BY started_at DESC LIMIT 1"
        row = self._conn.execute(query, params).fetchone()
        return self._row_to_record(row) if row else None

    def count_running(self, job_name: str | None = None) -> int:
        query = "SELECT COUNT(*) FROM core_job_history WHERE status = ?"
        params: list[Any] = [JobStatus.RUNNING.value]
        if job_name is not None:
            query += " AND job_name = ?"
            params.append(job_name)
        return int(self._conn.execute(query, params).fetchone()[0])

    def count_since(self, status: JobStatus, since: datetime) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) FROM core_job_history WHERE status = ? AND started_at >= ?",
            (JobStatus(status).value, to_iso8601(since)),
        ).fetchone()
        return int(row[0])

    def stats(self, days: int = 7, *, now: datetime | None = None) -> dict[str, dict[str, int]]:
        """Counts by job and status over the last ``days``.

        Returns:
            ``{job_name: {status: count}}``
        """
        since = (now or utc_now()) - timedelta(days=days)
        rows = self._conn.execute(
            """
            SELECT job_name, status, COUNT(*) FROM core_job_history
            WHERE started_at >= ?
            GROUP BY job_name, status
            ORDER BY job_name
            """,
            (to_iso8601(since),),
        ).fetchall()
        result: dict[str, dict[str, int]] = {}
        for job_name, status, count in rows:
            result.setdefault(job_name, {})[status] = int(count)
        return result

    def average_duration_ms(self, job_name: str, days: int = 7, *, now: datetime | None = None) -> float | None:
        """Mean duration of SUCCESS runs, or None if there are none."""
        since = (now or utc_now()) - timedelta(days=days)
        row = self._conn.execute(
            """
            SELECT AVG(duration_ms) FROM core_job_history
            WHERE job_name = ? AND status = ? AND started_at >= ?
            """,
            (job_name, JobStatus.SUCCESS.value, to_iso8601(since)),
        ).fetchone()
        return float(row[0]) if row and row[0] is not None else None

    def cleanup(self, retention_days: int = 30, *, now: datetime | None = None) -> int:
        """Delete records older than ``retention_days``.

        Returns:
            Number of rows deleted
        """
        cutoff = (now or utc_now()) - timedelta(days=retention_days)
        cursor = self._conn.execute(
            "DELETE FROM core_job_history WHERE created_at < ?", (to_iso8601(cutoff),)
        )
        self._conn.commit()
        deleted = cursor.rowcount or 0
        logger.info("job_history_cleaned", deleted=deleted, retention_days=retention_days)
        return deleted

    def _row_to_record(self, row: tuple) -> ExecutionRecord:
        return ExecutionRecord(
            id=row[0],
            job_name=row[1],
            job_group=row[2],
            status=JobStatus(row[3]),
            owner_id=row[4],
            started_at=from_iso8601(row[5]),
            finished_at=from_iso8601(row[6]),
            duration_ms=row[7],
            result_message=row[8],
            error_message=row[9],
            items_processed=row[10],
            created_at=from_iso8601(row[11]),
        )


class SchedulerMonitor:
    """Answers "is it running?" and "is the fleet healthy?" for operators."""

    def __init__(self, history: ExecutionHistoryRepository, lock_manager: Any) -> None:
        self.history = history
        self.lock_manager = lock_manager

    def is_job_running(self, job_name: str, lock_key: str | None = None) -> bool:
        """True if a RUNNING record exists or the job's lock is live."""
        if self.history.count_running(job_name) > 0:
            return True
        return self.lock_manager.is_locked(lock_key or job_name)

    def health(self, *, now: datetime | None = None) -> dict[str, Any]:
        """Last-hour success/failure counts and overall status.

        DEGRADED when any run failed in the last hour.
        """
        since = (now or utc_now()) - timedelta(hours=1)
        success = self.history.count_since(JobStatus.SUCCESS, since)
        failed = self.history.count_since(JobStatus.FAILED, since)
        return {
            "status": "HEALTHY" if failed == 0 else "DEGRADED",
            "last_hour_success": success,
            "last_hour_failed": failed,
            "currently_running": self.history.count_running(),
            "instance_id": self.lock_manager.owner_id,
        }


__all__ = [
    "ExecutionHistoryRepository",
    "ExecutionRecord",
    "JobStatus",
    "SchedulerMonitor",
]
