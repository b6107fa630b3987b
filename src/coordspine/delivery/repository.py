"""Retry queue persistence - ``core_retryable_deliveries``.

::

    DeliveryRepository(conn)
      ├── .save(delivery)                ─ insert or update by id
      ├── .get(delivery_id)
      ├── .find_due(now, limit)          ─ eligible for the next sweep
      ├── .count_by_status(since)        ─ monitoring
      └── .list_failed_since(since)      ─ permanently failed, newest first

Rows are never deleted automatically; FAILED rows stay for audit.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from coordspine.core.protocols import Connection
from coordspine.core.timestamps import from_iso8601, to_iso8601
from coordspine.delivery.models import ChannelType, DeliveryStatus, RetryableDelivery

_COLUMNS = """
    id, channel_type, recipient_ref, recipient_address, payload, last_error,
    retry_count, max_retries, next_retry_at, status, created_at,
    last_retry_at, succeeded_at
"""


class DeliveryRepository:
    """DB-API repository for :class:`RetryableDelivery` rows."""

    def __init__(self, conn: Connection) -> None:
        """Initialize with a database connection.

        Args:
            conn: Database connection (sqlite3.Connection or compatible)
        """
        self._conn = conn

    def save(self, delivery: RetryableDelivery) -> RetryableDelivery:
        """Insert or update a delivery."""
        self._conn.execute(
            f"""
            INSERT INTO core_retryable_deliveries ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                last_error = excluded.last_error,
                retry_count = excluded.retry_count,
                max_retries = excluded.max_retries,
                next_retry_at = excluded.next_retry_at,
                status = excluded.status,
                last_retry_at = excluded.last_retry_at,
                succeeded_at = excluded.succeeded_at
            """,
            (
                delivery.id,
                delivery.channel_type.value,
                delivery.recipient_ref,
                delivery.recipient_address,
                delivery.payload,
                delivery.last_error,
                delivery.retry_count,
                delivery.max_retries,
                to_iso8601(delivery.next_retry_at),
                delivery.status.value,
                to_iso8601(delivery.created_at),
                to_iso8601(delivery.last_retry_at),
                to_iso8601(delivery.succeeded_at),
            ),
        )
        self._conn.commit()
        return delivery

    def get(self, delivery_id: str) -> RetryableDelivery | None:
        """Get a delivery by ID, or None if not found."""
        row = self._conn.execute(
            f"SELECT {_COLUMNS} FROM core_retryable_deliveries WHERE id = ?",
            (delivery_id,),
        ).fetchone()
        return self._row_to_delivery(row) if row else None

    def find_due(self, now: datetime, limit: int = 500) -> list[RetryableDelivery]:
        """Deliveries eligible for retry at ``now``, oldest due first.

        Eligible: status PENDING or RETRYING, retries left, and
        ``next_retry_at <= now``.
        """
        rows = self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM core_retryable_deliveries
            WHERE status IN (?, ?)
              AND retry_count < max_retries
              AND next_retry_at <= ?
            ORDER BY next_retry_at ASC
            LIMIT ?
            """,
            (
                DeliveryStatus.PENDING.value,
                DeliveryStatus.RETRYING.value,
                to_iso8601(now),
                limit,
            ),
        ).fetchall()
        return [self._row_to_delivery(r) for r in rows]

    def count_by_status(self, since: datetime) -> dict[DeliveryStatus, int]:
        """Counts by status for deliveries created at or after ``since``."""
        rows = self._conn.execute(
            """
            SELECT status, COUNT(*) FROM core_retryable_deliveries
            WHERE created_at >= ?
            GROUP BY status
            """,
            (to_iso8601(since),),
        ).fetchall()
        counts = {status: 0 for status in DeliveryStatus}
        for status, count in rows:
            counts[DeliveryStatus(status)] = int(count)
        return counts

    def list_failed_since(self, since: datetime, limit: int = 100) -> list[RetryableDelivery]:
        """Permanently failed deliveries created at or after ``since``."""
        rows = self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM core_retryable_deliveries
            WHERE status = ? AND created_at >= ?
            ORDER BY created_at DESC
            LIMIT ?
            """,
            (DeliveryStatus.FAILED.value, to_iso8601(since), limit),
        ).fetchall()
        return [self._row_to_delivery(r) for r in rows]

    def _row_to_delivery(self, row: tuple[Any, ...]) -> RetryableDelivery:
        return RetryableDelivery(
            id=row[0],
            channel_type=ChannelType(row[1]),
            recipient_ref=row[2],
            recipient_address=row[3],
            payload=row[4],
            last_error=row[5],
            retry_count=row[6],
            max_retries=row[7],
            next_retry_at=from_iso8601(row[8]),
            status=DeliveryStatus(row[9]),
            created_at=from_iso8601(row[10]),
            last_retry_at=from_iso8601(row[11]),
            succeeded_at=from_iso8601(row[12]),
        )


__all__ = ["DeliveryRepository"]
