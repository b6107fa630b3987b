"""
Durable tables for the execution history log and the retry queue.

Lock and token state live in the coordination store; everything that must
outlive a TTL (run history, failed deliveries kept for audit) lives in these
two SQL tables.

Tables:
    - **core_job_history:** One row per guarded run (RUNNING → SUCCESS | FAILED, or SKIPPED)
    - **core_retryable_deliveries:** Failed notification sends awaiting retry

Examples:
    >>> import sqlite3
    >>> conn = sqlite3.connect(":memory:")
    >>> create_tables(conn)
    >>> CORE_TABLES["job_history"]
    'core_job_history'

Timestamps are stored as ISO-8601 UTC strings so lexical order is
chronological order.
"""

from __future__ import annotations

from coordspine.core.protocols import Connection

CORE_TABLES = {
    "job_history": "core_job_history",
    "retryable_deliveries": "core_retryable_deliveries",
}


CORE_DDL = {
    # =========================================================================
    # CORE_JOB_HISTORY: Execution record per guarded run
    # =========================================================================
    "job_history": """
        CREATE TABLE IF NOT EXISTS core_job_history (
            id TEXT PRIMARY KEY,
            job_name TEXT NOT NULL,
            job_group TEXT,
            status TEXT NOT NULL,               -- RUNNING, SUCCESS, FAILED, SKIPPED
            owner_id TEXT,
            started_at TEXT NOT NULL,
            finished_at TEXT,
            duration_ms INTEGER,
            result_message TEXT,
            error_message TEXT,
            items_processed INTEGER,
            created_at TEXT NOT NULL
        )
    """,
    "job_history_idx_name": """
        CREATE INDEX IF NOT EXISTS idx_core_job_history_name
        ON core_job_history(job_name)
    """,
    "job_history_idx_status": """
        CREATE INDEX IF NOT EXISTS idx_core_job_history_status
        ON core_job_history(status)
    """,
    "job_history_idx_started_at": """
        CREATE INDEX IF NOT EXISTS idx_core_job_history_started_at
        ON core_job_history(started_at)
    """,
    # =========================================================================
    # CORE_RETRYABLE_DELIVERIES: Dead-letter queue for notification sends
    # =========================================================================
    "retryable_deliveries": """
        CREATE TABLE IF NOT EXISTS core_retryable_deliveries (
            id TEXT PRIMARY KEY,
            channel_type TEXT NOT NULL,         -- EMAIL, SMS, PUSH
            recipient_ref TEXT,
            recipient_address TEXT NOT NULL,
            payload TEXT NOT NULL,
            last_error TEXT,
            retry_count INTEGER NOT NULL DEFAULT 0,
            max_retries INTEGER NOT NULL DEFAULT 3,
            next_retry_at TEXT,
            status TEXT NOT NULL,               -- PENDING, RETRYING, FAILED, SUCCEEDED
            created_at TEXT NOT NULL,
            last_retry_at TEXT,
            succeeded_at TEXT
        )
    """,
    "retryable_deliveries_idx_due": """
        CREATE INDEX IF NOT EXISTS idx_core_retryable_deliveries_due
        ON core_retryable_deliveries(status, next_retry_at)
    """,
    "retryable_deliveries_idx_created": """
        CREATE INDEX IF NOT EXISTS idx_core_retryable_deliveries_created
        ON core_retryable_deliveries(created_at)
    """,
}


def create_tables(conn: Connection) -> None:
    """Create all tables and indexes. Safe to call repeatedly."""
    for _name, ddl in CORE_DDL.items():
        conn.execute(ddl)
    conn.commit()


__all__ = ["CORE_DDL", "CORE_TABLES", "create_tables"]
