"""Tests for the coord-spine CLI (jobs, dlq, locks)."""

from __future__ import annotations

import json
import sqlite3
from datetime import timedelta

import pytest
from typer.testing import CliRunner

from coordspine.cli.app import app
from coordspine.core.schema import create_tables
from coordspine.core.timestamps import utc_now
from coordspine.delivery.models import ChannelType, DeliveryStatus, RetryableDelivery
from coordspine.delivery.repository import DeliveryRepository
from coordspine.scheduling.history import ExecutionHistoryRepository, ExecutionRecord


runner = CliRunner()


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = tmp_path / "coord.db"
    monkeypatch.setenv("COORD_DATABASE_PATH", str(path))
    monkeypatch.setenv("COORD_LOG_LEVEL", "ERROR")
    monkeypatch.setenv("COORD_INSTANCE_ID", "cli-instance")
    return path


@pytest.fixture
def seeded(db_path):
    conn = sqlite3.connect(db_path)
    create_tables(conn)
    history = ExecutionHistoryRepository(conn)

    ok = ExecutionRecord.start("nightly-cleanup", "maintenance", "instance-a")
    ok.mark_success("Processed 3 items", 3)
    history.save(ok)
    failed = ExecutionRecord.start("process-dlq", "notification", "instance-b")
    failed.mark_failed("smtp down")
    history.save(failed)

    deliveries = DeliveryRepository(conn)
    now = utc_now()
    deliveries.save(
        RetryableDelivery(
            channel_type=ChannelType.SMS,
            recipient_address="+15550100",
            payload="code",
            status=DeliveryStatus.FAILED,
            retry_count=3,
            next_retry_at=now - timedelta(minutes=1),
        )
    )
    deliveries.save(
        RetryableDelivery(
            channel_type=ChannelType.EMAIL,
            recipient_address="a@example.com",
            payload="hi",
            next_retry_at=now - timedelta(minutes=1),
        )
    )
    conn.close()
    return db_path


def _json(result):
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


class TestRoot:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "coord-spine" in result.output

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert "jobs" in result.output


class TestJobsCommands:
    def test_history_json(self, seeded):
        records = _json(runner.invoke(app, ["jobs", "history", "--json"]))
        assert {r["job_name"] for r in records} == {"nightly-cleanup", "process-dlq"}

    def test_history_for_job(self, seeded):
        records = _json(runner.invoke(app, ["jobs", "history", "nightly-cleanup", "--json"]))
        assert len(records) == 1
        assert records[0]["status"] == "SUCCESS"
        assert records[0]["items_processed"] == 3

    def test_history_by_status(self, seeded):
        records = _json(runner.invoke(app, ["jobs", "history", "--status", "FAILED", "--json"]))
        assert [r["job_name"] for r in records] == ["process-dlq"]

    def test_history_table(self, seeded):
        result = runner.invoke(app, ["jobs", "history"])
        assert result.exit_code == 0
        assert "Job History" in result.stdout

    def test_health(self, seeded):
        report = _json(runner.invoke(app, ["jobs", "health", "--json"]))
        assert report["status"] == "DEGRADED"
        assert report["last_hour_success"] == 1
        assert report["last_hour_failed"] == 1
        assert report["instance_id"] == "cli-instance"

    def test_status(self, seeded):
        data = _json(runner.invoke(app, ["jobs", "status", "nightly-cleanup", "--json"]))
        assert data["running"] is False
        assert data["latest_status"] == "SUCCESS"

    def test_stats(self, seeded):
        data = _json(runner.invoke(app, ["jobs", "stats", "--json"]))
        assert data == {"nightly-cleanup": {"SUCCESS": 1}, "process-dlq": {"FAILED": 1}}

    def test_cleanup(self, seeded):
        data = _json(runner.invoke(app, ["jobs", "cleanup", "--retention-days", "1", "--json"]))
        assert data == {"deleted": 0, "retention_days": 1}

    def test_empty_database(self, db_path):
        result = runner.invoke(app, ["jobs", "history"])
        assert result.exit_code == 0
        assert "No items" in result.stdout


class TestDlqCommands:
    def test_stats(self, seeded):
        data = _json(runner.invoke(app, ["dlq", "stats", "--json"]))
        assert data["failed"] == 1
        assert data["pending"] == 1
        assert data["total"] == 2

    def test_failures(self, seeded):
        data = _json(runner.invoke(app, ["dlq", "failures", "--json"]))
        assert [d["channel_type"] for d in data] == ["SMS"]

    def test_due(self, seeded):
        data = _json(runner.invoke(app, ["dlq", "due", "--json"]))
        assert [d["recipient_address"] for d in data] == ["a@example.com"]


class TestLocksCommands:
    def test_status_unlocked(self, db_path):
        data = _json(runner.invoke(app, ["locks", "status", "nightly-cleanup", "process-dlq", "--json"]))
        assert [row["lock_key"] for row in data] == ["nightly-cleanup", "process-dlq"]
        assert all(row["locked"] is False for row in data)
