"""
CLI: ``coord-spine jobs`` - execution history and scheduler health.
"""

from __future__ import annotations

import typer

from coordspine.cli.utils import console, get_connection, get_store, output
from coordspine.core.settings import get_settings
from coordspine.scheduling.history import ExecutionHistoryRepository, JobStatus, SchedulerMonitor
from coordspine.scheduling.lock_manager import DistributedLockManager

app = typer.Typer(no_args_is_help=True)


def _monitor(database: str | None) -> SchedulerMonitor:
    settings = get_settings()
    history = ExecutionHistoryRepository(get_connection(database, settings))
    return SchedulerMonitor(history, DistributedLockManager(get_store(settings), settings.instance_id))


@app.command("history")
def history(
    job_name: str | None = typer.Argument(None, help="Job name (omit for all recent runs)"),
    status: JobStatus | None = typer.Option(None, "--status", "-s", case_sensitive=False),
    hours: int = typer.Option(24, "--hours", help="Look-back window when no job is given"),
    limit: int = typer.Option(50, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List execution records."""
    repo = ExecutionHistoryRepository(get_connection(database))
    if job_name:
        records = repo.list_by_job(job_name, limit=limit, offset=offset)
        if status is not None:
            records = [r for r in records if r.status is status]
    elif status is not None:
        records = repo.list_by_status(status, limit=limit, offset=offset)
    else:
        records = repo.list_recent(hours)[offset : offset + limit]
    output(records, as_json=json_out, title="Job History")


@app.command("health")
def health(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show last-hour success/failure counts and overall status."""
    report = _monitor(database).health()
    output(report, as_json=json_out, title="Scheduler Health")
    if not json_out and report["status"] != "HEALTHY":
        console.print("[yellow]At least one job failed in the last hour.[/yellow]")


@app.command("status")
def status(
    job_name: str = typer.Argument(..., help="Job name"),
    lock_key: str | None = typer.Option(None, "--lock-key", help="Lock key if it differs from the job name"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show whether a job is running and its latest record."""
    monitor = _monitor(database)
    latest = monitor.history.latest(job_name)
    data = {
        "job_name": job_name,
        "running": monitor.is_job_running(job_name, lock_key),
        "latest_status": latest.status.value if latest else None,
        "latest_started_at": latest.started_at.isoformat() if latest else None,
        "average_duration_ms": monitor.history.average_duration_ms(job_name),
    }
    output(data, as_json=json_out, title=f"Job {job_name}")


@app.command("stats")
def stats(
    days: int = typer.Option(7, "--days"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Counts by job and status."""
    repo = ExecutionHistoryRepository(get_connection(database))
    data = repo.stats(days)
    if json_out:
        output(data, as_json=True)
        return
    rows = [{"job_name": name, **{s.value: counts.get(s.value, 0) for s in JobStatus}} for name, counts in data.items()]
    output(rows, title=f"Job Stats (last {days} days)")


@app.command("cleanup")
def cleanup(
    retention_days: int | None = typer.Option(None, "--retention-days", help="Defaults to COORD_HISTORY_RETENTION_DAYS"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Delete execution records older than the retention window."""
    settings = get_settings()
    days = retention_days or settings.history_retention_days
    deleted = ExecutionHistoryRepository(get_connection(database, settings)).cleanup(days)
    output({"deleted": deleted, "retention_days": days}, as_json=json_out, title="Cleanup")
