"""
CLI: ``coord-spine dlq`` - retry queue monitoring.
"""

from __future__ import annotations

import typer

from coordspine.cli.utils import get_connection, output
from coordspine.core.settings import get_settings
from coordspine.core.timestamps import utc_now
from coordspine.delivery.dlq import RetryEngine
from coordspine.delivery.repository import DeliveryRepository

app = typer.Typer(no_args_is_help=True)


def _engine(database: str | None) -> RetryEngine:
    settings = get_settings()
    return RetryEngine(
        DeliveryRepository(get_connection(database, settings)),
        {},
        max_retries=settings.dlq_max_retries,
        base_delay=settings.dlq_base_delay,
        backoff_factor=settings.dlq_backoff_factor,
    )


@app.command("stats")
def stats(
    hours: int = typer.Option(24, "--hours"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Counts by status for deliveries created in the window."""
    output(_engine(database).stats(hours), as_json=json_out, title=f"Retry Queue (last {hours}h)")


@app.command("failures")
def failures(
    hours: int = typer.Option(24, "--hours"),
    limit: int = typer.Option(100, "--limit", "-n"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List permanently failed deliveries."""
    output(_engine(database).recent_failures(hours, limit=limit), as_json=json_out, title="Failed Deliveries")


@app.command("due")
def due(
    limit: int = typer.Option(100, "--limit", "-n"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List deliveries the next sweep would retry."""
    output(_engine(database).repository.find_due(utc_now(), limit=limit), as_json=json_out, title="Due Deliveries")
