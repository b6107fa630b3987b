"""
Root Typer application for the coord-spine CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from coordspine.core.logging import configure_logging
from coordspine.core.settings import get_settings

app = Typer(
    name="coord-spine",
    help="coord-spine: distributed locks, guarded jobs, retry queue and token rotation.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("coord-spine")
        except PackageNotFoundError:
            v = "0.1.0"
        typer.echo(f"coord-spine {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """coord-spine CLI: inspect job history, the retry queue and locks."""
    settings = get_settings()
    configure_logging(level=settings.log_level, json_format=settings.json_logs)


# ── Sub-command registration ─────────────────────────────────────────────

from coordspine.cli.dlq import app as dlq_app  # noqa: E402
from coordspine.cli.jobs import app as jobs_app  # noqa: E402
from coordspine.cli.locks import app as locks_app  # noqa: E402

app.add_typer(jobs_app, name="jobs", help="Execution history and scheduler health.")
app.add_typer(dlq_app, name="dlq", help="Retry queue monitoring.")
app.add_typer(locks_app, name="locks", help="Distributed lock inspection.")
