"""
CLI: ``coord-spine locks`` - inspect distributed locks.
"""

from __future__ import annotations

import typer

from coordspine.cli.utils import fail, get_store, output
from coordspine.core.errors import StoreUnavailable
from coordspine.core.settings import get_settings
from coordspine.scheduling.lock_manager import DistributedLockManager

app = typer.Typer(no_args_is_help=True)


@app.command("status")
def status(
    lock_keys: list[str] = typer.Argument(..., help="One or more lock keys"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show holder and remaining TTL for each lock."""
    settings = get_settings()
    manager = DistributedLockManager(get_store(settings), settings.instance_id)
    rows = []
    try:
        for key in lock_keys:
            rows.append(
                {
                    "lock_key": key,
                    "locked": manager.is_locked(key),
                    "holder": manager.get_lock_holder(key),
                    "ttl_seconds": manager.lock_ttl(key),
                }
            )
    except StoreUnavailable as e:
        fail(e)
    output(rows, as_json=json_out, title="Locks")
