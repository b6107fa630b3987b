"""
Canonical protocol definitions for coord-spine's durable record stores.

The execution history and the retry queue persist through a minimal
synchronous DB-API shape so the same repositories run on ``sqlite3`` in tests
and on a PostgreSQL adapter in production.

Tags:
    protocol, connection, database, coord-spine
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Cursor(Protocol):
    """Result cursor returned by :meth:`Connection.execute`."""

    rowcount: int

    def fetchone(self) -> Any:
        ...

    def fetchall(self) -> list[Any]:
        ...


@runtime_checkable
class Connection(Protocol):
    """Minimal SYNCHRONOUS connection interface (``sqlite3.Connection`` satisfies it).

    Statements use ``?`` placeholders.
    """

    def execute(self, sql: str, params: tuple | list = ()) -> Cursor:
        """Execute a single statement and return its cursor."""
        ...

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...


__all__ = ["Connection", "Cursor"]
