"""
Protocol definitions shared across relay-core.

The job queue and the advisory lock table are written with plain
parametrised SQL against this minimal DB-API shape, so the default
``sqlite3.Connection`` works directly and any other driver only needs a
thin adapter.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Connection(Protocol):
    """Minimal synchronous connection interface.

    ``sqlite3.Connection`` satisfies it natively; ``execute`` must return a
    cursor exposing ``fetchone()``, ``fetchall()`` and ``rowcount``.
    """

    def execute(self, sql: str, params: Any = ()) -> Any:
        """Execute SQL statement with optional parameters."""
        ...

    def commit(self) -> None:
        """Commit the current transaction."""
        ...

    def rollback(self) -> None:
        """Roll back the current transaction."""
        ...


__all__ = ["Connection"]
