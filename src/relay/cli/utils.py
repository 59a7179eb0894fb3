"""
CLI utility helpers — container construction and output formatting.
"""

from __future__ import annotations

import importlib
import json
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from relay.container import RelayContainer
from relay.core.settings import RelaySettings, get_settings

console = Console()
err_console = Console(stderr=True)


def load_repository(target: str) -> Any:
    """Import ``module:attribute``; call it if it is a factory."""
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise typer.BadParameter(f"Expected 'module:attribute', got {target!r}")
    obj = getattr(importlib.import_module(module_name), attr)
    if isinstance(obj, type) or not hasattr(obj, "get"):
        return obj()
    return obj


def make_container(database: str | None = None, repository: str | None = None) -> RelayContainer:
    """Build a container from the environment, optionally overriding the database."""
    settings: RelaySettings = get_settings()
    if database:
        settings = settings.model_copy(update={"database_path": database})
    repo = load_repository(repository) if repository else None
    return RelayContainer(settings, repository=repo)


def output_json(data: Any) -> None:
    console.print_json(json.dumps(data, default=str))


def output_table(rows: list[dict[str, Any]], *, title: str, columns: list[str] | None = None) -> None:
    """Render a list of dicts as a rich table."""
    if not rows:
        console.print(f"[dim]{title}: no entries[/dim]")
        return
    columns = columns or list(rows[0])
    table = Table(title=title, show_lines=False)
    for col in columns:
        table.add_column(col.replace("_", " ").title())
    for row in rows:
        table.add_row(*["" if row.get(c) is None else str(row.get(c)) for c in columns])
    console.print(table)
