"""
CLI utility helpers: consoles and table output.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from pgspine.core.errors import ExporterError

console = Console()
err_console = Console(stderr=True)


# ── Output helpers ───────────────────────────────────────────────────────


def print_table(rows: Sequence[dict[str, Any]], *, title: str = "", as_json: bool = False) -> None:
    """Render a list of dicts as a Rich table, or JSON."""
    if as_json:
        console.print_json(json.dumps(list(rows), default=str))
        return
    if not rows:
        console.print("[dim]No items.[/dim]")
        return

    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for column in rows[0]:
        table.add_column(column, overflow="fold")
    for row in rows:
        table.add_row(*(_cell(value) for value in row.values()))
    console.print(table)


def fail(error: ExporterError) -> typer.Exit:
    """Print ``error`` and return the exit to raise."""
    err_console.print(f"[bold red]Error[/bold red] ({error.kind.value}): {error.message}")
    issues = getattr(error, "issues", None) or []
    for issue in issues:
        err_console.print(f"  [red]-[/red] {issue}")
    return typer.Exit(code=1)


def _cell(value: Any) -> str:
    if isinstance(value, bool):
        return "[green]yes[/green]" if value else "[dim]no[/dim]"
    return str(value)
