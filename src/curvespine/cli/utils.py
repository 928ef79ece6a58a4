"""
Shared CLI plumbing: building an operation context and rendering results.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from curvespine.core.orm import create_curve_engine, curve_session_factory
from curvespine.core.settings import get_settings
from curvespine.ops.context import OperationContext
from curvespine.ops.result import OperationResult

console = Console()
err_console = Console(stderr=True)


def make_context(database: str | None = None, *, dry_run: bool = False, actor: str | None = None) -> OperationContext:
    """Context bound to *database*, or ``CURVESPINE_DATABASE_URL`` when omitted."""
    settings = get_settings()
    engine = create_curve_engine(database or settings.database_url, echo=settings.echo_sql)
    return OperationContext(factory=curve_session_factory(engine), caller="cli", user=actor, dry_run=dry_run)


def _plain(obj: Any) -> Any:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if isinstance(obj, dict):
        return {key: _plain(value) for key, value in obj.items()}
    return obj


def _fmt(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, dict | list):
        return json.dumps(value, default=str)
    return str(value)


def _render_rows(rows: Iterable[Any], title: str) -> None:
    records = [_plain(row) for row in rows]
    if not records:
        console.print("[dim]No items.[/dim]")
        return
    if not isinstance(records[0], dict):
        for record in records:
            console.print(_fmt(record))
        return
    table = Table(title=title or None, pad_edge=False)
    for column in records[0]:
        table.add_column(column, overflow="fold")
    for record in records:
        table.add_row(*(_fmt(record.get(column)) for column in records[0]))
    console.print(table)


def _render_mapping(data: dict[str, Any], title: str) -> None:
    if title:
        console.print(f"[bold]{title}[/bold]")
    width = max((len(key) for key in data), default=0)
    for key, value in data.items():
        console.print(f"  [cyan]{key.ljust(width)}[/cyan]  {_fmt(value)}")


def output_result(result: OperationResult, *, as_json: bool = False, title: str = "") -> None:
    """Print *result*; a failed result exits with status 1.

    With ``as_json`` the whole envelope goes to stdout, so ``--json`` output
    can be piped to ``jq``.
    """
    if not result.success:
        code, message = (result.error.code, result.error.message) if result.error else ("ERROR", "unknown error")
        err_console.print(f"[bold red]Error[/bold red] ({code}): {message}")
        raise typer.Exit(code=1)

    if as_json:
        console.print_json(json.dumps(result.to_dict(), default=str))
        return
    if result.metadata.get("dry_run"):
        console.print("[yellow]Dry run: nothing was changed.[/yellow]")

    data = _plain(result.data)
    if isinstance(data, list | tuple):
        _render_rows(data, title)
    elif isinstance(data, dict):
        _render_mapping(data, title)
    else:
        console.print(_fmt(data))
