"""
CLI: ``curvespine health`` - composite health score for a definition.
"""

from __future__ import annotations

import datetime as _dt

import typer

from curvespine.cli.utils import make_context, output_result

app = typer.Typer(no_args_is_help=True)


@app.command()
def show(
    definition_id: str = typer.Argument(..., help="Definition ID"),
    quality: float | None = typer.Option(None, "--quality", "-q", help="Quality score 0..100"),
    at: _dt.datetime | None = typer.Option(None, "--at", help="Score as of this instant (UTC)"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Score freshness, schedule compliance and quality."""
    from curvespine.ops.curves import definition_health

    ctx = make_context(database)
    result = definition_health(ctx, definition_id, quality, at)
    output_result(result, as_json=json_out, title="Health")
