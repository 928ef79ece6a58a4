"""
CLI: ``curvespine schedule`` - delivery schedule status board.
"""

from __future__ import annotations

import datetime as _dt

import typer

from curvespine.cli.utils import console, make_context, output_result

app = typer.Typer(no_args_is_help=True)


@app.command()
def board(
    at: _dt.datetime | None = typer.Option(None, "--at", help="Evaluate as of this instant (UTC)"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show every schedule in force, most urgent first."""
    from curvespine.ops.curves import schedule_board
    from curvespine.ops.result import OperationResult

    ctx = make_context(database)
    result = schedule_board(ctx, at)
    if json_out or not result.success:
        output_result(result, as_json=json_out)
        return
    output_result(OperationResult.ok(result.data["schedules"]), title="Schedule Board")
    summary = result.data["summary"]
    console.print(
        f"\n[bold]{summary['total']}[/bold] schedules, "
        f"[red]{summary['overdue']}[/red] overdue"
    )
