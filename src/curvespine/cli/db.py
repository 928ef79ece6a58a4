"""
CLI: ``curvespine db`` - database management commands.
"""

from __future__ import annotations

import typer

from curvespine.cli.utils import make_context, output_result

app = typer.Typer(no_args_is_help=True)


@app.command()
def init(
    database: str | None = typer.Option(None, "--database", "-d", help="Database URL"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview without changes"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Initialise database schema (create tables)."""
    from curvespine.ops.curves import initialize_database

    ctx = make_context(database, dry_run=dry_run)
    result = initialize_database(ctx)
    output_result(result, as_json=json_out, title="Database Init")


@app.command()
def tables(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show row counts for every curve table."""
    from curvespine.ops.curves import table_counts

    ctx = make_context(database)
    result = table_counts(ctx)
    output_result(result, as_json=json_out, title="Table Counts")
