"""
CLI: ``curvespine definitions`` - canonical curve definitions.
"""

from __future__ import annotations

import typer

from curvespine.cli.utils import console, make_context, output_result

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_cmd(
    market: str | None = typer.Option(None, "--market", help="Filter by market"),
    location: str | None = typer.Option(None, "--location", help="Filter by location"),
    include_inactive: bool = typer.Option(False, "--all", help="Include deactivated definitions"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List curve definitions."""
    from curvespine.ops.curves import list_definitions

    ctx = make_context(database)
    result = list_definitions(ctx, market, location, include_inactive)
    output_result(result, as_json=json_out, title="Definitions")


@app.command()
def duplicates(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show groups of active definitions sharing one identity."""
    from curvespine.ops.curves import find_duplicates

    ctx = make_context(database)
    result = find_duplicates(ctx)
    if json_out or not result.success:
        output_result(result, as_json=json_out)
        return
    if not result.data:
        console.print("[green]No duplicate definitions.[/green]")
        return
    for group in result.data:
        canonical, *others = group
        console.print(
            f"[bold]{canonical.market}/{canonical.location}/{canonical.product}[/bold] "
            f"keep [cyan]{canonical.id}[/cyan], merge {', '.join(d.id for d in others)}"
        )


@app.command()
def deactivate(
    definition_id: str = typer.Argument(..., help="Definition ID"),
    actor: str | None = typer.Option(None, "--actor", help="Actor recorded in the audit log (required unless --dry-run)"),
    database: str | None = typer.Option(None, "--database", "-d"),
    dry_run: bool = typer.Option(False, "--dry-run"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Deactivate a definition (its instances stay readable)."""
    from curvespine.ops.curves import deactivate_definition

    ctx = make_context(database, dry_run=dry_run, actor=actor)
    result = deactivate_definition(ctx, definition_id)
    output_result(result, as_json=json_out, title="Definition")


@app.command()
def delete(
    definition_id: str = typer.Argument(..., help="Definition ID"),
    actor: str | None = typer.Option(None, "--actor", help="Actor recorded in the audit log (required unless --dry-run)"),
    database: str | None = typer.Option(None, "--database", "-d"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report what would be deleted"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Delete a definition and everything it owns."""
    from curvespine.ops.curves import delete_definition

    ctx = make_context(database, dry_run=dry_run, actor=actor)
    result = delete_definition(ctx, definition_id)
    output_result(result, as_json=json_out, title="Deleted")
