"""
CLI: ``curvespine merge`` - fold a duplicate definition into its canonical twin.
"""

from __future__ import annotations

import typer

from curvespine.cli.utils import make_context, output_result

app = typer.Typer(no_args_is_help=True)


@app.command()
def preview(
    temp_id: str = typer.Argument(..., help="Definition to merge away"),
    target_id: str | None = typer.Argument(None, help="Definition to merge into"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show planned renames, moved rows and candidate targets."""
    from curvespine.ops.curves import preview_merge

    ctx = make_context(database)
    result = preview_merge(ctx, temp_id, target_id)
    output_result(result, as_json=json_out, title="Merge Preview")


@app.command()
def run(
    temp_id: str = typer.Argument(..., help="Definition to merge away"),
    target_id: str = typer.Argument(..., help="Definition to merge into"),
    actor: str | None = typer.Option(None, "--actor", help="Actor recorded in the audit log (required unless --dry-run)"),
    database: str | None = typer.Option(None, "--database", "-d"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview without changes"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Merge TEMP_ID into TARGET_ID in one transaction."""
    from curvespine.ops.curves import merge_definitions

    if not (yes or dry_run or json_out):
        typer.confirm(f"Merge {temp_id} into {target_id}?", abort=True)

    ctx = make_context(database, dry_run=dry_run, actor=actor)
    result = merge_definitions(ctx, temp_id, target_id)
    output_result(result, as_json=json_out, title="Merge")
