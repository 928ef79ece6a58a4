"""
CLI: ``curvespine instances`` - versioned curve instances.
"""

from __future__ import annotations

import typer

from curvespine.cli.utils import make_context, output_result

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_cmd(
    definition_id: str = typer.Argument(..., help="Definition ID"),
    status: str | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List the instances of a definition by delivery period."""
    from curvespine.ops.curves import list_instances

    ctx = make_context(database)
    result = list_instances(ctx, definition_id, status.upper() if status else None)
    output_result(result, as_json=json_out, title="Instances")


@app.command()
def history(
    instance_id: str = typer.Argument(..., help="Instance ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the version chain that led to an instance."""
    from curvespine.ops.curves import instance_history

    ctx = make_context(database)
    result = instance_history(ctx, instance_id)
    output_result(result, as_json=json_out, title="Version Chain")


@app.command()
def lineage(
    instance_id: str = typer.Argument(..., help="Instance ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the inputs an instance was built from."""
    from curvespine.ops.curves import instance_lineage

    ctx = make_context(database)
    result = instance_lineage(ctx, instance_id)
    output_result(result, as_json=json_out, title="Lineage")


@app.command()
def delete(
    instance_id: str = typer.Argument(..., help="Instance ID"),
    actor: str | None = typer.Option(None, "--actor", help="Actor recorded in the audit log (required unless --dry-run)"),
    database: str | None = typer.Option(None, "--database", "-d"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report what would be deleted"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Delete an instance with its data, lineage and history."""
    from curvespine.ops.curves import delete_instance

    ctx = make_context(database, dry_run=dry_run, actor=actor)
    result = delete_instance(ctx, instance_id)
    output_result(result, as_json=json_out, title="Deleted")
