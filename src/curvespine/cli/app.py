"""
Root Typer application for the curve-spine CLI.

Sub-command modules import the engine lazily inside each command so that
``curvespine --help`` stays fast.
"""

from __future__ import annotations

import sys

import typer
from typer import Typer

app = Typer(
    name="curvespine",
    help="curve-spine - versioning, freshness and scheduling for forecast curves.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from curvespine import __version__

        typer.echo(f"curvespine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """curvespine CLI - manage curve definitions, instances, merges and schedules."""
    from curvespine.core.logging import configure_logging
    from curvespine.core.settings import get_settings

    settings = get_settings()
    # Logs go to stderr so ``--json`` output stays parseable.
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_json,
        service=settings.service_name,
        stream=sys.stderr,
        cache_loggers=False,
    )


# ── Sub-command registration ─────────────────────────────────────────────

from curvespine.cli.db import app as db_app  # noqa: E402
from curvespine.cli.definitions import app as definitions_app  # noqa: E402
from curvespine.cli.health import app as health_app  # noqa: E402
from curvespine.cli.instances import app as instances_app  # noqa: E402
from curvespine.cli.merge import app as merge_app  # noqa: E402
from curvespine.cli.schedule import app as sched_app  # noqa: E402

app.add_typer(db_app, name="db", help="Database operations.")
app.add_typer(definitions_app, name="definitions", help="Curve definition management.")
app.add_typer(instances_app, name="instances", help="Curve instance management.")
app.add_typer(merge_app, name="merge", help="Merge duplicate definitions.")
app.add_typer(sched_app, name="schedule", help="Delivery schedules.")
app.add_typer(health_app, name="health", help="Curve health scores.")


if __name__ == "__main__":
    app()
