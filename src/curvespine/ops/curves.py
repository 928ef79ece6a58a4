"""
Curve operations.

Thin, transport-agnostic wrappers around the engine for administrative
callers. Each function takes an :class:`OperationContext` and returns an
:class:`OperationResult`; engine errors become failed results instead of
exceptions. Transient store failures are retried before giving up.
"""

from __future__ import annotations

import datetime as _dt
from collections.abc import Callable
from typing import Any

from sqlalchemy import func, inspect, select

from curvespine.core.enums import InstanceStatus
from curvespine.core.errors import CurveSpineError, NotFoundError, ValidationError
from curvespine.core.logging import LogContext, get_logger
from curvespine.core.orm import CurveBase, create_all
from curvespine.core.orm.tables import DefinitionTable, InstanceTable
from curvespine.core.retry import retry_transient
from curvespine.curves.health import HealthScorer
from curvespine.curves.identity import IdentityStore
from curvespine.curves.ledger import InstanceLedger
from curvespine.curves.lineage import LineageRecorder
from curvespine.curves.merge import MergeCoordinator
from curvespine.curves.models import (
    DefinitionView,
    DeletionReport,
    HealthScore,
    HistoryEntry,
    InstanceView,
    LineageView,
    MergePlan,
    MergeResult,
)
from curvespine.curves.ownership import cascade_delete
from curvespine.curves.schedule import ScheduleRegistry, summarize
from curvespine.curves.versioning import VersionChain
from curvespine.ops.context import OperationContext
from curvespine.ops.result import OperationResult, start_timer

logger = get_logger(__name__)


def _run(ctx: OperationContext, name: str, fn: Callable[[], Any]) -> OperationResult[Any]:
    timer = start_timer()
    with LogContext(actor=ctx.user, request_id=ctx.request_id, caller=ctx.caller):
        try:
            data = retry_transient(fn)
        except CurveSpineError as exc:
            logger.warning("op_failed", operation=name, **exc.to_dict())
            return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
        except Exception as exc:
            logger.exception("op_failed", operation=name, error=str(exc))
            return OperationResult.fail(
                "INTERNAL", f"{name} failed: {exc}", elapsed_ms=timer.elapsed_ms
            )
    return OperationResult.ok(
        data,
        elapsed_ms=timer.elapsed_ms,
        metadata={"dry_run": True} if ctx.dry_run else None,
    )


def _audited(ctx: OperationContext, fn: Callable[[str], Any]) -> Callable[[], Any]:
    """Wrap a mutating call that must name its actor for the audit log."""

    def op() -> Any:
        if not ctx.user or not ctx.user.strip():
            raise ValidationError(
                "An actor is required for this operation",
                field="actor",
                constraint="non-empty unless dry_run",
            )
        return fn(ctx.user)

    return op


def _preview_delete(ctx: OperationContext, table: Any, entity: str, entity_id: str) -> DeletionReport:
    """Run the cascade and roll it back to report what would be deleted."""
    with ctx.factory() as session:
        if session.get(table, entity_id) is None:
            raise NotFoundError(entity, entity_id)
        counts = cascade_delete(session, table, [entity_id])
        session.rollback()
    return DeletionReport(entity, entity_id, counts)


# ------------------------------------------------------------------ #
# Database
# ------------------------------------------------------------------ #


def initialize_database(ctx: OperationContext) -> OperationResult[list[str]]:
    """Create every missing table; returns the tables that exist afterwards."""

    def op() -> list[str]:
        engine = ctx.factory.kw["bind"]
        if not ctx.dry_run:
            create_all(engine)
        existing = set(inspect(engine).get_table_names())
        return [t for t in CurveBase.metadata.tables if t in existing or ctx.dry_run]

    return _run(ctx, "initialize_database", op)


def table_counts(ctx: OperationContext) -> OperationResult[dict[str, int]]:
    """Row count per curve table."""

    def op() -> dict[str, int]:
        with ctx.factory() as session:
            return {
                name: session.scalar(select(func.count()).select_from(table)) or 0
                for name, table in CurveBase.metadata.tables.items()
            }

    return _run(ctx, "table_counts", op)


# ------------------------------------------------------------------ #
# Definitions
# ------------------------------------------------------------------ #


def list_definitions(
    ctx: OperationContext,
    market: str | None = None,
    location: str | None = None,
    include_inactive: bool = False,
) -> OperationResult[list[DefinitionView]]:
    store = IdentityStore(ctx.factory)
    return _run(ctx, "list_definitions", lambda: store.list_definitions(market, location, include_inactive))


def find_duplicates(ctx: OperationContext) -> OperationResult[list[list[DefinitionView]]]:
    return _run(ctx, "find_duplicates", IdentityStore(ctx.factory).find_duplicates)


def deactivate_definition(ctx: OperationContext, definition_id: str) -> OperationResult[DefinitionView]:
    store = IdentityStore(ctx.factory)
    if ctx.dry_run:
        return _run(ctx, "deactivate_definition", lambda: store.get_definition(definition_id))
    return _run(
        ctx, "deactivate_definition", _audited(ctx, lambda actor: store.deactivate_definition(definition_id, actor))
    )


def delete_definition(ctx: OperationContext, definition_id: str) -> OperationResult[DeletionReport]:
    if ctx.dry_run:
        return _run(
            ctx, "delete_definition",
            lambda: _preview_delete(ctx, DefinitionTable, "definition", definition_id),
        )
    store = IdentityStore(ctx.factory)
    return _run(
        ctx, "delete_definition", _audited(ctx, lambda actor: store.delete_definition(definition_id, actor))
    )


# ------------------------------------------------------------------ #
# Instances
# ------------------------------------------------------------------ #


def list_instances(
    ctx: OperationContext, definition_id: str, status: str | None = None
) -> OperationResult[list[InstanceView]]:
    ledger = InstanceLedger(ctx.factory)

    def op() -> list[InstanceView]:
        IdentityStore(ctx.factory).get_definition(definition_id)
        try:
            wanted = InstanceStatus(status) if status else None
        except ValueError as e:
            raise ValidationError(f"Unknown instance status: {status}", field="status", value=status) from e
        return ledger.list_instances(definition_id, wanted)

    return _run(ctx, "list_instances", op)


def instance_history(ctx: OperationContext, instance_id: str) -> OperationResult[list[HistoryEntry]]:
    return _run(ctx, "instance_history", lambda: VersionChain(ctx.factory).get_chain(instance_id))


def instance_lineage(ctx: OperationContext, instance_id: str) -> OperationResult[list[LineageView]]:
    def op() -> list[LineageView]:
        InstanceLedger(ctx.factory).get_instance(instance_id)
        return LineageRecorder(ctx.factory).get_lineage(instance_id)

    return _run(ctx, "instance_lineage", op)


def delete_instance(ctx: OperationContext, instance_id: str) -> OperationResult[DeletionReport]:
    if ctx.dry_run:
        return _run(
            ctx, "delete_instance",
            lambda: _preview_delete(ctx, InstanceTable, "instance", instance_id),
        )
    ledger = InstanceLedger(ctx.factory)
    return _run(ctx, "delete_instance", _audited(ctx, lambda actor: ledger.delete_instance(instance_id, actor)))


# ------------------------------------------------------------------ #
# Merge
# ------------------------------------------------------------------ #


def preview_merge(
    ctx: OperationContext, temp_id: str, target_id: str | None = None
) -> OperationResult[MergePlan]:
    coordinator = MergeCoordinator(ctx.factory)
    return _run(ctx, "preview_merge", lambda: coordinator.preview(temp_id, target_id))


def merge_definitions(
    ctx: OperationContext, temp_id: str, target_id: str
) -> OperationResult[MergeResult | MergePlan]:
    coordinator = MergeCoordinator(ctx.factory)
    if ctx.dry_run:
        return _run(ctx, "merge_definitions", lambda: coordinator.preview(temp_id, target_id))
    return _run(
        ctx, "merge_definitions", _audited(ctx, lambda actor: coordinator.merge(temp_id, target_id, actor))
    )


# ------------------------------------------------------------------ #
# Schedules & health
# ------------------------------------------------------------------ #


def schedule_board(
    ctx: OperationContext, now: _dt.datetime | None = None
) -> OperationResult[dict[str, Any]]:
    registry = ScheduleRegistry(ctx.factory)

    def op() -> dict[str, Any]:
        views = registry.status_board(now)
        return {"schedules": views, "summary": summarize(views)}

    return _run(ctx, "schedule_board", op)


def definition_health(
    ctx: OperationContext,
    definition_id: str,
    quality: float | None = None,
    now: _dt.datetime | None = None,
) -> OperationResult[HealthScore]:
    scorer = HealthScorer(ctx.factory)
    return _run(ctx, "definition_health", lambda: scorer.for_definition(definition_id, now, quality))


__all__ = [
    "initialize_database",
    "table_counts",
    "list_definitions",
    "find_duplicates",
    "deactivate_definition",
    "delete_definition",
    "list_instances",
    "instance_history",
    "instance_lineage",
    "delete_instance",
    "preview_merge",
    "merge_definitions",
    "schedule_board",
    "definition_health",
]
