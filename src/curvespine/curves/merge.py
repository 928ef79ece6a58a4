"""Merge Coordinator -- fold a duplicate definition into its canonical twin.

One transaction, in this order::

    (a) temp == target?                      → ValidationError
    (b) lock both definitions + temp instances
    (c) rename temp labels already used by the target
        "<label>-<marker>-<n>", smallest free n >= 1
    (c') temp ACTIVE+open instance whose period has an ACTIVE+open target
         instance → SUPERSEDED; open temp groups also open on the target
         → closed at the merge instant
    (d) re-parent instances, schedules, default inputs
    (e) delete the temp definition

Any failure rolls everything back: the temp definition and its instances
are left exactly as they were. Unexpected state found on the way
(instances left behind, duplicate labels after re-parenting) is an
``IntegrityViolation``.

Label collisions are detected across the whole target definition, which
is stricter than the per-period unique constraint and so can never trip it.

Tags:
    curve-spine, merge, admin, transaction

Doc-Types:
    api-reference
"""

from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from curvespine.core.enums import InstanceStatus
from curvespine.core.errors import IntegrityViolation, NotFoundError, ValidationError
from curvespine.core.logging import LogContext, get_logger
from curvespine.core.orm.session import SessionFactory, transaction
from curvespine.core.orm.tables import (
    DataRowTable,
    DefaultInputTable,
    DefinitionTable,
    InstanceTable,
    ScheduleTable,
)
from curvespine.core.timestamps import ensure_utc, utc_now
from curvespine.curves.models import DefinitionView, MergePlan, MergeResult, PlannedRename
from curvespine.curves.ownership import cascade_delete

logger = get_logger(__name__)


@dataclass
class _Moved:
    instances: int
    schedules: int
    default_inputs: int


def plan_renames(
    temp_instances: list[InstanceTable],
    target_labels: set[str],
    marker: str,
) -> list[PlannedRename]:
    """Deterministic renames for temp labels that exist under the target."""
    taken = set(target_labels) | {i.version_label for i in temp_instances}
    renames = []
    for inst in temp_instances:
        if inst.version_label not in target_labels:
            continue
        n = 1
        while f"{inst.version_label}-{marker}-{n}" in taken:
            n += 1
        new_label = f"{inst.version_label}-{marker}-{n}"
        taken.add(new_label)
        renames.append(PlannedRename(inst.id, inst.version_label, new_label))
    return renames


def _temp_instances(session: Session, temp_id: str, *, lock: bool) -> list[InstanceTable]:
    stmt = (
        select(InstanceTable)
        .where(InstanceTable.definition_id == temp_id)
        .order_by(InstanceTable.created_at, InstanceTable.id)
    )
    if lock:
        stmt = stmt.with_for_update()
    return list(session.scalars(stmt))


def _target_labels(session: Session, target_id: str) -> set[str]:
    return set(
        session.scalars(
            select(InstanceTable.version_label).where(InstanceTable.definition_id == target_id)
        )
    )


def _target_open_periods(session: Session, target_id: str) -> set[_dt.datetime]:
    return set(
        session.scalars(
            select(InstanceTable.delivery_start).where(
                InstanceTable.definition_id == target_id,
                InstanceTable.status == InstanceStatus.ACTIVE.value,
                InstanceTable.freshness_end.is_(None),
            )
        )
    )


def _count(session: Session, table, definition_id: str) -> int:
    return session.scalar(
        select(func.count()).select_from(table).where(table.definition_id == definition_id)
    ) or 0


def _apply_renames(session: Session, renames: list[PlannedRename]) -> None:
    for rename in renames:
        session.execute(
            update(InstanceTable)
            .where(InstanceTable.id == rename.instance_id)
            .values(version_label=rename.new_label)
            .execution_options(synchronize_session=False)
        )
        logger.info(
            "merge.renamed",
            instance_id=rename.instance_id,
            old_label=rename.old_label,
            new_label=rename.new_label,
        )


def _supersede_shadowed(
    session: Session,
    temp_instances: list[InstanceTable],
    target_id: str,
    at: _dt.datetime,
) -> int:
    """Temp ACTIVE+open instances whose period the target already covers."""
    open_periods = _target_open_periods(session, target_id)
    superseded = 0
    for inst in temp_instances:
        if (
            inst.status == InstanceStatus.ACTIVE.value
            and inst.freshness_end is None
            and inst.delivery_start in open_periods
        ):
            inst.status = InstanceStatus.SUPERSEDED.value
            inst.freshness_end = at
            superseded += 1
    session.flush()
    return superseded


def _close_duplicate_groups(
    session: Session, temp_id: str, target_id: str, at: _dt.datetime
) -> int:
    """Close open temp groups that the target also has open; returns groups closed."""

    def open_groups(definition_id: str) -> set[tuple[str, str]]:
        rows = session.execute(
            select(DataRowTable.curve_type, DataRowTable.commodity)
            .join(InstanceTable, DataRowTable.instance_id == InstanceTable.id)
            .where(
                InstanceTable.definition_id == definition_id,
                DataRowTable.freshness_start.is_not(None),
                DataRowTable.freshness_end.is_(None),
            )
            .distinct()
        )
        return {(ct, com) for ct, com in rows}

    duplicated = open_groups(temp_id) & open_groups(target_id)
    temp_ids = select(InstanceTable.id).where(InstanceTable.definition_id == temp_id)
    for curve_type, commodity in sorted(duplicated):
        session.execute(
            update(DataRowTable)
            .where(
                DataRowTable.instance_id.in_(temp_ids),
                DataRowTable.curve_type == curve_type,
                DataRowTable.commodity == commodity,
                DataRowTable.freshness_start.is_not(None),
                DataRowTable.freshness_end.is_(None),
            )
            .values(freshness_end=at)
            .execution_options(synchronize_session=False)
        )
    return len(duplicated)


def _reparent_children(session: Session, temp_id: str, target_id: str) -> _Moved:
    moved = []
    for table in (InstanceTable, ScheduleTable, DefaultInputTable):
        res = session.execute(
            update(table)
            .where(table.definition_id == temp_id)
            .values(definition_id=target_id)
            .execution_options(synchronize_session=False)
        )
        moved.append(res.rowcount)
    return _Moved(*moved)


def _verify(session: Session, temp_id: str, target_id: str) -> None:
    for table in (InstanceTable, ScheduleTable, DefaultInputTable):
        left = _count(session, table, temp_id)
        if left:
            raise IntegrityViolation(
                f"{left} {table.__tablename__} rows still reference the temp definition"
            ).with_context(definition_id=temp_id, operation="merge")
    dupes = session.execute(
        select(InstanceTable.delivery_start, InstanceTable.version_label)
        .where(InstanceTable.definition_id == target_id)
        .group_by(InstanceTable.delivery_start, InstanceTable.version_label)
        .having(func.count() > 1)
    ).first()
    if dupes is not None:
        raise IntegrityViolation(
            f"Duplicate version label {dupes[1]} under target after merge"
        ).with_context(definition_id=target_id, operation="merge")


def _delete_temp(session: Session, temp_id: str) -> None:
    counts = cascade_delete(session, DefinitionTable, [temp_id])
    if counts.get(DefinitionTable.__tablename__) != 1:
        raise IntegrityViolation("Temp definition was not deleted").with_context(
            definition_id=temp_id, operation="merge"
        )


class MergeCoordinator:
    """Merges duplicate definitions."""

    def __init__(self, factory: SessionFactory, rename_marker: str | None = None):
        self._factory = factory
        if rename_marker is None:
            from curvespine.core.settings import get_settings

            rename_marker = get_settings().merge_rename_marker
        self._marker = rename_marker

    def preview(self, temp_id: str, target_id: str | None = None) -> MergePlan:
        """Detection only: planned renames, counts and candidate targets."""
        if target_id is not None and temp_id == target_id:
            raise ValidationError("Cannot merge a definition into itself", field="target_id", value=target_id)
        with self._factory() as session:
            temp = session.get(DefinitionTable, temp_id)
            if temp is None:
                raise NotFoundError("definition", temp_id)
            instances = _temp_instances(session, temp_id, lock=False)
            renames: list[PlannedRename] = []
            supersessions: tuple[str, ...] = ()
            if target_id is not None:
                if session.get(DefinitionTable, target_id) is None:
                    raise NotFoundError("definition", target_id)
                renames = plan_renames(instances, _target_labels(session, target_id), self._marker)
                open_periods = _target_open_periods(session, target_id)
                supersessions = tuple(
                    i.id
                    for i in instances
                    if i.status == InstanceStatus.ACTIVE.value
                    and i.freshness_end is None
                    and i.delivery_start in open_periods
                )
            candidates = session.scalars(
                select(DefinitionTable)
                .where(
                    DefinitionTable.market == temp.market,
                    DefinitionTable.location == temp.location,
                    DefinitionTable.id != temp_id,
                    DefinitionTable.is_active.is_(True),
                )
                .order_by(DefinitionTable.created_at, DefinitionTable.id)
            )
            return MergePlan(
                temp_id=temp_id,
                target_id=target_id,
                renames=tuple(renames),
                instance_count=len(instances),
                schedule_count=_count(session, ScheduleTable, temp_id),
                default_input_count=_count(session, DefaultInputTable, temp_id),
                supersessions=supersessions,
                potential_targets=tuple(DefinitionView.from_row(r) for r in candidates),
            )

    def merge(
        self,
        temp_id: str,
        target_id: str,
        actor: str | None = None,
        *,
        now: _dt.datetime | None = None,
    ) -> MergeResult:
        if temp_id == target_id:
            raise ValidationError("Cannot merge a definition into itself", field="target_id", value=target_id)
        now = ensure_utc(now) or utc_now()

        with LogContext(actor=actor, operation="merge"):
            logger.info("merge.started", temp_id=temp_id, target_id=target_id)
            with transaction(self._factory) as session:
                temp = session.get(DefinitionTable, temp_id, with_for_update=True)
                if temp is None:
                    raise NotFoundError("definition", temp_id)
                if session.get(DefinitionTable, target_id, with_for_update=True) is None:
                    raise NotFoundError("definition", target_id)

                instances = _temp_instances(session, temp_id, lock=True)
                renames = plan_renames(instances, _target_labels(session, target_id), self._marker)
                _apply_renames(session, renames)

                superseded = _supersede_shadowed(session, instances, target_id, now)
                groups_closed = _close_duplicate_groups(session, temp_id, target_id, now)

                moved = _reparent_children(session, temp_id, target_id)
                if moved.instances != len(instances):
                    raise IntegrityViolation(
                        f"Locked {len(instances)} instances but moved {moved.instances}"
                    ).with_context(definition_id=temp_id, operation="merge")
                _verify(session, temp_id, target_id)
                session.expunge(temp)
                _delete_temp(session, temp_id)

            result = MergeResult(
                temp_id=temp_id,
                target_id=target_id,
                renamed=len(renames),
                instances_moved=moved.instances,
                schedules_moved=moved.schedules,
                default_inputs_moved=moved.default_inputs,
                superseded=superseded,
                groups_closed=groups_closed,
                renames=tuple(renames),
            )
            logger.info(
                "merge.completed",
                temp_id=temp_id,
                target_id=target_id,
                renamed=result.renamed,
                instances_moved=result.instances_moved,
                schedules_moved=result.schedules_moved,
                default_inputs_moved=result.default_inputs_moved,
                superseded=superseded,
            )
        return result


__all__ = ["MergeCoordinator", "plan_renames"]
