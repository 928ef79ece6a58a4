"""Schedule Engine -- cadence to next-due, overdue flags and display status.

The engine half of this module is pure: every function takes the schedule,
the last delivered instance and ``now`` explicitly, so it can be called from
any number of readers without touching the store.

Cadence steps (calendar arithmetic via ``dateutil.relativedelta``; month
steps clamp the day to the end of the month)::

    HOURLY     +1 hour          MONTHLY    +1 month   (day_of_month anchor)
    DAILY      +1 day           QUARTERLY  +3 months  (day_of_month anchor)
    WEEKLY     +7 days          ANNUALLY   +1 year    (day_of_month anchor)
               (day_of_week anchor)
    ON_DEMAND  no due date once something was delivered

Without a prior delivery the first due date is ``valid_from +
lead_time_days``. A schedule is overdue once ``now`` passes ``next_due +
lead_time_days``.

:class:`ScheduleRegistry` is the store-backed half: schedule CRUD, run
history and the status board.

Tags:
    curve-spine, scheduling, cadence, overdue

Doc-Types:
    api-reference
"""

from __future__ import annotations

import datetime as _dt
from collections import Counter
from collections.abc import Iterable, Mapping
from typing import Any

from dateutil.relativedelta import relativedelta
from sqlalchemy import select

from curvespine.core.enums import Frequency, InstanceStatus, RunStatus, ScheduleStatus
from curvespine.core.errors import NotFoundError, ValidationError
from curvespine.core.logging import LogContext, get_logger
from curvespine.core.orm.session import SessionFactory, transaction
from curvespine.core.orm.tables import (
    DefinitionTable,
    InstanceTable,
    ScheduleRunTable,
    ScheduleTable,
)
from curvespine.core.timestamps import ensure_utc, utc_now
from curvespine.curves.models import (
    DeletionReport,
    LastInstance,
    ScheduleInput,
    ScheduleRunView,
    ScheduleSpec,
    ScheduleState,
    ScheduleView,
    coerce_input,
)
from curvespine.curves.ownership import cascade_delete

logger = get_logger(__name__)

F = Frequency

STEPS: dict[Frequency, relativedelta] = {
    F.HOURLY: relativedelta(hours=1),
    F.DAILY: relativedelta(days=1),
    F.WEEKLY: relativedelta(weeks=1),
    F.MONTHLY: relativedelta(months=1),
    F.QUARTERLY: relativedelta(months=3),
    F.ANNUALLY: relativedelta(years=1),
}

_MONTH_ANCHORED = frozenset({F.MONTHLY, F.QUARTERLY, F.ANNUALLY})

# Last instance status -> display status
STATUS_TABLE: dict[InstanceStatus | None, ScheduleStatus] = {
    None: ScheduleStatus.PENDING,
    InstanceStatus.DRAFT: ScheduleStatus.IN_PROGRESS,
    InstanceStatus.PENDING_APPROVAL: ScheduleStatus.SCHEDULED,
    InstanceStatus.APPROVED: ScheduleStatus.SCHEDULED,
    InstanceStatus.ACTIVE: ScheduleStatus.COMPLETED,
    InstanceStatus.SUPERSEDED: ScheduleStatus.SUPERSEDED,
    InstanceStatus.EXPIRED: ScheduleStatus.SUPERSEDED,
    InstanceStatus.FAILED: ScheduleStatus.FAILED,
}

# (display status, overdue) -> listing priority; lower sorts first
PRIORITY_TABLE: dict[tuple[ScheduleStatus, bool], int] = {
    (ScheduleStatus.SCHEDULED, True): 1,
    (ScheduleStatus.SCHEDULED, False): 2,
    (ScheduleStatus.IN_PROGRESS, True): 3,
    (ScheduleStatus.IN_PROGRESS, False): 3,
}
DEFAULT_PRIORITY = 4


# ---------------------------------------------------------------------------
# Pure engine
# ---------------------------------------------------------------------------


def _anchor(schedule: ScheduleSpec, due: _dt.datetime) -> _dt.datetime:
    if schedule.frequency is F.WEEKLY and schedule.day_of_week is not None:
        return due + _dt.timedelta(days=(schedule.day_of_week - due.weekday()) % 7)
    if schedule.frequency in _MONTH_ANCHORED and schedule.day_of_month is not None:
        anchored = due + relativedelta(day=schedule.day_of_month)
        if anchored < due:
            anchored = due + relativedelta(months=1, day=schedule.day_of_month)
        return anchored
    return due


def compute_next_due(
    schedule: ScheduleSpec, last_instance: LastInstance | None
) -> _dt.datetime | None:
    """Expected timestamp of the next delivery."""
    if last_instance is None:
        return ensure_utc(schedule.valid_from) + _dt.timedelta(days=schedule.lead_time_days)
    if schedule.frequency is F.ON_DEMAND:
        return None
    due = ensure_utc(last_instance.delivered_at) + STEPS[schedule.frequency]
    return _anchor(schedule, due)


def is_overdue(
    schedule: ScheduleSpec,
    last_instance: LastInstance | None,
    now: _dt.datetime,
) -> bool:
    if schedule.frequency is F.ON_DEMAND:
        return False
    due = compute_next_due(schedule, last_instance)
    if due is None:
        return False
    return ensure_utc(now) > due + _dt.timedelta(days=schedule.lead_time_days)


def classify_status(last_status: InstanceStatus | str | None, overdue: bool) -> ScheduleState:
    key = InstanceStatus(last_status) if last_status is not None else None
    status = STATUS_TABLE[key]
    return ScheduleState(
        status=status,
        is_overdue=overdue,
        priority=PRIORITY_TABLE.get((status, overdue), DEFAULT_PRIORITY),
    )


def evaluate(
    schedule: ScheduleSpec,
    last_instance: LastInstance | None,
    now: _dt.datetime,
) -> ScheduleView:
    """Next due, overdue flag and display status of one schedule."""
    overdue = is_overdue(schedule, last_instance, now)
    state = classify_status(last_instance.status if last_instance else None, overdue)
    return ScheduleView(
        schedule_id=schedule.id,
        definition_id=schedule.definition_id,
        frequency=schedule.frequency,
        importance=schedule.importance,
        responsible_team=schedule.responsible_team,
        next_due=compute_next_due(schedule, last_instance),
        is_overdue=state.is_overdue,
        status=state.status,
        priority=state.priority,
        last_instance_id=last_instance.instance_id if last_instance else None,
        last_version_label=last_instance.version_label if last_instance else None,
    )


_FAR_FUTURE = _dt.datetime.max.replace(tzinfo=_dt.UTC)


def sort_key(view: ScheduleView) -> tuple[int, int, _dt.datetime]:
    """Priority, then importance (high first), then earliest due date."""
    return (view.priority, -view.importance, view.next_due or _FAR_FUTURE)


def summarize(views: Iterable[ScheduleView]) -> dict[str, int]:
    views = list(views)
    by_status = Counter(v.status.value for v in views)
    summary = {"total": len(views), "overdue": sum(1 for v in views if v.is_overdue)}
    for status in ScheduleStatus:
        summary[status.value.lower()] = by_status.get(status.value, 0)
    return summary


def in_force(schedule: ScheduleSpec, now: _dt.datetime) -> bool:
    if not schedule.is_active:
        return False
    if schedule.valid_until is not None and ensure_utc(now) >= schedule.valid_until:
        return False
    return True


# ---------------------------------------------------------------------------
# Store-backed registry
# ---------------------------------------------------------------------------


def _run_status_for(expected_at: _dt.datetime, actual_at: _dt.datetime | None) -> RunStatus:
    if actual_at is None:
        return RunStatus.PENDING
    return RunStatus.ON_TIME if actual_at <= expected_at else RunStatus.LATE


def last_instance_of(session: Any, definition_id: str) -> LastInstance | None:
    row = session.scalars(
        select(InstanceTable)
        .where(InstanceTable.definition_id == definition_id)
        .order_by(InstanceTable.created_at.desc(), InstanceTable.id.desc())
        .limit(1)
    ).first()
    if row is None:
        return None
    return LastInstance(
        status=InstanceStatus(row.status),
        delivered_at=row.created_at,
        instance_id=row.id,
        version_label=row.version_label,
    )


class ScheduleRegistry:
    """Schedules, their run history and the status board."""

    def __init__(self, factory: SessionFactory):
        self._factory = factory

    def create_schedule(
        self, definition_id: str, fields: ScheduleInput | Mapping[str, Any], actor: str | None = None
    ) -> ScheduleSpec:
        data = coerce_input(ScheduleInput, fields, "schedule")
        with transaction(self._factory) as session:
            if session.get(DefinitionTable, definition_id) is None:
                raise NotFoundError("definition", definition_id)
            row = ScheduleTable(definition_id=definition_id, **_columns(data))
            session.add(row)
            session.flush()
            spec = ScheduleSpec.from_row(row)
        logger.info(
            "schedule.created",
            schedule_id=spec.id,
            definition_id=definition_id,
            frequency=spec.frequency.value,
            actor=actor,
        )
        return spec

    def update_schedule(
        self, schedule_id: str, changes: Mapping[str, Any], actor: str | None = None
    ) -> ScheduleSpec:
        unknown = set(changes) - set(ScheduleInput.model_fields)
        if unknown:
            raise ValidationError(
                f"Unknown schedule fields: {', '.join(sorted(unknown))}",
                field="changes",
                value=sorted(unknown),
            )
        with transaction(self._factory) as session:
            row = session.get(ScheduleTable, schedule_id, with_for_update=True)
            if row is None:
                raise NotFoundError("schedule", schedule_id)
            merged = {name: getattr(row, name) for name in ScheduleInput.model_fields}
            merged.update(changes)
            data = coerce_input(ScheduleInput, merged, "schedule")
            for name, value in _columns(data).items():
                setattr(row, name, value)
            session.flush()
            spec = ScheduleSpec.from_row(row)
        logger.info("schedule.updated", schedule_id=schedule_id, fields=sorted(changes), actor=actor)
        return spec

    def delete_schedule(self, schedule_id: str, actor: str | None = None) -> DeletionReport:
        with LogContext(actor=actor, operation="delete_schedule"):
            with transaction(self._factory) as session:
                if session.get(ScheduleTable, schedule_id) is None:
                    raise NotFoundError("schedule", schedule_id)
                counts = cascade_delete(session, ScheduleTable, [schedule_id])
            logger.info("schedule.deleted", schedule_id=schedule_id, counts=counts)
        return DeletionReport("schedule", schedule_id, counts)

    def get_schedule(self, schedule_id: str) -> ScheduleSpec:
        with self._factory() as session:
            row = session.get(ScheduleTable, schedule_id)
            if row is None:
                raise NotFoundError("schedule", schedule_id)
            return ScheduleSpec.from_row(row)

    def list_schedules(
        self, definition_id: str | None = None, active_only: bool = False
    ) -> list[ScheduleSpec]:
        stmt = select(ScheduleTable)
        if definition_id is not None:
            stmt = stmt.where(ScheduleTable.definition_id == definition_id)
        if active_only:
            stmt = stmt.where(ScheduleTable.is_active.is_(True))
        stmt = stmt.order_by(ScheduleTable.created_at, ScheduleTable.id)
        with self._factory() as session:
            return [ScheduleSpec.from_row(r) for r in session.scalars(stmt)]

    # -- runs -----------------------------------------------------------

    def record_run(
        self,
        schedule_id: str,
        expected_at: _dt.datetime,
        actual_at: _dt.datetime | None = None,
        instance_id: str | None = None,
    ) -> ScheduleRunView:
        expected_at = ensure_utc(expected_at)
        actual_at = ensure_utc(actual_at)
        with transaction(self._factory) as session:
            if session.get(ScheduleTable, schedule_id) is None:
                raise NotFoundError("schedule", schedule_id)
            row = ScheduleRunTable(
                schedule_id=schedule_id,
                expected_at=expected_at,
                actual_at=actual_at,
                status=_run_status_for(expected_at, actual_at).value,
                instance_id=instance_id,
            )
            session.add(row)
            session.flush()
            view = ScheduleRunView.from_row(row)
        logger.info("schedule.run_recorded", schedule_id=schedule_id, run_id=view.id, status=view.status)
        return view

    def complete_run(
        self, run_id: str, actual_at: _dt.datetime, instance_id: str | None = None
    ) -> ScheduleRunView:
        """PENDING/MISSED -> ON_TIME or LATE."""
        actual_at = ensure_utc(actual_at)
        with transaction(self._factory) as session:
            row = session.get(ScheduleRunTable, run_id, with_for_update=True)
            if row is None:
                raise NotFoundError("schedule run", run_id)
            if row.status not in (RunStatus.PENDING.value, RunStatus.MISSED.value):
                raise ValidationError(
                    f"Run already completed ({row.status})",
                    field="status",
                    value=row.status,
                )
            row.actual_at = actual_at
            row.status = _run_status_for(row.expected_at, actual_at).value
            if instance_id is not None:
                row.instance_id = instance_id
            session.flush()
            view = ScheduleRunView.from_row(row)
        logger.info("schedule.run_completed", run_id=run_id, status=view.status)
        return view

    def mark_missed(self, run_id: str) -> ScheduleRunView:
        with transaction(self._factory) as session:
            row = session.get(ScheduleRunTable, run_id, with_for_update=True)
            if row is None:
                raise NotFoundError("schedule run", run_id)
            if row.status != RunStatus.PENDING.value:
                raise ValidationError(
                    f"Only pending runs can be missed (status {row.status})",
                    field="status",
                    value=row.status,
                )
            row.status = RunStatus.MISSED.value
            session.flush()
            view = ScheduleRunView.from_row(row)
        logger.warning("schedule.run_missed", run_id=run_id, schedule_id=view.schedule_id)
        return view

    def list_runs(self, schedule_id: str, limit: int | None = None) -> list[ScheduleRunView]:
        """Most recent expected delivery first."""
        stmt = (
            select(ScheduleRunTable)
            .where(ScheduleRunTable.schedule_id == schedule_id)
            .order_by(ScheduleRunTable.expected_at.desc(), ScheduleRunTable.id.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._factory() as session:
            return [ScheduleRunView.from_row(r) for r in session.scalars(stmt)]

    # -- board ----------------------------------------------------------

    def status_board(self, now: _dt.datetime | None = None) -> list[ScheduleView]:
        """Evaluate every schedule in force against its definition's latest instance."""
        now = ensure_utc(now) or utc_now()
        views = []
        with self._factory() as session:
            rows = session.scalars(
                select(ScheduleTable).where(ScheduleTable.is_active.is_(True))
            ).all()
            for row in rows:
                spec = ScheduleSpec.from_row(row)
                if not in_force(spec, now):
                    continue
                views.append(evaluate(spec, last_instance_of(session, row.definition_id), now))
        return sorted(views, key=sort_key)


def _columns(data: ScheduleInput) -> dict[str, Any]:
    values = data.model_dump()
    values["frequency"] = data.frequency.value
    return values


__all__ = [
    "STEPS",
    "STATUS_TABLE",
    "PRIORITY_TABLE",
    "compute_next_due",
    "is_overdue",
    "classify_status",
    "evaluate",
    "sort_key",
    "summarize",
    "in_force",
    "last_instance_of",
    "ScheduleRegistry",
]
