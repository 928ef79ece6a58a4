"""Instance Ledger -- create, supersede, transition and delete curve instances.

Invariant: for one (definition, delivery_start) at most one instance is
``ACTIVE`` with an open ``freshness_end``. ``create_instance`` keeps it by
superseding inside the same transaction that inserts the replacement:

    ┌──────────────────────── transaction ─────────────────────────┐
    │ (a) SELECT current ACTIVE+open FOR UPDATE                     │
    │ (b) current → SUPERSEDED, freshness_end = now   (ACTIVE only) │
    │ (c) label = v<highest + 1> unless supplied; collision?        │
    │ (d) INSERT instance (freshness_start = now)                   │
    │ (e) INSERT data rows; open each group         (ACTIVE only)   │
    │ (f) INSERT lineage                                            │
    │ (g) INSERT version history (a) or latest → new                │
    └───────────────────────────────────────────────────────────────┘

Row locks cannot cover a row that does not exist yet, so two writers that
both find no current instance are stopped by the partial unique index
``uq_curve_instances_active_period``; the loser gets
``ActiveInstanceConflict``.

Tags:
    curve-spine, ledger, supersession, instances

Doc-Types:
    api-reference
"""

from __future__ import annotations

import datetime as _dt
from collections.abc import Mapping
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from curvespine.core.enums import ChangeType, InstanceStatus
from curvespine.core.errors import (
    ActiveInstanceConflict,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from curvespine.core.logging import LogContext, get_logger
from curvespine.core.orm.session import SessionFactory, transaction
from curvespine.core.orm.tables import DataRowTable, DefinitionTable, InstanceTable
from curvespine.core.timestamps import ensure_utc, utc_now
from curvespine.curves.freshness import close_instance_groups, open_instance_groups
from curvespine.curves.lineage import add_lineage_rows, defaults_as_inputs
from curvespine.curves.models import (
    DeletionReport,
    DeliveryPeriod,
    InstancePayload,
    InstanceView,
    coerce_input,
)
from curvespine.curves.ownership import cascade_delete
from curvespine.curves.versioning import (
    ensure_label_available,
    highest_version_label,
    next_version,
    record_history,
)

logger = get_logger(__name__)

S = InstanceStatus

# Allowed lifecycle moves; anything else is a ValidationError
TRANSITIONS: dict[InstanceStatus, frozenset[InstanceStatus]] = {
    S.DRAFT: frozenset({S.PENDING_APPROVAL, S.ACTIVE, S.FAILED}),
    S.PENDING_APPROVAL: frozenset({S.APPROVED, S.FAILED}),
    S.APPROVED: frozenset({S.ACTIVE, S.FAILED}),
    S.ACTIVE: frozenset({S.SUPERSEDED, S.EXPIRED, S.FAILED}),
    S.SUPERSEDED: frozenset(),
    S.EXPIRED: frozenset(),
    S.FAILED: frozenset(),
}

def lock_current_active(
    session: Session,
    definition_id: str,
    period_start: _dt.datetime,
    *,
    exclude_id: str | None = None,
) -> InstanceTable | None:
    stmt = select(InstanceTable).where(
        InstanceTable.definition_id == definition_id,
        InstanceTable.delivery_start == period_start,
        InstanceTable.status == S.ACTIVE.value,
        InstanceTable.freshness_end.is_(None),
    )
    if exclude_id is not None:
        stmt = stmt.where(InstanceTable.id != exclude_id)
    return session.scalars(stmt.with_for_update()).first()


def latest_for_period(
    session: Session,
    definition_id: str,
    period_start: _dt.datetime,
    *,
    exclude_id: str | None = None,
) -> InstanceTable | None:
    stmt = select(InstanceTable).where(
        InstanceTable.definition_id == definition_id,
        InstanceTable.delivery_start == period_start,
    )
    if exclude_id is not None:
        stmt = stmt.where(InstanceTable.id != exclude_id)
    return session.scalars(
        stmt.order_by(InstanceTable.created_at.desc(), InstanceTable.id.desc()).limit(1)
    ).first()


def supersede(session: Session, instance: InstanceTable, now: _dt.datetime) -> None:
    instance.status = S.SUPERSEDED.value
    instance.freshness_end = now
    session.flush()


def _flush_active(session: Session, definition_id: str, period_start: _dt.datetime) -> None:
    try:
        session.flush()
    except IntegrityError as e:
        raise ActiveInstanceConflict(
            "A concurrent writer created an instance for the same period",
            cause=e,
        ).with_context(definition_id=definition_id, period_start=period_start.isoformat()) from e


class InstanceLedger:
    """Instances of curve definitions and their lifecycle."""

    def __init__(self, factory: SessionFactory):
        self._factory = factory

    # -- create ---------------------------------------------------------

    def create_instance(
        self,
        definition_id: str,
        delivery_period: DeliveryPeriod,
        payload: InstancePayload | Mapping[str, Any],
        *,
        now: _dt.datetime | None = None,
    ) -> InstanceView:
        """Create an instance, superseding the current one when ACTIVE.

        Raises:
            ValidationError: inverted period or malformed payload
            NotFoundError: unknown definition
            LabelCollisionError: supplied or derived label already used
            ActiveInstanceConflict: lost a race with a concurrent writer
            TransientStoreError: store aborted the transaction
        """
        delivery_period.validate()
        payload = coerce_input(InstancePayload, payload, "payload")
        now = ensure_utc(now) or utc_now()
        actor = payload.created_by
        superseded_id: str | None = None

        with LogContext(actor=actor, operation="create_instance"):
            with transaction(self._factory) as session:
                if payload.idempotency_key:
                    existing = session.scalars(
                        select(InstanceTable).where(
                            InstanceTable.idempotency_key == payload.idempotency_key
                        )
                    ).first()
                    if existing is not None:
                        if existing.definition_id != definition_id:
                            raise ConflictError(
                                "Idempotency key already used for another definition"
                            ).with_context(definition_id=definition_id, instance_id=existing.id)
                        logger.info(
                            "instance.idempotent_replay",
                            instance_id=existing.id,
                            idempotency_key=payload.idempotency_key,
                        )
                        return InstanceView.from_row(existing)

                definition = session.get(DefinitionTable, definition_id, with_for_update=True)
                if definition is None:
                    raise NotFoundError("definition", definition_id)
                if not definition.is_active:
                    raise ValidationError(
                        "Definition is deactivated",
                        field="definition_id",
                        value=definition_id,
                    )

                is_active = payload.status is S.ACTIVE
                current = lock_current_active(session, definition_id, delivery_period.start)
                label = payload.version_label or next_version(
                    highest_version_label(session, definition_id, delivery_period.start)
                )
                ensure_label_available(session, definition_id, delivery_period.start, label)

                if is_active and current is not None:
                    supersede(session, current, now)
                    superseded_id = current.id

                instance = InstanceTable(
                    definition_id=definition_id,
                    version_label=label,
                    delivery_start=delivery_period.start,
                    delivery_end=delivery_period.end,
                    forecast_run_at=payload.forecast_run_at or now,
                    status=payload.status.value,
                    freshness_start=now,
                    freshness_end=None,
                    model_type=payload.model_type,
                    notes=payload.notes,
                    created_by=actor,
                    idempotency_key=payload.idempotency_key,
                )
                session.add(instance)
                _flush_active(session, definition_id, delivery_period.start)

                session.add_all(
                    DataRowTable(
                        instance_id=instance.id,
                        timestamp=point.timestamp,
                        value=point.value,
                        curve_type=point.curve_type,
                        commodity=point.commodity,
                        scenario=point.scenario,
                        units=point.units,
                    )
                    for point in payload.data
                )
                session.flush()
                groups = open_instance_groups(session, instance, now) if is_active else []

                inputs = list(payload.inputs)
                if payload.use_default_inputs:
                    inputs.extend(defaults_as_inputs(session, definition_id, now))
                add_lineage_rows(session, instance.id, inputs)

                # An ACTIVE insert follows the instance it replaced; a DRAFT follows
                # the current instance, else the newest one of the period.
                predecessor = current
                if predecessor is None and not is_active:
                    predecessor = latest_for_period(
                        session, definition_id, delivery_period.start, exclude_id=instance.id
                    )
                change_type = payload.change_type or (
                    ChangeType.INITIAL if predecessor is None else ChangeType.UPDATE
                )
                record_history(
                    session,
                    instance.id,
                    predecessor.id if predecessor is not None else None,
                    change_type,
                    payload.change_reason,
                    actor,
                )
                session.flush()
                view = InstanceView.from_row(instance)

            if superseded_id is not None:
                logger.info(
                    "instance.superseded",
                    instance_id=superseded_id,
                    replaced_by=view.id,
                    definition_id=definition_id,
                )
            logger.info(
                "instance.created",
                instance_id=view.id,
                definition_id=definition_id,
                version=view.version_label,
                status=view.status.value,
                rows=len(payload.data),
                groups=len(groups),
                inputs=len(inputs),
            )
        return view

    # -- lifecycle ------------------------------------------------------

    def transition_status(
        self,
        instance_id: str,
        status: InstanceStatus | str,
        actor: str | None = None,
        *,
        now: _dt.datetime | None = None,
    ) -> InstanceView:
        """Move an instance along :data:`TRANSITIONS`.

        Entering ACTIVE supersedes the period's current instance and reopens
        the instance's data groups at *now*. Leaving ACTIVE by hand (to
        SUPERSEDED, EXPIRED or FAILED) closes the instance window and its open
        data groups at *now*, since no successor takes them over.
        """
        target = InstanceStatus(status)
        now = ensure_utc(now) or utc_now()
        superseded_id: str | None = None

        with LogContext(actor=actor, operation="transition_status"):
            with transaction(self._factory) as session:
                instance = session.get(InstanceTable, instance_id, with_for_update=True)
                if instance is None:
                    raise NotFoundError("instance", instance_id)
                source = InstanceStatus(instance.status)
                if target not in TRANSITIONS[source]:
                    raise ValidationError(
                        f"Illegal status transition {source.value} -> {target.value}",
                        field="status",
                        value=target.value,
                        constraint=f"allowed from {source.value}: "
                        + ", ".join(sorted(s.value for s in TRANSITIONS[source])),
                    ).with_context(instance_id=instance_id)

                if target is S.ACTIVE:
                    current = lock_current_active(
                        session, instance.definition_id, instance.delivery_start,
                        exclude_id=instance.id,
                    )
                    if current is not None:
                        supersede(session, current, now)
                        superseded_id = current.id
                    instance.status = target.value
                    instance.freshness_start = now
                    instance.freshness_end = None
                    _flush_active(session, instance.definition_id, instance.delivery_start)
                    open_instance_groups(session, instance, now)
                else:
                    instance.status = target.value
                    if source is S.ACTIVE:
                        # nothing replaces it, so its data groups stop being current too
                        instance.freshness_end = now
                        close_instance_groups(session, instance.id, now)
                session.flush()
                view = InstanceView.from_row(instance)

            if superseded_id is not None:
                logger.info("instance.superseded", instance_id=superseded_id, replaced_by=instance_id)
            logger.info(
                "instance.status_changed",
                instance_id=instance_id,
                from_status=source.value,
                to_status=target.value,
            )
        return view

    def activate_instance(
        self, instance_id: str, actor: str | None = None, *, now: _dt.datetime | None = None
    ) -> InstanceView:
        """DRAFT/APPROVED -> ACTIVE, superseding the period's current instance."""
        return self.transition_status(instance_id, S.ACTIVE, actor, now=now)

    # -- delete ---------------------------------------------------------

    def delete_instance(self, instance_id: str, actor: str | None = None) -> DeletionReport:
        with LogContext(actor=actor, operation="delete_instance"):
            with transaction(self._factory) as session:
                if session.get(InstanceTable, instance_id, with_for_update=True) is None:
                    raise NotFoundError("instance", instance_id)
                counts = cascade_delete(session, InstanceTable, [instance_id])
            report = DeletionReport("instance", instance_id, counts)
            logger.info("instance.deleted", instance_id=instance_id, counts=counts)
        return report

    def delete_instance_by_label(
        self,
        definition_id: str,
        version_label: str,
        actor: str | None = None,
        *,
        period_start: _dt.datetime | None = None,
    ) -> DeletionReport:
        """Delete the instance carrying *version_label* under a definition.

        Labels are unique per delivery period; pass ``period_start`` when the
        label is used for more than one period.
        """
        with LogContext(actor=actor, operation="delete_instance"):
            with transaction(self._factory) as session:
                stmt = select(InstanceTable.id).where(
                    InstanceTable.definition_id == definition_id,
                    InstanceTable.version_label == version_label,
                )
                if period_start is not None:
                    stmt = stmt.where(InstanceTable.delivery_start == ensure_utc(period_start))
                ids = list(session.scalars(stmt))
                if not ids:
                    raise NotFoundError("instance", f"{definition_id}:{version_label}")
                if len(ids) > 1:
                    raise ValidationError(
                        f"Label {version_label} is used for {len(ids)} delivery periods",
                        field="period_start",
                        constraint="required when the label is ambiguous",
                    )
                counts = cascade_delete(session, InstanceTable, ids)
            report = DeletionReport("instance", ids[0], counts)
            logger.info(
                "instance.deleted",
                instance_id=ids[0],
                definition_id=definition_id,
                version=version_label,
                counts=counts,
            )
        return report

    # -- reads ----------------------------------------------------------

    def get_instance(self, instance_id: str) -> InstanceView:
        with self._factory() as session:
            row = session.get(InstanceTable, instance_id)
            if row is None:
                raise NotFoundError("instance", instance_id)
            return InstanceView.from_row(row)

    def list_instances(
        self, definition_id: str, status: InstanceStatus | str | None = None
    ) -> list[InstanceView]:
        stmt = select(InstanceTable).where(InstanceTable.definition_id == definition_id)
        if status is not None:
            stmt = stmt.where(InstanceTable.status == InstanceStatus(status).value)
        stmt = stmt.order_by(
            InstanceTable.delivery_start, InstanceTable.created_at, InstanceTable.id
        )
        with self._factory() as session:
            return [InstanceView.from_row(r) for r in session.scalars(stmt)]

    def get_active_instance(
        self, definition_id: str, period_start: _dt.datetime
    ) -> InstanceView | None:
        with self._factory() as session:
            row = session.scalars(
                select(InstanceTable).where(
                    InstanceTable.definition_id == definition_id,
                    InstanceTable.delivery_start == ensure_utc(period_start),
                    InstanceTable.status == S.ACTIVE.value,
                    InstanceTable.freshness_end.is_(None),
                )
            ).first()
            return InstanceView.from_row(row) if row is not None else None

    def latest_instance(self, definition_id: str) -> InstanceView | None:
        with self._factory() as session:
            row = session.scalars(
                select(InstanceTable)
                .where(InstanceTable.definition_id == definition_id)
                .order_by(InstanceTable.created_at.desc(), InstanceTable.id.desc())
                .limit(1)
            ).first()
            return InstanceView.from_row(row) if row is not None else None


__all__ = [
    "TRANSITIONS",
    "InstanceLedger",
    "lock_current_active",
    "latest_for_period",
    "supersede",
]
