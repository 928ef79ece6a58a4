"""Freshness Tracker -- validity windows per (curve_type, commodity) group.

Rows of one instance sharing ``(curve_type, commodity)`` form a group with
its own ``[freshness_start, freshness_end)`` window. Opening a group is a
two-step "close old, open new": every open row of that group under the same
definition is closed at exactly the new start, then this instance's rows
get the new window. A row is *open* once it has a start and no end.

Group windows are authoritative. The instance-level window on
``curve_instances`` is a convenience the ledger keeps in step.

Architecture::

    set_group_freshness(instance, ct, commodity, start, end)
        │
        ├── close_open_group(definition, ct, commodity, at=start)
        │       UPDATE curve_data SET freshness_end = :start
        │       WHERE instance in definition AND group AND open
        │
        └── open_group(instance, ct, commodity, start, end)
                UPDATE curve_data SET freshness_start, freshness_end

Tags:
    curve-spine, freshness, supersession, windows

Doc-Types:
    api-reference
"""

from __future__ import annotations

import datetime as _dt
from collections import defaultdict
from typing import Any

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from curvespine.core.errors import NotFoundError, ValidationError
from curvespine.core.logging import get_logger
from curvespine.core.orm.session import SessionFactory, transaction
from curvespine.core.orm.tables import DataRowTable, DefinitionTable, InstanceTable
from curvespine.core.timestamps import ensure_utc, utc_now
from curvespine.curves.models import FreshCount, FreshGroup

logger = get_logger(__name__)


def _is_open():
    return and_(DataRowTable.freshness_start.is_not(None), DataRowTable.freshness_end.is_(None))


def _is_current(now: _dt.datetime):
    return and_(
        DataRowTable.freshness_start.is_not(None),
        or_(DataRowTable.freshness_end.is_(None), DataRowTable.freshness_end > now),
    )


# ---------------------------------------------------------------------------
# Session-level steps (composed by the ledger and the merge coordinator)
# ---------------------------------------------------------------------------


def _ensure_closes_after_start(
    session: Session, end: _dt.datetime, *criteria: Any, group: str, strict: bool = False
) -> None:
    latest = ensure_utc(
        session.scalar(select(func.max(DataRowTable.freshness_start)).where(*criteria))
    )
    if latest is None or latest < end or (latest == end and not strict):
        return
    raise ValidationError(
        f"Group {group} has an open window starting {latest.isoformat()}",
        field="end" if strict else "start",
        value=end,
        constraint="after the open window's freshness_start",
    )


def close_open_group(
    session: Session,
    definition_id: str,
    curve_type: str,
    commodity: str,
    at: _dt.datetime,
    *,
    exclude_instance_id: str | None = None,
) -> int:
    """Close every open row of the group across the definition's instances.

    Raises ``ValidationError`` when an open row started after *at*; closing
    it there would leave an inverted window.
    """
    instance_ids = select(InstanceTable.id).where(InstanceTable.definition_id == definition_id)
    criteria = [
        DataRowTable.instance_id.in_(instance_ids),
        DataRowTable.curve_type == curve_type,
        DataRowTable.commodity == commodity,
        _is_open(),
    ]
    if exclude_instance_id is not None:
        criteria.append(DataRowTable.instance_id != exclude_instance_id)
    _ensure_closes_after_start(session, at, *criteria, group=f"{curve_type}/{commodity}")
    res = session.execute(
        update(DataRowTable)
        .where(*criteria)
        .values(freshness_end=at)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount


def open_group(
    session: Session,
    instance_id: str,
    curve_type: str,
    commodity: str,
    start: _dt.datetime,
    end: _dt.datetime | None = None,
) -> int:
    res = session.execute(
        update(DataRowTable)
        .where(
            DataRowTable.instance_id == instance_id,
            DataRowTable.curve_type == curve_type,
            DataRowTable.commodity == commodity,
        )
        .values(freshness_start=start, freshness_end=end)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount


def close_instance_groups(session: Session, instance_id: str, at: _dt.datetime) -> int:
    """Close all open groups of one instance (instance left ACTIVE)."""
    res = session.execute(
        update(DataRowTable)
        .where(DataRowTable.instance_id == instance_id, _is_open())
        .values(freshness_end=at)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount


def instance_groups(session: Session, instance_id: str) -> list[tuple[str, str]]:
    rows = session.execute(
        select(DataRowTable.curve_type, DataRowTable.commodity)
        .where(DataRowTable.instance_id == instance_id)
        .distinct()
        .order_by(DataRowTable.curve_type, DataRowTable.commodity)
    )
    return [(ct, com) for ct, com in rows]


def open_instance_groups(
    session: Session, instance: InstanceTable, start: _dt.datetime
) -> list[tuple[str, str]]:
    """Close-old/open-new for every group the instance carries."""
    groups = instance_groups(session, instance.id)
    for curve_type, commodity in groups:
        closed = close_open_group(session, instance.definition_id, curve_type, commodity, start)
        opened = open_group(session, instance.id, curve_type, commodity, start)
        logger.debug(
            "freshness.group_opened",
            instance_id=instance.id,
            curve_type=curve_type,
            commodity=commodity,
            rows=opened,
            closed=closed,
        )
    return groups


def select_current_groups(
    rows: list[dict[str, Any]],
) -> list[FreshGroup]:
    """Reduce per-(group, instance) aggregates to one window per group.

    When several instances hold a current window for the same group, the
    latest ``freshness_start`` wins, then the latest instance ``created_at``.
    """
    by_group: dict[tuple[str, str], list[dict[str, Any]]] = defaultdict(list)
    for row in rows:
        by_group[(row["curve_type"], row["commodity"])].append(row)

    result = []
    for (curve_type, commodity), candidates in sorted(by_group.items()):
        best = max(
            candidates,
            key=lambda c: (c["freshness_start"], c["instance_created_at"], c["instance_id"]),
        )
        result.append(
            FreshGroup(
                curve_type=curve_type,
                commodity=commodity,
                instance_id=best["instance_id"],
                version_label=best["version_label"],
                freshness_start=best["freshness_start"],
                freshness_end=best["freshness_end"],
                row_count=best["row_count"],
                scenarios=tuple(sorted(best["scenarios"])),
            )
        )
    return result


class FreshnessTracker:
    """Group-level freshness windows of curve data."""

    def __init__(self, factory: SessionFactory):
        self._factory = factory

    def set_group_freshness(
        self,
        instance_id: str,
        curve_type: str,
        commodity: str,
        start: _dt.datetime,
        end: _dt.datetime | None = None,
    ) -> int:
        """Open ``[start, end)`` for one group; returns rows updated."""
        start = ensure_utc(start)
        end = ensure_utc(end)
        if end is not None and end <= start:
            raise ValidationError(
                "Freshness end must be after start",
                field="end",
                value=end,
                constraint="end > start",
            )
        with transaction(self._factory) as session:
            instance = session.get(InstanceTable, instance_id)
            if instance is None:
                raise NotFoundError("instance", instance_id)
            in_group = session.scalar(
                select(func.count(DataRowTable.id)).where(
                    DataRowTable.instance_id == instance_id,
                    DataRowTable.curve_type == curve_type,
                    DataRowTable.commodity == commodity,
                )
            )
            if not in_group:
                raise NotFoundError("curve data group", f"{instance_id}:{curve_type}/{commodity}")
            closed = close_open_group(
                session, instance.definition_id, curve_type, commodity, start,
                exclude_instance_id=instance_id,
            )
            opened = open_group(session, instance_id, curve_type, commodity, start, end)
        logger.info(
            "freshness.group_opened",
            instance_id=instance_id,
            curve_type=curve_type,
            commodity=commodity,
            rows=opened,
            closed=closed,
        )
        return opened

    def supersede_group(
        self,
        instance_id: str,
        curve_type: str,
        commodity: str,
        end: _dt.datetime | None = None,
    ) -> int:
        """Close the open rows of one group in one instance.

        *end* must fall after the open window's start.
        """
        end = ensure_utc(end) or utc_now()
        with transaction(self._factory) as session:
            if session.get(InstanceTable, instance_id) is None:
                raise NotFoundError("instance", instance_id)
            criteria = (
                DataRowTable.instance_id == instance_id,
                DataRowTable.curve_type == curve_type,
                DataRowTable.commodity == commodity,
                _is_open(),
            )
            _ensure_closes_after_start(
                session, end, *criteria, group=f"{curve_type}/{commodity}", strict=True
            )
            res = session.execute(
                update(DataRowTable)
                .where(*criteria)
                .values(freshness_end=end)
                .execution_options(synchronize_session=False)
            )
            count = res.rowcount
        logger.info(
            "freshness.group_superseded",
            instance_id=instance_id,
            curve_type=curve_type,
            commodity=commodity,
            rows=count,
        )
        return count

    def get_fresh_groups(
        self, definition_id: str, now: _dt.datetime | None = None
    ) -> list[FreshGroup]:
        now = ensure_utc(now) or utc_now()
        with self._factory() as session:
            if session.get(DefinitionTable, definition_id) is None:
                raise NotFoundError("definition", definition_id)
            rows = session.execute(
                select(
                    DataRowTable.curve_type,
                    DataRowTable.commodity,
                    DataRowTable.scenario,
                    DataRowTable.freshness_start,
                    DataRowTable.freshness_end,
                    InstanceTable.id,
                    InstanceTable.version_label,
                    InstanceTable.created_at,
                )
                .join(InstanceTable, DataRowTable.instance_id == InstanceTable.id)
                .where(InstanceTable.definition_id == definition_id, _is_current(now))
            ).all()

        aggregates: dict[tuple[str, str, str], dict[str, Any]] = {}
        for ct, com, scenario, start, end, iid, label, created in rows:
            agg = aggregates.setdefault(
                (ct, com, iid),
                {
                    "curve_type": ct,
                    "commodity": com,
                    "instance_id": iid,
                    "version_label": label,
                    "instance_created_at": created,
                    "freshness_start": start,
                    "freshness_end": end,
                    "row_count": 0,
                    "scenarios": set(),
                },
            )
            agg["row_count"] += 1
            agg["scenarios"].add(scenario)
            agg["freshness_start"] = max(agg["freshness_start"], start)
            if agg["freshness_end"] is not None and (end is None or end > agg["freshness_end"]):
                agg["freshness_end"] = end
        return select_current_groups(list(aggregates.values()))

    def current_fresh_counts(
        self,
        curve_type: str | None = None,
        commodity: str | None = None,
        market: str | None = None,
        now: _dt.datetime | None = None,
    ) -> list[FreshCount]:
        now = ensure_utc(now) or utc_now()
        stmt = (
            select(
                InstanceTable.definition_id,
                InstanceTable.id,
                InstanceTable.version_label,
                DataRowTable.curve_type,
                DataRowTable.commodity,
                func.count(DataRowTable.id),
            )
            .join(InstanceTable, DataRowTable.instance_id == InstanceTable.id)
            .join(DefinitionTable, InstanceTable.definition_id == DefinitionTable.id)
            .where(_is_current(now))
            .group_by(
                InstanceTable.definition_id,
                InstanceTable.id,
                InstanceTable.version_label,
                DataRowTable.curve_type,
                DataRowTable.commodity,
            )
            .order_by(InstanceTable.definition_id, DataRowTable.curve_type, DataRowTable.commodity)
        )
        if curve_type:
            stmt = stmt.where(DataRowTable.curve_type == curve_type)
        if commodity:
            stmt = stmt.where(DataRowTable.commodity == commodity)
        if market:
            stmt = stmt.where(DefinitionTable.market == market)
        with self._factory() as session:
            return [
                FreshCount(
                    definition_id=d, instance_id=i, version_label=v,
                    curve_type=ct, commodity=com, row_count=n,
                )
                for d, i, v, ct, com, n in session.execute(stmt)
            ]


__all__ = [
    "FreshnessTracker",
    "close_open_group",
    "open_group",
    "close_instance_groups",
    "instance_groups",
    "open_instance_groups",
    "select_current_groups",
]
