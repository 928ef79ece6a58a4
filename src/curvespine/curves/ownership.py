"""Declared ownership graph and the ordered cascade delete derived from it.

Adding a child table is one entry in ``OWNS``; every delete path (admin
definition delete, instance delete, schedule delete, merge cleanup) walks
the same graph inside the caller's transaction.

Tags:
    curve-spine, cascade, ownership, orm

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from curvespine.core.logging import get_logger
from curvespine.core.orm.tables import (
    DataRowTable,
    DefaultInputTable,
    DefinitionTable,
    InstanceTable,
    LineageTable,
    ScheduleRunTable,
    ScheduleTable,
    VersionHistoryTable,
)

logger = get_logger(__name__)

# parent -> [(child, foreign key column on child)]
OWNS: dict[type, list[tuple[type, str]]] = {
    DefinitionTable: [
        (InstanceTable, "definition_id"),
        (ScheduleTable, "definition_id"),
        (DefaultInputTable, "definition_id"),
    ],
    InstanceTable: [
        (DataRowTable, "instance_id"),
        (LineageTable, "instance_id"),
        (VersionHistoryTable, "instance_id"),
    ],
    ScheduleTable: [
        (ScheduleRunTable, "schedule_id"),
    ],
}

# parent -> [(table, column)] references that are cleared instead of deleted
NULLIFIES: dict[type, list[tuple[type, str]]] = {
    InstanceTable: [(VersionHistoryTable, "previous_instance_id")],
}


def children_of(table: type) -> list[tuple[type, str]]:
    return OWNS.get(table, [])


def cascade_delete(session: Session, table: Any, ids: Sequence[str]) -> dict[str, int]:
    """Delete rows of *table* with the given ids and everything they own.

    Children are removed depth-first before their parents so foreign keys
    hold at every statement. Returns deleted row counts per table name
    (nullified references are reported as ``<table>.<column>``).
    """
    counts: dict[str, int] = {}
    ids = list(ids)
    if not ids:
        return counts

    for child, fk in children_of(table):
        fk_col = getattr(child, fk)
        if child in OWNS:
            child_ids = list(session.scalars(select(child.id).where(fk_col.in_(ids))))
            for name, n in cascade_delete(session, child, child_ids).items():
                counts[name] = counts.get(name, 0) + n
        else:
            res = session.execute(delete(child).where(fk_col.in_(ids)))
            counts[child.__tablename__] = counts.get(child.__tablename__, 0) + res.rowcount

    for ref_table, column in NULLIFIES.get(table, []):
        col = getattr(ref_table, column)
        res = session.execute(update(ref_table).where(col.in_(ids)).values({column: None}))
        if res.rowcount:
            key = f"{ref_table.__tablename__}.{column}"
            counts[key] = counts.get(key, 0) + res.rowcount

    res = session.execute(delete(table).where(table.id.in_(ids)))
    counts[table.__tablename__] = counts.get(table.__tablename__, 0) + res.rowcount
    logger.debug("cascade.deleted", table=table.__tablename__, counts=counts)
    return counts


__all__ = ["OWNS", "NULLIFIES", "children_of", "cascade_delete"]
