"""Lineage Recorder -- the fundamental inputs an instance was built from.

Append-only. Inputs are checked for enum membership and a weight in
[0, 1]; the model composition itself is the caller's business.

Per-definition *default inputs* pre-fill lineage for uploads that do not
list their inputs explicitly, and follow their definition through a merge.

Tags:
    curve-spine, lineage, provenance

Doc-Types:
    api-reference
"""

from __future__ import annotations

import datetime as _dt
from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from curvespine.core.errors import NotFoundError
from curvespine.core.logging import get_logger
from curvespine.core.orm.session import SessionFactory, transaction
from curvespine.core.orm.tables import DefaultInputTable, DefinitionTable, InstanceTable, LineageTable
from curvespine.core.timestamps import ensure_utc
from curvespine.curves.models import (
    DefaultInputView,
    LineageInput,
    LineageView,
    coerce_input,
)

logger = get_logger(__name__)

LineageLike = LineageInput | Mapping[str, Any]


def validate_inputs(inputs: Iterable[LineageLike]) -> list[LineageInput]:
    return [coerce_input(LineageInput, item, "lineage_input") for item in inputs]


def add_lineage_rows(
    session: Session, instance_id: str, inputs: Iterable[LineageInput]
) -> list[LineageTable]:
    """Insert lineage rows inside an open transaction."""
    rows = [
        LineageTable(
            instance_id=instance_id,
            input_type=item.input_type.value,
            source=item.source,
            identifier=item.identifier,
            version=item.version,
            input_timestamp=item.input_timestamp,
            usage_type=item.usage_type.value,
            weight=item.weight,
        )
        for item in inputs
    ]
    session.add_all(rows)
    return rows


def defaults_as_inputs(
    session: Session, definition_id: str, input_timestamp: _dt.datetime
) -> list[LineageInput]:
    rows = session.scalars(
        select(DefaultInputTable)
        .where(DefaultInputTable.definition_id == definition_id)
        .order_by(DefaultInputTable.created_at, DefaultInputTable.id)
    )
    return [
        LineageInput(
            input_type=row.input_type,
            source=row.source,
            identifier=row.identifier,
            input_timestamp=input_timestamp,
            usage_type=row.usage_type,
            weight=row.weight,
        )
        for row in rows
    ]


class LineageRecorder:
    """Records and reads instance lineage and definition default inputs."""

    def __init__(self, factory: SessionFactory):
        self._factory = factory

    def record_lineage(self, instance_id: str, inputs: Iterable[LineageLike]) -> list[LineageView]:
        validated = validate_inputs(inputs)
        with transaction(self._factory) as session:
            if session.get(InstanceTable, instance_id) is None:
                raise NotFoundError("instance", instance_id)
            rows = add_lineage_rows(session, instance_id, validated)
            session.flush()
            views = [LineageView.from_row(r) for r in rows]
        logger.info("lineage.recorded", instance_id=instance_id, inputs=len(views))
        return views

    def get_lineage(self, instance_id: str) -> list[LineageView]:
        with self._factory() as session:
            rows = session.scalars(
                select(LineageTable)
                .where(LineageTable.instance_id == instance_id)
                .order_by(LineageTable.created_at, LineageTable.id)
            )
            return [LineageView.from_row(r) for r in rows]

    # -- default inputs -------------------------------------------------

    def set_default_input(self, definition_id: str, item: Mapping[str, Any]) -> DefaultInputView:
        """Add a default input; ``input_timestamp`` and ``version`` are not stored."""
        data = dict(item)
        data.setdefault("input_timestamp", _dt.datetime(1970, 1, 1, tzinfo=_dt.UTC))
        validated = coerce_input(LineageInput, data, "default_input")
        with transaction(self._factory) as session:
            if session.get(DefinitionTable, definition_id) is None:
                raise NotFoundError("definition", definition_id)
            row = DefaultInputTable(
                definition_id=definition_id,
                input_type=validated.input_type.value,
                source=validated.source,
                identifier=validated.identifier,
                usage_type=validated.usage_type.value,
                weight=validated.weight,
            )
            session.add(row)
            session.flush()
            view = DefaultInputView.from_row(row)
        logger.info("lineage.default_added", definition_id=definition_id, input_type=view.input_type.value)
        return view

    def list_default_inputs(self, definition_id: str) -> list[DefaultInputView]:
        with self._factory() as session:
            rows = session.scalars(
                select(DefaultInputTable)
                .where(DefaultInputTable.definition_id == definition_id)
                .order_by(DefaultInputTable.created_at, DefaultInputTable.id)
            )
            return [DefaultInputView.from_row(r) for r in rows]

    def lineage_from_defaults(
        self, definition_id: str, input_timestamp: _dt.datetime
    ) -> list[LineageInput]:
        with self._factory() as session:
            return defaults_as_inputs(session, definition_id, ensure_utc(input_timestamp))


__all__ = [
    "LineageRecorder",
    "validate_inputs",
    "add_lineage_rows",
    "defaults_as_inputs",
]
