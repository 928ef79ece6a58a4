"""Table definitions - definitions, instances, data rows, schedules, lineage.

Ownership (mirrored by ``curvespine.curves.ownership``)::

    curve_definitions
      ├── curve_instances
      │     ├── curve_data
      │     ├── curve_input_lineage
      │     └── curve_version_history
      ├── curve_schedules
      │     └── curve_schedule_runs
      └── curve_default_inputs

Tags:
    curve-spine, orm, sqlalchemy, tables

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

import datetime

from sqlalchemy import ForeignKey, Index, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from curvespine.core.orm.base import CurveBase, TimestampMixin
from curvespine.core.timestamps import generate_ulid, utc_now

_ACTIVE_OPEN = text("status = 'ACTIVE' AND freshness_end IS NULL")


class DefinitionTable(TimestampMixin, CurveBase):
    __tablename__ = "curve_definitions"
    __table_args__ = (
        Index(
            "ix_curve_definitions_identity",
            "market", "location", "product", "curve_type", "duration_class", "scenario",
        ),
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=generate_ulid)
    curve_name: Mapped[str] = mapped_column(Text, nullable=False)
    market: Mapped[str] = mapped_column(Text, nullable=False)
    location: Mapped[str] = mapped_column(Text, nullable=False)
    product: Mapped[str] = mapped_column(Text, nullable=False)
    curve_type: Mapped[str] = mapped_column(Text, nullable=False)
    duration_class: Mapped[str] = mapped_column(Text, default="", nullable=False)
    scenario: Mapped[str] = mapped_column(Text, default="BASE", nullable=False)
    units: Mapped[str | None] = mapped_column(Text)
    timezone: Mapped[str] = mapped_column(Text, default="UTC", nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    created_by: Mapped[str | None] = mapped_column(Text)


class InstanceTable(TimestampMixin, CurveBase):
    __tablename__ = "curve_instances"
    __table_args__ = (
        UniqueConstraint(
            "definition_id", "delivery_start", "version_label",
            name="uq_curve_instances_label",
        ),
        # At most one ACTIVE instance with an open window per (definition, period)
        Index(
            "uq_curve_instances_active_period",
            "definition_id", "delivery_start",
            unique=True,
            sqlite_where=_ACTIVE_OPEN,
            postgresql_where=_ACTIVE_OPEN,
        ),
        Index("ix_curve_instances_definition", "definition_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=generate_ulid)
    definition_id: Mapped[str] = mapped_column(
        Text, ForeignKey("curve_definitions.id"), nullable=False
    )
    version_label: Mapped[str] = mapped_column(Text, nullable=False)
    delivery_start: Mapped[datetime.datetime] = mapped_column(nullable=False)
    delivery_end: Mapped[datetime.datetime] = mapped_column(nullable=False)
    forecast_run_at: Mapped[datetime.datetime] = mapped_column(nullable=False, default=utc_now)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    freshness_start: Mapped[datetime.datetime | None] = mapped_column()
    freshness_end: Mapped[datetime.datetime | None] = mapped_column()
    model_type: Mapped[str] = mapped_column(Text, default="FUNDAMENTAL", nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(Text)
    idempotency_key: Mapped[str | None] = mapped_column(Text, unique=True)


class DataRowTable(CurveBase):
    __tablename__ = "curve_data"
    __table_args__ = (
        Index("ix_curve_data_group", "instance_id", "curve_type", "commodity"),
        Index("ix_curve_data_open", "curve_type", "commodity", "freshness_end"),
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=generate_ulid)
    instance_id: Mapped[str] = mapped_column(
        Text, ForeignKey("curve_instances.id"), nullable=False
    )
    timestamp: Mapped[datetime.datetime] = mapped_column(nullable=False)
    value: Mapped[float] = mapped_column(nullable=False)
    curve_type: Mapped[str] = mapped_column(Text, nullable=False)
    commodity: Mapped[str] = mapped_column(Text, nullable=False)
    scenario: Mapped[str] = mapped_column(Text, default="BASE", nullable=False)
    units: Mapped[str | None] = mapped_column(Text)
    freshness_start: Mapped[datetime.datetime | None] = mapped_column()
    freshness_end: Mapped[datetime.datetime | None] = mapped_column()
    created_at: Mapped[datetime.datetime] = mapped_column(nullable=False, default=utc_now)


class LineageTable(CurveBase):
    __tablename__ = "curve_input_lineage"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=generate_ulid)
    instance_id: Mapped[str] = mapped_column(
        Text, ForeignKey("curve_instances.id"), nullable=False, index=True
    )
    input_type: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(Text, nullable=False)
    identifier: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[str | None] = mapped_column(Text)
    input_timestamp: Mapped[datetime.datetime] = mapped_column(nullable=False)
    usage_type: Mapped[str] = mapped_column(Text, default="PRIMARY", nullable=False)
    weight: Mapped[float | None] = mapped_column()
    created_at: Mapped[datetime.datetime] = mapped_column(nullable=False, default=utc_now)


class VersionHistoryTable(CurveBase):
    __tablename__ = "curve_version_history"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=generate_ulid)
    instance_id: Mapped[str] = mapped_column(
        Text, ForeignKey("curve_instances.id"), nullable=False, index=True
    )
    previous_instance_id: Mapped[str | None] = mapped_column(
        Text, ForeignKey("curve_instances.id"), index=True
    )
    change_type: Mapped[str] = mapped_column(Text, nullable=False)
    change_reason: Mapped[str | None] = mapped_column(Text)
    changed_by: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime.datetime] = mapped_column(nullable=False, default=utc_now)


class ScheduleTable(TimestampMixin, CurveBase):
    __tablename__ = "curve_schedules"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=generate_ulid)
    definition_id: Mapped[str] = mapped_column(
        Text, ForeignKey("curve_definitions.id"), nullable=False, index=True
    )
    frequency: Mapped[str] = mapped_column(Text, nullable=False)
    day_of_week: Mapped[int | None] = mapped_column()
    day_of_month: Mapped[int | None] = mapped_column()
    lead_time_days: Mapped[int] = mapped_column(default=0, nullable=False)
    freshness_days: Mapped[int | None] = mapped_column()
    responsible_team: Mapped[str | None] = mapped_column(Text)
    importance: Mapped[int] = mapped_column(default=3, nullable=False)
    valid_from: Mapped[datetime.datetime] = mapped_column(nullable=False)
    valid_until: Mapped[datetime.datetime | None] = mapped_column()
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)


class ScheduleRunTable(CurveBase):
    __tablename__ = "curve_schedule_runs"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=generate_ulid)
    schedule_id: Mapped[str] = mapped_column(
        Text, ForeignKey("curve_schedules.id"), nullable=False, index=True
    )
    expected_at: Mapped[datetime.datetime] = mapped_column(nullable=False)
    actual_at: Mapped[datetime.datetime | None] = mapped_column()
    status: Mapped[str] = mapped_column(Text, default="PENDING", nullable=False)
    instance_id: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime.datetime] = mapped_column(nullable=False, default=utc_now)


class DefaultInputTable(CurveBase):
    __tablename__ = "curve_default_inputs"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=generate_ulid)
    definition_id: Mapped[str] = mapped_column(
        Text, ForeignKey("curve_definitions.id"), nullable=False, index=True
    )
    input_type: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(Text, nullable=False)
    identifier: Mapped[str] = mapped_column(Text, nullable=False)
    usage_type: Mapped[str] = mapped_column(Text, default="PRIMARY", nullable=False)
    weight: Mapped[float | None] = mapped_column()
    created_at: Mapped[datetime.datetime] = mapped_column(nullable=False, default=utc_now)


__all__ = [
    "DefinitionTable",
    "InstanceTable",
    "DataRowTable",
    "LineageTable",
    "VersionHistoryTable",
    "ScheduleTable",
    "ScheduleRunTable",
    "DefaultInputTable",
]
