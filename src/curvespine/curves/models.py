"""Value objects, inputs and read projections for the curve engine.

Inputs coming from ingestion (``DataPoint``, ``LineageInput``,
``InstancePayload``) are pydantic models so they can be built from parsed
CSV/JSON rows. Everything the engine hands back is a frozen dataclass with a
``to_dict()`` method; ORM rows never leave a transaction.

Tags:
    curve-spine, models, dataclasses, pydantic, projections

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from curvespine.core.enums import (
    ChangeType,
    Frequency,
    InputType,
    InstanceStatus,
    ScheduleStatus,
    UsageType,
)
from curvespine.core.errors import ValidationError
from curvespine.core.timestamps import ensure_utc, to_iso8601


def _plain(value: Any) -> Any:
    if isinstance(value, _dt.datetime):
        return to_iso8601(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, tuple | list):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


class _View:
    """``to_dict()`` for frozen projection dataclasses (JSON-ready values)."""

    def to_dict(self) -> dict[str, Any]:
        return {f.name: _plain(getattr(self, f.name)) for f in fields(self)}  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Identity and period
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DefinitionIdentity:
    """The attribute tuple that names one canonical curve definition."""

    market: str
    location: str
    product: str
    curve_type: str
    duration_class: str = ""
    scenario: str = "BASE"

    def key(self) -> tuple[str, str, str, str, str, str]:
        return (
            self.market,
            self.location,
            self.product,
            self.curve_type,
            self.duration_class,
            self.scenario,
        )


@dataclass(frozen=True, slots=True)
class DeliveryPeriod(_View):
    """Half-open delivery interval ``[start, end)``."""

    start: _dt.datetime
    end: _dt.datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", ensure_utc(self.start))
        object.__setattr__(self, "end", ensure_utc(self.end))

    def validate(self) -> None:
        if self.end <= self.start:
            raise ValidationError(
                "Delivery period end must be after start",
                field="delivery_period",
                value=(self.start, self.end),
                constraint="end > start",
            )


# ---------------------------------------------------------------------------
# Ingestion inputs
# ---------------------------------------------------------------------------


class DataPoint(BaseModel):
    """One validated row handed over by ingestion."""

    model_config = ConfigDict(frozen=True)

    timestamp: _dt.datetime
    value: float
    curve_type: str = Field(min_length=1)
    commodity: str = Field(min_length=1)
    scenario: str = "BASE"
    units: str | None = None

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, value: _dt.datetime) -> _dt.datetime:
        return ensure_utc(value)


class LineageInput(BaseModel):
    """An external input consumed to build an instance."""

    model_config = ConfigDict(frozen=True)

    input_type: InputType
    source: str
    identifier: str
    version: str | None = None
    input_timestamp: _dt.datetime
    usage_type: UsageType = UsageType.PRIMARY
    weight: float | None = Field(default=None, ge=0.0, le=1.0)

    @field_validator("input_timestamp")
    @classmethod
    def _utc(cls, value: _dt.datetime) -> _dt.datetime:
        return ensure_utc(value)


class InstancePayload(BaseModel):
    """Everything ``create_instance`` needs besides definition and period.

    ``status`` is the caller's intent: ``ACTIVE`` supersedes the current
    instance for the period, ``DRAFT`` is stored alongside it.
    """

    model_config = ConfigDict(protected_namespaces=())

    status: InstanceStatus = InstanceStatus.ACTIVE
    version_label: str | None = None
    forecast_run_at: _dt.datetime | None = None
    model_type: str = "FUNDAMENTAL"
    notes: str | None = None
    created_by: str | None = None
    change_type: ChangeType | None = None
    change_reason: str | None = None
    idempotency_key: str | None = None
    data: list[DataPoint] = Field(default_factory=list)
    inputs: list[LineageInput] = Field(default_factory=list)
    use_default_inputs: bool = False

    @field_validator("status")
    @classmethod
    def _initial_status(cls, value: InstanceStatus) -> InstanceStatus:
        if value not in (InstanceStatus.ACTIVE, InstanceStatus.DRAFT):
            raise ValueError("new instances start as ACTIVE or DRAFT")
        return value

    @field_validator("version_label")
    @classmethod
    def _label_not_blank(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            raise ValueError("version_label must not be blank")
        return value.strip() if value is not None else None

    @field_validator("forecast_run_at")
    @classmethod
    def _utc(cls, value: _dt.datetime | None) -> _dt.datetime | None:
        return ensure_utc(value)


class ScheduleInput(BaseModel):
    """Editable fields of a curve schedule."""

    frequency: Frequency
    valid_from: _dt.datetime
    valid_until: _dt.datetime | None = None
    lead_time_days: int = Field(default=0, ge=0)
    freshness_days: int | None = Field(default=None, ge=0)
    day_of_week: int | None = Field(default=None, ge=0, le=6)
    day_of_month: int | None = Field(default=None, ge=1, le=31)
    importance: int = Field(default=3, ge=1, le=5)
    responsible_team: str | None = None
    notes: str | None = None
    is_active: bool = True

    @field_validator("valid_from", "valid_until")
    @classmethod
    def _utc(cls, value: _dt.datetime | None) -> _dt.datetime | None:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _window(self) -> ScheduleInput:
        if self.valid_until is not None and self.valid_until <= self.valid_from:
            raise ValueError("valid_until must be after valid_from")
        return self


def coerce_input(model: type[BaseModel], value: Any, field_name: str) -> Any:
    """Build *model* from a mapping, raising the engine's ``ValidationError``."""
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except PydanticValidationError as e:
        first = e.errors()[0]
        loc = ".".join(str(p) for p in first.get("loc", ()))
        raise ValidationError(
            f"Invalid {field_name}: {first.get('msg')}",
            field=f"{field_name}.{loc}" if loc else field_name,
            value=first.get("input"),
            cause=e,
        ) from e


# ---------------------------------------------------------------------------
# Read projections
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DefinitionView(_View):
    id: str
    curve_name: str
    market: str
    location: str
    product: str
    curve_type: str
    duration_class: str
    scenario: str
    units: str | None
    timezone: str
    is_active: bool
    created_at: _dt.datetime

    @property
    def identity(self) -> DefinitionIdentity:
        return DefinitionIdentity(
            self.market, self.location, self.product,
            self.curve_type, self.duration_class, self.scenario,
        )

    @classmethod
    def from_row(cls, row: Any) -> DefinitionView:
        return cls(
            id=row.id,
            curve_name=row.curve_name,
            market=row.market,
            location=row.location,
            product=row.product,
            curve_type=row.curve_type,
            duration_class=row.duration_class,
            scenario=row.scenario,
            units=row.units,
            timezone=row.timezone,
            is_active=bool(row.is_active),
            created_at=row.created_at,
        )


@dataclass(frozen=True, slots=True)
class InstanceView(_View):
    id: str
    definition_id: str
    version_label: str
    delivery_start: _dt.datetime
    delivery_end: _dt.datetime
    forecast_run_at: _dt.datetime
    status: InstanceStatus
    freshness_start: _dt.datetime | None
    freshness_end: _dt.datetime | None
    model_type: str
    created_by: str | None
    created_at: _dt.datetime

    @property
    def is_current(self) -> bool:
        return self.status is InstanceStatus.ACTIVE and self.freshness_end is None

    @classmethod
    def from_row(cls, row: Any) -> InstanceView:
        return cls(
            id=row.id,
            definition_id=row.definition_id,
            version_label=row.version_label,
            delivery_start=row.delivery_start,
            delivery_end=row.delivery_end,
            forecast_run_at=row.forecast_run_at,
            status=InstanceStatus(row.status),
            freshness_start=row.freshness_start,
            freshness_end=row.freshness_end,
            model_type=row.model_type,
            created_by=row.created_by,
            created_at=row.created_at,
        )


@dataclass(frozen=True, slots=True)
class LineageView(_View):
    id: str
    instance_id: str
    input_type: InputType
    source: str
    identifier: str
    version: str | None
    input_timestamp: _dt.datetime
    usage_type: UsageType
    weight: float | None

    @classmethod
    def from_row(cls, row: Any) -> LineageView:
        return cls(
            id=row.id,
            instance_id=row.instance_id,
            input_type=InputType(row.input_type),
            source=row.source,
            identifier=row.identifier,
            version=row.version,
            input_timestamp=row.input_timestamp,
            usage_type=UsageType(row.usage_type),
            weight=row.weight,
        )


@dataclass(frozen=True, slots=True)
class DefaultInputView(_View):
    id: str
    definition_id: str
    input_type: InputType
    source: str
    identifier: str
    usage_type: UsageType
    weight: float | None

    @classmethod
    def from_row(cls, row: Any) -> DefaultInputView:
        return cls(
            id=row.id,
            definition_id=row.definition_id,
            input_type=InputType(row.input_type),
            source=row.source,
            identifier=row.identifier,
            usage_type=UsageType(row.usage_type),
            weight=row.weight,
        )


@dataclass(frozen=True, slots=True)
class HistoryEntry(_View):
    id: str
    instance_id: str
    previous_instance_id: str | None
    change_type: ChangeType
    change_reason: str | None
    changed_by: str | None
    created_at: _dt.datetime

    @classmethod
    def from_row(cls, row: Any) -> HistoryEntry:
        return cls(
            id=row.id,
            instance_id=row.instance_id,
            previous_instance_id=row.previous_instance_id,
            change_type=ChangeType(row.change_type),
            change_reason=row.change_reason,
            changed_by=row.changed_by,
            created_at=row.created_at,
        )


@dataclass(frozen=True, slots=True)
class FreshGroup(_View):
    """The currently open window of one (curve_type, commodity) group."""

    curve_type: str
    commodity: str
    instance_id: str
    version_label: str
    freshness_start: _dt.datetime | None
    freshness_end: _dt.datetime | None
    row_count: int
    scenarios: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class FreshCount(_View):
    """Currently fresh row count of one group in one instance."""

    definition_id: str
    instance_id: str
    version_label: str
    curve_type: str
    commodity: str
    row_count: int


@dataclass(frozen=True, slots=True)
class DeletionReport(_View):
    """Rows removed by a cascade delete, per table."""

    entity: str
    entity_id: str
    counts: dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.counts.values())


@dataclass(frozen=True, slots=True)
class Recommendation(_View):
    """What an uploader should do for a market/location pair."""

    action: str  # CREATE_DEFINITION | CREATE_INSTANCE | CHOOSE_DEFINITION
    definitions: tuple[DefinitionView, ...] = ()


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PlannedRename(_View):
    instance_id: str
    old_label: str
    new_label: str


@dataclass(frozen=True, slots=True)
class MergePlan(_View):
    """Detection-only outcome of a merge preview."""

    temp_id: str
    target_id: str | None
    renames: tuple[PlannedRename, ...] = ()
    instance_count: int = 0
    schedule_count: int = 0
    default_input_count: int = 0
    supersessions: tuple[str, ...] = ()
    potential_targets: tuple[DefinitionView, ...] = ()


@dataclass(frozen=True, slots=True)
class MergeResult(_View):
    temp_id: str
    target_id: str
    renamed: int
    instances_moved: int
    schedules_moved: int
    default_inputs_moved: int
    superseded: int = 0
    groups_closed: int = 0
    renames: tuple[PlannedRename, ...] = ()


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ScheduleSpec(_View):
    """Cadence of a schedule, detached from the store."""

    frequency: Frequency
    valid_from: _dt.datetime
    lead_time_days: int = 0
    day_of_week: int | None = None
    day_of_month: int | None = None
    freshness_days: int | None = None
    importance: int = 3
    valid_until: _dt.datetime | None = None
    is_active: bool = True
    responsible_team: str | None = None
    id: str | None = None
    definition_id: str | None = None

    @classmethod
    def from_row(cls, row: Any) -> ScheduleSpec:
        return cls(
            frequency=Frequency(row.frequency),
            valid_from=row.valid_from,
            lead_time_days=row.lead_time_days,
            day_of_week=row.day_of_week,
            day_of_month=row.day_of_month,
            freshness_days=row.freshness_days,
            importance=row.importance,
            valid_until=row.valid_until,
            is_active=bool(row.is_active),
            responsible_team=row.responsible_team,
            id=row.id,
            definition_id=row.definition_id,
        )


@dataclass(frozen=True, slots=True)
class LastInstance(_View):
    """The most recent delivery a schedule is measured against."""

    status: InstanceStatus
    delivered_at: _dt.datetime
    instance_id: str | None = None
    version_label: str | None = None


@dataclass(frozen=True, slots=True)
class ScheduleState(_View):
    status: ScheduleStatus
    is_overdue: bool
    priority: int


@dataclass(frozen=True, slots=True)
class ScheduleView(_View):
    schedule_id: str | None
    definition_id: str | None
    frequency: Frequency
    importance: int
    responsible_team: str | None
    next_due: _dt.datetime | None
    is_overdue: bool
    status: ScheduleStatus
    priority: int
    last_instance_id: str | None = None
    last_version_label: str | None = None


@dataclass(frozen=True, slots=True)
class ScheduleRunView(_View):
    id: str
    schedule_id: str
    expected_at: _dt.datetime
    actual_at: _dt.datetime | None
    status: str
    instance_id: str | None

    @classmethod
    def from_row(cls, row: Any) -> ScheduleRunView:
        return cls(
            id=row.id,
            schedule_id=row.schedule_id,
            expected_at=row.expected_at,
            actual_at=row.actual_at,
            status=row.status,
            instance_id=row.instance_id,
        )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class UpdateEvent(_View):
    """One expected delivery and when (if ever) it arrived."""

    expected_at: _dt.datetime
    actual_at: _dt.datetime | None = None

    @property
    def days_late(self) -> int | None:
        if self.actual_at is None:
            return None
        # Whole days, truncated toward zero
        return int((self.actual_at - self.expected_at) / _dt.timedelta(days=1))


@dataclass(frozen=True, slots=True)
class HealthMetrics(_View):
    last_received: _dt.datetime | None = None
    next_expected: _dt.datetime | None = None
    history: tuple[UpdateEvent, ...] = ()
    quality: float | None = None


@dataclass(frozen=True, slots=True)
class HealthScore(_View):
    freshness: int
    compliance: int
    quality: float
    total: int
    label: str = ""


__all__ = [
    "DefinitionIdentity",
    "DeliveryPeriod",
    "DataPoint",
    "LineageInput",
    "InstancePayload",
    "ScheduleInput",
    "coerce_input",
    "DefinitionView",
    "InstanceView",
    "LineageView",
    "DefaultInputView",
    "HistoryEntry",
    "FreshGroup",
    "FreshCount",
    "DeletionReport",
    "Recommendation",
    "PlannedRename",
    "MergePlan",
    "MergeResult",
    "ScheduleSpec",
    "LastInstance",
    "ScheduleState",
    "ScheduleView",
    "ScheduleRunView",
    "UpdateEvent",
    "HealthMetrics",
    "HealthScore",
]
