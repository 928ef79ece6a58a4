"""
Shared enums for curve definitions, instances, schedules and lineage.

Values are stored as plain strings in the database, so every member's
value equals its name.

STDLIB ONLY - NO PYDANTIC.
"""

from enum import Enum


class InstanceStatus(str, Enum):
    """
    Lifecycle status of a curve instance.

    DRAFT → (PENDING_APPROVAL → APPROVED →) ACTIVE → SUPERSEDED | EXPIRED
    Any non-terminal status may move to FAILED.
    """

    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    ACTIVE = "ACTIVE"
    SUPERSEDED = "SUPERSEDED"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"


class ChangeType(str, Enum):
    """Why a new instance was added to a version chain."""

    INITIAL = "INITIAL"
    UPDATE = "UPDATE"
    CORRECTION = "CORRECTION"
    REVISION = "REVISION"
    FINAL = "FINAL"
    ROLLBACK = "ROLLBACK"


class Frequency(str, Enum):
    """Delivery cadence of a curve schedule."""

    HOURLY = "HOURLY"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    ANNUALLY = "ANNUALLY"
    ON_DEMAND = "ON_DEMAND"


class ScheduleStatus(str, Enum):
    """Display status of a schedule, derived from its latest instance."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    SUPERSEDED = "SUPERSEDED"
    FAILED = "FAILED"


class RunStatus(str, Enum):
    """Outcome of one expected delivery of a schedule."""

    PENDING = "PENDING"
    ON_TIME = "ON_TIME"
    LATE = "LATE"
    MISSED = "MISSED"


class InputType(str, Enum):
    """Kind of fundamental input consumed to build a curve instance."""

    WEATHER_FORECAST = "WEATHER_FORECAST"
    WEATHER_ACTUAL = "WEATHER_ACTUAL"
    DEMAND_FORECAST = "DEMAND_FORECAST"
    DEMAND_ACTUAL = "DEMAND_ACTUAL"
    GENERATION_FORECAST = "GENERATION_FORECAST"
    GENERATION_ACTUAL = "GENERATION_ACTUAL"
    TRANSMISSION_LIMITS = "TRANSMISSION_LIMITS"
    FUEL_PRICES = "FUEL_PRICES"
    HYDRO_CONDITIONS = "HYDRO_CONDITIONS"
    RENEWABLE_FORECAST = "RENEWABLE_FORECAST"
    MARKET_FUNDAMENTALS = "MARKET_FUNDAMENTALS"
    REGULATORY_CHANGES = "REGULATORY_CHANGES"
    OTHER = "OTHER"


class UsageType(str, Enum):
    """Role an input played when the instance was built."""

    PRIMARY = "PRIMARY"
    VALIDATION = "VALIDATION"
    REFERENCE = "REFERENCE"
    FALLBACK = "FALLBACK"


__all__ = [
    "InstanceStatus",
    "ChangeType",
    "Frequency",
    "ScheduleStatus",
    "RunStatus",
    "InputType",
    "UsageType",
]
