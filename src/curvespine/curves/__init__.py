"""Forecast curve engine.

Modules
-------
identity    Identity Store: canonical definitions, duplicates, recommendations
ledger      Instance Ledger: versioned instances and supersession
freshness   Freshness Tracker: per-group freshness windows
versioning  Version Chain: labels and change history
lineage     Lineage Recorder: input provenance and default inputs
schedule    Schedule Engine: cadence math, status board, delivery runs
health      Health Scorer: freshness / compliance / quality composite
merge       Merge Coordinator: fold duplicate definitions together
ownership   Declared ownership graph and ordered cascade delete
models      Value objects, validated inputs and read projections

Every engine class is constructed from a session factory::

    >>> from curvespine.core.orm import create_curve_engine, curve_session_factory
    >>> factory = curve_session_factory(create_curve_engine("sqlite:///curves.db"))
    >>> ledger = InstanceLedger(factory)

Tags:
    curve-spine, curves, engine

Doc-Types:
    package-overview, module-index
"""

from __future__ import annotations

from curvespine.curves.freshness import FreshnessTracker
from curvespine.curves.health import HealthScorer, score
from curvespine.curves.identity import IdentityStore
from curvespine.curves.ledger import InstanceLedger
from curvespine.curves.lineage import LineageRecorder
from curvespine.curves.merge import MergeCoordinator
from curvespine.curves.models import (
    DataPoint,
    DefinitionIdentity,
    DeliveryPeriod,
    HealthMetrics,
    InstancePayload,
    LineageInput,
    ScheduleInput,
    UpdateEvent,
)
from curvespine.curves.schedule import ScheduleRegistry, compute_next_due, evaluate
from curvespine.curves.versioning import VersionChain, next_version, parse_version

__all__ = [
    # engine
    "IdentityStore",
    "InstanceLedger",
    "FreshnessTracker",
    "VersionChain",
    "LineageRecorder",
    "ScheduleRegistry",
    "HealthScorer",
    "MergeCoordinator",
    # pure helpers
    "compute_next_due",
    "evaluate",
    "score",
    "next_version",
    "parse_version",
    # inputs
    "DefinitionIdentity",
    "DeliveryPeriod",
    "DataPoint",
    "LineageInput",
    "InstancePayload",
    "ScheduleInput",
    "HealthMetrics",
    "UpdateEvent",
]
