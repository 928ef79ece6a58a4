"""
Shared pytest fixtures for curve-spine tests.

This module provides:
- Environment / settings isolation (no ``CURVESPINE_*`` leakage between tests)
- A file-backed SQLite store per test with every table created
- Engine objects (ledger, tracker, registry, ...) bound to that store
- Payload builders with deterministic timestamps

Usage:
    Fixtures are auto-discovered by pytest; request them as arguments.

    def test_supersession(ledger, definition, period, payload):
        ledger.create_instance(definition.id, period, payload(), now=T0)
"""

from __future__ import annotations

import datetime as _dt
import os
from collections.abc import Callable, Generator
from typing import Any

import pytest
import structlog

from curvespine.core.orm import create_all, create_curve_engine, curve_session_factory
from curvespine.core.settings import reset_settings
from curvespine.curves import (
    DefinitionIdentity,
    DeliveryPeriod,
    FreshnessTracker,
    HealthScorer,
    IdentityStore,
    InstanceLedger,
    LineageRecorder,
    MergeCoordinator,
    ScheduleRegistry,
    VersionChain,
)

UTC = _dt.UTC


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Drop ``CURVESPINE_*`` variables and the cached settings around each test."""
    for key in list(os.environ):
        if key.startswith("CURVESPINE_"):
            monkeypatch.delenv(key, raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture(autouse=True)
def reset_structlog() -> Generator[None, None, None]:
    """CLI tests reconfigure structlog; restore the defaults afterwards."""
    yield
    structlog.reset_defaults()


# =============================================================================
# Store
# =============================================================================


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'curves.db'}"


@pytest.fixture
def engine(db_url: str):
    """SQLite engine with all curve tables created."""
    eng = create_curve_engine(db_url)
    create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def factory(engine):
    return curve_session_factory(engine)


# =============================================================================
# Engine objects
# =============================================================================


@pytest.fixture
def store(factory) -> IdentityStore:
    return IdentityStore(factory)


@pytest.fixture
def ledger(factory) -> InstanceLedger:
    return InstanceLedger(factory)


@pytest.fixture
def tracker(factory) -> FreshnessTracker:
    return FreshnessTracker(factory)


@pytest.fixture
def chain(factory) -> VersionChain:
    return VersionChain(factory)


@pytest.fixture
def recorder(factory) -> LineageRecorder:
    return LineageRecorder(factory)


@pytest.fixture
def registry(factory) -> ScheduleRegistry:
    return ScheduleRegistry(factory)


@pytest.fixture
def scorer(factory) -> HealthScorer:
    return HealthScorer(factory, window=12)


@pytest.fixture
def merger(factory) -> MergeCoordinator:
    return MergeCoordinator(factory, rename_marker="merged")


# =============================================================================
# Sample data
# =============================================================================


@pytest.fixture
def identity() -> DefinitionIdentity:
    return DefinitionIdentity(
        market="ERCOT",
        location="HOUSTON",
        product="ATC",
        curve_type="PRICE",
    )


@pytest.fixture
def definition(store: IdentityStore, identity: DefinitionIdentity):
    return store.get_or_create_definition(identity, "tests", units="USD/MWh")


@pytest.fixture
def period() -> DeliveryPeriod:
    return DeliveryPeriod(
        _dt.datetime(2025, 4, 1, tzinfo=UTC),
        _dt.datetime(2025, 5, 1, tzinfo=UTC),
    )


@pytest.fixture
def other_period() -> DeliveryPeriod:
    return DeliveryPeriod(
        _dt.datetime(2025, 5, 1, tzinfo=UTC),
        _dt.datetime(2025, 6, 1, tzinfo=UTC),
    )


def _points(groups: tuple[tuple[str, str], ...], rows: int) -> list[dict[str, Any]]:
    base = _dt.datetime(2025, 4, 1, tzinfo=UTC)
    return [
        {
            "timestamp": base + _dt.timedelta(hours=h),
            "value": 40.0 + h,
            "curve_type": curve_type,
            "commodity": commodity,
        }
        for curve_type, commodity in groups
        for h in range(rows)
    ]


@pytest.fixture
def payload() -> Callable[..., dict[str, Any]]:
    """Build a ``create_instance`` payload.

    ``payload(status="DRAFT", groups=(("PRICE", "POWER"),), rows=3, **extra)``
    """

    def build(
        status: str = "ACTIVE",
        groups: tuple[tuple[str, str], ...] = (("PRICE", "POWER"),),
        rows: int = 3,
        **extra: Any,
    ) -> dict[str, Any]:
        return {"status": status, "created_by": "tests", "data": _points(groups, rows), **extra}

    return build
