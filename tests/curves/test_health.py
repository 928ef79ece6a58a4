"""Tests for the Health Scorer."""

import datetime as _dt

import pytest

from curvespine.core.errors import NotFoundError, ValidationError
from curvespine.curves.health import (
    compliance_score,
    event_score,
    freshness_score,
    label,
    round_half_up,
    score,
)
from curvespine.curves.models import HealthMetrics, UpdateEvent

UTC = _dt.UTC
NOW = _dt.datetime(2025, 6, 10, 12, tzinfo=UTC)
DAY = _dt.timedelta(days=1)


def on_time(n: int) -> tuple[UpdateEvent, ...]:
    base = _dt.datetime(2025, 1, 1, tzinfo=UTC)
    return tuple(UpdateEvent(base + i * DAY, base + i * DAY) for i in range(n))


def test_perfect_inputs_score_100():
    metrics = HealthMetrics(
        last_received=NOW - DAY,
        next_expected=NOW + DAY,
        history=on_time(10),
    )
    result = score(metrics, NOW)
    assert (result.freshness, result.compliance, result.quality) == (100, 100, 100.0)
    assert result.total == 100
    assert result.label == "Healthy"


def test_freshness_is_monotonic_in_days_overdue():
    scores = [
        freshness_score(HealthMetrics(last_received=NOW, next_expected=NOW - d * DAY), NOW)
        for d in range(0, 15)
    ]
    assert scores[0] == 100
    assert scores[3] == 70
    assert scores[10] == 0
    assert all(a >= b for a, b in zip(scores, scores[1:]))


def test_freshness_needs_both_timestamps():
    assert freshness_score(HealthMetrics(next_expected=NOW + DAY), NOW) == 0
    assert freshness_score(HealthMetrics(last_received=NOW), NOW) == 0


@pytest.mark.parametrize(
    "late_by, expected",
    [
        (_dt.timedelta(hours=-3), 100),
        (_dt.timedelta(0), 100),
        (_dt.timedelta(hours=23), 100),
        (_dt.timedelta(days=1), 90),
        (_dt.timedelta(days=2), 75),
        (_dt.timedelta(days=5, hours=6), 50),
        (_dt.timedelta(days=6), 25),
        (_dt.timedelta(days=40), 25),
    ],
)
def test_lateness_buckets(late_by, expected):
    assert event_score(UpdateEvent(NOW, NOW + late_by)) == expected


def test_never_delivered_scores_zero():
    assert event_score(UpdateEvent(NOW)) == 0


def test_compliance_average_is_rounded_half_up():
    history = (UpdateEvent(NOW, NOW), UpdateEvent(NOW, NOW + 6 * DAY))
    assert compliance_score(history) == 63  # (100 + 25) / 2 = 62.5
    assert compliance_score(()) == 0


@pytest.mark.parametrize(
    "total, expected",
    [(100, "Healthy"), (80, "Healthy"), (79, "Warning"), (60, "Warning"), (59, "At Risk"), (40, "At Risk"), (39, "Critical"), (0, "Critical")],
)
def test_labels(total, expected):
    assert label(total) == expected


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(2.4999) == 2
    assert round_half_up(62.5) == 63


def test_quality_defaults_to_100_and_is_bounded():
    metrics = HealthMetrics(last_received=NOW, next_expected=NOW, history=on_time(1), quality=50)
    assert score(metrics, NOW).total == 90
    with pytest.raises(ValidationError) as exc:
        score(HealthMetrics(quality=120), NOW)
    assert exc.value.field == "quality"


# ---------------------------------------------------------------------------
# Store-backed scorer
# ---------------------------------------------------------------------------


def _at(*args):
    return _dt.datetime(*args, tzinfo=UTC)


def _schedule(registry, definition, **overrides):
    fields = {"frequency": "DAILY", "valid_from": _at(2020, 1, 1)}
    fields.update(overrides)
    return registry.create_schedule(definition.id, fields)


class TestHealthScorer:
    def test_runs_without_deliveries(self, scorer, registry, definition):
        s = _schedule(registry, definition, frequency="MONTHLY")
        registry.record_run(s.id, _at(2025, 1, 6), _at(2025, 1, 6))
        registry.record_run(s.id, _at(2025, 2, 6), _at(2025, 2, 8))
        registry.record_run(s.id, _at(2025, 3, 6))
        registry.record_run(s.id, _at(2025, 7, 6))  # after now, ignored

        result = scorer.for_definition(definition.id, now=_at(2025, 6, 1))
        assert result.freshness == 0
        assert result.compliance == 58  # (100 + 75 + 0) / 3
        assert result.total == 43
        assert result.label == "At Risk"

    def test_fresh_delivery_on_schedule(self, scorer, registry, ledger, definition, period, payload):
        s = _schedule(registry, definition)
        registry.record_run(s.id, _at(2025, 1, 1), _at(2025, 1, 1))
        ledger.create_instance(definition.id, period, payload())

        result = scorer.for_definition(definition.id)
        assert result.freshness == 100
        assert result.compliance == 100
        assert result.total == 100

    def test_metrics_history_window(self, scorer, registry, definition):
        s = _schedule(registry, definition)
        for day in range(1, 16):
            registry.record_run(s.id, _at(2025, 1, day), _at(2025, 1, day))

        assert len(scorer.metrics_for(definition.id, now=_at(2025, 2, 1)).history) == 12
        history = scorer.metrics_for(definition.id, now=_at(2025, 2, 1), window=3).history
        assert [e.expected_at.day for e in history] == [13, 14, 15]

    def test_next_expected_is_earliest_in_force_schedule(self, scorer, registry, definition):
        _schedule(registry, definition, valid_from=_at(2025, 3, 1))
        _schedule(registry, definition, valid_from=_at(2025, 2, 1))
        _schedule(registry, definition, valid_from=_at(2025, 1, 1), is_active=False)

        metrics = scorer.metrics_for(definition.id, now=_at(2025, 6, 1))
        assert metrics.next_expected == _at(2025, 2, 1)
        assert metrics.last_received is None

    def test_quality_passthrough(self, scorer, definition):
        assert scorer.for_definition(definition.id, now=NOW, quality=80).quality == 80.0
        with pytest.raises(ValidationError):
            scorer.for_definition(definition.id, now=NOW, quality=-1)

    def test_unknown_definition(self, scorer):
        with pytest.raises(NotFoundError):
            scorer.for_definition("missing")
