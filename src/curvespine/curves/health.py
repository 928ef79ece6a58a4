"""Health Scorer -- 0..100 composite of freshness, compliance and quality.

``score`` is pure. The weights (40/40/20) and the days-late buckets are
fixed because existing dashboards display these exact numbers.

    days late   <=0   <=1   <=2   <=5   >5   never delivered
    score       100    90    75    50   25          0

Rounding is half-up (``2.5 -> 3``), not Python's banker's rounding.
"""

from __future__ import annotations

import datetime as _dt
import math

from sqlalchemy import select

from curvespine.core.errors import NotFoundError, ValidationError
from curvespine.core.logging import get_logger
from curvespine.core.orm.session import SessionFactory
from curvespine.core.orm.tables import DefinitionTable, ScheduleRunTable, ScheduleTable
from curvespine.core.timestamps import ensure_utc, utc_now
from curvespine.curves.models import HealthMetrics, HealthScore, ScheduleSpec, UpdateEvent
from curvespine.curves.schedule import compute_next_due, in_force, last_instance_of

logger = get_logger(__name__)

FRESHNESS_WEIGHT = 0.4
COMPLIANCE_WEIGHT = 0.4
QUALITY_WEIGHT = 0.2
POINTS_PER_DAY_OVERDUE = 10

# (max days late, score), checked in order
LATENESS_BUCKETS: tuple[tuple[int, int], ...] = ((0, 100), (1, 90), (2, 75), (5, 50))
VERY_LATE_SCORE = 25

LABELS: tuple[tuple[int, str], ...] = ((80, "Healthy"), (60, "Warning"), (40, "At Risk"))


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def freshness_score(metrics: HealthMetrics, now: _dt.datetime) -> int:
    if metrics.last_received is None or metrics.next_expected is None:
        return 0
    now = ensure_utc(now)
    if now <= metrics.next_expected:
        return 100
    days_overdue = int((now - metrics.next_expected) / _dt.timedelta(days=1))
    return max(0, 100 - POINTS_PER_DAY_OVERDUE * days_overdue)


def event_score(event: UpdateEvent) -> int:
    days_late = event.days_late
    if days_late is None:
        return 0
    for limit, points in LATENESS_BUCKETS:
        if days_late <= limit:
            return points
    return VERY_LATE_SCORE


def compliance_score(history: tuple[UpdateEvent, ...] | list[UpdateEvent]) -> int:
    if not history:
        return 0
    return round_half_up(sum(event_score(e) for e in history) / len(history))


def label(total: int) -> str:
    for threshold, name in LABELS:
        if total >= threshold:
            return name
    return "Critical"


def score(metrics: HealthMetrics, now: _dt.datetime | None = None) -> HealthScore:
    now = ensure_utc(now) or utc_now()
    quality = 100.0 if metrics.quality is None else float(metrics.quality)
    if not 0.0 <= quality <= 100.0:
        raise ValidationError(
            "Quality score must be within 0..100",
            field="quality",
            value=metrics.quality,
            constraint="0 <= quality <= 100",
        )
    freshness = freshness_score(metrics, now)
    compliance = compliance_score(metrics.history)
    total = round_half_up(
        FRESHNESS_WEIGHT * freshness + COMPLIANCE_WEIGHT * compliance + QUALITY_WEIGHT * quality
    )
    return HealthScore(
        freshness=freshness,
        compliance=compliance,
        quality=quality,
        total=total,
        label=label(total),
    )


class HealthScorer:
    """Builds health metrics from the ledger and schedule runs, then scores them."""

    def __init__(self, factory: SessionFactory, window: int | None = None):
        self._factory = factory
        if window is None:
            from curvespine.core.settings import get_settings

            window = get_settings().health_history_window
        self._window = window

    def metrics_for(
        self,
        definition_id: str,
        now: _dt.datetime | None = None,
        quality: float | None = None,
        window: int | None = None,
    ) -> HealthMetrics:
        now = ensure_utc(now) or utc_now()
        window = window or self._window
        with self._factory() as session:
            if session.get(DefinitionTable, definition_id) is None:
                raise NotFoundError("definition", definition_id)
            last = last_instance_of(session, definition_id)
            schedules = [
                ScheduleSpec.from_row(r)
                for r in session.scalars(
                    select(ScheduleTable).where(ScheduleTable.definition_id == definition_id)
                )
            ]
            dues = []
            for spec in schedules:
                if not in_force(spec, now):
                    continue
                due = compute_next_due(spec, last)
                if due is not None:
                    dues.append(due)
            schedule_ids = [s.id for s in schedules]
            runs = []
            if schedule_ids:
                runs = session.scalars(
                    select(ScheduleRunTable)
                    .where(
                        ScheduleRunTable.schedule_id.in_(schedule_ids),
                        ScheduleRunTable.expected_at <= now,
                    )
                    .order_by(ScheduleRunTable.expected_at.desc(), ScheduleRunTable.id.desc())
                    .limit(window)
                ).all()
            history = tuple(UpdateEvent(r.expected_at, r.actual_at) for r in reversed(runs))
        return HealthMetrics(
            last_received=last.delivered_at if last else None,
            next_expected=min(dues) if dues else None,
            history=history,
            quality=quality,
        )

    def for_definition(
        self,
        definition_id: str,
        now: _dt.datetime | None = None,
        quality: float | None = None,
        window: int | None = None,
    ) -> HealthScore:
        now = ensure_utc(now) or utc_now()
        metrics = self.metrics_for(definition_id, now, quality, window)
        result = score(metrics, now)
        logger.debug(
            "health.scored",
            definition_id=definition_id,
            total=result.total,
            freshness=result.freshness,
            compliance=result.compliance,
        )
        return result


__all__ = [
    "round_half_up",
    "freshness_score",
    "event_score",
    "compliance_score",
    "label",
    "score",
    "HealthScorer",
]
