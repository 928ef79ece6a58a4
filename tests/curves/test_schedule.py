"""Tests for the Schedule Engine (pure cadence math) and the schedule registry."""

import datetime as _dt

import pytest

from curvespine.core.enums import Frequency, InstanceStatus, RunStatus, ScheduleStatus
from curvespine.core.errors import NotFoundError, ValidationError
from curvespine.curves.models import LastInstance, ScheduleSpec
from curvespine.curves.schedule import (
    PRIORITY_TABLE,
    STATUS_TABLE,
    classify_status,
    compute_next_due,
    evaluate,
    in_force,
    is_overdue,
    sort_key,
    summarize,
)

UTC = _dt.UTC


def at(*args) -> _dt.datetime:
    return _dt.datetime(*args, tzinfo=UTC)


def spec(frequency="MONTHLY", valid_from=at(2025, 1, 1), **kw) -> ScheduleSpec:
    return ScheduleSpec(frequency=Frequency(frequency), valid_from=valid_from, **kw)


def delivered(when, status=InstanceStatus.ACTIVE) -> LastInstance:
    return LastInstance(status=status, delivered_at=when)


class TestComputeNextDue:
    def test_first_delivery_uses_valid_from_plus_lead(self):
        assert compute_next_due(spec(lead_time_days=5), None) == at(2025, 1, 6)

    @pytest.mark.parametrize(
        "frequency, expected",
        [
            ("HOURLY", at(2025, 2, 10, 13)),
            ("DAILY", at(2025, 2, 11, 12)),
            ("WEEKLY", at(2025, 2, 17, 12)),
            ("MONTHLY", at(2025, 3, 10, 12)),
            ("QUARTERLY", at(2025, 5, 10, 12)),
            ("ANNUALLY", at(2026, 2, 10, 12)),
        ],
    )
    def test_steps(self, frequency, expected):
        assert compute_next_due(spec(frequency), delivered(at(2025, 2, 10, 12))) == expected

    def test_month_end_is_clamped(self):
        assert compute_next_due(spec("MONTHLY"), delivered(at(2025, 1, 31))) == at(2025, 2, 28)

    def test_on_demand_has_no_due_date_after_delivery(self):
        assert compute_next_due(spec("ON_DEMAND"), delivered(at(2025, 2, 10))) is None

    def test_weekly_day_of_week_anchor(self):
        # 2025-02-10 is a Monday; +7 days is Monday 17th, anchored forward to Wednesday 19th
        s = spec("WEEKLY", day_of_week=2)
        assert compute_next_due(s, delivered(at(2025, 2, 10, 9))) == at(2025, 2, 19, 9)

    def test_monthly_day_of_month_anchor(self):
        s = spec("MONTHLY", day_of_month=15)
        assert compute_next_due(s, delivered(at(2025, 2, 3))) == at(2025, 3, 15)
        assert compute_next_due(s, delivered(at(2025, 2, 20))) == at(2025, 4, 15)


class TestIsOverdue:
    def test_monthly_first_delivery_scenario(self):
        s = spec("MONTHLY", lead_time_days=5)
        assert compute_next_due(s, None) == at(2025, 1, 6)
        assert is_overdue(s, None, at(2025, 1, 5)) is False
        assert is_overdue(s, None, at(2025, 1, 6)) is False

    def test_grace_period_is_lead_time(self):
        s = spec("DAILY", lead_time_days=1)
        last = delivered(at(2025, 2, 10))
        assert is_overdue(s, last, at(2025, 2, 12)) is False
        assert is_overdue(s, last, at(2025, 2, 12, 0, 0, 1)) is True

    def test_on_demand_never_overdue(self):
        assert is_overdue(spec("ON_DEMAND"), None, at(2030, 1, 1)) is False
        assert is_overdue(spec("ON_DEMAND"), delivered(at(2020, 1, 1)), at(2030, 1, 1)) is False


class TestClassifyStatus:
    @pytest.mark.parametrize(
        "last_status, expected",
        [
            (None, ScheduleStatus.PENDING),
            ("DRAFT", ScheduleStatus.IN_PROGRESS),
            ("PENDING_APPROVAL", ScheduleStatus.SCHEDULED),
            ("APPROVED", ScheduleStatus.SCHEDULED),
            ("ACTIVE", ScheduleStatus.COMPLETED),
            ("SUPERSEDED", ScheduleStatus.SUPERSEDED),
            ("EXPIRED", ScheduleStatus.SUPERSEDED),
            ("FAILED", ScheduleStatus.FAILED),
        ],
    )
    def test_status_table(self, last_status, expected):
        assert classify_status(last_status, False).status is expected

    def test_every_instance_status_is_mapped(self):
        assert set(InstanceStatus) | {None} == set(STATUS_TABLE)

    def test_priorities(self):
        assert classify_status("APPROVED", True).priority == 1
        assert classify_status("APPROVED", False).priority == 2
        assert classify_status("DRAFT", True).priority == 3
        assert classify_status("ACTIVE", True).priority == 4
        assert max(PRIORITY_TABLE.values()) < 4


class TestBoardHelpers:
    def test_sort_key_orders_priority_then_importance_then_due(self):
        now = at(2025, 3, 1)
        views = [
            evaluate(spec("MONTHLY", importance=5, id="done"), delivered(at(2025, 2, 25)), now),
            evaluate(spec("MONTHLY", importance=1, id="late-low"), delivered(at(2025, 1, 1), InstanceStatus.APPROVED), now),
            evaluate(spec("MONTHLY", importance=4, id="late-high"), delivered(at(2025, 1, 1), InstanceStatus.APPROVED), now),
            evaluate(spec("MONTHLY", importance=4, id="scheduled"), delivered(at(2025, 2, 28), InstanceStatus.APPROVED), now),
        ]
        ordered = [v.schedule_id for v in sorted(views, key=sort_key)]
        assert ordered == ["late-high", "late-low", "scheduled", "done"]

    def test_summarize(self):
        now = at(2025, 3, 1)
        views = [
            evaluate(spec("DAILY"), None, now),
            evaluate(spec("DAILY"), delivered(at(2025, 2, 1)), now),
            evaluate(spec("DAILY"), delivered(at(2025, 2, 28, 12), InstanceStatus.DRAFT), now),
        ]
        summary = summarize(views)
        assert summary["total"] == 3
        assert summary["overdue"] == 2
        assert summary["pending"] == 1
        assert summary["completed"] == 1
        assert summary["in_progress"] == 1
        assert summary["failed"] == 0

    def test_in_force(self):
        s = spec(valid_until=at(2025, 6, 1))
        assert in_force(s, at(2025, 5, 31)) is True
        assert in_force(s, at(2025, 6, 1)) is False
        assert in_force(spec(is_active=False), at(2025, 5, 31)) is False


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def _schedule(**overrides):
    fields = {
        "frequency": "MONTHLY",
        "valid_from": at(2025, 1, 1),
        "lead_time_days": 5,
        "importance": 4,
        "responsible_team": "fundamentals",
    }
    fields.update(overrides)
    return fields


class TestScheduleRegistry:
    def test_create_and_get(self, registry, definition):
        created = registry.create_schedule(definition.id, _schedule(), "tests")
        loaded = registry.get_schedule(created.id)
        assert loaded.frequency is Frequency.MONTHLY
        assert loaded.valid_from == at(2025, 1, 1)
        assert loaded.definition_id == definition.id
        assert registry.list_schedules(definition.id) == [loaded]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"frequency": "FORTNIGHTLY"},
            {"lead_time_days": -1},
            {"day_of_week": 7},
            {"day_of_month": 0},
            {"importance": 6},
            {"valid_until": at(2024, 12, 31)},
        ],
    )
    def test_invalid_fields(self, registry, definition, overrides):
        with pytest.raises(ValidationError):
            registry.create_schedule(definition.id, _schedule(**overrides))

    def test_unknown_definition(self, registry):
        with pytest.raises(NotFoundError):
            registry.create_schedule("missing", _schedule())

    def test_update(self, registry, definition):
        created = registry.create_schedule(definition.id, _schedule())
        updated = registry.update_schedule(created.id, {"frequency": "WEEKLY", "day_of_week": 0}, "tests")
        assert updated.frequency is Frequency.WEEKLY
        assert updated.day_of_week == 0
        assert updated.lead_time_days == 5

    def test_update_rejects_unknown_fields(self, registry, definition):
        created = registry.create_schedule(definition.id, _schedule())
        with pytest.raises(ValidationError):
            registry.update_schedule(created.id, {"cron": "* * * * *"})

    def test_update_is_validated_as_a_whole(self, registry, definition):
        created = registry.create_schedule(definition.id, _schedule())
        with pytest.raises(ValidationError):
            registry.update_schedule(created.id, {"valid_until": at(2024, 6, 1)})
        assert registry.get_schedule(created.id).valid_until is None

    def test_delete_cascades_runs(self, registry, definition):
        created = registry.create_schedule(definition.id, _schedule())
        registry.record_run(created.id, at(2025, 1, 6))
        report = registry.delete_schedule(created.id, "tests")
        assert report.counts == {"curve_schedule_runs": 1, "curve_schedules": 1}
        with pytest.raises(NotFoundError):
            registry.get_schedule(created.id)


class TestScheduleRuns:
    def test_run_status_from_timestamps(self, registry, definition):
        s = registry.create_schedule(definition.id, _schedule())
        assert registry.record_run(s.id, at(2025, 1, 6)).status == RunStatus.PENDING.value
        assert registry.record_run(s.id, at(2025, 2, 6), at(2025, 2, 6)).status == RunStatus.ON_TIME.value
        assert registry.record_run(s.id, at(2025, 3, 6), at(2025, 3, 8)).status == RunStatus.LATE.value
        assert [r.expected_at for r in registry.list_runs(s.id, limit=2)] == [at(2025, 3, 6), at(2025, 2, 6)]

    def test_complete_and_miss(self, registry, definition):
        s = registry.create_schedule(definition.id, _schedule())
        run = registry.record_run(s.id, at(2025, 1, 6))
        missed = registry.mark_missed(run.id)
        assert missed.status == RunStatus.MISSED.value

        done = registry.complete_run(run.id, at(2025, 1, 9), instance_id="I1")
        assert done.status == RunStatus.LATE.value
        assert done.instance_id == "I1"

        with pytest.raises(ValidationError):
            registry.complete_run(run.id, at(2025, 1, 10))
        with pytest.raises(ValidationError):
            registry.mark_missed(run.id)

    def test_unknown_run(self, registry):
        with pytest.raises(NotFoundError):
            registry.complete_run("missing", at(2025, 1, 1))


class TestStatusBoard:
    def test_board_without_deliveries(self, registry, store, definition):
        from curvespine.curves import DefinitionIdentity

        other = store.get_or_create_definition(DefinitionIdentity("PJM", "WEST", "ATC", "PRICE"), "tests")
        registry.create_schedule(definition.id, _schedule(importance=2))
        registry.create_schedule(other.id, _schedule(importance=5))
        registry.create_schedule(other.id, _schedule(is_active=False))
        registry.create_schedule(definition.id, _schedule(valid_until=at(2025, 2, 1)))

        board = registry.status_board(at(2025, 3, 1))
        assert [v.definition_id for v in board] == [other.id, definition.id]
        assert all(v.status is ScheduleStatus.PENDING for v in board)
        assert all(v.is_overdue for v in board)
        assert board[0].next_due == at(2025, 1, 6)

    def test_board_tracks_latest_instance(self, registry, ledger, definition, period, payload):
        registry.create_schedule(definition.id, _schedule(frequency="DAILY", valid_from=at(2020, 1, 1)))
        inst = ledger.create_instance(definition.id, period, payload(status="DRAFT"))

        [view] = registry.status_board()
        assert view.status is ScheduleStatus.IN_PROGRESS
        assert view.last_instance_id == inst.id
        assert view.last_version_label == "v1"
        assert view.is_overdue is False
