"""Tests for the Instance Ledger: create, supersede, transition, delete."""

import datetime as _dt

import pytest
from sqlalchemy.exc import OperationalError

from curvespine.core.enums import ChangeType, InstanceStatus
from curvespine.core.errors import (
    ActiveInstanceConflict,
    ConflictError,
    LabelCollisionError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from curvespine.core.retry import ExponentialBackoff, retry_transient
from curvespine.curves import DefinitionIdentity, DeliveryPeriod

UTC = _dt.UTC
T0 = _dt.datetime(2025, 3, 1, 12, tzinfo=UTC)
T1 = T0 + _dt.timedelta(hours=1)
T2 = T0 + _dt.timedelta(hours=2)


def _active(ledger, definition_id):
    return ledger.list_instances(definition_id, InstanceStatus.ACTIVE)


class TestCreateInstance:
    def test_first_instance(self, ledger, chain, definition, period, payload):
        view = ledger.create_instance(definition.id, period, payload(), now=T0)

        assert view.version_label == "v1"
        assert view.status is InstanceStatus.ACTIVE
        assert view.freshness_start == T0
        assert view.freshness_end is None
        assert view.is_current
        assert view.delivery_start == period.start
        assert view.forecast_run_at == T0
        assert view.created_by == "tests"

        [entry] = chain.get_history(view.id)
        assert entry.change_type is ChangeType.INITIAL
        assert entry.previous_instance_id is None

    def test_supersession_end_to_end(self, ledger, chain, definition, period, payload):
        v1 = ledger.create_instance(definition.id, period, payload(), now=T0)
        v2 = ledger.create_instance(definition.id, period, payload(), now=T1)

        old = ledger.get_instance(v1.id)
        assert old.status is InstanceStatus.SUPERSEDED
        assert old.freshness_end == T1
        assert not old.is_current

        assert v2.version_label == "v2"
        assert v2.freshness_start == T1
        assert [i.id for i in _active(ledger, definition.id)] == [v2.id]
        assert ledger.get_active_instance(definition.id, period.start).id == v2.id

        [entry] = chain.get_history(v2.id)
        assert entry.change_type is ChangeType.UPDATE
        assert entry.previous_instance_id == v1.id

    def test_at_most_one_active_per_period(self, ledger, definition, period, payload):
        for i in range(4):
            ledger.create_instance(definition.id, period, payload(), now=T0 + _dt.timedelta(hours=i))
        labels = [i.version_label for i in ledger.list_instances(definition.id)]
        assert labels == ["v1", "v2", "v3", "v4"]
        assert len(_active(ledger, definition.id)) == 1

    def test_periods_are_independent(self, ledger, definition, period, other_period, payload):
        a = ledger.create_instance(definition.id, period, payload(), now=T0)
        b = ledger.create_instance(definition.id, other_period, payload(), now=T1)
        assert a.version_label == b.version_label == "v1"
        assert {i.id for i in _active(ledger, definition.id)} == {a.id, b.id}

    def test_explicit_label(self, ledger, definition, period, payload):
        view = ledger.create_instance(definition.id, period, payload(version_label="2024-Q4"), now=T0)
        assert view.version_label == "2024-Q4"
        nxt = ledger.create_instance(definition.id, period, payload(), now=T1)
        assert nxt.version_label == "v1"

    def test_label_collision_leaves_state_unchanged(self, ledger, definition, period, payload):
        v1 = ledger.create_instance(definition.id, period, payload(), now=T0)
        with pytest.raises(LabelCollisionError):
            ledger.create_instance(definition.id, period, payload(version_label="v1"), now=T1)

        [only] = ledger.list_instances(definition.id)
        assert only.id == v1.id
        assert only.status is InstanceStatus.ACTIVE
        assert only.freshness_end is None

    def test_forecast_run_at_is_kept(self, ledger, definition, period, payload):
        run_at = _dt.datetime(2025, 2, 28, 6, tzinfo=UTC)
        view = ledger.create_instance(
            definition.id, period, payload(forecast_run_at=run_at.isoformat()), now=T0
        )
        assert view.forecast_run_at == run_at

    def test_inverted_period(self, ledger, definition, period, payload):
        inverted = DeliveryPeriod(period.end, period.start)
        with pytest.raises(ValidationError):
            ledger.create_instance(definition.id, inverted, payload(), now=T0)

    def test_empty_period(self, ledger, definition, period, payload):
        with pytest.raises(ValidationError):
            ledger.create_instance(definition.id, DeliveryPeriod(period.start, period.start), payload())

    def test_unknown_definition(self, ledger, period, payload):
        with pytest.raises(NotFoundError):
            ledger.create_instance("missing", period, payload(), now=T0)

    def test_deactivated_definition(self, store, ledger, definition, period, payload):
        store.deactivate_definition(definition.id, "tests")
        with pytest.raises(ValidationError):
            ledger.create_instance(definition.id, period, payload(), now=T0)

    @pytest.mark.parametrize("status", ["SUPERSEDED", "EXPIRED", "APPROVED"])
    def test_initial_status_must_be_active_or_draft(self, ledger, definition, period, payload, status):
        with pytest.raises(ValidationError):
            ledger.create_instance(definition.id, period, payload(status=status), now=T0)

    def test_malformed_data_point(self, ledger, definition, period, payload):
        bad = payload()
        bad["data"][0]["value"] = "not-a-number"
        with pytest.raises(ValidationError) as exc_info:
            ledger.create_instance(definition.id, period, bad, now=T0)
        assert exc_info.value.field.startswith("payload.data")


class TestIdempotency:
    def test_replay_returns_stored_instance(self, ledger, definition, period, payload):
        first = ledger.create_instance(definition.id, period, payload(idempotency_key="upload-42"), now=T0)
        again = ledger.create_instance(definition.id, period, payload(idempotency_key="upload-42"), now=T1)

        assert again.id == first.id
        assert again.version_label == "v1"
        assert len(ledger.list_instances(definition.id)) == 1

    def test_key_used_by_other_definition(self, store, ledger, definition, period, payload):
        ledger.create_instance(definition.id, period, payload(idempotency_key="upload-42"), now=T0)
        other = store.get_or_create_definition(
            DefinitionIdentity("PJM", "WEST", "ATC", "PRICE"), "tests"
        )
        with pytest.raises(ConflictError):
            ledger.create_instance(other.id, period, payload(idempotency_key="upload-42"), now=T1)


class TestLifecycle:
    def test_draft_does_not_supersede(self, ledger, definition, period, payload):
        v1 = ledger.create_instance(definition.id, period, payload(), now=T0)
        draft = ledger.create_instance(definition.id, period, payload(status="DRAFT"), now=T1)

        assert draft.status is InstanceStatus.DRAFT
        assert draft.version_label == "v2"
        assert ledger.get_active_instance(definition.id, period.start).id == v1.id

    def test_activate_draft_supersedes_current(self, ledger, definition, period, payload):
        v1 = ledger.create_instance(definition.id, period, payload(), now=T0)
        draft = ledger.create_instance(definition.id, period, payload(status="DRAFT"), now=T1)

        active = ledger.activate_instance(draft.id, "tests", now=T2)
        assert active.status is InstanceStatus.ACTIVE
        assert active.freshness_start == T2

        old = ledger.get_instance(v1.id)
        assert old.status is InstanceStatus.SUPERSEDED
        assert old.freshness_end == T2
        assert [i.id for i in _active(ledger, definition.id)] == [draft.id]

    def test_approval_path(self, ledger, definition, period, payload):
        draft = ledger.create_instance(definition.id, period, payload(status="DRAFT"), now=T0)
        ledger.transition_status(draft.id, "PENDING_APPROVAL", "analyst", now=T0)
        ledger.transition_status(draft.id, InstanceStatus.APPROVED, "lead", now=T1)
        assert ledger.activate_instance(draft.id, now=T2).status is InstanceStatus.ACTIVE

    def test_expire_closes_window(self, ledger, definition, period, payload):
        v1 = ledger.create_instance(definition.id, period, payload(), now=T0)
        expired = ledger.transition_status(v1.id, "EXPIRED", now=T1)
        assert expired.status is InstanceStatus.EXPIRED
        assert expired.freshness_end == T1
        assert ledger.get_active_instance(definition.id, period.start) is None

    @pytest.mark.parametrize(
        "start, target",
        [
            ("SUPERSEDED", "ACTIVE"),
            ("DRAFT", "APPROVED"),
            ("ACTIVE", "DRAFT"),
        ],
    )
    def test_illegal_transitions(self, ledger, definition, period, payload, start, target):
        first = ledger.create_instance(definition.id, period, payload(), now=T0)
        if start == "SUPERSEDED":
            ledger.create_instance(definition.id, period, payload(), now=T1)
            subject = first
        elif start == "DRAFT":
            subject = ledger.create_instance(definition.id, period, payload(status="DRAFT"), now=T1)
        else:
            subject = first
        with pytest.raises(ValidationError):
            ledger.transition_status(subject.id, target, now=T2)

    def test_transition_unknown_instance(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.transition_status("missing", "ACTIVE")


class TestDelete:
    def test_delete_cascades_to_owned_rows(self, ledger, definition, period, payload):
        inputs = [
            {
                "input_type": "WEATHER_FORECAST",
                "source": "NOAA",
                "identifier": "GFS-00Z",
                "input_timestamp": T0.isoformat(),
                "weight": 0.5,
            }
        ]
        v1 = ledger.create_instance(definition.id, period, payload(rows=4, inputs=inputs), now=T0)

        report = ledger.delete_instance(v1.id, "tests")
        assert report.counts["curve_data"] == 4
        assert report.counts["curve_input_lineage"] == 1
        assert report.counts["curve_version_history"] == 1
        assert report.counts["curve_instances"] == 1
        assert report.total == 7
        with pytest.raises(NotFoundError):
            ledger.get_instance(v1.id)

    def test_delete_predecessor_clears_successor_link(self, ledger, chain, definition, period, payload):
        v1 = ledger.create_instance(definition.id, period, payload(), now=T0)
        v2 = ledger.create_instance(definition.id, period, payload(), now=T1)

        report = ledger.delete_instance(v1.id)
        assert report.counts["curve_version_history.previous_instance_id"] == 1

        [entry] = chain.get_history(v2.id)
        assert entry.previous_instance_id is None
        assert ledger.get_instance(v2.id).status is InstanceStatus.ACTIVE

    def test_delete_unknown(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.delete_instance("missing")

    def test_delete_by_label(self, ledger, definition, period, other_period, payload):
        ledger.create_instance(definition.id, period, payload(), now=T0)
        keep = ledger.create_instance(definition.id, other_period, payload(), now=T1)

        with pytest.raises(ValidationError):
            ledger.delete_instance_by_label(definition.id, "v1")

        report = ledger.delete_instance_by_label(definition.id, "v1", period_start=period.start)
        assert report.counts["curve_instances"] == 1
        assert [i.id for i in ledger.list_instances(definition.id)] == [keep.id]

    def test_delete_by_unknown_label(self, ledger, definition):
        with pytest.raises(NotFoundError):
            ledger.delete_instance_by_label(definition.id, "v9")


class TestReads:
    def test_latest_instance(self, ledger, definition, period, other_period, payload):
        assert ledger.latest_instance(definition.id) is None
        ledger.create_instance(definition.id, period, payload(), now=T0)
        b = ledger.create_instance(definition.id, other_period, payload(), now=T1)
        assert ledger.latest_instance(definition.id).id == b.id

    def test_view_to_dict_is_json_ready(self, ledger, definition, period, payload):
        view = ledger.create_instance(definition.id, period, payload(), now=T0)
        d = view.to_dict()
        assert d["status"] == "ACTIVE"
        assert d["freshness_start"] == T0.isoformat()
        assert d["freshness_end"] is None


class TestVersionLabels:
    def test_label_continues_from_highest_numbered_label(self, ledger, definition, period, payload):
        ledger.create_instance(definition.id, period, payload(), now=T0)
        ledger.create_instance(definition.id, period, payload(status="DRAFT", version_label="v4-merged-1"), now=T1)
        ledger.create_instance(definition.id, period, payload(status="DRAFT", version_label="2024-Q4"), now=T1)

        assert ledger.create_instance(definition.id, period, payload(), now=T2).version_label == "v2"


class TestHistoryPredecessor:
    def test_active_insert_follows_the_instance_it_superseded(self, ledger, chain, definition, period, payload):
        v1 = ledger.create_instance(definition.id, period, payload(), now=T0)
        draft = ledger.create_instance(definition.id, period, payload(status="DRAFT"), now=T1)
        v3 = ledger.create_instance(definition.id, period, payload(), now=T2)

        assert v3.version_label == "v3"
        [entry] = chain.get_history(v3.id)
        assert entry.previous_instance_id == v1.id
        assert entry.change_type is ChangeType.UPDATE

        [draft_entry] = chain.get_history(draft.id)
        assert draft_entry.previous_instance_id == v1.id

    def test_draft_without_current_follows_latest(self, ledger, chain, definition, period, payload):
        v1 = ledger.create_instance(definition.id, period, payload(), now=T0)
        ledger.transition_status(v1.id, "EXPIRED", now=T1)
        draft = ledger.create_instance(definition.id, period, payload(status="DRAFT"), now=T2)

        [entry] = chain.get_history(draft.id)
        assert entry.previous_instance_id == v1.id


class TestManualExitFromActive:
    def test_superseded_by_hand_closes_data_groups(self, ledger, tracker, definition, period, payload):
        v1 = ledger.create_instance(definition.id, period, payload(), now=T0)

        ledger.transition_status(v1.id, "SUPERSEDED", "ops", now=T1)

        assert ledger.get_instance(v1.id).freshness_end == T1
        assert tracker.get_fresh_groups(definition.id, now=T2) == []


class TestStoreFailures:
    def test_concurrent_writer_loses_on_the_unique_index(self, ledger, definition, period, payload, monkeypatch):
        v1 = ledger.create_instance(definition.id, period, payload(), now=T0)
        # the row lock found nothing, as if the other writer committed after our SELECT
        monkeypatch.setattr("curvespine.curves.ledger.lock_current_active", lambda *a, **k: None)

        with pytest.raises(ActiveInstanceConflict):
            ledger.create_instance(definition.id, period, payload(), now=T1)

        [only] = ledger.list_instances(definition.id)
        assert only.id == v1.id
        assert only.status is InstanceStatus.ACTIVE
        assert only.freshness_end is None

    def test_operational_error_is_transient_and_retried(self, ledger, definition, period, payload, monkeypatch):
        from curvespine.curves import ledger as ledger_module

        real_lock = ledger_module.lock_current_active
        calls = []

        def locked_once(*args, **kwargs):
            calls.append(1)
            if len(calls) == 1:
                raise OperationalError("SELECT ... FOR UPDATE", {}, Exception("database is locked"))
            return real_lock(*args, **kwargs)

        monkeypatch.setattr(ledger_module, "lock_current_active", locked_once)

        with pytest.raises(TransientStoreError) as excinfo:
            ledger.create_instance(definition.id, period, payload(), now=T0)
        assert excinfo.value.retryable is True
        assert ledger.list_instances(definition.id) == []

        calls.clear()
        strategy = ExponentialBackoff(max_retries=2, base_delay=0.0, jitter=False)
        view = retry_transient(ledger.create_instance, definition.id, period, payload(), now=T0, strategy=strategy)

        assert len(calls) == 2
        assert view.version_label == "v1"
        assert [i.id for i in ledger.list_instances(definition.id)] == [view.id]
