"""Tests for curvespine.core.errors."""

import pytest

from curvespine.core.errors import (
    ActiveInstanceConflict,
    ConfigError,
    ConflictError,
    CurveSpineError,
    ErrorCategory,
    ErrorContext,
    IntegrityViolation,
    LabelCollisionError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
    is_retryable,
)


class TestErrorContext:
    def test_empty_context_serialises_to_empty_dict(self):
        assert ErrorContext().to_dict() == {}

    def test_only_set_fields_are_emitted(self):
        ctx = ErrorContext(operation="merge", definition_id="D1", metadata={"attempt": 2})
        assert ctx.to_dict() == {"operation": "merge", "definition_id": "D1", "attempt": 2}


class TestCategories:
    @pytest.mark.parametrize(
        "error, category, retryable",
        [
            (ValidationError("bad"), ErrorCategory.VALIDATION, False),
            (NotFoundError("instance", "I1"), ErrorCategory.NOT_FOUND, False),
            (ConflictError("taken"), ErrorCategory.CONFLICT, False),
            (LabelCollisionError("v2"), ErrorCategory.CONFLICT, False),
            (ActiveInstanceConflict("race"), ErrorCategory.CONFLICT, False),
            (TransientStoreError("timeout"), ErrorCategory.DATABASE, True),
            (IntegrityViolation("leftover rows"), ErrorCategory.INTERNAL, False),
            (ConfigError("missing url"), ErrorCategory.CONFIG, False),
        ],
    )
    def test_defaults(self, error, category, retryable):
        assert error.category is category
        assert error.retryable is retryable
        assert is_retryable(error) is retryable

    def test_label_collision_is_a_conflict(self):
        err = LabelCollisionError("v2")
        assert isinstance(err, ConflictError)
        assert err.label == "v2"
        assert "v2" in err.message

    def test_not_found_message(self):
        err = NotFoundError("definition", "D9")
        assert err.message == "definition not found: D9"
        assert err.entity == "definition"
        assert err.entity_id == "D9"

    def test_retryable_override(self):
        assert TransientStoreError("x", retryable=False).retryable is False


class TestWithContext:
    def test_known_fields_and_metadata(self):
        err = NotFoundError("instance", "I1").with_context(
            operation="delete_instance", instance_id="I1", period_start="2025-04-01"
        )
        assert err.context.operation == "delete_instance"
        assert err.context.instance_id == "I1"
        assert err.context.metadata == {"period_start": "2025-04-01"}

    def test_returns_same_instance(self):
        err = ConflictError("taken")
        assert err.with_context(actor="ops") is err


class TestToDict:
    def test_validation_fields(self):
        err = ValidationError("Weight out of range", field="weight", value=1.5, constraint="0 <= w <= 1")
        d = err.to_dict()
        assert d["error_type"] == "ValidationError"
        assert d["category"] == "VALIDATION"
        assert d["field"] == "weight"
        assert d["value"] == "1.5"
        assert d["constraint"] == "0 <= w <= 1"

    def test_cause_is_chained(self):
        root = RuntimeError("deadlock detected")
        err = TransientStoreError("Store aborted the transaction", cause=root)
        assert err.__cause__ is root
        assert err.to_dict()["cause"] == "deadlock detected"


class TestDefaults:
    def test_plain_exceptions_are_not_retryable(self):
        assert is_retryable(RuntimeError("x")) is False

    def test_base_error_defaults_to_internal(self):
        assert CurveSpineError("x").category is ErrorCategory.INTERNAL
