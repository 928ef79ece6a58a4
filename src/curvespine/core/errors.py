"""
Exceptions raised by the curve engine.

The exception type tells the caller what to do next:

- :class:`ValidationError` - fix the input and call again.
- :class:`NotFoundError` - the id does not exist (or was merged away).
- :class:`ConflictError` and subclasses - pick another label, or accept the
  instance that is already current.
- :class:`TransientStoreError` - retry the whole call; nothing was committed.
- :class:`IntegrityViolation` - the transaction found state it cannot explain
  and rolled back.

Each error carries an :class:`ErrorContext` with the ids involved, so a
single ``logger.warning("op_failed", **err.to_dict())`` is enough to audit it.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    VALIDATION = "VALIDATION"
    CONFLICT = "CONFLICT"
    NOT_FOUND = "NOT_FOUND"
    DATABASE = "DATABASE"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Ids and the operation name attached to an error.

    Keys that are not one of the named fields land in ``metadata``.
    """

    operation: str | None = None
    actor: str | None = None
    definition_id: str | None = None
    instance_id: str | None = None
    schedule_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "metadata" and getattr(self, f.name) is not None
        }
        out.update(self.metadata)
        return out


class CurveSpineError(Exception):
    """Root of every error the engine raises.

    ``category`` and ``retryable`` come from the subclass unless overridden
    per instance. ``cause`` is chained as ``__cause__``.
    """

    category: ErrorCategory = ErrorCategory.INTERNAL
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        if category is not None:
            self.category = category
        if retryable is not None:
            self.retryable = retryable
        self.context = context if context is not None else ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **values: Any) -> CurveSpineError:
        """Attach ids to the error and return it, for ``raise X(...).with_context(...)``."""
        known = {f.name for f in fields(self.context)} - {"metadata"}
        for key, value in values.items():
            if key in known:
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if ctx := self.context.to_dict():
            out["context"] = ctx
        if self.cause is not None:
            out["cause"] = str(self.cause)
        return out

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


class ValidationError(CurveSpineError):
    """Input the engine refuses: inverted period, weight outside [0, 1], bad transition."""

    category = ErrorCategory.VALIDATION

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        constraint: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value
        self.constraint = constraint

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        if self.field:
            out["field"] = self.field
        if self.value is not None:
            out["value"] = repr(self.value)
        if self.constraint:
            out["constraint"] = self.constraint
        return out


class NotFoundError(CurveSpineError):
    category = ErrorCategory.NOT_FOUND

    def __init__(self, entity: str, entity_id: Any, message: str | None = None, **kwargs: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(message or f"{entity} not found: {entity_id}", **kwargs)


class ConflictError(CurveSpineError):
    """The write collides with state another caller already committed."""

    category = ErrorCategory.CONFLICT


class LabelCollisionError(ConflictError):
    """Version label already used for this definition and delivery period."""

    def __init__(self, label: str, message: str | None = None, **kwargs: Any):
        self.label = label
        super().__init__(message or f"Version label already in use: {label}", **kwargs)


class ActiveInstanceConflict(ConflictError):
    """Another writer committed the ACTIVE instance for the period first."""


class TransientStoreError(CurveSpineError):
    """Serialization failure, lock timeout or dropped connection."""

    category = ErrorCategory.DATABASE
    retryable = True


class IntegrityViolation(CurveSpineError):
    """Unexpected rows mid-transaction; the attempt was rolled back."""


class ConfigError(CurveSpineError):
    category = ErrorCategory.CONFIG


def is_retryable(error: BaseException) -> bool:
    return isinstance(error, CurveSpineError) and error.retryable


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "CurveSpineError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "LabelCollisionError",
    "ActiveInstanceConflict",
    "TransientStoreError",
    "IntegrityViolation",
    "ConfigError",
    "is_retryable",
]
