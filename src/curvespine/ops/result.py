"""
Result envelope for curve operations.

Operations never raise engine errors at their callers; they hand back an
:class:`OperationResult` that is either ``ok`` (with ``data``) or failed (with
an :class:`OperationError` whose ``code`` is derived from the error category).
``to_dict()`` is the JSON shape printed by ``curvespine ... --json``::

    {"success": true, "data": {...}, "metadata": {"dry_run": true}}
    {"success": false, "error": {"code": "NOT_FOUND", "message": "...", "retryable": false}}
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from curvespine.core.errors import CurveSpineError, ErrorCategory

FAILURE_CODES: dict[ErrorCategory, str] = {
    ErrorCategory.VALIDATION: "VALIDATION_FAILED",
    ErrorCategory.NOT_FOUND: "NOT_FOUND",
    ErrorCategory.CONFLICT: "CONFLICT",
    ErrorCategory.DATABASE: "TRANSIENT",
    ErrorCategory.CONFIG: "CONFIG",
}
FALLBACK_CODE = "INTERNAL"


@dataclass(frozen=True, slots=True)
class OperationError:
    """Why an operation failed; ``details`` holds the error context (ids, actor)."""

    code: str
    message: str
    retryable: bool = False
    category: ErrorCategory | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"code": self.code, "message": self.message, "retryable": self.retryable}
        if self.details:
            out["details"] = dict(self.details)
        return out


@dataclass
class OperationResult[T]:
    """Success or failure of one operation call.

    Build with :meth:`ok`, :meth:`fail` or :meth:`from_error`.
    """

    success: bool
    data: T | None = None
    error: OperationError | None = None
    warnings: list[str] = field(default_factory=list)
    elapsed_ms: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(
        cls,
        data: T,
        *,
        warnings: list[str] | None = None,
        elapsed_ms: float = 0.0,
        metadata: dict[str, Any] | None = None,
    ) -> OperationResult[T]:
        return cls(True, data, None, list(warnings or ()), elapsed_ms, dict(metadata or {}))

    @classmethod
    def fail(
        cls,
        code: str,
        message: str,
        *,
        category: ErrorCategory | None = None,
        details: dict[str, Any] | None = None,
        retryable: bool = False,
        elapsed_ms: float = 0.0,
        metadata: dict[str, Any] | None = None,
    ) -> OperationResult[T]:
        error = OperationError(code, message, retryable, category, dict(details or {}))
        return cls(False, None, error, [], elapsed_ms, dict(metadata or {}))

    @classmethod
    def from_error(cls, error: CurveSpineError, *, elapsed_ms: float = 0.0) -> OperationResult[T]:
        """Failed result carrying the error's category, retryability and context."""
        return cls.fail(
            FAILURE_CODES.get(error.category, FALLBACK_CODE),
            error.message,
            category=error.category,
            details=error.context.to_dict(),
            retryable=error.retryable,
            elapsed_ms=elapsed_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready dict; empty optional sections are left out."""
        out: dict[str, Any] = {"success": self.success}
        optional = {
            "data": None if self.data is None else _jsonable(self.data),
            "error": None if self.error is None else self.error.to_dict(),
            "warnings": self.warnings or None,
            "elapsed_ms": round(self.elapsed_ms, 2) if self.elapsed_ms else None,
            "metadata": self.metadata or None,
        }
        out.update((k, v) for k, v in optional.items() if v is not None)
        return out


def _jsonable(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [_jsonable(v) for v in value]
    return value


class Stopwatch:
    """Milliseconds since construction, for ``OperationResult.elapsed_ms``."""

    __slots__ = ("_t0",)

    def __init__(self) -> None:
        self._t0 = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        return 1000.0 * (time.perf_counter() - self._t0)


def start_timer() -> Stopwatch:
    return Stopwatch()


__all__ = ["FAILURE_CODES", "OperationError", "OperationResult", "Stopwatch", "start_timer"]
