"""Curve Spine core -- platform primitives shared by every engine module.

Architecture::

    errors.py          Structured error hierarchy (CurveSpineError, TransientStoreError)
    enums.py           Instance / schedule / lineage enums
    timestamps.py      ULID generation + UTC helpers (stdlib-only)
    logging.py         structlog configuration + LogContext
    settings.py        pydantic-settings configuration (CURVESPINE_*)
    retry.py           Retry strategies for transient store failures
    orm/               SQLAlchemy 2.0 tables, engine, transaction boundary
"""

from curvespine.core.errors import (
    ConfigError,
    ConflictError,
    CurveSpineError,
    ErrorCategory,
    IntegrityViolation,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from curvespine.core.timestamps import generate_ulid, utc_now

__all__ = [
    "CurveSpineError",
    "ErrorCategory",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "TransientStoreError",
    "IntegrityViolation",
    "ConfigError",
    "generate_ulid",
    "utc_now",
]
