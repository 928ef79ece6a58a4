"""SQLAlchemy 2.0 persistence layer for curve-spine.

Modules
-------
base        CurveBase (declarative base) + UTCDateTime + TimestampMixin
session     Engine factory, CurveSession, transaction boundary
tables      The eight mapped tables (DefinitionTable, InstanceTable, ...)

Tags:
    curve-spine, orm, sqlalchemy, declarative

Doc-Types:
    package-overview, module-index
"""

from __future__ import annotations

from curvespine.core.orm.base import CurveBase, TimestampMixin, UTCDateTime
from curvespine.core.orm.session import (
    CurveSession,
    SessionFactory,
    create_curve_engine,
    curve_session_factory,
    transaction,
)
from curvespine.core.orm.tables import *  # noqa: F401,F403
from curvespine.core.orm.tables import __all__ as _table_names


def create_all(engine) -> None:
    """Create every curve-spine table (and index) that does not exist yet."""
    CurveBase.metadata.create_all(engine)


__all__ = [
    "CurveBase",
    "TimestampMixin",
    "UTCDateTime",
    "create_curve_engine",
    "CurveSession",
    "SessionFactory",
    "curve_session_factory",
    "transaction",
    "create_all",
    *_table_names,
]
