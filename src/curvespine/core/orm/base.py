"""Declarative base, column types and mixins for all curve-spine tables.

Uses SQLAlchemy 2.0 ``DeclarativeBase`` with a ``type_annotation_map``
that maps Python built-in types to portable SA column types.

Column types
------------
* **UTCDateTime** - stores naive UTC, always hands back aware UTC values so
  comparisons with ``utc_now()`` never mix naive and aware datetimes
  (SQLite drops tzinfo on the way back).

Mixins
------
* **TimestampMixin** - ``created_at`` / ``updated_at`` filled from
  ``utc_now()`` on the Python side, identical on every backend.
"""

from __future__ import annotations

import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, Text
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from curvespine.core.timestamps import ensure_utc, utc_now


class UTCDateTime(TypeDecorator[datetime.datetime]):
    """DateTime column that round-trips timezone-aware UTC values."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(
        self, value: datetime.datetime | None, dialect: Dialect
    ) -> datetime.datetime | None:
        if value is None:
            return None
        return ensure_utc(value).replace(tzinfo=None)

    def process_result_value(
        self, value: Any, dialect: Dialect
    ) -> datetime.datetime | None:
        if value is None:
            return None
        return ensure_utc(value)


class CurveBase(DeclarativeBase):
    """Shared declarative base for every curve-spine table.

    * ``str``   → ``Text``
    * ``int``   → ``Integer``
    * ``float`` → ``Float``
    * ``bool``  → ``Boolean`` (INTEGER 0/1 on SQLite)
    * ``datetime.datetime`` → ``UTCDateTime``
    * ``dict``  → ``JSON``
    """

    type_annotation_map = {
        str: Text,
        int: Integer,
        float: Float,
        bool: Boolean,
        datetime.datetime: UTCDateTime,
        dict: JSON,
    }


class TimestampMixin:
    """Mixin that adds ``created_at`` and ``updated_at``."""

    created_at: Mapped[datetime.datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime.datetime | None] = mapped_column(
        UTCDateTime, nullable=True, default=utc_now, onupdate=utc_now
    )
