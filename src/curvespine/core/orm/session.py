"""Engine and session wiring plus the transaction boundary.

Every mutating engine call runs inside :func:`transaction`, so it either
commits completely or leaves the store untouched. Driver exceptions leave
this module as curve-spine errors:

==========================================  ==========================
SQLAlchemy                                  raised as
==========================================  ==========================
``IntegrityError`` (unique/partial index)   ``ConflictError``
``OperationalError`` (lock, serialization)  ``TransientStoreError``
``DBAPIError`` with invalidated connection  ``TransientStoreError``
==========================================  ==========================
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import sqlalchemy as sa
from sqlalchemy import event
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from curvespine.core.errors import ConflictError, TransientStoreError

_SQLITE_PRAGMAS = ("PRAGMA journal_mode=WAL", "PRAGMA foreign_keys=ON")


def _on_sqlite_connect(dbapi_connection: Any, _record: Any) -> None:
    cursor = dbapi_connection.cursor()
    try:
        for pragma in _SQLITE_PRAGMAS:
            cursor.execute(pragma)
    finally:
        cursor.close()


def create_curve_engine(url: str = "sqlite:///curvespine.db", *, echo: bool = False, **kwargs: Any) -> Engine:
    """Engine for *url*; extra keyword arguments go to ``sqlalchemy.create_engine``.

    SQLite connections get WAL journaling and enforced foreign keys, which the
    ownership cascade relies on.
    """
    is_sqlite = sa.engine.make_url(url).get_backend_name() == "sqlite"
    if is_sqlite:
        kwargs.setdefault("connect_args", {"check_same_thread": False, "timeout": 15})
    engine = sa.create_engine(url, echo=echo, **kwargs)
    if is_sqlite:
        event.listen(engine, "connect", _on_sqlite_connect)
    return engine


class CurveSession(Session):
    """Session whose loaded rows stay readable after commit."""

    def __init__(self, bind: Engine | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("expire_on_commit", False)
        super().__init__(bind=bind, **kwargs)


SessionFactory = sessionmaker[CurveSession]


def curve_session_factory(engine: Engine) -> SessionFactory:
    return sessionmaker(bind=engine, class_=CurveSession)


@contextmanager
def transaction(factory: SessionFactory) -> Iterator[CurveSession]:
    """Yield a session inside ``begin()``; commit on exit, roll back on error."""
    with factory() as session:
        try:
            with session.begin():
                yield session
        except sa_exc.IntegrityError as e:
            raise ConflictError("Store rejected the write (constraint violation)", cause=e) from e
        except sa_exc.OperationalError as e:
            raise TransientStoreError("Store aborted the transaction", cause=e) from e
        except sa_exc.DBAPIError as e:
            if not e.connection_invalidated:
                raise
            raise TransientStoreError("Store connection lost", cause=e) from e


__all__ = [
    "CurveSession",
    "SessionFactory",
    "create_curve_engine",
    "curve_session_factory",
    "transaction",
]
