"""Identity Store -- curve definitions keyed by their identity tuple.

The identity tuple (market, location, product, curve_type, duration_class,
scenario) should map to one canonical active definition. Duplicates are
not blocked by a constraint; :meth:`IdentityStore.find_duplicates` reports
them for the merge coordinator. The canonical definition of a tuple is the
oldest active one.

Tags:
    curve-spine, definitions, identity

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections import defaultdict

from sqlalchemy import select

from curvespine.core.errors import NotFoundError
from curvespine.core.logging import LogContext, get_logger
from curvespine.core.orm.session import SessionFactory, transaction
from curvespine.core.orm.tables import DefinitionTable
from curvespine.curves.models import (
    DefinitionIdentity,
    DefinitionView,
    DeletionReport,
    Recommendation,
)
from curvespine.curves.ownership import cascade_delete

logger = get_logger(__name__)

CREATE_DEFINITION = "CREATE_DEFINITION"
CREATE_INSTANCE = "CREATE_INSTANCE"
CHOOSE_DEFINITION = "CHOOSE_DEFINITION"


def _identity_filter(identity: DefinitionIdentity):
    return (
        DefinitionTable.market == identity.market,
        DefinitionTable.location == identity.location,
        DefinitionTable.product == identity.product,
        DefinitionTable.curve_type == identity.curve_type,
        DefinitionTable.duration_class == identity.duration_class,
        DefinitionTable.scenario == identity.scenario,
    )


def default_curve_name(identity: DefinitionIdentity) -> str:
    parts = [identity.market, identity.location, identity.product, identity.curve_type]
    if identity.duration_class:
        parts.append(identity.duration_class)
    if identity.scenario and identity.scenario != "BASE":
        parts.append(identity.scenario)
    return " ".join(parts)


class IdentityStore:
    """Curve definitions."""

    def __init__(self, factory: SessionFactory):
        self._factory = factory

    def get_or_create_definition(
        self,
        identity: DefinitionIdentity,
        actor: str | None = None,
        *,
        curve_name: str | None = None,
        units: str | None = None,
        timezone: str = "UTC",
    ) -> DefinitionView:
        with transaction(self._factory) as session:
            row = session.scalars(
                select(DefinitionTable)
                .where(*_identity_filter(identity), DefinitionTable.is_active.is_(True))
                .order_by(DefinitionTable.created_at, DefinitionTable.id)
                .limit(1)
            ).first()
            created = row is None
            if created:
                row = DefinitionTable(
                    curve_name=curve_name or default_curve_name(identity),
                    market=identity.market,
                    location=identity.location,
                    product=identity.product,
                    curve_type=identity.curve_type,
                    duration_class=identity.duration_class,
                    scenario=identity.scenario,
                    units=units,
                    timezone=timezone,
                    is_active=True,
                    created_by=actor,
                )
                session.add(row)
                session.flush()
            view = DefinitionView.from_row(row)
        if created:
            logger.info("definition.created", definition_id=view.id, curve_name=view.curve_name, actor=actor)
        return view

    def get_definition(self, definition_id: str) -> DefinitionView:
        with self._factory() as session:
            row = session.get(DefinitionTable, definition_id)
            if row is None:
                raise NotFoundError("definition", definition_id)
            return DefinitionView.from_row(row)

    def list_definitions(
        self,
        market: str | None = None,
        location: str | None = None,
        include_inactive: bool = False,
    ) -> list[DefinitionView]:
        stmt = select(DefinitionTable)
        if market:
            stmt = stmt.where(DefinitionTable.market == market)
        if location:
            stmt = stmt.where(DefinitionTable.location == location)
        if not include_inactive:
            stmt = stmt.where(DefinitionTable.is_active.is_(True))
        stmt = stmt.order_by(DefinitionTable.market, DefinitionTable.location, DefinitionTable.created_at)
        with self._factory() as session:
            return [DefinitionView.from_row(r) for r in session.scalars(stmt)]

    def deactivate_definition(self, definition_id: str, actor: str | None = None) -> DefinitionView:
        with LogContext(actor=actor, operation="deactivate_definition"):
            with transaction(self._factory) as session:
                row = session.get(DefinitionTable, definition_id, with_for_update=True)
                if row is None:
                    raise NotFoundError("definition", definition_id)
                row.is_active = False
                session.flush()
                view = DefinitionView.from_row(row)
            logger.info("definition.deactivated", definition_id=definition_id)
        return view

    def delete_definition(self, definition_id: str, actor: str | None = None) -> DeletionReport:
        """Hard delete with everything the definition owns, in one transaction."""
        with LogContext(actor=actor, operation="delete_definition"):
            with transaction(self._factory) as session:
                if session.get(DefinitionTable, definition_id, with_for_update=True) is None:
                    raise NotFoundError("definition", definition_id)
                counts = cascade_delete(session, DefinitionTable, [definition_id])
            logger.warning("definition.deleted", definition_id=definition_id, counts=counts)
        return DeletionReport("definition", definition_id, counts)

    def find_duplicates(self) -> list[list[DefinitionView]]:
        """Groups (oldest first) of active definitions sharing an identity tuple."""
        groups: dict[tuple[str, ...], list[DefinitionView]] = defaultdict(list)
        for view in self.list_definitions():
            groups[view.identity.key()].append(view)
        return [
            sorted(views, key=lambda v: (v.created_at, v.id))
            for _, views in sorted(groups.items())
            if len(views) > 1
        ]

    def recommend(
        self, market: str, location: str, duration_class: str | None = None
    ) -> Recommendation:
        """Should an upload create a definition or an instance?"""
        matches = [
            v
            for v in self.list_definitions(market=market, location=location)
            if not duration_class or v.duration_class == duration_class
        ]
        if not matches:
            action = CREATE_DEFINITION
        elif len(matches) == 1:
            action = CREATE_INSTANCE
        else:
            action = CHOOSE_DEFINITION
        return Recommendation(action=action, definitions=tuple(matches))


__all__ = [
    "IdentityStore",
    "default_curve_name",
    "CREATE_DEFINITION",
    "CREATE_INSTANCE",
    "CHOOSE_DEFINITION",
]
