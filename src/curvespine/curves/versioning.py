"""Version Chain -- version labels and the predecessor history of instances.

``next_version`` is pure. New labels continue from the highest ``v<integer>``
label of the delivery period (:func:`highest_version_label`). Labels are free
text elsewhere (``2024-Q4``), so a period with no numbered label restarts at
``v1`` instead of guessing. Callers check for collisions with
:func:`ensure_label_available` before persisting a label.
"""

from __future__ import annotations

import datetime as _dt
import re

from sqlalchemy import select
from sqlalchemy.orm import Session

from curvespine.core.enums import ChangeType
from curvespine.core.errors import LabelCollisionError, NotFoundError
from curvespine.core.logging import get_logger
from curvespine.core.orm.session import SessionFactory
from curvespine.core.orm.tables import InstanceTable, VersionHistoryTable
from curvespine.curves.models import HistoryEntry

logger = get_logger(__name__)

_VERSION_RE = re.compile(r"[vV](\d+)")


def parse_version(label: str | None) -> int | None:
    """Return the integer of a ``v<integer>`` label, else ``None``."""
    if not label:
        return None
    match = _VERSION_RE.fullmatch(label.strip())
    if match is None:
        return None
    return int(match.group(1))


def highest_version_label(
    session: Session, definition_id: str, period_start: _dt.datetime
) -> str | None:
    """The period's ``v<integer>`` label with the largest number, if any.

    Merge renames (``v1-merged-1``) and free-text labels are skipped, so they
    never reset the sequence.
    """
    labels = session.scalars(
        select(InstanceTable.version_label).where(
            InstanceTable.definition_id == definition_id,
            InstanceTable.delivery_start == period_start,
        )
    )
    numbered = [(n, label) for label in labels if (n := parse_version(label)) is not None]
    return max(numbered)[1] if numbered else None


def next_version(previous_label: str | None) -> str:
    """``v3`` -> ``v4``; empty or unparsable labels -> ``v1``."""
    number = parse_version(previous_label)
    if number is None:
        return "v1"
    return f"v{number + 1}"


def label_exists(
    session: Session, definition_id: str, period_start: _dt.datetime, label: str
) -> bool:
    found = session.scalar(
        select(InstanceTable.id).where(
            InstanceTable.definition_id == definition_id,
            InstanceTable.delivery_start == period_start,
            InstanceTable.version_label == label,
        )
    )
    return found is not None


def ensure_label_available(
    session: Session, definition_id: str, period_start: _dt.datetime, label: str
) -> None:
    """Raise ``LabelCollisionError`` if *label* is taken for the period."""
    if label_exists(session, definition_id, period_start, label):
        raise LabelCollisionError(label).with_context(
            definition_id=definition_id, period_start=period_start.isoformat()
        )


def record_history(
    session: Session,
    instance_id: str,
    previous_instance_id: str | None,
    change_type: ChangeType,
    reason: str | None = None,
    actor: str | None = None,
) -> VersionHistoryTable:
    """Append one predecessor -> successor entry."""
    entry = VersionHistoryTable(
        instance_id=instance_id,
        previous_instance_id=previous_instance_id,
        change_type=ChangeType(change_type).value,
        change_reason=reason,
        changed_by=actor,
    )
    session.add(entry)
    return entry


class VersionChain:
    """Read access to version history."""

    def __init__(self, factory: SessionFactory):
        self._factory = factory

    def get_history(self, instance_id: str) -> list[HistoryEntry]:
        with self._factory() as session:
            rows = session.scalars(
                select(VersionHistoryTable)
                .where(VersionHistoryTable.instance_id == instance_id)
                .order_by(VersionHistoryTable.created_at, VersionHistoryTable.id)
            )
            return [HistoryEntry.from_row(r) for r in rows]

    def get_chain(self, instance_id: str) -> list[HistoryEntry]:
        """Walk predecessor links from *instance_id* back to the first version.

        Returns newest first. Stops at an entry without predecessor or at a
        link already visited.
        """
        chain: list[HistoryEntry] = []
        seen: set[str] = set()
        with self._factory() as session:
            if session.get(InstanceTable, instance_id) is None:
                raise NotFoundError("instance", instance_id)
            current: str | None = instance_id
            while current is not None:
                if current in seen:
                    logger.warning("version_chain.cycle", instance_id=instance_id, at=current)
                    break
                seen.add(current)
                row = session.scalars(
                    select(VersionHistoryTable)
                    .where(VersionHistoryTable.instance_id == current)
                    .order_by(VersionHistoryTable.created_at.desc(), VersionHistoryTable.id.desc())
                    .limit(1)
                ).first()
                if row is None:
                    break
                chain.append(HistoryEntry.from_row(row))
                current = row.previous_instance_id
        return chain


__all__ = [
    "parse_version",
    "next_version",
    "highest_version_label",
    "label_exists",
    "ensure_label_available",
    "record_history",
    "VersionChain",
]
