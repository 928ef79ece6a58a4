"""Who is calling an operation, against which store, and whether it may write."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from curvespine.core.orm.session import SessionFactory


def _request_id() -> str:
    return uuid.uuid4().hex


@dataclass
class OperationContext:
    """First argument of every ``curvespine.ops`` function.

    ``user`` becomes the actor on mutations and in the log context.
    ``caller`` names the front end (``"cli"``, ``"sdk"``). With ``dry_run``
    set, mutating operations report what they would do and roll back.
    """

    factory: SessionFactory
    caller: str = "sdk"
    user: str | None = None
    dry_run: bool = False
    request_id: str = field(default_factory=_request_id)
