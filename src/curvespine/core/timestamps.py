"""
Clock and identifier helpers.

Rows are keyed by ULIDs (26 Crockford base32 chars: 48-bit millisecond time
then 80 random bits) so ids sort by creation time. Every datetime the store
sees goes through :func:`ensure_utc` first.
"""

import secrets
import time
from datetime import UTC, datetime

_CROCKFORD = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Aware UTC copy of *dt*; naive values are read as UTC already."""
    if dt is None:
        return None
    return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt.astimezone(UTC)


def to_iso8601(dt: datetime | None) -> str | None:
    return None if dt is None else dt.isoformat()


def _base32(value: int, width: int) -> str:
    chars = [""] * width
    for pos in range(width - 1, -1, -1):
        value, digit = divmod(value, 32)
        chars[pos] = _CROCKFORD[digit]
    return "".join(chars)


def generate_ulid() -> str:
    millis = time.time_ns() // 1_000_000
    return _base32(millis, 10) + _base32(secrets.randbits(80), 16)
