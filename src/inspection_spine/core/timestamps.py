"""
ULID generation and timestamp utilities (stdlib-only).

Record ids are time-sortable ULID-like strings; every persisted instant is
an aware UTC datetime serialized as ISO 8601.  Calendar arithmetic happens
on local wall-clock values in a schedule's IANA zone, and is converted back
to UTC with ``local_to_utc``.

Tags:
    timestamps, ulid, utc, datetime, zoneinfo, inspection-spine, stdlib-only

Doc-Types:
    - API Reference
"""

import random
import time
from datetime import UTC, date, datetime
from datetime import time as dtime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Return ``dt`` as an aware UTC datetime (naive values are taken as UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def load_zone(name: str) -> ZoneInfo:
    """Resolve an IANA zone name.

    Raises:
        ValueError: If the zone is unknown.
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {name!r}") from exc


def local_to_utc(day: date, at: dtime, zone: ZoneInfo) -> datetime:
    """Wall-clock ``day`` + ``at`` in ``zone`` as a UTC instant.

    Ambiguous fall-back times resolve to the first occurrence (fold=0);
    non-existent spring-forward times shift by the gap, as zoneinfo does.
    """
    return datetime.combine(day, at, tzinfo=zone).astimezone(UTC)


def local_date(dt: datetime, zone: ZoneInfo) -> date:
    """Calendar date of instant ``dt`` as seen in ``zone``."""
    return ensure_utc(dt).astimezone(zone).date()


def generate_ulid() -> str:
    """
    Generate a ULID-like identifier.

    Format: 26 characters, base32 encoded, time-sortable.
    """
    timestamp_ms = int(time.time() * 1000)
    timestamp_chars = _encode_base32(timestamp_ms, 10)
    random_part = "".join(random.choices(_ENCODING, k=16))
    return timestamp_chars + random_part


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to ISO 8601 string (normalized to UTC)."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()


def from_iso8601(s: str | None) -> datetime | None:
    """Parse ISO 8601 string to an aware UTC datetime."""
    if s is None:
        return None
    return ensure_utc(datetime.fromisoformat(s))


# ULID base32 alphabet (Crockford's)
_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_ENCODING_LEN = len(_ENCODING)


def _encode_base32(value: int, length: int) -> str:
    """Encode integer to base32 string of fixed length."""
    result = []
    for _ in range(length):
        result.append(_ENCODING[value % _ENCODING_LEN])
        value //= _ENCODING_LEN
    return "".join(reversed(result))
