"""
UTC helpers.

The database stores naive datetimes that are UTC by convention; the API
speaks ISO-8601 with a trailing 'Z'. Everything crossing that boundary goes
through these functions.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (the stored form)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(dt: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive input is already UTC."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an API timestamp into the stored form.

    Blank input gives None. Offsets ('Z', '+03:00') are folded into UTC; a
    timestamp without an offset is read as UTC. Raises ValueError for
    anything fromisoformat rejects.
    """
    text = (value or "").strip()
    if not text:
        return None
    if text[-1] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    return to_utc_naive(datetime.fromisoformat(text))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Serialize for the API: whole seconds, UTC, trailing 'Z'."""
    if dt is None:
        return None
    aware = dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    return aware.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
