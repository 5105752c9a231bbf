"""Timestamp helpers: every stored timestamp is ISO 8601 UTC text."""

from __future__ import annotations

from datetime import datetime, timezone

import pendulum


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def format_iso(dt: datetime) -> str:
    """Format datetime as ISO 8601 for storage and JSON serialization."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def parse_iso(value: str) -> datetime | None:
    """Parse a stored ISO 8601 timestamp, returning None when it is malformed."""
    try:
        parsed = pendulum.parse(value, tz="UTC", strict=False)
    except ValueError:
        return None
    if not isinstance(parsed, datetime):
        return None
    return parsed
