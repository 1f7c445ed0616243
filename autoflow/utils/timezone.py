"""
Timezone utilities for consistent datetime handling.

Token expiries are compared across processes and databases, so every
timestamp handled by the credential layer is timezone-aware UTC.
"""

from datetime import datetime, timezone
from typing import Any, Optional


def utc_now() -> datetime:
    """Get current datetime in UTC (timezone-aware)."""
    return datetime.now(tz=timezone.utc)


def ensure_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Make a datetime timezone-aware.

    SQLite drops tzinfo on round-trip, so naive values read back from the
    database are assumed to be UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a stored timestamp into an aware UTC datetime.

    Accepts datetimes, ISO-8601 strings (including a trailing 'Z') and
    epoch seconds. Returns None for empty values.

    Raises:
        ValueError: If the value cannot be interpreted as a timestamp
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        return ensure_aware(value)

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)

    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return ensure_aware(datetime.fromisoformat(text))

    raise ValueError(f"Unsupported timestamp value: {value!r}")


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as ISO-8601 UTC, or None."""
    if dt is None:
        return None
    return ensure_aware(dt).isoformat()
