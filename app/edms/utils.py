from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime(timezone=False) columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def iso_timestamp(value: datetime) -> str:
    # Millisecond precision with a Z suffix, e.g. 2026-01-15T10:30:00.123Z
    return value.isoformat(timespec="milliseconds") + "Z"


def clean_str(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None
