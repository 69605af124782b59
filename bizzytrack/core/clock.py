from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    # Centralize timestamp generation so rows, audit entries and tests agree on UTC.
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; treat them as UTC before comparing.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
