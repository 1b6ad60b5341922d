"""Time helpers.

SQLite hands back naive datetimes for ``DateTime(timezone=True)`` columns,
so every comparison goes through ``ensure_utc``.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Clock:
    """Wall clock handed to services through the app context."""

    def now(self) -> datetime:
        return utcnow()
