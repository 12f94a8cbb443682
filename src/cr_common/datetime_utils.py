"""UTC datetime utilities."""

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def minutes_from_now(minutes: int) -> datetime:
    return utc_now() + timedelta(minutes=minutes)
