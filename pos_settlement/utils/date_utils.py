"""Date manipulation utilities"""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes read back from the store as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_within(value: datetime, now: datetime, window_seconds: float) -> bool:
    """True when value falls inside the trailing window ending at now"""
    return ensure_utc(now) - ensure_utc(value) <= timedelta(seconds=window_seconds)
