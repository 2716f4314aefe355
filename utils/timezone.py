"""UTC-everywhere time handling for ledger timestamps and due dates."""

from datetime import datetime, timedelta, timezone


def now_utc() -> datetime:
    """
    Current time in UTC.

    Use this instead of datetime.now() everywhere.
    """
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC.

    Raises ValueError if datetime is naive (no timezone).
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot convert naive datetime to UTC. Datetime must be timezone-aware."
        )
    return dt.astimezone(timezone.utc)


def days_from(start: datetime, days: int) -> datetime:
    """Shift an aware datetime by a whole number of days, staying in UTC."""
    return to_utc(start) + timedelta(days=days)


def utc_date_key(dt: datetime) -> str:
    """Calendar day (YYYY-MM-DD) of an aware datetime, evaluated in UTC."""
    return to_utc(dt).date().isoformat()
