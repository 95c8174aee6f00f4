from datetime import datetime
import pytz


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(pytz.utc)


def ensure_aware(value: datetime) -> datetime:
    """
    Treat naive datetimes as UTC.

    Some backends (SQLite) drop the offset on DateTime(timezone=True) columns;
    everything is written in UTC so localizing as UTC restores the original value.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return pytz.utc.localize(value)
    return value
