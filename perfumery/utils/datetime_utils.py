"""Datetime utilities for timezone-aware UTC timestamps.

Usage:
    from perfumery.utils.datetime_utils import utc_now

    # For SQLAlchemy Column defaults
    adjusted_at = Column(DateTime, default=utc_now)
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to timezone-aware UTC.

    SQLite hands DateTime columns back without tzinfo; naive values are
    treated as already being UTC.

    Args:
        value: Datetime to normalize

    Returns:
        Timezone-aware UTC datetime
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
