"""
Time Utilities Module
Timestamp serialization and human-readable durations.
"""

from datetime import datetime, timedelta, timezone


def format_duration(elapsed: timedelta) -> str:
    """Format a duration as '{m}m {s}s' from one minute upwards, else '{s}s'."""
    seconds = int(elapsed.total_seconds())
    minutes = seconds // 60
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def to_utc(moment: datetime) -> datetime:
    # Naive datetimes are taken to be UTC already
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision, e.g. 2024-05-01T09:30:00.250Z"""
    moment = to_utc(moment)
    return moment.strftime('%Y-%m-%dT%H:%M:%S.') + f"{moment.microsecond // 1000:03d}Z"


def parse_timestamp(value: str) -> datetime:
    """Parse a timestamp written by format_timestamp (or any ISO-8601 string)."""
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    return to_utc(datetime.fromisoformat(value))
