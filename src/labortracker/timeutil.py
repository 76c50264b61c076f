"""Timestamp helpers.

All timestamps handled by the store are timezone-aware and truncated to
millisecond precision so that epoch-millisecond round trips are exact.
"""

from datetime import datetime, timedelta, timezone, tzinfo

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
ONE_MS = timedelta(milliseconds=1)
ONE_SECOND = timedelta(seconds=1)
ONE_MINUTE = timedelta(minutes=1)


def utcnow() -> datetime:
    """Default store clock."""
    return datetime.now(timezone.utc)


def normalize(value: datetime) -> datetime:
    """Make ``value`` timezone-aware and drop sub-millisecond digits.

    Naive datetimes are interpreted as local time.
    """
    if value.tzinfo is None:
        value = value.astimezone()
    return value.replace(microsecond=value.microsecond - value.microsecond % 1000)


def to_epoch_ms(value: datetime) -> int:
    """Convert a datetime to integer epoch milliseconds."""
    return (normalize(value) - EPOCH) // ONE_MS


def from_epoch_ms(ms: int | float) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return EPOCH + timedelta(milliseconds=int(ms))


def to_iso(value: datetime) -> str:
    """Format as ISO-8601 UTC with milliseconds and a ``Z`` suffix."""
    utc = normalize(value).astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def parse_timestamp(value: object) -> datetime:
    """Parse a timestamp from a datetime, epoch milliseconds or ISO string.

    Args:
        value: Candidate timestamp.

    Returns:
        Normalized aware datetime.

    Raises:
        ValueError: If the value cannot be interpreted as a timestamp.
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a timestamp: {value!r}")
    if isinstance(value, datetime):
        return normalize(value)
    if isinstance(value, (int, float)):
        try:
            return from_epoch_ms(value)
        except (OverflowError, ValueError) as e:
            raise ValueError(f"Timestamp out of range: {value!r}") from e
    if isinstance(value, str) and value.strip():
        return normalize(datetime.fromisoformat(value.strip()))
    raise ValueError(f"Not a timestamp: {value!r}")


def floor_seconds(start: datetime, end: datetime) -> int:
    """Whole seconds between two timestamps, floored."""
    return (end - start) // ONE_SECOND


def floor_minutes(start: datetime, end: datetime) -> int:
    """Whole minutes between two timestamps, floored."""
    return (end - start) // ONE_MINUTE


def format_time(value: datetime, tz: tzinfo | None = None) -> str:
    """Format the wall-clock time of ``value`` as ``HH:MM:SS``.

    Args:
        value: Timestamp to format.
        tz: Display timezone. Defaults to the local timezone.
    """
    return value.astimezone(tz).strftime("%H:%M:%S")
