"""
Time utilities: UTC now, epoch milliseconds, ISO strings and ISO weekdays.

All functions use timezone-aware UTC datetimes.
"""

from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def epoch_ms(dt: datetime | None = None) -> int:
    """
    Milliseconds since the Unix epoch for dt (default: now).

    >>> epoch_ms(datetime(1970, 1, 1, 0, 0, 1, tzinfo=timezone.utc))
    1000
    """
    if dt is None:
        dt = utc_now()
    return int(dt.timestamp() * 1000)


def ms_to_dt(ms: int) -> datetime:
    """Epoch milliseconds to timezone-aware UTC datetime."""
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)


def ms_to_iso(ms: int) -> str:
    """
    Epoch milliseconds to ISO 8601 with millisecond precision and Z suffix.

    >>> ms_to_iso(1700000000123)
    '2023-11-14T22:13:20.123Z'
    """
    dt = ms_to_dt(ms)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ms % 1000:03d}Z"


def iso_weekday(ms: int) -> int:
    """
    ISO weekday (1=Monday .. 7=Sunday) of an epoch-ms instant, in UTC.

    >>> iso_weekday(1700000000123)  # Tuesday
    2
    """
    return ms_to_dt(ms).isoweekday()
