"""Timestamp normalisation for mixed seconds/milliseconds exports."""

import math
from datetime import date, datetime, timezone

from .config import (
    MAX_EPOCH_SECONDS,
    MILLISECONDS_THRESHOLD,
    TIMESTAMP_SENTINEL,
    UNKNOWN_TIMESTAMP,
)


def normalize_epoch(value: float | int | None) -> float:
    """Convert a raw export timestamp to epoch seconds.

    Producers disagree on units: values at or above 1e12 are taken as
    milliseconds, everything else as seconds. Missing, non-finite, negative
    and out-of-range values collapse to 0.0.
    """
    if value is None:
        return 0.0
    try:
        ts = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    if not math.isfinite(ts) or ts <= 0:
        return 0.0
    if ts >= MILLISECONDS_THRESHOLD:
        ts /= 1000
    if ts > MAX_EPOCH_SECONDS:
        return 0.0
    return ts


def is_available(value: float | int | None) -> bool:
    """True when the timestamp is a real date after the epoch sentinel."""
    return normalize_epoch(value) > TIMESTAMP_SENTINEL


def parse_date_filter(value: str | date | datetime | None) -> datetime | None:
    """Parse a date bound to an aware UTC datetime.

    Accepts: "2025-01-15", "2025-01-15T10:30:00", "2025-01-15T10:30:00Z",
    or a date/datetime instance. Naive values are taken as UTC.

    Raises:
        ValueError: If the date format is invalid
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    else:
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except (AttributeError, ValueError) as e:
            raise ValueError(
                f"Invalid date format: {value}. Use ISO 8601 (e.g., 2025-01-15 or 2025-01-15T10:30:00Z)"
            ) from e
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(value: float | int | None) -> str:
    """Render a timestamp as ISO 8601 UTC, or "unknown" when unavailable."""
    if not is_available(value):
        return UNKNOWN_TIMESTAMP
    return datetime.fromtimestamp(normalize_epoch(value), tz=timezone.utc).isoformat()


def format_day(value: float | int | None) -> str:
    """UTC calendar day as YYYY-MM-DD, or "unknown" when unavailable."""
    if not is_available(value):
        return UNKNOWN_TIMESTAMP
    return datetime.fromtimestamp(normalize_epoch(value), tz=timezone.utc).date().isoformat()
