"""Datetime utilities for consistent timezone handling across the service."""

from datetime import datetime, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def utc_now_naive() -> datetime:
    """Current UTC time without tzinfo, the form every timestamp column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are assumed to be UTC already.

    Args:
        value: Datetime to normalize.

    Returns:
        Naive UTC datetime, or None.
    """
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def from_unix(value: Optional[Union[int, float, str]]) -> Optional[datetime]:
    """Convert a unix timestamp (as used by Stripe) to naive UTC.

    Args:
        value: Seconds since the epoch.

    Returns:
        Naive UTC datetime, or None when the value is missing.
    """
    if value is None or value == "":
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (as used by LemonSqueezy) to naive UTC.

    Args:
        value: Timestamp such as `2024-03-01T12:00:00.000000Z`.

    Returns:
        Naive UTC datetime, or None when the value is missing.
    """
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return to_naive_utc(datetime.fromisoformat(value))
