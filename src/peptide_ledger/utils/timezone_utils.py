"""
Timezone and datetime utilities.

Provides utilities for handling timezone-aware datetime operations.
"""

from datetime import datetime, timedelta

import pytz
from dateutil import parser


def make_timezone_aware(
    dt: datetime, timezone_str: str = "UTC", assume_local: bool = False
) -> datetime:
    """
    Make a datetime object timezone-aware.

    Args:
        dt: Datetime object (may be naive or aware).
        timezone_str: Timezone string (e.g., "America/New_York").
        assume_local: If True and dt is naive, assume it's in timezone_str.

    Returns:
        Timezone-aware datetime object.
    """
    tz = pytz.timezone(timezone_str)

    if dt.tzinfo is None:
        if assume_local:
            return tz.localize(dt)
        else:
            return pytz.utc.localize(dt).astimezone(tz)
    else:
        return dt.astimezone(tz)


def parse_datetime(value: str, timezone_str: str = "UTC") -> datetime:
    """
    Parse a date or datetime string into a timezone-aware datetime.

    Naive values are interpreted in timezone_str.
    """
    dt = parser.parse(value)
    return make_timezone_aware(dt, timezone_str, assume_local=True)


def now_in(timezone_str: str = "UTC") -> datetime:
    """Current time in the given timezone."""
    return datetime.now(pytz.timezone(timezone_str))


def utc_now() -> datetime:
    """Current time in UTC."""
    return datetime.now(pytz.utc)


def time_of_day_for(dt: datetime) -> str:
    """Return "AM" or "PM" for a datetime, using its own wall clock."""
    return "AM" if dt.hour < 12 else "PM"


def expiry_after(start: datetime, shelf_life_days: int) -> datetime:
    """
    Compute the expiry of a reconstituted vial.

    Args:
        start: Reconstitution timestamp.
        shelf_life_days: Days the reconstituted solution stays usable.

    Returns:
        Expiry timestamp in the same timezone as start.
    """
    return start + timedelta(days=shelf_life_days)
