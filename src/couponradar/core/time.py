"""
Time helpers.

Clock-based reminders (time of day, days to expiry) are evaluated in the user's
local timezone, so every "now" handled by the engine is timezone-aware.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Callable
from zoneinfo import ZoneInfo

Clock = Callable[[], datetime]


def ensure_tz(dt: datetime, timezone: str) -> datetime:
    """Ensure `dt` has tzinfo; attach `timezone` if naive."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=ZoneInfo(timezone))
    return dt


def to_local(dt: datetime, timezone: str) -> datetime:
    """Convert an aware (or naive, assumed local) datetime into `timezone`."""
    return ensure_tz(dt, timezone).astimezone(ZoneInfo(timezone))


def parse_datetime(value: str, timezone: str) -> datetime:
    """Parse ISO-8601 datetime string and ensure tzinfo is present.

    Accepts a trailing `Z` (UTC).
    """
    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    return ensure_tz(dt, timezone)


def system_clock(timezone: str) -> Clock:
    """Return a clock callable producing aware datetimes in `timezone`."""
    tz = ZoneInfo(timezone)

    def _now() -> datetime:
        return datetime.now(tz)

    return _now


def days_until(expires_on: date, today: date) -> int:
    """Whole calendar days from `today` to `expires_on` (negative once expired)."""
    return (expires_on - today).days
