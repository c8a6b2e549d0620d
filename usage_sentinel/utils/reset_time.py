"""Relative reset-time formatting.

Both functions take ``now`` explicitly so they stay pure and deterministic
in tests. They feed display only and never raise on bad input.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

UNKNOWN = "Unknown"
DUE = "soon"
CLOCK_PLACEHOLDER = "??:??"

_DAY_NAMES = ['Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat', 'Sun']

_DAYS_RE = re.compile(r'(\d+)\s*d', re.IGNORECASE)
_HOURS_RE = re.compile(r'(\d+)\s*h', re.IGNORECASE)
_MINUTES_RE = re.compile(r'(\d+)\s*m', re.IGNORECASE)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO-8601 string or datetime into an aware UTC datetime.

    Naive values are assumed to be UTC. Returns None when the value is
    missing or cannot be parsed.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def time_until(timestamp: Union[str, datetime, None], now: datetime) -> str:
    """Format the time remaining until ``timestamp`` as a short bucket.

    Args:
        timestamp: Target time (ISO string or datetime)
        now: Reference time

    Returns:
        "Xd Yh" for 24h or more, "Xh Ym" for 1h or more, "Xm" below an
        hour, "soon" when the target is not in the future, and "Unknown"
        when the target cannot be parsed.
    """
    target = parse_timestamp(timestamp)
    reference = parse_timestamp(now)
    if target is None or reference is None:
        return UNKNOWN

    remaining = (target - reference).total_seconds()
    if remaining <= 0:
        return DUE

    total_minutes = int(remaining // 60)
    days, remainder = divmod(total_minutes, 24 * 60)
    hours, minutes = divmod(remainder, 60)

    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def relative_to_minutes(relative: str) -> Optional[int]:
    """Total minutes described by a relative string, or None if none found."""
    if not isinstance(relative, str):
        return None

    days = _DAYS_RE.search(relative)
    hours = _HOURS_RE.search(relative)
    minutes = _MINUTES_RE.search(relative)
    if not (days or hours or minutes):
        return None

    total = 0
    if days:
        total += int(days.group(1)) * 24 * 60
    if hours:
        total += int(hours.group(1)) * 60
    if minutes:
        total += int(minutes.group(1))
    return total


def relative_to_clock_time(relative: str, now: datetime) -> str:
    """Convert a relative reset string into the wall-clock reset time.

    "2h 30m" at 12:00 becomes "14:30". Offsets of 24h or more include
    the weekday and day of month, e.g. "Mon 14 09:30".
    """
    total_minutes = relative_to_minutes(relative)
    if total_minutes is None or not isinstance(now, datetime):
        return CLOCK_PLACEHOLDER

    reset_at = now + timedelta(minutes=total_minutes)
    clock = reset_at.strftime('%H:%M')

    if total_minutes >= 24 * 60:
        return f"{_DAY_NAMES[reset_at.weekday()]} {reset_at.day} {clock}"
    return clock
