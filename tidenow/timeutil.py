"""
Clock helpers for tide times.

Tide events and curve samples use decimal hours of the local day
(0.0 = midnight, 13.5 = 13:30). These helpers convert between that form,
"HH:MM" strings and datetimes.
"""
import re
from datetime import datetime
from typing import Union

HOURS_PER_DAY = 24.0

_CLOCK_PATTERN = re.compile(r'^\s*(\d{1,2}):(\d{2})\s*$')


def time_to_decimal(value: Union[str, float, int]) -> float:
    """
    Convert an "HH:MM" string (or a number) to decimal hours.

    Args:
        value: "HH:MM" string, or a number already in decimal hours

    Returns:
        Decimal hours, e.g. "05:30" -> 5.5

    Raises:
        ValueError: If the string is not a valid clock time
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid clock time: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    match = _CLOCK_PATTERN.match(str(value))
    if not match:
        raise ValueError(f"Invalid clock time: {value!r}")

    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 24 or minutes >= 60 or (hours == 24 and minutes > 0):
        raise ValueError(f"Invalid clock time: {value!r}")
    return hours + minutes / 60.0


def normalize_hours(decimal: float) -> float:
    """Wrap decimal hours into [0, 24)."""
    wrapped = decimal % HOURS_PER_DAY
    # -1e-17 % 24.0 rounds up to 24.0
    if wrapped >= HOURS_PER_DAY:
        wrapped = 0.0
    return wrapped


def decimal_to_time(decimal: float) -> str:
    """Format decimal hours as "HH:MM", wrapping into the day first."""
    wrapped = normalize_hours(decimal)
    hours = int(wrapped)
    minutes = int(round((wrapped - hours) * 60))
    if minutes == 60:
        hours, minutes = (hours + 1) % 24, 0
    return f"{hours:02d}:{minutes:02d}"


def datetime_to_decimal(dt: datetime) -> float:
    """Decimal hours of a datetime's wall-clock time."""
    return dt.hour + dt.minute / 60.0 + dt.second / 3600.0
