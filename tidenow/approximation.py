"""
Approximate tides when no provider has data.

This is not a harmonic prediction. It produces a plausible semidiurnal day
(two highs, two lows) from three ingredients:

- the lunar phase, counted from a known new moon with the synodic period,
  which drives spring/neap range and shifts the timing;
- the latitude, which scales the base range (small near the equator);
- the longitude, which offsets the timing by one hour per 15 degrees.

The same coordinates and day always give the same events. Results are only
indicative and are always labelled as approximate.
"""
import math
from datetime import date, datetime, timezone, tzinfo
from typing import List

from .models import SunTimes, TideEvent, TideType
from .timeutil import normalize_hours

# Known new moon used as phase origin
REFERENCE_NEW_MOON = datetime(2024, 1, 11, tzinfo=timezone.utc)
SYNODIC_MONTH_DAYS = 29.53059

# Mean lunar day: the Moon transits ~50 minutes later every day
LUNAR_DAY_HOURS = 24.8412
SEMIDIURNAL_PERIOD_HOURS = 12.42

MIN_HEIGHT_M = 0.1
MAX_HEIGHT_M = 6.0

# Fixed tide table shown when nothing real can be resolved (Navia, Asturias)
SIMULATED_LAT = 43.54
SIMULATED_LON = -6.72
SIMULATED_SUN = SunTimes(sunrise="08:54", sunset="19:28")


def lunar_phase(moment: datetime) -> float:
    """Fraction of the synodic month elapsed (0 = new moon, 0.5 = full moon)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    days = (moment - REFERENCE_NEW_MOON).total_seconds() / 86400.0
    return (days % SYNODIC_MONTH_DAYS) / SYNODIC_MONTH_DAYS


def approximate_tides(lat: float, lon: float, day: date, tz: tzinfo = timezone.utc) -> List[TideEvent]:
    """
    Four tide events (2 high, 2 low) for a location and local day.

    Args:
        lat: Latitude in degrees
        lon: Longitude in degrees
        day: Local calendar day
        tz: Local timezone of the location

    Returns:
        Events sorted by time
    """
    noon = datetime(day.year, day.month, day.day, 12, tzinfo=tz)
    phase = lunar_phase(noon)
    phase_angle = phase * 2 * math.pi

    # Spring tides near new and full moon, neap tides near the quarters
    coefficient = 50 + round(70 * abs(math.cos(phase_angle)))
    height_range = (coefficient / 120) * 2.0

    lat_factor = abs(math.sin(math.radians(lat)))
    base_high = 2.5 + lat_factor * 2.0
    base_low = 0.5 + lat_factor * 0.5

    first_high = normalize_hours(phase * LUNAR_DAY_HOURS + lon / 15.0)
    lunar_adjustment = math.sin(phase_angle) * 0.5

    events = []
    for i in range(4):
        is_high = i % 2 == 0
        hour = normalize_hours(first_high + i * SEMIDIURNAL_PERIOD_HOURS / 2 + lunar_adjustment)
        height = base_high + height_range if is_high else base_low - height_range
        height = max(MIN_HEIGHT_M, min(MAX_HEIGHT_M, height))
        # Minute resolution keeps clock and decimal forms consistent
        minutes = math.floor(hour * 60)
        events.append(TideEvent(
            time=minutes / 60.0,
            height=round(height, 2),
            type=TideType.HIGH if is_high else TideType.LOW,
        ))

    events.sort(key=lambda e: e.time)
    return events


def simulated_day() -> List[TideEvent]:
    """The fixed tide table used when the station catalog is unavailable."""
    return [
        TideEvent("05:12", 4.1, TideType.HIGH),
        TideEvent("11:24", 0.6, TideType.LOW),
        TideEvent("17:41", 4.02, TideType.HIGH),
        TideEvent("23:48", 0.77, TideType.LOW),
    ]
