"""
Astronomy Service for sun times and local timezones.

Provides:
- Timezone detection from coordinates (timezonefinder, offline)
- Sunrise and sunset for a local calendar day (Skyfield)

The ephemeris is loaded on first use, not at construction, so the service
can be created at import time without touching the network or disk.
"""
import logging
from datetime import date, datetime, timedelta, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from skyfield import almanac
from skyfield.api import Loader, wgs84
from timezonefinder import TimezoneFinder

from .config import EPHEMERIS_DIR
from .models import SunTimes

logger = logging.getLogger(__name__)

EPHEMERIS_FILE = "de421.bsp"


class AstronomyService:
    """Service for calculating sun events and timezones for a given location."""

    def __init__(self, ephemeris_dir: str = EPHEMERIS_DIR):
        self._load = Loader(ephemeris_dir)
        self._eph = None
        self._ts = None

        # Timezone finder for auto-detection
        self._tf = TimezoneFinder()

    def _ephemeris(self):
        """Load the ephemeris data and timescale on first use."""
        if self._eph is None:
            self._ts = self._load.timescale()
            self._eph = self._load(EPHEMERIS_FILE)
        return self._eph, self._ts

    def get_timezone(self, lat: float, lon: float, timezone_str: Optional[str] = None) -> ZoneInfo:
        """Get timezone for coordinates, auto-detecting if not provided."""
        if timezone_str is None:
            timezone_str = self._tf.timezone_at(lat=lat, lng=lon)
            if timezone_str is None:
                timezone_str = 'UTC'

        try:
            return ZoneInfo(timezone_str)
        except (ValueError, KeyError):
            return ZoneInfo('UTC')

    @staticmethod
    def _format_time(skyfield_time, tz: tzinfo) -> str:
        """Format a Skyfield time as local "HH:MM"."""
        return skyfield_time.astimezone(tz).strftime("%H:%M")

    def get_sun_times(self, lat: float, lon: float, day: date, tz: tzinfo) -> SunTimes:
        """
        Calculate sunrise and sunset for a location on a local calendar day.

        Args:
            lat: Latitude in degrees
            lon: Longitude in degrees
            day: Local calendar day
            tz: Local timezone

        Returns:
            SunTimes with "HH:MM" strings; a field is None if the event does
            not happen that day (polar day or night)
        """
        eph, ts = self._ephemeris()
        location = wgs84.latlon(lat, lon)

        start_local = datetime(day.year, day.month, day.day, tzinfo=tz)
        end_local = start_local + timedelta(days=1)
        t0 = ts.from_datetime(start_local)
        t1 = ts.from_datetime(end_local)

        f_sun = almanac.sunrise_sunset(eph, location)
        times, events = almanac.find_discrete(t0, t1, f_sun)

        sunrise = None
        sunset = None
        for time, event in zip(times, events):
            if event == 1 and sunrise is None:
                sunrise = self._format_time(time, tz)
            elif event == 0 and sunset is None:
                sunset = self._format_time(time, tz)

        logger.debug(f"Sun times for ({lat}, {lon}) on {day}: {sunrise} / {sunset}")
        return SunTimes(sunrise=sunrise, sunset=sunset)
