"""
Tide data providers.

Each provider turns a catalog station and a local calendar day into the high
and low tides of that day. They share one interface so the tide service can
try them in priority order:

- NOAA CO-OPS (official hydrographic predictions, US stations only, free)
- Open-Meteo Marine (sea level from meteorological ocean models, global, free)
- WorldTides (commercial, global, requires API key)
- Storm Glass (commercial, global, requires API key)

A provider returns an empty list when it answered but had nothing for the
day, and raises ProviderUnavailable for everything else.
"""
import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Callable, Iterable, List, Optional, Tuple

import numpy as np

from .config import PROVIDER_TIMEOUT_SECONDS, STORMGLASS_API_KEY, WORLDTIDES_API_KEY
from .errors import ProviderUnavailable
from .http_client import get_json
from .models import Station, TideEvent, TideType
from .timeutil import datetime_to_decimal

logger = logging.getLogger(__name__)

# (UTC datetime, height in meters, type)
RawExtremum = Tuple[datetime, float, TideType]


def local_day_window(day: date, tz: tzinfo) -> Tuple[datetime, datetime]:
    """UTC start and end of a local calendar day."""
    start_local = datetime(day.year, day.month, day.day, tzinfo=tz)
    start_utc = start_local.astimezone(timezone.utc)
    return start_utc, start_utc + timedelta(days=1)


def events_for_day(extrema: Iterable[RawExtremum], day: date, tz: tzinfo) -> List[TideEvent]:
    """Keep the extrema that fall on the local day, as sorted TideEvents."""
    events = []
    for moment, height, tide_type in extrema:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        local = moment.astimezone(tz)
        if local.date() != day:
            continue
        events.append(TideEvent(
            time=datetime_to_decimal(local),
            height=round(float(height), 2),
            type=tide_type,
        ))
    events.sort(key=lambda e: e.time)
    return events


def find_extrema_from_heights(
    heights: np.ndarray,
    time_offsets_hours: np.ndarray,
) -> List[Tuple[float, float, TideType]]:
    """
    Find high/low tide extrema from a regularly sampled heights array.

    Extrema are located where the gradient changes sign and refined with
    parabolic interpolation through the three surrounding samples.

    Args:
        heights: Array of tide heights
        time_offsets_hours: Array of time offsets in hours, same length

    Returns:
        List of (offset_hours, height, type) tuples in time order
    """
    extrema = []
    if len(heights) < 3:
        return extrema

    gradient = np.gradient(heights)
    sign_changes = np.where(np.diff(np.sign(gradient)))[0]

    for idx in sign_changes:
        if idx < 1 or idx >= len(heights) - 1:
            continue

        if gradient[idx] > 0 and gradient[idx + 1] <= 0:
            tide_type = TideType.HIGH
        elif gradient[idx] < 0 and gradient[idx + 1] >= 0:
            tide_type = TideType.LOW
        else:
            continue

        # Parabolic interpolation for precise timing
        h1, h2, h3 = heights[idx - 1], heights[idx], heights[idx + 1]
        t2 = time_offsets_hours[idx]
        dt = time_offsets_hours[idx + 1] - t2

        denom = (h1 - 2 * h2 + h3)
        if abs(denom) > 1e-10:
            t_offset = 0.5 * (h1 - h3) / denom * dt
            t_extremum = t2 + t_offset
            height_m = float(h2 - 0.25 * (h1 - h3) * (h1 - h3) / denom)
        else:
            t_extremum = t2
            height_m = float(h2)

        extrema.append((float(t_extremum), height_m, tide_type))

    # A flat top spans two samples and yields the same extremum twice
    deduped = []
    for extremum in extrema:
        if deduped and deduped[-1][2] == extremum[2] and abs(deduped[-1][0] - extremum[0]) < 1.0:
            continue
        deduped.append(extremum)
    return deduped


class TideProvider(ABC):
    """Common interface of all tide providers."""

    key: str = ''
    label: str = ''

    def __init__(
        self,
        timeout: float = PROVIDER_TIMEOUT_SECONDS,
        fetch_json: Callable[..., Any] = get_json,
    ):
        self.timeout = timeout
        self._fetch_json = fetch_json

    def fetch_events(self, station: Station, day: date, tz: tzinfo) -> List[TideEvent]:
        """
        High and low tides for a station on a local calendar day.

        Args:
            station: Catalog station
            day: Local calendar day
            tz: Timezone of the station

        Returns:
            Sorted list of TideEvents (empty if the provider had no data)

        Raises:
            ProviderUnavailable: If the provider cannot serve the request
        """
        try:
            extrema = self._fetch_extrema(station, day, tz)
        except ProviderUnavailable:
            raise
        except Exception as e:
            raise ProviderUnavailable(self.label, str(e)) from e
        return events_for_day(extrema, day, tz)

    @abstractmethod
    def _fetch_extrema(self, station: Station, day: date, tz: tzinfo) -> List[RawExtremum]:
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.key}>"


class NoaaCoopsProvider(TideProvider):
    """NOAA CO-OPS high/low predictions (MLLW datum)."""

    key = 'noaa'
    label = 'NOAA CO-OPS'
    URL = "https://api.tidesandcurrents.noaa.gov/api/prod/datagetter"

    def _fetch_extrema(self, station: Station, day: date, tz: tzinfo) -> List[RawExtremum]:
        station_id = station.provider_id(self.key)
        if not station_id:
            raise ProviderUnavailable(self.label, f"no NOAA station id for {station.name}")

        start_utc, end_utc = local_day_window(day, tz)
        params = {
            'product': 'predictions',
            'station': station_id,
            'begin_date': start_utc.strftime('%Y%m%d'),
            'end_date': end_utc.strftime('%Y%m%d'),
            'datum': 'MLLW',
            'time_zone': 'gmt',
            'units': 'metric',
            'interval': 'hilo',
            'format': 'json',
        }
        data = self._fetch_json(self.URL, params=params, timeout=self.timeout)

        if 'error' in data:
            message = data['error'].get('message', 'Unknown error from NOAA API')
            if 'No Predictions data was found' in message:
                return []
            raise ProviderUnavailable(self.label, message)

        extrema = []
        for entry in data.get('predictions', []):
            time_str = entry.get('t')
            height_str = entry.get('v')
            tide_type = entry.get('type', '').upper()

            if time_str and height_str and tide_type in ('H', 'L'):
                dt = datetime.strptime(time_str, '%Y-%m-%d %H:%M').replace(tzinfo=timezone.utc)
                extrema.append((dt, float(height_str), TideType.HIGH if tide_type == 'H' else TideType.LOW))
        return extrema


class OpenMeteoMarineProvider(TideProvider):
    """
    Open-Meteo Marine hourly sea level.

    The API returns heights relative to mean sea level, so extrema are
    detected from the hourly series and re-referenced to the lowest sample of
    the requested window.
    """

    key = 'open_meteo'
    label = 'Open-Meteo Marine'
    URL = "https://marine-api.open-meteo.com/v1/marine"

    def _fetch_extrema(self, station: Station, day: date, tz: tzinfo) -> List[RawExtremum]:
        start_utc, end_utc = local_day_window(day, tz)
        # One extra day on each side so extrema near midnight are detected
        params = {
            'latitude': station.lat,
            'longitude': station.lon,
            'hourly': 'sea_level_height_msl',
            'timezone': 'GMT',
            'cell_selection': 'sea',
            'start_date': (start_utc - timedelta(days=1)).strftime('%Y-%m-%d'),
            'end_date': (end_utc + timedelta(days=1)).strftime('%Y-%m-%d'),
        }
        data = self._fetch_json(self.URL, params=params, timeout=self.timeout)

        if data.get('error'):
            raise ProviderUnavailable(self.label, data.get('reason', 'Unknown error from Open-Meteo'))

        hourly = data.get('hourly') or {}
        times = hourly.get('time') or []
        levels = hourly.get('sea_level_height_msl') or []

        samples = [
            (datetime.fromisoformat(t).replace(tzinfo=timezone.utc), float(v))
            for t, v in zip(times, levels)
            if v is not None
        ]
        if len(samples) < 3:
            return []

        origin = samples[0][0]
        offsets = np.array([(moment - origin).total_seconds() / 3600.0 for moment, _ in samples])
        heights = np.array([level for _, level in samples])
        heights = heights - heights.min()

        return [
            (origin + timedelta(hours=offset), height, tide_type)
            for offset, height, tide_type in find_extrema_from_heights(heights, offsets)
        ]


class WorldTidesProvider(TideProvider):
    """WorldTides v3 extremes (LAT datum)."""

    key = 'worldtides'
    label = 'WorldTides'
    URL = "https://www.worldtides.info/api/v3"

    def __init__(self, api_key: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.api_key = WORLDTIDES_API_KEY if api_key is None else api_key

    def _fetch_extrema(self, station: Station, day: date, tz: tzinfo) -> List[RawExtremum]:
        if not self.api_key:
            raise ProviderUnavailable(self.label, "no API key configured")

        start_utc, end_utc = local_day_window(day, tz)
        params = {
            'extremes': '',
            'lat': station.lat,
            'lon': station.lon,
            'start': int(start_utc.timestamp()),
            'length': int((end_utc - start_utc).total_seconds()),
            'datum': 'LAT',
            'key': self.api_key,
        }
        data = self._fetch_json(self.URL, params=params, timeout=self.timeout)

        if data.get('status', 200) != 200 or data.get('error'):
            raise ProviderUnavailable(self.label, str(data.get('error', 'Unknown error from WorldTides')))

        extrema = []
        for entry in data.get('extremes', []):
            timestamp = entry.get('dt')
            height = entry.get('height')
            tide_type = (entry.get('type') or '').lower()

            if timestamp and height is not None and tide_type in ('high', 'low'):
                dt = datetime.fromtimestamp(timestamp, tz=timezone.utc)
                extrema.append((dt, float(height), TideType.HIGH if tide_type == 'high' else TideType.LOW))
        return extrema


class StormGlassProvider(TideProvider):
    """Storm Glass tide extremes (MLLW datum)."""

    key = 'stormglass'
    label = 'Storm Glass'
    URL = "https://api.stormglass.io/v2/tide/extremes/point"

    def __init__(self, api_key: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.api_key = STORMGLASS_API_KEY if api_key is None else api_key

    def _fetch_extrema(self, station: Station, day: date, tz: tzinfo) -> List[RawExtremum]:
        if not self.api_key:
            raise ProviderUnavailable(self.label, "no API key configured")

        start_utc, end_utc = local_day_window(day, tz)
        params = {
            'lat': station.lat,
            'lng': station.lon,
            'start': start_utc.isoformat(),
            'end': end_utc.isoformat(),
            'datum': 'MLLW',
        }
        headers = {'Authorization': self.api_key}
        data = self._fetch_json(self.URL, params=params, headers=headers, timeout=self.timeout)

        if data.get('errors'):
            raise ProviderUnavailable(self.label, str(data['errors']))

        extrema = []
        for entry in data.get('data', []):
            tide_type = (entry.get('type') or '').lower()
            time_str = entry.get('time')
            height = entry.get('height')

            if tide_type in ('high', 'low') and time_str and height is not None:
                dt = datetime.fromisoformat(time_str.replace('Z', '+00:00'))
                extrema.append((dt, float(height), TideType.HIGH if tide_type == 'high' else TideType.LOW))
        return extrema


def default_providers() -> List[TideProvider]:
    """Providers in priority order: official, meteorological, commercial."""
    return [
        NoaaCoopsProvider(),
        OpenMeteoMarineProvider(),
        WorldTidesProvider(),
        StormGlassProvider(),
    ]
