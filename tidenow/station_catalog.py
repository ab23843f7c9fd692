"""
Station catalog and nearest-station resolution.

The catalog is a bundled JSON list of tide stations, loaded once per process.
A location is matched to a station by name first (exact, then substring) and
by great-circle distance otherwise. Callers are told which kind of match they
got so a distance substitute can be disclosed to the user.
"""
import json
import logging
import math
import unicodedata
from functools import lru_cache
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from .config import MAX_NAME_MATCH_DISTANCE_KM, MAX_STATION_DISTANCE_KM, STATIONS_FILE
from .errors import CatalogLoadFailure, StationUnresolved
from .models import Station, StationMatch

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

# Shorter hints match too many names by substring
MIN_HINT_LENGTH = 3


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points on a spherical Earth."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def normalize_name(name: str) -> str:
    """Lowercase, strip diacritics and collapse whitespace."""
    decomposed = unicodedata.normalize('NFKD', name or '')
    stripped = ''.join(c for c in decomposed if not unicodedata.combining(c))
    return ' '.join(stripped.casefold().split())


def _parse_station(entry: dict) -> Station:
    return Station(
        id=str(entry['id']),
        name=str(entry['name']),
        lat=float(entry['lat']),
        lon=float(entry['lon']),
        provider_ids={str(k): str(v) for k, v in (entry.get('provider_ids') or {}).items()},
    )


@lru_cache(maxsize=None)
def load_catalog(path: str = STATIONS_FILE) -> Tuple[Station, ...]:
    """
    Load the station catalog from a JSON file.

    Successful loads are memoized per path; failures are not, so a later
    call can retry.

    Raises:
        CatalogLoadFailure: If the file is missing, unreadable or malformed
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            entries = json.load(f)
    except (OSError, ValueError) as e:
        raise CatalogLoadFailure(f"Cannot read station catalog {path}: {e}") from e

    if not isinstance(entries, list):
        raise CatalogLoadFailure(f"Station catalog {path} must be a JSON list")

    try:
        stations = tuple(_parse_station(entry) for entry in entries)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise CatalogLoadFailure(f"Malformed station in {path}: {e}") from e

    logger.info(f"Loaded {len(stations)} tide stations from {path}")
    return stations


class StationResolver:
    """Finds the best catalog station for a location."""

    def __init__(
        self,
        stations: Sequence[Station],
        max_distance_km: Optional[float] = MAX_STATION_DISTANCE_KM,
        max_name_distance_km: Optional[float] = MAX_NAME_MATCH_DISTANCE_KM,
    ):
        self.stations = list(stations)
        self.max_distance_km = max_distance_km
        self.max_name_distance_km = max_name_distance_km
        self._normalized = [(normalize_name(s.name), s) for s in self.stations]

    @classmethod
    def from_file(cls, path: str = STATIONS_FILE, **kwargs) -> "StationResolver":
        return cls(load_catalog(path), **kwargs)

    def _match(self, station: Station, lat: float, lon: float, by_name: bool) -> StationMatch:
        return StationMatch(
            station=station,
            matched_by_name=by_name,
            distance_km=haversine_km(lat, lon, station.lat, station.lon),
        )

    def nearest(self, lat: float, lon: float) -> Optional[StationMatch]:
        """Closest station regardless of distance limit."""
        if not self.stations:
            return None
        station = min(self.stations, key=lambda s: haversine_km(lat, lon, s.lat, s.lon))
        return self._match(station, lat, lon, by_name=False)

    def _near_enough_for_name(self, match: StationMatch) -> bool:
        if self.max_name_distance_km is None or match.distance_km <= self.max_name_distance_km:
            return True
        logger.info(
            f"Ignoring name match {match.station.name}: {match.distance_km:.0f} km from the requested location"
        )
        return False

    def resolve_station(
        self,
        lat: float,
        lon: float,
        hints: Union[str, Iterable[str], None] = None,
    ) -> Optional[StationMatch]:
        """
        Pick a station for a location.

        Priority: exact name equality with any hint, then substring
        containment in either direction (closest wins), then the nearest
        station within max_distance_km. Name matches farther than
        max_name_distance_km are skipped.

        Args:
            lat: Latitude of the requested location
            lon: Longitude of the requested location
            hints: Place name(s) to match against station names

        Returns:
            StationMatch, or None if no station qualifies
        """
        if isinstance(hints, str):
            hints = [hints]
        normalized_hints = [normalize_name(h) for h in (hints or [])]
        normalized_hints = [h for h in normalized_hints if len(h) >= MIN_HINT_LENGTH]

        for hint in normalized_hints:
            for name, station in self._normalized:
                if name == hint:
                    match = self._match(station, lat, lon, by_name=True)
                    if self._near_enough_for_name(match):
                        return match

        partial: List[StationMatch] = []
        for hint in normalized_hints:
            for name, station in self._normalized:
                if name and name != hint and (name in hint or hint in name):
                    match = self._match(station, lat, lon, by_name=True)
                    if self._near_enough_for_name(match):
                        partial.append(match)
        if partial:
            return min(partial, key=lambda m: m.distance_km)

        match = self.nearest(lat, lon)
        if match is None:
            return None
        if self.max_distance_km is not None and match.distance_km > self.max_distance_km:
            logger.info(
                f"Nearest station {match.station.name} is {match.distance_km:.1f} km away "
                f"(limit {self.max_distance_km:.0f} km)"
            )
            return None
        return match

    def require_station(
        self,
        lat: float,
        lon: float,
        hints: Union[str, Iterable[str], None] = None,
    ) -> StationMatch:
        """Like resolve_station but raises StationUnresolved instead of returning None."""
        match = self.resolve_station(lat, lon, hints)
        if match is not None:
            return match

        if not self.stations:
            raise StationUnresolved("the station catalog is empty")
        nearest = self.nearest(lat, lon)
        raise StationUnresolved(
            f"the nearest station ({nearest.station.name}) is {nearest.distance_km:.0f} km away"
        )
