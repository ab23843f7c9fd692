"""
Geocoding through Nominatim (OpenStreetMap).

Accepts a place name or a literal "lat, lon" pair. Every failure is reported
as "no result" so the caller can fall back to its default location.
"""
import logging
import re
from typing import Any, Callable, Optional, Tuple

from .config import GEOCODER_TIMEOUT_SECONDS
from .errors import GeocodeFailure
from .http_client import get_json
from .models import GeocodeResult

logger = logging.getLogger(__name__)

_COORDINATE_PATTERN = re.compile(r'^\s*(-?\d+(?:\.\d+)?)\s*,\s*(-?\d+(?:\.\d+)?)\s*$')


def parse_coordinates(query: str) -> Optional[Tuple[float, float]]:
    """Parse a "lat, lon" query. Returns None if it is not a numeric pair."""
    match = _COORDINATE_PATTERN.match(query or '')
    if not match:
        return None
    return float(match.group(1)), float(match.group(2))


def coordinates_in_range(lat: float, lon: float) -> bool:
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


class NominatimGeocoder:
    """Forward and reverse geocoding against the public Nominatim API."""

    SEARCH_URL = "https://nominatim.openstreetmap.org/search"
    REVERSE_URL = "https://nominatim.openstreetmap.org/reverse"

    def __init__(
        self,
        timeout: float = GEOCODER_TIMEOUT_SECONDS,
        fetch_json: Callable[..., Any] = get_json,
        reverse_timeout: Optional[float] = None,
    ):
        self.timeout = timeout
        # Best-effort name lookup gets half the budget by default
        self.reverse_timeout = reverse_timeout if reverse_timeout is not None else timeout / 2
        self._fetch_json = fetch_json

    def geocode(self, query: str) -> Optional[GeocodeResult]:
        """
        Resolve a query to coordinates and a display name.

        Args:
            query: Place name or "lat, lon"

        Returns:
            GeocodeResult, or None when nothing usable was found
        """
        coordinates = parse_coordinates(query)
        if coordinates is not None:
            lat, lon = coordinates
            if not coordinates_in_range(lat, lon):
                logger.warning(f"Coordinates out of range: {query!r}")
                return None
            name = self._reverse(lat, lon) or f"{lat}, {lon}"
            return GeocodeResult(lat=lat, lon=lon, display_name=name)

        if not query or not query.strip():
            return None

        try:
            return self._search(query.strip())
        except GeocodeFailure as e:
            logger.warning(f"Geocoding failed for {query!r}: {e}")
            return None

    def _search(self, query: str) -> GeocodeResult:
        params = {'format': 'json', 'q': query, 'limit': 1, 'addressdetails': 1}
        try:
            data = self._fetch_json(self.SEARCH_URL, params=params, timeout=self.timeout)
        except Exception as e:
            raise GeocodeFailure(f"request failed: {e}") from e

        if not data:
            raise GeocodeFailure("no results")

        result = data[0]
        try:
            lat = float(result['lat'])
            lon = float(result['lon'])
        except (KeyError, TypeError, ValueError) as e:
            raise GeocodeFailure(f"malformed result: {e}") from e

        if not coordinates_in_range(lat, lon):
            raise GeocodeFailure(f"result out of range: {lat}, {lon}")

        return GeocodeResult(lat=lat, lon=lon, display_name=result.get('display_name') or query)

    def _reverse(self, lat: float, lon: float) -> Optional[str]:
        """Best-effort human readable name for coordinates."""
        params = {'format': 'json', 'lat': lat, 'lon': lon, 'zoom': 10, 'addressdetails': 1}
        try:
            data = self._fetch_json(self.REVERSE_URL, params=params, timeout=self.reverse_timeout)
        except Exception as e:
            logger.warning(f"Reverse geocoding failed, using coordinates as name: {e}")
            return None
        if isinstance(data, dict):
            return data.get('display_name')
        return None
