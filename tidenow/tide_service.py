"""
Tide Now Service - from a free-text location to today's tide curve

This module coordinates the whole pipeline for one query:

    GEOCODING -> RESOLVING_STATION -> FETCHING(provider...) -> [APPROXIMATING] -> DONE

1. The query (place name or "lat, lon") is geocoded. If that fails, a default
   location is used instead.
2. A catalog station is chosen by name, or by distance within a limit.
3. The station's tides for the local day are read from the cache, or fetched
   from the providers in priority order until one returns events.
4. If no station or provider could be used, an astronomical approximation is
   computed so the caller always gets a full day.
5. The events are turned into a sampled curve, current height/direction and
   a tidal coefficient.

Every stage degrades instead of failing. The only exception a caller can see
is QueryCancelled, when it cancelled the query itself.
"""
import asyncio
import logging
import uuid
from datetime import date, datetime, timezone, tzinfo
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from .approximation import (
    SIMULATED_LAT,
    SIMULATED_LON,
    SIMULATED_SUN,
    approximate_tides,
    simulated_day,
)
from .astronomy_service import AstronomyService
from .config import (
    DEFAULT_LOCATION_LAT,
    DEFAULT_LOCATION_LON,
    DEFAULT_LOCATION_NAME,
    GEOCODER_TIMEOUT_SECONDS,
    MAX_STATION_DISTANCE_KM,
    MIN_PROVIDER_EVENTS,
    PROVIDER_TIMEOUT_SECONDS,
    STATIONS_FILE,
    SUN_TIMEOUT_SECONDS,
    TIDE_CACHE_DIR,
)
from .errors import (
    CatalogLoadFailure,
    DegenerateIntervalError,
    ProviderUnavailable,
    QueryCancelled,
    StationUnresolved,
)
from .geocoder import NominatimGeocoder, coordinates_in_range, parse_coordinates
from .models import (
    Coordinates,
    GeocodeResult,
    ResolvedLocation,
    Station,
    StationMatch,
    SunTimes,
    TideEvent,
    TideSnapshot,
)
from .providers import TideProvider, default_providers
from .station_catalog import StationResolver, load_catalog
from .tide_cache import FileTideCache, MemoryTideCache, TideCache, cache_key, utc_now
from .tide_curve import estimate_now, sample_curve, tidal_coefficient
from .timeutil import datetime_to_decimal

logger = logging.getLogger(__name__)

APPROXIMATION_LABEL = "Astronomical approximation"
SIMULATED_LABEL = "Simulated data"
DEFAULT_SUN = SunTimes()


class ForecastStage(str, Enum):
    """States of the forecast pipeline."""
    GEOCODING = "GEOCODING"
    RESOLVING_STATION = "RESOLVING_STATION"
    FETCHING = "FETCHING"
    APPROXIMATING = "APPROXIMATING"
    DONE = "DONE"


class CancellationToken:
    """Flag checked by the pipeline at every I/O boundary."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise QueryCancelled("query was superseded")


def sanitize_events(events: Iterable[TideEvent]) -> List[TideEvent]:
    """
    Prepare provider events for curve synthesis.

    Sorts by time, keeps only the first event of any given minute (drops
    exact duplicates and same-time high/low conflicts) and clamps negative
    heights to 0.
    """
    seen_minutes = set()
    clean = []
    for event in sorted(events, key=lambda e: e.time):
        minute = round(event.time * 60)
        if minute in seen_minutes:
            continue
        seen_minutes.add(minute)
        if event.height < 0:
            event = TideEvent(time=event.time, height=0.0, type=event.type)
        clean.append(event)
    return clean


def build_cache() -> TideCache:
    """Cache backend selected by configuration."""
    if TIDE_CACHE_DIR:
        return FileTideCache(TIDE_CACHE_DIR)
    return MemoryTideCache()


class TideNowService:
    """
    Resolves a location query into a TideSnapshot.

    All collaborators are injectable so tests can replace the network-facing
    ones (geocoder, providers, astronomy) and the clock.
    """

    def __init__(
        self,
        geocoder: Optional[NominatimGeocoder] = None,
        providers: Optional[Sequence[TideProvider]] = None,
        cache: Optional[TideCache] = None,
        astronomy: Optional[AstronomyService] = None,
        catalog_loader: Optional[Callable[[], Sequence[Station]]] = None,
        max_station_distance_km: Optional[float] = MAX_STATION_DISTANCE_KM,
        geocoder_timeout: float = GEOCODER_TIMEOUT_SECONDS,
        provider_timeout: float = PROVIDER_TIMEOUT_SECONDS,
        sun_timeout: float = SUN_TIMEOUT_SECONDS,
        min_provider_events: int = MIN_PROVIDER_EVENTS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.geocoder = geocoder if geocoder is not None else NominatimGeocoder()
        self.providers = list(providers) if providers is not None else default_providers()
        self.cache = cache if cache is not None else build_cache()
        self.astronomy = astronomy if astronomy is not None else AstronomyService()
        self._catalog_loader = catalog_loader if catalog_loader is not None else (lambda: load_catalog(STATIONS_FILE))
        self.max_station_distance_km = max_station_distance_km
        self.geocoder_timeout = geocoder_timeout
        self.provider_timeout = provider_timeout
        self.sun_timeout = sun_timeout
        self.min_provider_events = max(1, min_provider_events)
        self._clock = clock

    def stations(self) -> Sequence[Station]:
        """The station catalog (raises CatalogLoadFailure)."""
        return self._catalog_loader()

    async def forecast(self, query: str, token: Optional[CancellationToken] = None) -> TideSnapshot:
        """
        Build today's tide snapshot for a place name or "lat, lon" pair.

        Args:
            query: Free-text location or coordinate pair
            token: Optional cancellation token for superseded queries

        Returns:
            TideSnapshot, simulated in the worst case

        Raises:
            QueryCancelled: If the token was cancelled while the query ran
        """
        token = token or CancellationToken()
        query = (query or '').strip()
        stages: List[str] = []
        try:
            return await self._forecast(query, token, stages)
        except QueryCancelled:
            logger.info(f"Forecast for {query!r} cancelled after {stages}")
            raise
        except Exception:
            error_id = uuid.uuid4().hex[:8]
            logger.exception(f"Error {error_id} while forecasting {query!r}")
            return self._simulated_snapshot(
                query,
                f"An unexpected error occurred (ref: {error_id}); showing a simulated tide day.",
                stages,
            )

    async def _forecast(self, query: str, token: CancellationToken, stages: List[str]) -> TideSnapshot:
        disclaimers: List[str] = []

        # GEOCODING
        stages.append(ForecastStage.GEOCODING.value)
        geo = await self._geocode(query, token)
        if geo is None:
            requested = None
            lat, lon = DEFAULT_LOCATION_LAT, DEFAULT_LOCATION_LON
            location_name = DEFAULT_LOCATION_NAME
            hints = [DEFAULT_LOCATION_NAME]
            if query:
                disclaimers.append(f"Could not find '{query}'; showing {DEFAULT_LOCATION_NAME} instead.")
        else:
            requested = geo.coordinates
            lat, lon = geo.lat, geo.lon
            location_name = geo.display_name
            hints = self._name_hints(query, geo)

        # RESOLVING_STATION
        stages.append(ForecastStage.RESOLVING_STATION.value)
        try:
            stations = self._catalog_loader()
        except CatalogLoadFailure as e:
            logger.error(f"Station catalog unavailable: {e}")
            return self._simulated_snapshot(
                query,
                "The tide station catalog is unavailable; showing a simulated tide day.",
                stages,
            )

        resolver = StationResolver(stations, max_distance_km=self.max_station_distance_km)
        match: Optional[StationMatch] = None
        unresolved_reason = None
        try:
            match = resolver.require_station(lat, lon, hints)
        except StationUnresolved as e:
            logger.warning(f"No station for {location_name!r}: {e}")
            unresolved_reason = str(e)

        tz = await asyncio.to_thread(self.astronomy.get_timezone, lat, lon)
        token.raise_if_cancelled()
        now_local = self._clock().astimezone(tz)
        today = now_local.date()

        sun = await self._sun_times(lat, lon, today, tz, token)

        # FETCHING
        tides: List[TideEvent] = []
        source_label = None
        if match is not None:
            stages.append(ForecastStage.FETCHING.value)
            fetched = await self._fetch_tides(match.station, today, tz, token, stages)
            if fetched is not None:
                tides, source_label = sanitize_events(fetched[0]), fetched[1]

        curve = None
        if tides:
            try:
                curve = sample_curve(tides)
            except DegenerateIntervalError as e:
                logger.warning(f"Discarding unusable tides from {source_label}: {e}")
                tides = []

        # APPROXIMATING
        is_approximate = not tides
        if is_approximate:
            stages.append(ForecastStage.APPROXIMATING.value)
            tides = sanitize_events(approximate_tides(lat, lon, today, tz))
            curve = sample_curve(tides)
            source_label = APPROXIMATION_LABEL
            if match is None:
                reason = f"No tide station could be used ({unresolved_reason})"
            else:
                reason = f"No tide provider returned data for {match.station.name}"
            disclaimers.append(
                f"{reason}; tides are an astronomical approximation and may differ from official tables."
            )
        elif not match.matched_by_name:
            disclaimers.append(
                f"No exact station was found for '{query or location_name}'; using the nearest station, "
                f"{match.station.name}, {match.distance_km:.1f} km away."
            )

        state = estimate_now(tides, datetime_to_decimal(now_local))

        location = ResolvedLocation(
            requested_query=query,
            requested_coordinates=requested,
            location_name=location_name,
            used_coordinates=Coordinates(lat, lon) if is_approximate else match.station.coordinates,
            is_approximate=is_approximate,
            data_source_label=source_label,
            resolved_station=None if is_approximate else match.station,
            station_distance_km=None if is_approximate else match.distance_km,
            matched_by_name=False if is_approximate else match.matched_by_name,
            disclaimer=' '.join(disclaimers) or None,
        )

        stages.append(ForecastStage.DONE.value)
        return TideSnapshot(
            location=location,
            date=today.isoformat(),
            timezone=str(tz),
            sun=sun,
            tides=tides,
            curve=curve,
            current_height=state.height,
            is_rising=state.is_rising,
            coefficient=tidal_coefficient(tides),
            stages=stages,
        )

    @staticmethod
    def _name_hints(query: str, geo: GeocodeResult) -> List[str]:
        """Names to match against the catalog: the query and the geocoded place."""
        hints = []
        if query and parse_coordinates(query) is None:
            hints.append(query)
        if geo.display_name:
            hints.append(geo.display_name.split(',')[0])
        return hints

    @staticmethod
    def _raw_coordinates(query: str) -> Optional[GeocodeResult]:
        """A "lat, lon" query stands on its own when the lookup fails."""
        coordinates = parse_coordinates(query)
        if coordinates is None or not coordinates_in_range(*coordinates):
            return None
        lat, lon = coordinates
        return GeocodeResult(lat=lat, lon=lon, display_name=f"{lat}, {lon}")

    async def _geocode(self, query: str, token: CancellationToken) -> Optional[GeocodeResult]:
        token.raise_if_cancelled()
        if not query:
            return None
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(self.geocoder.geocode, query),
                timeout=self.geocoder_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Geocoding {query!r} timed out after {self.geocoder_timeout}s")
            result = None
        except Exception as e:
            logger.warning(f"Geocoding {query!r} failed: {e}")
            result = None
        token.raise_if_cancelled()
        if result is None:
            result = self._raw_coordinates(query)
        return result

    async def _sun_times(self, lat: float, lon: float, day: date, tz: tzinfo, token: CancellationToken) -> SunTimes:
        token.raise_if_cancelled()
        try:
            sun = await asyncio.wait_for(
                asyncio.to_thread(self.astronomy.get_sun_times, lat, lon, day, tz),
                timeout=self.sun_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Sun times timed out after {self.sun_timeout}s; using defaults")
            sun = DEFAULT_SUN
        except Exception as e:
            logger.warning(f"Sun times failed: {e}; using defaults")
            sun = DEFAULT_SUN
        token.raise_if_cancelled()
        return sun

    async def _fetch_tides(
        self,
        station: Station,
        day: date,
        tz: tzinfo,
        token: CancellationToken,
        stages: List[str],
    ) -> Optional[Tuple[List[TideEvent], str]]:
        """
        Tides for a station from the cache or the first provider with data.

        Returns:
            (events, source label), or None if every provider failed
        """
        key = cache_key(station.name)
        day_str = day.isoformat()

        token.raise_if_cancelled()
        entry = self.cache.get(key)
        if entry is not None and entry.day == day_str and entry.tides:
            logger.info(f"Cache hit for {station.name} ({entry.source_label})")
            stages.append(f"{ForecastStage.FETCHING.value}(cache)")
            return entry.tides, f"{entry.source_label} (cached)"

        for provider in self.providers:
            token.raise_if_cancelled()
            stages.append(f"{ForecastStage.FETCHING.value}({provider.key})")
            try:
                events = await asyncio.wait_for(
                    asyncio.to_thread(provider.fetch_events, station, day, tz),
                    timeout=self.provider_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(f"{provider.label} timed out after {self.provider_timeout}s for {station.name}")
                continue
            except ProviderUnavailable as e:
                logger.warning(f"Provider unavailable for {station.name}: {e}")
                continue
            except Exception as e:
                logger.warning(f"{provider.label} fetch failed for {station.name}: {e}")
                continue
            token.raise_if_cancelled()

            if len(events) < self.min_provider_events:
                logger.info(f"{provider.label} returned {len(events)} events for {station.name}; trying next")
                continue

            logger.info(f"Got {len(events)} tides for {station.name} from {provider.label}")
            self.cache.set(key, events, provider.label, day_str)
            return list(events), provider.label

        logger.warning(f"All {len(self.providers)} providers failed for {station.name}")
        return None

    def _simulated_snapshot(self, query: str, reason: str, stages: List[str]) -> TideSnapshot:
        """A clearly labelled fixed tide day used when nothing else works."""
        tides = simulated_day()
        now = self._clock().astimezone(timezone.utc)
        state = estimate_now(tides, datetime_to_decimal(now))
        location = ResolvedLocation(
            requested_query=query,
            requested_coordinates=None,
            location_name=f"{query or DEFAULT_LOCATION_NAME} (Simulated)",
            used_coordinates=Coordinates(SIMULATED_LAT, SIMULATED_LON),
            is_approximate=True,
            data_source_label=SIMULATED_LABEL,
            disclaimer=reason,
        )
        stages.append(ForecastStage.DONE.value)
        return TideSnapshot(
            location=location,
            date=now.date().isoformat(),
            timezone="UTC",
            sun=SIMULATED_SUN,
            tides=tides,
            curve=sample_curve(tides),
            current_height=state.height,
            is_rising=state.is_rising,
            coefficient=tidal_coefficient(tides),
            stages=list(stages),
        )


class LatestQueryRunner:
    """
    Runs forecasts so that only the most recent query produces a result.

    Submitting a new query cancels the token of the previous one; the
    previous call then returns None instead of a stale snapshot.
    """

    def __init__(self, service: TideNowService):
        self.service = service
        self._current: Optional[CancellationToken] = None

    async def submit(self, query: str) -> Optional[TideSnapshot]:
        if self._current is not None:
            self._current.cancel()
        token = CancellationToken()
        self._current = token

        try:
            snapshot = await self.service.forecast(query, token)
        except QueryCancelled:
            return None
        if token.cancelled:
            return None
        return snapshot
