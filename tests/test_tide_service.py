"""
Unit tests for the Tide Now orchestration pipeline

Every network-facing collaborator is a stub; the clock is fixed at
2024-06-15 08:00 UTC (10:00 in Vigo).
"""
import asyncio
import threading
import time
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from tidenow.approximation import simulated_day
from tidenow.errors import CatalogLoadFailure, ProviderUnavailable, QueryCancelled
from tidenow.geocoder import NominatimGeocoder
from tidenow.models import Coordinates, GeocodeResult, Station, SunTimes, TideEvent, TideType
from tidenow.tide_cache import MemoryTideCache, cache_key
from tidenow.tide_service import (
    APPROXIMATION_LABEL,
    SIMULATED_LABEL,
    CancellationToken,
    ForecastStage,
    LatestQueryRunner,
    TideNowService,
    sanitize_events,
)

T0 = datetime(2024, 6, 15, 8, 0, tzinfo=timezone.utc)
MADRID = ZoneInfo("Europe/Madrid")

VIGO = Station("es-vigo", "Vigo", 42.2433, -8.7256)
NAVIA = Station("es-navia", "Navia", 43.545, -6.725)
SAN_FRANCISCO = Station("us-sf", "San Francisco", 37.8063, -122.4659, {"noaa": "9414290"})
CATALOG = (VIGO, NAVIA, SAN_FRANCISCO)

VIGO_TIDES = [
    TideEvent("05:00", 3.4, TideType.HIGH),
    TideEvent("11:10", 0.8, TideType.LOW),
    TideEvent("17:25", 3.5, TideType.HIGH),
    TideEvent("23:35", 0.7, TideType.LOW),
]

PLACES = {
    "Vigo": GeocodeResult(42.2406, -8.7207, "Vigo, Pontevedra, Galicia, España"),
    "Navia": GeocodeResult(43.5405, -6.7240, "Navia, Asturias, España"),
    "Cangas": GeocodeResult(42.2640, -8.7830, "Cangas, Pontevedra, Galicia, España"),
    "Atlantic": GeocodeResult(40.0, -40.0, "North Atlantic Ocean"),
    "Navia Beach": GeocodeResult(29.06, -80.92, "Navia Beach, Volusia County, Florida"),
}


class FakeClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class StubGeocoder:
    """Answers from PLACES; unknown queries geocode to None."""

    def __init__(self, error=None, delay=0.0):
        self.error = error
        self.delay = delay
        self.calls = []

    def geocode(self, query):
        self.calls.append(query)
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return PLACES.get(query)


class StubProvider:
    def __init__(self, key, events=None, error=None, delay=0.0):
        self.key = key
        self.label = f"Stub {key}"
        self.events = events
        self.error = error
        self.delay = delay
        self.calls = 0

    def fetch_events(self, station, day, tz):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return list(self.events or [])


class StubAstronomy:
    def __init__(self, sun_error=None, tz_error=None):
        self.sun_error = sun_error
        self.tz_error = tz_error
        self.tz_threads = []

    def get_timezone(self, lat, lon):
        self.tz_threads.append(threading.current_thread())
        if self.tz_error:
            raise self.tz_error
        return MADRID

    def get_sun_times(self, lat, lon, day, tz):
        if self.sun_error:
            raise self.sun_error
        return SunTimes("07:02", "22:01")


def failing(key):
    return StubProvider(key, error=ProviderUnavailable(f"Stub {key}", "boom"))


def make_service(providers=None, geocoder=None, astronomy=None, catalog=CATALOG, clock=None, cache=None, **kwargs):
    clock = clock or FakeClock()

    def load():
        if isinstance(catalog, Exception):
            raise catalog
        return catalog

    return TideNowService(
        geocoder=geocoder or StubGeocoder(),
        providers=providers if providers is not None else [StubProvider("ok", VIGO_TIDES)],
        cache=cache if cache is not None else MemoryTideCache(clock=clock),
        astronomy=astronomy or StubAstronomy(),
        catalog_loader=load,
        clock=clock,
        **kwargs,
    )


def forecast(service, query, token=None):
    return asyncio.run(service.forecast(query, token))


class TestProviderFallback:
    """Tests for the provider chain."""

    def test_first_success_stops_the_chain(self):
        """[fail, fail, succeed, x]: exactly the first three providers are called."""
        providers = [failing("a"), failing("b"), StubProvider("c", VIGO_TIDES), StubProvider("d", VIGO_TIDES)]
        snapshot = forecast(make_service(providers), "Vigo")

        assert [p.calls for p in providers] == [1, 1, 1, 0]
        assert snapshot.location.data_source_label == "Stub c"
        assert not snapshot.is_approximate
        assert snapshot.tides == VIGO_TIDES
        assert snapshot.stages == [
            "GEOCODING", "RESOLVING_STATION", "FETCHING",
            "FETCHING(a)", "FETCHING(b)", "FETCHING(c)", "DONE",
        ]

    def test_unexpected_provider_exception_counts_as_failure(self):
        providers = [StubProvider("a", error=RuntimeError("bad json")), StubProvider("b", VIGO_TIDES)]
        snapshot = forecast(make_service(providers), "Vigo")
        assert snapshot.location.data_source_label == "Stub b"

    def test_timeout_counts_as_failure(self):
        providers = [StubProvider("slow", VIGO_TIDES, delay=0.5), StubProvider("fast", VIGO_TIDES)]
        snapshot = forecast(make_service(providers, provider_timeout=0.05), "Vigo")
        assert snapshot.location.data_source_label == "Stub fast"

    def test_too_few_events_counts_as_failure(self):
        providers = [StubProvider("sparse", VIGO_TIDES[:1]), StubProvider("full", VIGO_TIDES)]
        snapshot = forecast(make_service(providers, min_provider_events=2), "Vigo")
        assert snapshot.location.data_source_label == "Stub full"

    def test_empty_result_counts_as_failure(self):
        providers = [StubProvider("empty", []), StubProvider("full", VIGO_TIDES)]
        snapshot = forecast(make_service(providers), "Vigo")
        assert snapshot.location.data_source_label == "Stub full"

    def test_all_providers_fail_gives_approximation(self):
        providers = [failing("a"), failing("b")]
        snapshot = forecast(make_service(providers), "Vigo")

        assert snapshot.is_approximate
        assert snapshot.location.data_source_label == APPROXIMATION_LABEL
        assert snapshot.location.resolved_station is None
        assert "No tide provider returned data for Vigo" in snapshot.location.disclaimer
        assert len(snapshot.tides) == 4
        assert snapshot.stages[-2:] == ["APPROXIMATING", "DONE"]


class TestCache:
    """Tests for cache use within the pipeline."""

    def test_hit_after_one_hour_refresh_after_seven(self):
        clock = FakeClock()
        provider = StubProvider("ok", VIGO_TIDES)
        service = make_service([provider], clock=clock)

        first = forecast(service, "Vigo")
        assert provider.calls == 1
        assert first.location.data_source_label == "Stub ok"

        clock.advance(hours=1)
        cached = forecast(service, "Vigo")
        assert provider.calls == 1
        assert cached.location.data_source_label == "Stub ok (cached)"
        assert cached.tides == VIGO_TIDES
        assert "FETCHING(cache)" in cached.stages

        clock.advance(hours=6)
        refreshed = forecast(service, "Vigo")
        assert provider.calls == 2
        assert refreshed.location.data_source_label == "Stub ok"

    def test_entry_for_another_day_is_a_miss(self):
        clock = FakeClock()
        cache = MemoryTideCache(clock=clock)
        cache.set(cache_key("Vigo"), VIGO_TIDES, "Stub old", "2024-06-14")
        provider = StubProvider("ok", VIGO_TIDES)

        snapshot = forecast(make_service([provider], clock=clock, cache=cache), "Vigo")
        assert provider.calls == 1
        assert snapshot.location.data_source_label == "Stub ok"

    def test_approximation_is_not_cached(self):
        clock = FakeClock()
        cache = MemoryTideCache(clock=clock)
        forecast(make_service([failing("a")], clock=clock, cache=cache), "Vigo")
        assert len(cache) == 0


class TestStationResolution:
    """Tests for requested vs resolved location."""

    def test_name_match(self):
        snapshot = forecast(make_service(), "Navia")
        location = snapshot.location
        assert location.resolved_station == NAVIA
        assert location.matched_by_name
        assert location.used_coordinates == NAVIA.coordinates
        assert location.requested_coordinates == PLACES["Navia"].coordinates
        assert location.disclaimer is None

    def test_nearest_station_is_disclosed(self):
        snapshot = forecast(make_service(), "Cangas")
        location = snapshot.location
        assert location.resolved_station == VIGO
        assert not location.matched_by_name
        assert location.station_distance_km < 10
        assert "nearest station, Vigo" in location.disclaimer

    def test_far_name_match_is_not_used(self):
        """A Florida place named after a Spanish station gets no Spanish tides."""
        provider = StubProvider("ok", VIGO_TIDES)
        snapshot = forecast(make_service([provider]), "Navia Beach")

        assert provider.calls == 0
        assert snapshot.is_approximate
        assert snapshot.location.resolved_station is None
        assert snapshot.location.used_coordinates == PLACES["Navia Beach"].coordinates

    def test_unresolved_station_skips_providers(self):
        provider = StubProvider("ok", VIGO_TIDES)
        snapshot = forecast(make_service([provider]), "Atlantic")

        assert provider.calls == 0
        assert snapshot.is_approximate
        assert snapshot.location.used_coordinates == PLACES["Atlantic"].coordinates
        assert "No tide station could be used" in snapshot.location.disclaimer
        assert "FETCHING" not in snapshot.stages
        assert ForecastStage.APPROXIMATING.value in snapshot.stages


class TestDegradation:
    """Tests for the fallbacks of the early stages."""

    def test_geocoder_and_providers_all_failing(self):
        """Total failure still produces an approximate day with events."""
        service = make_service([failing("a"), failing("b")], geocoder=StubGeocoder(error=OSError("offline")))
        snapshot = forecast(service, "Somewhere")

        assert snapshot.is_approximate
        assert len(snapshot.tides) >= 2
        assert len(snapshot.curve) == 97
        assert snapshot.location.location_name == "Vigo"
        assert snapshot.location.requested_coordinates is None
        assert "Could not find 'Somewhere'" in snapshot.location.disclaimer

    def test_unknown_place_uses_default_location(self):
        snapshot = forecast(make_service(), "Xyzzy")
        assert snapshot.location.location_name == "Vigo"
        assert snapshot.location.resolved_station == VIGO
        assert not snapshot.is_approximate

    def test_empty_query_skips_geocoder(self):
        geocoder = StubGeocoder()
        snapshot = forecast(make_service(geocoder=geocoder), "   ")
        assert geocoder.calls == []
        assert snapshot.location.resolved_station == VIGO
        assert snapshot.location.disclaimer is None

    def test_geocoder_timeout(self):
        geocoder = StubGeocoder(delay=0.5)
        snapshot = forecast(make_service(geocoder=geocoder, geocoder_timeout=0.05), "Navia")
        assert snapshot.location.location_name == "Vigo"

    def test_slow_reverse_lookup_keeps_requested_coordinates(self):
        """A "lat, lon" query never falls back to the default location."""

        def slow_fetch(url, params=None, headers=None, timeout=None):
            time.sleep(0.3)
            return {"display_name": "Presidio, San Francisco"}

        geocoder = NominatimGeocoder(timeout=0.2, fetch_json=slow_fetch)
        snapshot = forecast(make_service(geocoder=geocoder, geocoder_timeout=0.2), "37.80, -122.46")
        location = snapshot.location

        assert location.requested_coordinates == Coordinates(37.8, -122.46)
        assert location.location_name == "37.8, -122.46"
        assert location.resolved_station == SAN_FRANCISCO
        assert "Could not find" not in (location.disclaimer or "")

    def test_failing_geocoder_keeps_requested_coordinates(self):
        service = make_service(geocoder=StubGeocoder(error=OSError("offline")))
        location = forecast(service, "43.54, -6.72").location
        assert location.requested_coordinates == Coordinates(43.54, -6.72)
        assert location.resolved_station == NAVIA

    def test_out_of_range_coordinates_use_default_location(self):
        location = forecast(make_service(), "95, 10").location
        assert location.requested_coordinates is None
        assert location.location_name == "Vigo"

    def test_catalog_failure_gives_simulated_day(self):
        service = make_service(catalog=CatalogLoadFailure("missing file"))
        snapshot = forecast(service, "Navia")

        assert snapshot.is_approximate
        assert snapshot.location.data_source_label == SIMULATED_LABEL
        assert snapshot.location.location_name == "Navia (Simulated)"
        assert snapshot.tides == simulated_day()
        assert snapshot.sun == SunTimes("08:54", "19:28")
        assert "catalog is unavailable" in snapshot.location.disclaimer

    def test_sun_failure_uses_defaults(self):
        snapshot = forecast(make_service(astronomy=StubAstronomy(sun_error=RuntimeError("no ephemeris"))), "Vigo")
        assert snapshot.sun == SunTimes("07:00", "20:00")
        assert not snapshot.is_approximate

    def test_unexpected_error_gives_simulated_day(self):
        service = make_service(astronomy=StubAstronomy(tz_error=RuntimeError("corrupt tz data")))
        snapshot = forecast(service, "Vigo")
        assert snapshot.location.data_source_label == SIMULATED_LABEL
        assert "unexpected error" in snapshot.location.disclaimer
        assert snapshot.stages[-1] == "DONE"


class TestSnapshot:
    """Tests for the snapshot contents."""

    def test_full_snapshot(self):
        snapshot = forecast(make_service(), "Vigo")

        assert snapshot.date == "2024-06-15"
        assert snapshot.timezone == "Europe/Madrid"
        assert snapshot.sun == SunTimes("07:02", "22:01")
        assert len(snapshot.curve) == 97
        assert 20 <= snapshot.coefficient <= 120
        # 10:00 local is between the 05:00 high and the 11:10 low
        assert not snapshot.is_rising
        assert 0.8 < snapshot.current_height < 3.4

    def test_timezone_lookup_runs_off_the_event_loop(self):
        astronomy = StubAstronomy()
        forecast(make_service(astronomy=astronomy), "Vigo")
        assert astronomy.tz_threads
        assert all(thread is not threading.main_thread() for thread in astronomy.tz_threads)

    def test_local_day_follows_timezone(self):
        """23:30 UTC is already the next day in Madrid."""
        clock = FakeClock(datetime(2024, 6, 15, 23, 30, tzinfo=timezone.utc))
        snapshot = forecast(make_service(clock=clock), "Vigo")
        assert snapshot.date == "2024-06-16"

    def test_to_dict(self):
        data = forecast(make_service(), "Vigo").to_dict()
        assert data["location"]["resolved_station"]["name"] == "Vigo"
        assert data["tides"][0] == {"time": "05:00", "decimal_time": 5.0, "height": 3.4, "type": "HIGH"}
        assert data["stages"][0] == "GEOCODING"


class TestSanitizeEvents:
    """Tests for provider event cleanup."""

    def test_sorts_and_clamps(self):
        events = [
            TideEvent("11:00", -0.2, TideType.LOW),
            TideEvent("05:00", 3.0, TideType.HIGH),
        ]
        clean = sanitize_events(events)
        assert [e.clock for e in clean] == ["05:00", "11:00"]
        assert clean[1].height == 0.0

    def test_drops_duplicates_and_conflicts(self):
        events = [
            TideEvent("05:00", 3.0, TideType.HIGH),
            TideEvent("05:00", 3.0, TideType.HIGH),
            TideEvent("11:00", 0.5, TideType.LOW),
            TideEvent("11:00", 3.1, TideType.HIGH),
        ]
        clean = sanitize_events(events)
        assert [(e.clock, e.type) for e in clean] == [("05:00", TideType.HIGH), ("11:00", TideType.LOW)]

    def test_conflicting_provider_events_still_give_a_curve(self):
        events = VIGO_TIDES + [TideEvent("11:10", 3.0, TideType.HIGH)]
        snapshot = forecast(make_service([StubProvider("messy", events)]), "Vigo")
        assert not snapshot.is_approximate
        assert len(snapshot.tides) == 4


class TestCancellation:
    """Tests for superseded queries."""

    def test_cancelled_token_raises(self):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(QueryCancelled):
            forecast(make_service(), "Vigo", token)

    def test_latest_query_wins(self):
        service = make_service(geocoder=StubGeocoder(delay=0.05))
        runner = LatestQueryRunner(service)

        async def run_both():
            return await asyncio.gather(runner.submit("Vigo"), runner.submit("Navia"))

        first, second = asyncio.run(run_both())
        assert first is None
        assert second.location.resolved_station == NAVIA
