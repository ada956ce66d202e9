from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import httpx
import pytest

from charge_planner.exceptions import RateLimitedError
from charge_planner.services.config import DiscoveryConfig
from charge_planner.services.discovery import (
    StationDiscoveryService,
    candidate_limit,
    deduplicate_stations,
    limit_by_power_tier,
    select_search_points,
    station_cache_key,
)
from charge_planner.services.rate_limit import BackoffPolicy, RateLimitGate
from charge_planner.services.registry import OpenChargeMapClient
from charge_planner.services.types import GeoPoint, Route, Station

ROUTE = Route(
    points=(GeoPoint(41.01, 29.01), GeoPoint(41.05, 29.05)),
    distance_meters=5600.0,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeRegistry:
    def __init__(self, responses: list) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[GeoPoint, float]] = []

    def search(self, point: GeoPoint, radius_km: float) -> list[Station]:
        self.calls.append((point, radius_km))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _station(
    station_id: str,
    latitude: float = 41.03,
    longitude: float = 29.03,
    power_kw: float = 150.0,
    name: str | None = None,
) -> Station:
    return Station(
        station_id=station_id,
        name=name if name is not None else f"Station {station_id}",
        location=GeoPoint(latitude=latitude, longitude=longitude),
        power_kw=power_kw,
        connector_types=frozenset({"CCS (Type 2)"}),
    )


def _service(registry: FakeRegistry, clock: FakeClock, **config) -> StationDiscoveryService:
    return StationDiscoveryService(
        registry=registry,
        config=DiscoveryConfig(**config),
        backoff=BackoffPolicy(),
        clock=clock,
        sleep=clock.sleep,
    )


def test_rate_limited_search_recovers_after_backoff() -> None:
    clock = FakeClock()
    registry = FakeRegistry(
        [
            RateLimitedError("slow down"),
            RateLimitedError("slow down"),
            [_station("ocm-1")],
        ]
    )

    result = _service(registry, clock).discover(ROUTE)

    assert [station.station_id for station in result.stations] == ["ocm-1"]
    assert clock.sleeps == [5.0, 10.0]
    assert result.metrics.elapsed_seconds == pytest.approx(15.0)
    assert result.metrics.rate_limit_retries == 2
    assert result.metrics.registry_calls == 3
    assert result.metrics.search_points == 1
    assert result.metrics.failed_points == 0


def test_exhausted_retries_mark_the_point_failed() -> None:
    clock = FakeClock()
    registry = FakeRegistry([RateLimitedError("slow down")] * 3)

    result = _service(registry, clock).discover(ROUTE)

    assert result.stations == ()
    assert result.metrics.failed_points == 1
    assert result.metrics.registry_calls == 3
    assert result.metrics.rate_limit_retries == 2
    assert clock.sleeps == [5.0, 10.0]


def test_empty_results_widen_the_search_radius() -> None:
    clock = FakeClock()
    registry = FakeRegistry([[], [], [_station("far")]])

    result = _service(registry, clock).discover(ROUTE)

    assert [radius for _, radius in registry.calls] == [15.0, 25.0, 35.0]
    assert [station.station_id for station in result.stations] == ["far"]
    # consecutive registry calls are spaced by the gate
    assert clock.sleeps == [2.0, 2.0]


def test_repeated_discovery_is_served_from_cache() -> None:
    clock = FakeClock()
    registry = FakeRegistry([[], [], [_station("far")]])
    service = _service(registry, clock)

    first = service.discover(ROUTE)
    second = service.discover(ROUTE)

    assert second.stations == first.stations
    assert second.metrics.registry_calls == 0
    assert second.metrics.cache_hits == 3
    assert second.metrics.cache_misses == 0
    assert len(registry.calls) == 3


def test_stations_outside_the_corridor_are_dropped() -> None:
    clock = FakeClock()
    registry = FakeRegistry([[_station("near"), _station("off", latitude=41.5)]])

    result = _service(registry, clock).discover(ROUTE)

    assert [station.station_id for station in result.stations] == ["near"]


def test_slow_searches_are_abandoned_after_timeout() -> None:
    release = threading.Event()

    class BlockingRegistry:
        def search(self, point: GeoPoint, radius_km: float) -> list[Station]:
            release.wait(5.0)
            return [_station("late")]

    service = StationDiscoveryService(
        registry=BlockingRegistry(),
        config=DiscoveryConfig(timeout_seconds=0.05),
        gate=RateLimitGate(min_interval_seconds=0.0),
    )
    route = Route(points=(GeoPoint(45.01, 10.01), GeoPoint(45.05, 10.05)), distance_meters=5500.0)
    try:
        result = service.discover(route)
    finally:
        release.set()

    assert result.stations == ()
    assert result.metrics.timed_out_points == 1


def test_deduplicate_stations_by_id_coordinates_and_name() -> None:
    stations = [
        _station("a", 41.0012, 29.0012, name="Zorlu Center"),
        _station("a", 41.2, 29.2),
        _station("b", 41.0013, 29.0011),
        _station("c", 41.0052, 29.0052, name="ZORLU center"),
        _station("d", 42.0, 30.0, name="Zorlu Center"),
        _station("e", 41.3, 29.3, name=""),
        _station("f", 41.4, 29.4, name=""),
    ]

    unique = deduplicate_stations(stations)

    assert [station.station_id for station in unique] == ["a", "d", "e", "f"]


def test_limit_by_power_tier_prefers_fast_stations() -> None:
    stations = [
        _station("slow", power_kw=7.0),
        _station("medium", power_kw=22.0),
        _station("ultra", power_kw=150.0),
        _station("fast", power_kw=50.0),
    ]

    limited = limit_by_power_tier(stations, 2)

    assert [station.station_id for station in limited] == ["ultra", "fast"]


def test_candidate_limit_scales_with_route_length() -> None:
    assert candidate_limit(100.0, 200.0) == 15
    assert candidate_limit(1000.0, 200.0) == 35
    assert candidate_limit(1000.0, 0.0) == 15


def test_select_search_points_uses_bucket_centroids() -> None:
    points = [GeoPoint(40.05, 29.05), GeoPoint(40.15, 29.05), GeoPoint(40.25, 29.05)]

    assert select_search_points(points) == points
    assert select_search_points(points[:1]) == points[:1]
    assert select_search_points([]) == []


def test_select_search_points_falls_back_on_long_routes() -> None:
    points = [GeoPoint(40.0 + index * 0.01, 29.0) for index in range(1000)]

    selected = select_search_points(points)

    assert selected == [points[0], points[400], points[-1]]


def test_station_cache_key_rounds_coordinates() -> None:
    key = station_cache_key(GeoPoint(41.01234, 29.98765), 15.0)

    assert key == "stations:41.012,29.988:r15"


def test_malformed_registry_record_is_skipped() -> None:
    records = [
        {
            "ID": 1,
            "AddressInfo": {"Title": "Good", "Latitude": 41.03, "Longitude": 29.03},
            "Connections": [{"PowerKW": 150}],
        },
        {
            "ID": 2,
            "AddressInfo": {"Title": "Broken", "Latitude": "n/a", "Longitude": 29.03},
            "Connections": [{"PowerKW": 50}],
        },
    ]
    client = OpenChargeMapClient(
        http_client=httpx.Client(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=records))
        )
    )
    clock = FakeClock()

    result = _service(client, clock).discover(ROUTE)

    assert [station.station_id for station in result.stations] == ["1"]
    assert result.metrics.failed_points == 0


def test_unexpected_registry_error_marks_the_point_failed() -> None:
    clock = FakeClock()
    registry = FakeRegistry([RuntimeError("boom")])

    result = _service(registry, clock).discover(ROUTE)

    assert result.stations == ()
    assert result.metrics.failed_points == 1


def test_concurrent_search_points_share_the_rate_limit_gate() -> None:
    lock = threading.Lock()
    calls: list[GeoPoint] = []

    class PointRegistry:
        def search(self, point: GeoPoint, radius_km: float) -> list[Station]:
            with lock:
                calls.append(point)
            return [_station(f"{point.latitude:.2f}", point.latitude, point.longitude)]

    clock = FakeClock()
    route = Route(
        points=(GeoPoint(40.05, 29.05), GeoPoint(40.15, 29.05), GeoPoint(40.25, 29.05)),
        distance_meters=22300.0,
    )

    result = _service(PointRegistry(), clock, max_workers=3).discover(route)

    assert result.metrics.search_points == 3
    assert result.metrics.registry_calls == 3
    assert len(calls) == 3
    assert sorted(station.station_id for station in result.stations) == [
        "40.05",
        "40.15",
        "40.25",
    ]
    # three admissions at t=0, t=2 and t=4 whatever order the workers arrive in
    assert clock.sleeps == [2.0, 2.0]
    assert clock.now == pytest.approx(4.0)


def test_rate_limit_gate_spaces_callers_from_many_threads() -> None:
    clock = FakeClock()
    gate = RateLimitGate(min_interval_seconds=2.0, clock=clock, sleep=clock.sleep)

    with ThreadPoolExecutor(max_workers=5) as executor:
        waits = list(executor.map(lambda _: gate.acquire(), range(5)))

    assert sorted(waits) == [0.0, 2.0, 2.0, 2.0, 2.0]
    assert clock.now == pytest.approx(8.0)


def test_concurrent_discoveries_query_a_cache_key_once() -> None:
    lock = threading.Lock()
    calls: list[GeoPoint] = []

    class SlowRegistry:
        def search(self, point: GeoPoint, radius_km: float) -> list[Station]:
            with lock:
                calls.append(point)
            time.sleep(0.05)
            return [_station("shared")]

    service = StationDiscoveryService(
        registry=SlowRegistry(),
        config=DiscoveryConfig(),
        backoff=BackoffPolicy(),
        gate=RateLimitGate(min_interval_seconds=0.0),
    )
    barrier = threading.Barrier(2)

    def run():
        barrier.wait(5.0)
        return service.discover(ROUTE)

    with ThreadPoolExecutor(max_workers=2) as executor:
        results = list(executor.map(lambda _: run(), range(2)))

    assert len(calls) == 1
    assert [result.stations for result in results] == [results[0].stations] * 2
    assert sorted(result.metrics.cache_hits for result in results) == [0, 1]
    assert sum(result.metrics.registry_calls for result in results) == 1


def test_cache_locks_do_not_grow_with_distinct_keys() -> None:
    clock = FakeClock()
    registry = FakeRegistry([[_station(str(index))] for index in range(20)])
    service = _service(registry, clock)
    lock_count = len(service._key_locks)

    for index in range(20):
        route = Route(
            points=(GeoPoint(10.0 + index, 20.0), GeoPoint(10.001 + index, 20.001)),
            distance_meters=150.0,
        )
        service.discover(route)

    assert len(registry.calls) == 20
    assert len(service._key_locks) == lock_count
