from __future__ import annotations

import logging
import math
import re
import threading
import time
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import replace
from typing import Any

from django.conf import settings
from django.core.cache import cache

from charge_planner.exceptions import (
    ExternalServiceError,
    RateLimitedError,
    StationRegistryUnavailableError,
)
from charge_planner.services.config import DiscoveryConfig
from charge_planner.services.geo import centroid, grid_bucket, min_distance_to_points_km
from charge_planner.services.rate_limit import BackoffPolicy, Clock, RateLimitGate, Sleeper
from charge_planner.services.registry import OpenChargeMapClient
from charge_planner.services.types import (
    DiscoveryMetrics,
    DiscoveryResult,
    GeoPoint,
    Route,
    Station,
)

logger = logging.getLogger(__name__)

FAST_TIER_MIN_KW = 50.0
MEDIUM_TIER_MIN_KW = 22.0
EMERGENCY_POINT_THRESHOLD = 3
CACHE_LOCK_STRIPES = 64
NAME_PATTERN = re.compile(r"[^a-z0-9]")


class StationDiscoveryService:
    """Finds charging stations along a route through the station registry.

    One instance owns the rate-limit gate and the striped cache locks, so a
    process should share a single instance between requests.
    """

    def __init__(
        self,
        registry: OpenChargeMapClient | None = None,
        config: DiscoveryConfig | None = None,
        backoff: BackoffPolicy | None = None,
        gate: RateLimitGate | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleeper = time.sleep,
    ) -> None:
        self.registry = registry or OpenChargeMapClient()
        self.config = config or DiscoveryConfig.from_settings()
        self.backoff = backoff or BackoffPolicy.from_settings()
        self.clock = clock
        self.sleep = sleep
        self.gate = gate or RateLimitGate(
            min_interval_seconds=float(settings.REGISTRY_MIN_INTERVAL_SECONDS),
            clock=clock,
            sleep=sleep,
        )
        self._key_locks = tuple(threading.Lock() for _ in range(CACHE_LOCK_STRIPES))

    def discover(
        self,
        route: Route,
        search_radius_km: float | None = None,
        battery_range_km: float = 200.0,
    ) -> DiscoveryResult:
        started = self.clock()
        radius = search_radius_km or self.config.search_radius_km
        search_points = select_search_points(
            route.points,
            precision=self.config.grid_precision,
            max_points=self.config.max_search_points,
        )
        metrics = DiscoveryMetrics(search_points=len(search_points))
        if not search_points:
            return DiscoveryResult(stations=(), metrics=metrics)

        metrics_lock = threading.Lock()
        results: list[list[Station]] = [[] for _ in search_points]

        executor = ThreadPoolExecutor(
            max_workers=max(1, min(self.config.max_workers, len(search_points))),
            thread_name_prefix="station-discovery",
        )
        futures: dict[Future[list[Station]], int] = {
            executor.submit(self._search_point, point, radius, metrics, metrics_lock): index
            for index, point in enumerate(search_points)
        }
        try:
            done, not_done = wait(futures, timeout=self.config.timeout_seconds)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        for future in done:
            index = futures[future]
            try:
                results[index] = future.result()
            except ExternalServiceError as exc:
                metrics.failed_points += 1
                logger.warning(
                    "Station search failed for point %s (%.4f, %.4f): %s",
                    index,
                    search_points[index].latitude,
                    search_points[index].longitude,
                    exc,
                )
            except Exception:
                metrics.failed_points += 1
                logger.exception(
                    "Unexpected error searching point %s (%.4f, %.4f)",
                    index,
                    search_points[index].latitude,
                    search_points[index].longitude,
                )

        if not_done:
            metrics.timed_out_points = len(not_done)
            logger.warning(
                "Station discovery timed out after %.1fs, %s of %s search points abandoned",
                self.config.timeout_seconds,
                len(not_done),
                len(search_points),
            )

        merged = [station for point_stations in results for station in point_stations]
        unique = deduplicate_stations(merged)
        in_corridor = [
            station
            for station in unique
            if min_distance_to_points_km(station.location, route.points) <= self.config.corridor_km
        ]
        limit = candidate_limit(route.distance_km, battery_range_km, self.config.min_candidates)
        stations = limit_by_power_tier(in_corridor, limit)

        with metrics_lock:
            # abandoned searches may still be running; hand back a snapshot
            metrics = replace(metrics, elapsed_seconds=self.clock() - started)
        logger.info(
            "Discovered %s stations (%s unique, %s in corridor) from %s search points",
            len(stations),
            len(unique),
            len(in_corridor),
            len(search_points),
        )
        return DiscoveryResult(stations=tuple(stations), metrics=metrics)

    def _search_point(
        self,
        point: GeoPoint,
        search_radius_km: float,
        metrics: DiscoveryMetrics,
        metrics_lock: threading.Lock,
    ) -> list[Station]:
        for radius in self.config.radii_for(search_radius_km):
            stations = self._cached_search(point, radius, metrics, metrics_lock)
            if stations:
                return stations
        return []

    def _cached_search(
        self,
        point: GeoPoint,
        radius_km: float,
        metrics: DiscoveryMetrics,
        metrics_lock: threading.Lock,
    ) -> list[Station]:
        key = station_cache_key(point, radius_km)
        with self._lock_for(key):
            cached = cache.get(key)
            if cached is not None:
                with metrics_lock:
                    metrics.cache_hits += 1
                logger.debug("Station cache hit for %s", key)
                return [_station_from_cache(entry) for entry in cached]

            with metrics_lock:
                metrics.cache_misses += 1
            stations = self._query_with_backoff(point, radius_km, metrics, metrics_lock)
            cache.set(
                key,
                [_station_to_cache(station) for station in stations],
                timeout=self.config.cache_ttl_seconds,
            )
            return stations

    def _query_with_backoff(
        self,
        point: GeoPoint,
        radius_km: float,
        metrics: DiscoveryMetrics,
        metrics_lock: threading.Lock,
    ) -> list[Station]:
        for attempt in range(1, self.backoff.max_attempts + 1):
            self.gate.acquire()
            with metrics_lock:
                metrics.registry_calls += 1
            try:
                return self.registry.search(point, radius_km)
            except RateLimitedError as exc:
                if attempt >= self.backoff.max_attempts:
                    raise StationRegistryUnavailableError(
                        f"Station registry still rate limited after {attempt} attempts"
                    ) from exc
                delay = self.backoff.delay_for(attempt)
                with metrics_lock:
                    metrics.rate_limit_retries += 1
                logger.info("Station registry rate limited, retrying in %.1fs", delay)
                self.sleep(delay)

        raise StationRegistryUnavailableError("Station registry request failed")

    def _lock_for(self, key: str) -> threading.Lock:
        return self._key_locks[hash(key) % len(self._key_locks)]


def select_search_points(
    points: Sequence[GeoPoint], precision: int = 1, max_points: int = 5
) -> list[GeoPoint]:
    """Reduce a polyline to a few query points.

    Points are bucketed on a coarse lat/lng grid and each bucket is represented
    by its centroid, in route order. The count is capped at
    ``min(max(3, ceil(n / 100)), max_points)``; anything above three falls back
    to the start, the 40% mark and the end of the route.
    """
    if not points:
        return []
    if len(points) == 1:
        return [points[0]]

    buckets: dict[tuple[int, int], list[GeoPoint]] = {}
    for point in points:
        buckets.setdefault(grid_bucket(point, precision), []).append(point)
    centroids = [centroid(bucket) for bucket in buckets.values()]

    cap = min(max(3, math.ceil(len(points) / 100)), max_points)
    if len(centroids) > cap:
        step = (len(centroids) - 1) / (cap - 1) if cap > 1 else 0.0
        centroids = [centroids[round(index * step)] for index in range(cap)]

    if len(centroids) > EMERGENCY_POINT_THRESHOLD:
        return [points[0], points[math.floor(len(points) * 0.4)], points[-1]]
    return centroids


def station_cache_key(point: GeoPoint, radius_km: float) -> str:
    return f"stations:{point.latitude:.3f},{point.longitude:.3f}:r{radius_km:g}"


def normalize_name(name: str) -> str:
    return NAME_PATTERN.sub("", name.lower())


def deduplicate_stations(stations: Sequence[Station]) -> list[Station]:
    """Collapse provider duplicates by id, then ~100 m coordinates, then name nearby."""
    seen_ids: set[str] = set()
    seen_coordinates: set[tuple[float, float]] = set()
    seen_names: set[tuple[str, tuple[int, int]]] = set()

    unique: list[Station] = []
    for station in stations:
        if station.station_id in seen_ids:
            continue
        coordinates = (round(station.location.latitude, 3), round(station.location.longitude, 3))
        if coordinates in seen_coordinates:
            continue
        name_key = (normalize_name(station.name), grid_bucket(station.location, 2))
        if name_key[0] and name_key in seen_names:
            continue

        seen_ids.add(station.station_id)
        seen_coordinates.add(coordinates)
        if name_key[0]:
            seen_names.add(name_key)
        unique.append(station)
    return unique


def power_tier(power_kw: float) -> int:
    if power_kw >= FAST_TIER_MIN_KW:
        return 0
    if power_kw >= MEDIUM_TIER_MIN_KW:
        return 1
    return 2


def candidate_limit(route_km: float, battery_range_km: float, minimum: int = 15) -> int:
    if battery_range_km <= 0:
        return minimum
    stops_needed = math.ceil(route_km / (battery_range_km * 0.75))
    return max(minimum, stops_needed * 5)


def limit_by_power_tier(stations: Sequence[Station], limit: int) -> list[Station]:
    ordered = sorted(
        stations,
        key=lambda station: (power_tier(station.power_kw), -station.power_kw, station.station_id),
    )
    return ordered[:limit]


def _station_to_cache(station: Station) -> dict[str, Any]:
    return {
        "station_id": station.station_id,
        "name": station.name,
        "latitude": station.location.latitude,
        "longitude": station.location.longitude,
        "power_kw": station.power_kw,
        "connector_types": sorted(station.connector_types),
        "price_per_kwh": station.price_per_kwh,
        "rating": station.rating,
        "operational": station.operational,
        "amenities": sorted(station.amenities),
        "address": station.address,
    }


def _station_from_cache(entry: dict[str, Any]) -> Station:
    return Station(
        station_id=entry["station_id"],
        name=entry["name"],
        location=GeoPoint(latitude=entry["latitude"], longitude=entry["longitude"]),
        power_kw=entry["power_kw"],
        connector_types=frozenset(entry["connector_types"]),
        price_per_kwh=entry["price_per_kwh"],
        rating=entry["rating"],
        operational=entry["operational"],
        amenities=frozenset(entry["amenities"]),
        address=entry["address"],
    )
