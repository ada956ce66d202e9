from __future__ import annotations

import hashlib
import logging
import time
from typing import Any

import httpx
from django.conf import settings
from django.core.cache import cache

from charge_planner.exceptions import ChargePlannerError, ExternalServiceError, NoRouteFoundError
from charge_planner.services.geo import distance_km
from charge_planner.services.types import GeoPoint, Route

logger = logging.getLogger(__name__)

FALLBACK_SPEED_KMH = 60.0


class OsrmClient:
    def __init__(self) -> None:
        self.base_url = settings.OSRM_BASE_URL.rstrip("/")
        self.timeout = settings.OSRM_TIMEOUT_SECONDS
        self.retry_count = settings.OSRM_RETRY_COUNT

    def route(self, origin: GeoPoint, destination: GeoPoint) -> Route:
        cache_key = self._cache_key([origin, destination])
        cached = cache.get(cache_key)
        if cached:
            return Route(
                points=tuple(
                    GeoPoint(latitude=lat, longitude=lon) for lat, lon in cached["points"]
                ),
                distance_meters=cached["distance_meters"],
                duration_seconds=cached["duration_seconds"],
                summary=cached["summary"],
            )

        coordinates = ";".join(
            f"{point.longitude:.6f},{point.latitude:.6f}" for point in (origin, destination)
        )
        endpoint = f"{self.base_url}/route/v1/driving/{coordinates}"
        params = {
            "overview": "full",
            "geometries": "geojson",
            "steps": "false",
            "annotations": "false",
        }

        for attempt in range(self.retry_count + 1):
            try:
                response = httpx.get(endpoint, params=params, timeout=self.timeout)
                response.raise_for_status()
                route = self._parse_response(response.json())
                cache.set(
                    cache_key,
                    {
                        "points": [(point.latitude, point.longitude) for point in route.points],
                        "distance_meters": route.distance_meters,
                        "duration_seconds": route.duration_seconds,
                        "summary": route.summary,
                    },
                    timeout=settings.ROUTE_CACHE_TTL_SECONDS,
                )
                return route
            except NoRouteFoundError:
                raise
            except (ValueError, TypeError, KeyError, AttributeError) as exc:
                raise ExternalServiceError("OSRM returned a malformed response") from exc
            except httpx.HTTPError as exc:
                if attempt >= self.retry_count:
                    raise ExternalServiceError("OSRM request failed") from exc
                time.sleep(0.3 * (attempt + 1))

        raise ExternalServiceError("OSRM request failed")

    def route_or_fallback(self, origin: GeoPoint, destination: GeoPoint) -> Route:
        try:
            return self.route(origin, destination)
        except ChargePlannerError as exc:
            logger.warning("Routing failed, using straight-line estimate: %s", exc)
            return straight_line_route(origin, destination)

    @staticmethod
    def _cache_key(waypoints: list[GeoPoint]) -> str:
        encoded = "|".join(
            f"{point.latitude:.5f}:{point.longitude:.5f}" for point in waypoints
        ).encode()
        digest = hashlib.sha256(encoded).hexdigest()
        return f"route:{digest}"

    @staticmethod
    def _parse_response(payload: Any) -> Route:
        if not isinstance(payload, dict):
            raise ExternalServiceError("OSRM returned an unexpected payload")
        if payload.get("code") != "Ok":
            raise NoRouteFoundError("Could not compute route")

        routes = payload.get("routes") or []
        if not routes:
            raise NoRouteFoundError("Could not compute route")

        first = routes[0]
        coordinates = first.get("geometry", {}).get("coordinates", [])
        if len(coordinates) < 2:
            raise NoRouteFoundError("Route geometry unavailable")

        legs = first.get("legs") or []
        summary = " / ".join(leg["summary"] for leg in legs if leg.get("summary"))
        return Route(
            points=tuple(
                GeoPoint(latitude=float(lat), longitude=float(lon)) for lon, lat in coordinates
            ),
            distance_meters=float(first.get("distance", 0.0)),
            duration_seconds=float(first.get("duration", 0.0)),
            summary=summary,
        )


def straight_line_route(origin: GeoPoint, destination: GeoPoint) -> Route:
    distance = distance_km(origin, destination)
    return Route(
        points=(origin, destination),
        distance_meters=distance * 1000.0,
        duration_seconds=distance / FALLBACK_SPEED_KMH * 3600.0,
        summary="Straight-line estimate",
        warnings=("Routing service unavailable; using a straight-line route",),
        is_fallback=True,
    )


def simplify_points(points: tuple[GeoPoint, ...], max_points: int) -> tuple[GeoPoint, ...]:
    if len(points) <= max_points:
        return points

    step = max(1, len(points) // max_points)
    simplified = list(points[::step])
    if simplified[-1] != points[-1]:
        simplified.append(points[-1])
    return tuple(simplified)
