from __future__ import annotations

import math
from collections.abc import Sequence

from charge_planner.services.types import GeoPoint

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_rad = math.radians(lat1)
    lon1_rad = math.radians(lon1)
    lat2_rad = math.radians(lat2)
    lon2_rad = math.radians(lon2)

    dlat = lat2_rad - lat1_rad
    dlon = lon2_rad - lon1_rad

    a = (
        math.sin(dlat / 2.0) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2.0) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def distance_km(start: GeoPoint, end: GeoPoint) -> float:
    return haversine_km(start.latitude, start.longitude, end.latitude, end.longitude)


def path_length_km(points: Sequence[GeoPoint]) -> float:
    return sum(distance_km(points[index - 1], points[index]) for index in range(1, len(points)))


def interpolate(start: GeoPoint, end: GeoPoint, fraction: float) -> GeoPoint:
    return GeoPoint(
        latitude=start.latitude + (end.latitude - start.latitude) * fraction,
        longitude=start.longitude + (end.longitude - start.longitude) * fraction,
    )


def nearest_point_index(point: GeoPoint, points: Sequence[GeoPoint]) -> tuple[int, float]:
    """Return the index of the closest point in ``points`` and its distance in km."""
    best_index = 0
    best_distance = float("inf")
    for index, candidate in enumerate(points):
        distance = distance_km(point, candidate)
        if distance < best_distance:
            best_index = index
            best_distance = distance
    return best_index, best_distance


def min_distance_to_points_km(point: GeoPoint, points: Sequence[GeoPoint]) -> float:
    return nearest_point_index(point, points)[1]


def grid_bucket(point: GeoPoint, precision: int) -> tuple[int, int]:
    factor = 10**precision
    return math.floor(point.latitude * factor), math.floor(point.longitude * factor)


def centroid(points: Sequence[GeoPoint]) -> GeoPoint:
    return GeoPoint(
        latitude=sum(point.latitude for point in points) / len(points),
        longitude=sum(point.longitude for point in points) / len(points),
    )
