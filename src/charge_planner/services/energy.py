from __future__ import annotations

import math
from collections.abc import Sequence

from charge_planner.exceptions import InvalidPlanInputError
from charge_planner.services.geo import distance_km, interpolate
from charge_planner.services.types import Route, RouteSegment

DEFAULT_REGEN_EFFICIENCY = 0.6
DEFAULT_CLIMB_KWH_PER_100M = 0.5
DEFAULT_CHARGING_EFFICIENCY = 0.85
SEGMENT_TOLERANCE = 1e-9

# (mean SOC lower bound, fraction of rated power the battery accepts)
CHARGE_CURVE = (
    (80.0, 0.3),
    (60.0, 0.6),
    (40.0, 0.8),
)


def segment_energy_kwh(
    distance_km: float,
    elevation_delta_m: float,
    base_consumption_kwh_per_100km: float,
    regen_efficiency: float = DEFAULT_REGEN_EFFICIENCY,
    climb_kwh_per_100m: float = DEFAULT_CLIMB_KWH_PER_100M,
) -> float:
    """Energy drawn from the battery over one segment.

    Climbing costs ``climb_kwh_per_100m`` per 100 m gained. Descending returns
    the same amount scaled down by ``regen_efficiency``, so a long enough
    descent yields a negative value (net energy gain).
    """
    if distance_km < 0:
        raise ValueError("Segment distance must not be negative")
    if not 0.0 < regen_efficiency <= 1.0:
        raise ValueError("Regenerative efficiency must be within (0, 1]")

    energy = base_consumption_kwh_per_100km / 100.0 * distance_km
    climb_energy = elevation_delta_m / 100.0 * climb_kwh_per_100m
    if elevation_delta_m > 0:
        energy += climb_energy
    elif elevation_delta_m < 0:
        energy += climb_energy * regen_efficiency
    return energy


def energy_to_soc(energy_kwh: float, capacity_kwh: float) -> float:
    return _clamp(energy_kwh / capacity_kwh * 100.0, 0.0, 100.0)


def soc_to_energy(soc_percent: float, capacity_kwh: float) -> float:
    return _clamp(soc_percent / 100.0 * capacity_kwh, 0.0, capacity_kwh)


def soc_delta_for_energy(energy_kwh: float, capacity_kwh: float) -> float:
    """Signed SOC change caused by ``energy_kwh``; not clamped."""
    return energy_kwh / capacity_kwh * 100.0


def soc_to_range_km(
    soc_percent: float, capacity_kwh: float, consumption_kwh_per_100km: float
) -> float:
    return soc_to_energy(soc_percent, capacity_kwh) / consumption_kwh_per_100km * 100.0


def charge_curve_factor(soc_percent: float) -> float:
    for threshold, factor in CHARGE_CURVE:
        if soc_percent > threshold:
            return factor
    return 1.0


def charge_time_minutes(
    energy_kwh: float,
    station_power_kw: float,
    soc_before_percent: float,
    soc_after_percent: float,
    efficiency: float = DEFAULT_CHARGING_EFFICIENCY,
    vehicle_max_kw: float | None = None,
) -> float:
    """Minutes needed to add ``energy_kwh``.

    The effective rate is the lower of station and vehicle power, discounted
    by ``efficiency`` and derated by the charge curve at the session's mean SOC.
    """
    if energy_kwh <= 0:
        return 0.0
    power_kw = station_power_kw
    if vehicle_max_kw:
        power_kw = min(power_kw, vehicle_max_kw)
    if power_kw <= 0:
        raise ValueError("Charging power must be positive")

    mean_soc = (soc_before_percent + soc_after_percent) / 2.0
    effective_kw = power_kw * efficiency * charge_curve_factor(mean_soc)
    return energy_kwh / effective_kw * 60.0


def build_segments(
    route: Route,
    elevations: Sequence[float] | None = None,
    max_segment_km: float = 5.0,
) -> list[RouteSegment]:
    points = route.points
    if len(points) < 2:
        raise InvalidPlanInputError("Route needs at least two points")
    if route.distance_meters <= 0:
        raise InvalidPlanInputError("Route distance must be positive")
    if elevations is not None and len(elevations) != len(points):
        raise InvalidPlanInputError("Elevation samples must match route points")
    if max_segment_km <= 0:
        raise InvalidPlanInputError("Maximum segment length must be positive")

    raw_distances = [
        distance_km(points[index - 1], points[index]) for index in range(1, len(points))
    ]
    geometric_km = sum(raw_distances)
    if geometric_km > 0:
        scale = route.distance_km / geometric_km
        road_distances = [distance * scale for distance in raw_distances]
    else:
        road_distances = [route.distance_km / len(raw_distances)] * len(raw_distances)

    segments: list[RouteSegment] = []
    for index, road_km in enumerate(road_distances):
        start, end = points[index], points[index + 1]
        delta_m = 0.0
        if elevations is not None:
            delta_m = float(elevations[index + 1]) - float(elevations[index])

        parts = max(1, math.ceil(road_km / max_segment_km - SEGMENT_TOLERANCE))
        for part in range(parts):
            segments.append(
                RouteSegment(
                    index=len(segments),
                    distance_km=road_km / parts,
                    elevation_delta_m=delta_m / parts,
                    start=interpolate(start, end, part / parts),
                    end=interpolate(start, end, (part + 1) / parts),
                )
            )
    return segments


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))
