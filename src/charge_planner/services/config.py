from __future__ import annotations

from dataclasses import dataclass

from django.conf import settings


@dataclass(slots=True, frozen=True)
class PlannerConfig:
    """Safety margins and physics constants shared by every planning run."""

    min_soc: float = 20.0
    max_soc: float = 80.0
    start_soc: float = 85.0
    arrival_soc: float = 15.0
    safety_buffer_soc: float = 5.0
    reserve_soc: float = 5.0
    charging_efficiency: float = 0.85
    regen_efficiency: float = 0.6
    climb_kwh_per_100m: float = 0.5
    max_segment_km: float = 5.0
    corridor_km: float = 10.0
    max_backtrack_km: float = 15.0
    max_stops_per_segment: int = 3
    stop_count_warning: int = 5
    charge_time_warning_minutes: float = 120.0

    @classmethod
    def from_settings(cls) -> PlannerConfig:
        return cls(
            min_soc=float(settings.PLANNER_MIN_SOC),
            max_soc=float(settings.PLANNER_MAX_SOC),
            start_soc=float(settings.PLANNER_START_SOC),
            arrival_soc=float(settings.PLANNER_ARRIVAL_SOC),
            safety_buffer_soc=float(settings.PLANNER_SAFETY_BUFFER_SOC),
            reserve_soc=float(settings.PLANNER_RESERVE_SOC),
            charging_efficiency=float(settings.PLANNER_CHARGING_EFFICIENCY),
            regen_efficiency=float(settings.PLANNER_REGEN_EFFICIENCY),
            climb_kwh_per_100m=float(settings.PLANNER_CLIMB_KWH_PER_100M),
            max_segment_km=float(settings.PLANNER_MAX_SEGMENT_KM),
            corridor_km=float(settings.PLANNER_CORRIDOR_KM),
            max_backtrack_km=float(settings.PLANNER_MAX_BACKTRACK_KM),
            max_stops_per_segment=int(settings.PLANNER_MAX_STOPS_PER_SEGMENT),
        )


@dataclass(slots=True, frozen=True)
class DiscoveryConfig:
    search_radius_km: float = 15.0
    fallback_radii_km: tuple[float, ...] = (25.0, 35.0)
    max_results: int = 10
    corridor_km: float = 10.0
    grid_precision: int = 1
    max_search_points: int = 5
    min_candidates: int = 15
    timeout_seconds: float = 60.0
    max_workers: int = 4
    cache_ttl_seconds: int = 3600

    def radii_for(self, search_radius_km: float) -> list[float]:
        radii = [search_radius_km]
        radii.extend(radius for radius in self.fallback_radii_km if radius > search_radius_km)
        return radii

    @classmethod
    def from_settings(cls) -> DiscoveryConfig:
        return cls(
            search_radius_km=float(settings.DISCOVERY_SEARCH_RADIUS_KM),
            max_results=int(settings.OCM_MAX_RESULTS),
            corridor_km=float(settings.DISCOVERY_CORRIDOR_KM),
            timeout_seconds=float(settings.DISCOVERY_TIMEOUT_SECONDS),
            max_workers=int(settings.DISCOVERY_MAX_WORKERS),
            cache_ttl_seconds=int(settings.STATION_CACHE_TTL_SECONDS),
        )
