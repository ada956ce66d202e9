from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ConnectorType(str, Enum):
    TYPE2 = "Type2"
    CCS = "CCS"
    CHADEMO = "CHAdeMO"


class FailureReason(str, Enum):
    NO_STATION_IN_RANGE = "no_station_in_range"
    BATTERY_DEPLETED = "battery_depleted"
    STOP_LIMIT_EXCEEDED = "stop_limit_exceeded"
    # soft failure: the walk finished but below the arrival SOC target
    ARRIVAL_BELOW_FLOOR = "arrival_below_floor"


class Strategy(str, Enum):
    MIN_STOPS = "min_stops"
    MIN_TIME = "min_time"
    BALANCED = "balanced"


@dataclass(slots=True, frozen=True)
class GeoPoint:
    latitude: float
    longitude: float


@dataclass(slots=True, frozen=True)
class Route:
    points: tuple[GeoPoint, ...]
    distance_meters: float
    duration_seconds: float = 0.0
    summary: str = ""
    warnings: tuple[str, ...] = ()
    is_fallback: bool = False

    @property
    def distance_km(self) -> float:
        return self.distance_meters / 1000.0


@dataclass(slots=True, frozen=True)
class RouteSegment:
    index: int
    distance_km: float
    elevation_delta_m: float
    start: GeoPoint
    end: GeoPoint


@dataclass(slots=True, frozen=True)
class VehicleProfile:
    battery_capacity_kwh: float
    consumption_kwh_per_100km: float
    connector_type: ConnectorType
    max_charge_kw: float | None = None


@dataclass(slots=True, frozen=True)
class Station:
    station_id: str
    name: str
    location: GeoPoint
    power_kw: float
    connector_types: frozenset[str] = frozenset()
    price_per_kwh: float | None = None
    rating: float = 0.0
    operational: bool = True
    amenities: frozenset[str] = frozenset()
    address: str = ""


@dataclass(slots=True, frozen=True)
class TripConstraints:
    connector_type: ConnectorType
    max_price_per_kwh: float | None = None
    required_amenities: frozenset[str] = frozenset()


@dataclass(slots=True, frozen=True)
class StationScore:
    station_id: str
    value: float
    reasons: tuple[str, ...]


@dataclass(slots=True, frozen=True)
class ChargingStop:
    station_id: str
    station_name: str
    location: GeoPoint
    distance_from_start_km: float
    soc_before_percent: float
    soc_after_percent: float
    energy_added_kwh: float
    charge_time_minutes: float
    station_power_kw: float


@dataclass(slots=True, frozen=True)
class SocSample:
    distance_km: float
    soc_percent: float


@dataclass(slots=True, frozen=True)
class PlanFailure:
    reason: FailureReason
    soc_percent: float
    location: GeoPoint
    segment_index: int
    distance_from_start_km: float


@dataclass(slots=True, frozen=True)
class PlanResult:
    stops: tuple[ChargingStop, ...]
    final_soc_percent: float
    can_reach_destination: bool
    total_charge_time_minutes: float
    total_energy_consumed_kwh: float
    warnings: tuple[str, ...]
    start_soc_percent: float
    total_distance_km: float
    soc_trace: tuple[SocSample, ...] = ()
    failure: PlanFailure | None = None

    @property
    def success(self) -> bool:
        return self.failure is None and self.can_reach_destination

    @property
    def total_energy_added_kwh(self) -> float:
        return sum(stop.energy_added_kwh for stop in self.stops)


@dataclass(slots=True, frozen=True)
class AlternativePlan:
    strategy: Strategy
    plan: PlanResult
    success: bool
    failure_reason: FailureReason | None = None

    @property
    def total_stops(self) -> int:
        return len(self.plan.stops)


@dataclass(slots=True)
class DiscoveryMetrics:
    search_points: int = 0
    registry_calls: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    rate_limit_retries: int = 0
    failed_points: int = 0
    timed_out_points: int = 0
    elapsed_seconds: float = 0.0


@dataclass(slots=True, frozen=True)
class DiscoveryResult:
    stations: tuple[Station, ...]
    metrics: DiscoveryMetrics = field(default_factory=DiscoveryMetrics)
