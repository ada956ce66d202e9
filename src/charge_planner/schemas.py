from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class Coordinate(BaseModel):
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)


class VehicleInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    battery_capacity_kwh: float = Field(ge=10.0, le=200.0)
    consumption_kwh_per_100km: float = Field(ge=10.0, le=50.0)
    connector_type: Literal["Type2", "CCS", "CHAdeMO"]
    max_charge_kw: float | None = Field(default=None, gt=0.0, le=1000.0)


class ChargingPlanRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    origin: Coordinate
    destination: Coordinate
    vehicle: VehicleInput
    start_soc_percent: float | None = Field(default=None, ge=0.0, le=100.0)
    search_radius_km: float = Field(default=15.0, ge=1.0, le=50.0)
    max_price_per_kwh: float | None = Field(default=None, gt=0.0)
    required_amenities: list[str] = Field(default_factory=list, max_length=10)
    include_alternatives: bool = False
    use_elevation: bool = True


class StationSearchRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    polyline: list[Coordinate] = Field(min_length=2, max_length=5000)
    distance_km: float | None = Field(default=None, gt=0.0)
    search_radius_km: float = Field(default=15.0, ge=1.0, le=50.0)
    battery_range_km: float = Field(default=200.0, gt=0.0, le=2000.0)


class StationResponse(BaseModel):
    station_id: str
    name: str
    latitude: float
    longitude: float
    power_kw: float
    connector_types: list[str]
    price_per_kwh: float | None
    rating: float
    operational: bool
    address: str


class DiscoveryMetricsResponse(BaseModel):
    search_points: int
    registry_calls: int
    cache_hits: int
    cache_misses: int
    rate_limit_retries: int
    failed_points: int
    timed_out_points: int
    elapsed_seconds: float


class StationSearchResponse(BaseModel):
    stations: list[StationResponse]
    metrics: DiscoveryMetricsResponse


class ChargingStopResponse(BaseModel):
    station_id: str
    station_name: str
    latitude: float
    longitude: float
    distance_from_start_km: float
    soc_before_percent: float
    soc_after_percent: float
    energy_added_kwh: float
    charge_time_minutes: float
    station_power_kw: float


class PlanFailureResponse(BaseModel):
    reason: Literal["no_station_in_range", "battery_depleted", "stop_limit_exceeded"]
    soc_percent: float
    latitude: float
    longitude: float
    segment_index: int
    distance_from_start_km: float


class PlanResponse(BaseModel):
    success: bool
    can_reach_destination: bool
    stops: list[ChargingStopResponse]
    final_soc_percent: float
    total_charge_time_minutes: float
    total_energy_consumed_kwh: float
    total_energy_added_kwh: float
    warnings: list[str]
    failure: PlanFailureResponse | None = None


class AlternativePlanResponse(BaseModel):
    strategy: Literal["min_stops", "min_time", "balanced"]
    success: bool
    failure_reason: str | None
    total_stops: int
    plan: PlanResponse


class RouteSummaryResponse(BaseModel):
    distance_km: float
    duration_minutes: float
    summary: str
    is_fallback: bool
    elevation_available: bool


class ChargingPlanResponse(BaseModel):
    origin: Coordinate
    destination: Coordinate
    route_geojson: dict
    route: RouteSummaryResponse
    plan: PlanResponse
    alternatives: list[AlternativePlanResponse]
    stations_considered: int
    discovery: DiscoveryMetricsResponse
    assumptions: dict[str, float]
