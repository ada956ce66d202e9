from __future__ import annotations

import logging
from dataclasses import replace

from django.conf import settings

from charge_planner.exceptions import ExternalServiceError
from charge_planner.schemas import (
    AlternativePlanResponse,
    ChargingPlanRequest,
    ChargingPlanResponse,
    ChargingStopResponse,
    Coordinate,
    DiscoveryMetricsResponse,
    PlanFailureResponse,
    PlanResponse,
    RouteSummaryResponse,
    StationResponse,
    StationSearchRequest,
    StationSearchResponse,
)
from charge_planner.services.alternatives import generate_alternatives
from charge_planner.services.config import PlannerConfig
from charge_planner.services.discovery import StationDiscoveryService
from charge_planner.services.elevation import ElevationClient
from charge_planner.services.energy import soc_to_range_km
from charge_planner.services.geo import path_length_km
from charge_planner.services.planner import plan_charging
from charge_planner.services.routing import OsrmClient, simplify_points
from charge_planner.services.types import (
    ConnectorType,
    DiscoveryMetrics,
    GeoPoint,
    PlanResult,
    Route,
    Station,
    TripConstraints,
    VehicleProfile,
)

logger = logging.getLogger(__name__)


class TripPlannerService:
    def __init__(
        self,
        osrm_client: OsrmClient | None = None,
        elevation_client: ElevationClient | None = None,
        discovery: StationDiscoveryService | None = None,
        config: PlannerConfig | None = None,
    ) -> None:
        self.osrm_client = osrm_client or OsrmClient()
        self.elevation_client = elevation_client or ElevationClient()
        self.discovery = discovery or StationDiscoveryService()
        self.config = config or PlannerConfig.from_settings()

    def plan(self, request: ChargingPlanRequest) -> ChargingPlanResponse:
        vehicle = VehicleProfile(
            battery_capacity_kwh=request.vehicle.battery_capacity_kwh,
            consumption_kwh_per_100km=request.vehicle.consumption_kwh_per_100km,
            connector_type=ConnectorType(request.vehicle.connector_type),
            max_charge_kw=request.vehicle.max_charge_kw,
        )
        constraints = TripConstraints(
            connector_type=vehicle.connector_type,
            max_price_per_kwh=request.max_price_per_kwh,
            required_amenities=frozenset(request.required_amenities),
        )
        start_soc = (
            request.start_soc_percent
            if request.start_soc_percent is not None
            else self.config.start_soc
        )

        origin = GeoPoint(request.origin.latitude, request.origin.longitude)
        destination = GeoPoint(request.destination.latitude, request.destination.longitude)
        route = self.osrm_client.route_or_fallback(origin, destination)
        route = replace(route, points=simplify_points(route.points, settings.ROUTE_MAX_POINTS))

        elevations: list[float] | None = None
        if request.use_elevation:
            try:
                elevations = self.elevation_client.lookup(route.points)
            except ExternalServiceError as exc:
                logger.warning("Elevation lookup failed, assuming a flat route: %s", exc)
                route = replace(
                    route,
                    warnings=route.warnings
                    + ("Elevation data unavailable; assuming a flat route",),
                )

        full_range_km = soc_to_range_km(
            100.0, vehicle.battery_capacity_kwh, vehicle.consumption_kwh_per_100km
        )
        discovery = self.discovery.discover(
            route,
            search_radius_km=request.search_radius_km,
            battery_range_km=full_range_km,
        )

        plan = plan_charging(
            vehicle,
            route,
            discovery.stations,
            config=self.config,
            start_soc=start_soc,
            elevations=elevations,
            constraints=constraints,
        )

        alternatives: list[AlternativePlanResponse] = []
        if request.include_alternatives:
            for alternative in generate_alternatives(
                route,
                discovery.stations,
                vehicle,
                start_soc,
                config=self.config,
                constraints=constraints,
                elevations=elevations,
            ):
                alternatives.append(
                    AlternativePlanResponse(
                        strategy=alternative.strategy.value,
                        success=alternative.success,
                        failure_reason=(
                            alternative.failure_reason.value
                            if alternative.failure_reason is not None
                            else None
                        ),
                        total_stops=alternative.total_stops,
                        plan=plan_to_response(alternative.plan),
                    )
                )

        return ChargingPlanResponse(
            origin=Coordinate(
                latitude=round(origin.latitude, 6), longitude=round(origin.longitude, 6)
            ),
            destination=Coordinate(
                latitude=round(destination.latitude, 6),
                longitude=round(destination.longitude, 6),
            ),
            route_geojson=route_geojson(route),
            route=RouteSummaryResponse(
                distance_km=round(route.distance_km, 3),
                duration_minutes=round(route.duration_seconds / 60.0, 2),
                summary=route.summary,
                is_fallback=route.is_fallback,
                elevation_available=elevations is not None,
            ),
            plan=plan_to_response(plan),
            alternatives=alternatives,
            stations_considered=len(discovery.stations),
            discovery=metrics_to_response(discovery.metrics),
            assumptions={
                "start_soc_percent": float(start_soc),
                "min_soc_percent": self.config.min_soc,
                "max_soc_percent": self.config.max_soc,
                "arrival_soc_percent": self.config.arrival_soc,
                "charging_efficiency": self.config.charging_efficiency,
                "regen_efficiency": self.config.regen_efficiency,
                "search_radius_km": float(request.search_radius_km),
                "battery_range_km": round(full_range_km, 1),
            },
        )

    def search_stations(self, request: StationSearchRequest) -> StationSearchResponse:
        points = tuple(
            GeoPoint(coordinate.latitude, coordinate.longitude) for coordinate in request.polyline
        )
        distance_km = request.distance_km or path_length_km(points)
        route = Route(points=points, distance_meters=distance_km * 1000.0)
        route = replace(route, points=simplify_points(route.points, settings.ROUTE_MAX_POINTS))

        result = self.discovery.discover(
            route,
            search_radius_km=request.search_radius_km,
            battery_range_km=request.battery_range_km,
        )
        return StationSearchResponse(
            stations=[station_to_response(station) for station in result.stations],
            metrics=metrics_to_response(result.metrics),
        )


def route_geojson(route: Route) -> dict:
    return {
        "type": "LineString",
        "coordinates": [[point.longitude, point.latitude] for point in route.points],
    }


def station_to_response(station: Station) -> StationResponse:
    return StationResponse(
        station_id=station.station_id,
        name=station.name,
        latitude=station.location.latitude,
        longitude=station.location.longitude,
        power_kw=station.power_kw,
        connector_types=sorted(station.connector_types),
        price_per_kwh=station.price_per_kwh,
        rating=round(station.rating, 2),
        operational=station.operational,
        address=station.address,
    )


def metrics_to_response(metrics: DiscoveryMetrics) -> DiscoveryMetricsResponse:
    return DiscoveryMetricsResponse(
        search_points=metrics.search_points,
        registry_calls=metrics.registry_calls,
        cache_hits=metrics.cache_hits,
        cache_misses=metrics.cache_misses,
        rate_limit_retries=metrics.rate_limit_retries,
        failed_points=metrics.failed_points,
        timed_out_points=metrics.timed_out_points,
        elapsed_seconds=round(metrics.elapsed_seconds, 3),
    )


def plan_to_response(plan: PlanResult) -> PlanResponse:
    failure = None
    if plan.failure is not None:
        failure = PlanFailureResponse(
            reason=plan.failure.reason.value,
            soc_percent=round(plan.failure.soc_percent, 2),
            latitude=plan.failure.location.latitude,
            longitude=plan.failure.location.longitude,
            segment_index=plan.failure.segment_index,
            distance_from_start_km=round(plan.failure.distance_from_start_km, 3),
        )

    return PlanResponse(
        success=plan.success,
        can_reach_destination=plan.can_reach_destination,
        stops=[
            ChargingStopResponse(
                station_id=stop.station_id,
                station_name=stop.station_name,
                latitude=stop.location.latitude,
                longitude=stop.location.longitude,
                distance_from_start_km=round(stop.distance_from_start_km, 3),
                soc_before_percent=round(stop.soc_before_percent, 2),
                soc_after_percent=round(stop.soc_after_percent, 2),
                energy_added_kwh=round(stop.energy_added_kwh, 3),
                charge_time_minutes=round(stop.charge_time_minutes, 2),
                station_power_kw=stop.station_power_kw,
            )
            for stop in plan.stops
        ],
        final_soc_percent=round(plan.final_soc_percent, 2),
        total_charge_time_minutes=round(plan.total_charge_time_minutes, 2),
        total_energy_consumed_kwh=round(plan.total_energy_consumed_kwh, 3),
        total_energy_added_kwh=round(plan.total_energy_added_kwh, 3),
        warnings=list(plan.warnings),
        failure=failure,
    )
