from __future__ import annotations

import json
from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from charge_planner.exceptions import NoRouteFoundError
from charge_planner.schemas import (
    ChargingPlanResponse,
    Coordinate,
    DiscoveryMetricsResponse,
    PlanResponse,
    RouteSummaryResponse,
)


def _response(can_reach: bool) -> ChargingPlanResponse:
    return ChargingPlanResponse(
        origin=Coordinate(latitude=41.0, longitude=29.0),
        destination=Coordinate(latitude=39.9, longitude=32.8),
        route_geojson={"type": "LineString", "coordinates": [[29.0, 41.0], [32.8, 39.9]]},
        route=RouteSummaryResponse(
            distance_km=450.0,
            duration_minutes=270.0,
            summary="",
            is_fallback=False,
            elevation_available=False,
        ),
        plan=PlanResponse(
            success=can_reach,
            can_reach_destination=can_reach,
            stops=[],
            final_soc_percent=30.0 if can_reach else 12.0,
            total_charge_time_minutes=0.0,
            total_energy_consumed_kwh=81.0,
            total_energy_added_kwh=0.0,
            warnings=[],
        ),
        alternatives=[],
        stations_considered=0,
        discovery=DiscoveryMetricsResponse(
            search_points=0,
            registry_calls=0,
            cache_hits=0,
            cache_misses=0,
            rate_limit_retries=0,
            failed_points=0,
            timed_out_points=0,
            elapsed_seconds=0.0,
        ),
        assumptions={},
    )


def _call(**options) -> str:
    stdout = StringIO()
    defaults = {
        "origin": "41.0,29.0",
        "destination": "39.9,32.8",
        "capacity": 75.0,
        "consumption": 18.0,
    }
    defaults.update(options)
    call_command("plan_trip", stdout=stdout, **defaults)
    return stdout.getvalue()


def test_plan_trip_prints_plan_json(mocker) -> None:
    service_class = mocker.patch("charge_planner.management.commands.plan_trip.TripPlannerService")
    service_class.return_value.plan.return_value = _response(can_reach=True)

    output = _call(no_elevation=True, alternatives=True, start_soc=90.0)

    request = service_class.return_value.plan.call_args.args[0]
    assert request.origin.latitude == 41.0
    assert request.vehicle.connector_type == "CCS"
    assert request.start_soc_percent == 90.0
    assert request.include_alternatives
    assert not request.use_elevation
    json_text = output[: output.rindex("}") + 1]
    assert json.loads(json_text)["route"]["distance_km"] == 450.0
    assert "Destination reachable with 0 charging stop(s)" in output


def test_plan_trip_warns_when_destination_unreachable(mocker) -> None:
    service_class = mocker.patch("charge_planner.management.commands.plan_trip.TripPlannerService")
    service_class.return_value.plan.return_value = _response(can_reach=False)

    output = _call()

    assert "Destination not reachable with this plan" in output


def test_plan_trip_rejects_malformed_coordinates() -> None:
    with pytest.raises(CommandError, match="LAT,LNG"):
        _call(origin="41.0")


def test_plan_trip_rejects_out_of_range_vehicle() -> None:
    with pytest.raises(CommandError, match="Invalid trip parameters"):
        _call(capacity=5.0)


def test_plan_trip_surfaces_planner_errors(mocker) -> None:
    service_class = mocker.patch("charge_planner.management.commands.plan_trip.TripPlannerService")
    service_class.return_value.plan.side_effect = NoRouteFoundError("Could not compute route")

    with pytest.raises(CommandError, match="Could not compute route"):
        _call()
