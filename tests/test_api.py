from __future__ import annotations

import json

from charge_planner.exceptions import ExternalServiceError, InvalidPlanInputError
from charge_planner.schemas import (
    ChargingPlanResponse,
    Coordinate,
    DiscoveryMetricsResponse,
    PlanResponse,
    RouteSummaryResponse,
    StationResponse,
    StationSearchResponse,
)

PLAN_PAYLOAD = {
    "origin": {"latitude": 41.0082, "longitude": 28.9784},
    "destination": {"latitude": 39.9334, "longitude": 32.8597},
    "vehicle": {
        "battery_capacity_kwh": 75,
        "consumption_kwh_per_100km": 18,
        "connector_type": "CCS",
    },
    "start_soc_percent": 90,
}


def _metrics() -> DiscoveryMetricsResponse:
    return DiscoveryMetricsResponse(
        search_points=3,
        registry_calls=3,
        cache_hits=0,
        cache_misses=3,
        rate_limit_retries=0,
        failed_points=0,
        timed_out_points=0,
        elapsed_seconds=6.2,
    )


def _post(api_client, path: str, payload) -> object:
    return api_client.post(path, data=json.dumps(payload), content_type="application/json")


def test_health_endpoint_reports_planner_defaults(api_client) -> None:
    response = api_client.get("/api/v1/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["planner"]["min_soc_percent"] == 20.0
    assert payload["planner"]["max_soc_percent"] == 80.0
    assert payload["registry"]["min_interval_seconds"] == 2.0


def test_charging_plan_validation_error_returns_400(api_client) -> None:
    payload = {**PLAN_PAYLOAD, "vehicle": {**PLAN_PAYLOAD["vehicle"], "connector_type": "J1772"}}

    response = _post(api_client, "/api/v1/charging-plan", payload)

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "validation_error"
    assert error["details"][0]["loc"] == ["vehicle", "connector_type"]


def test_charging_plan_rejects_invalid_json(api_client) -> None:
    response = api_client.post(
        "/api/v1/charging-plan", data="{not json", content_type="application/json"
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "invalid_json"


def test_charging_plan_requires_post(api_client) -> None:
    response = api_client.get("/api/v1/charging-plan")

    assert response.status_code == 405


def test_charging_plan_success_uses_planner_response(api_client, mocker) -> None:
    fake_response = ChargingPlanResponse(
        origin=Coordinate(latitude=41.0082, longitude=28.9784),
        destination=Coordinate(latitude=39.9334, longitude=32.8597),
        route_geojson={
            "type": "LineString",
            "coordinates": [[28.9784, 41.0082], [32.8597, 39.9334]],
        },
        route=RouteSummaryResponse(
            distance_km=452.0,
            duration_minutes=270.0,
            summary="O-4",
            is_fallback=False,
            elevation_available=True,
        ),
        plan=PlanResponse(
            success=True,
            can_reach_destination=True,
            stops=[],
            final_soc_percent=21.4,
            total_charge_time_minutes=0.0,
            total_energy_consumed_kwh=81.4,
            total_energy_added_kwh=0.0,
            warnings=[],
        ),
        alternatives=[],
        stations_considered=0,
        discovery=_metrics(),
        assumptions={"start_soc_percent": 90.0},
    )

    planner = mocker.Mock()
    planner.plan.return_value = fake_response
    mocker.patch("charge_planner.views.get_trip_planner", return_value=planner)

    response = _post(api_client, "/api/v1/charging-plan", PLAN_PAYLOAD)

    assert response.status_code == 200
    payload = response.json()
    assert payload["plan"]["success"] is True
    assert payload["route"]["distance_km"] == 452.0
    assert payload["discovery"]["registry_calls"] == 3
    plan_request = planner.plan.call_args.args[0]
    assert plan_request.vehicle.connector_type == "CCS"
    assert plan_request.search_radius_km == 15.0


def test_charging_plan_maps_planner_errors(api_client, mocker) -> None:
    planner = mocker.Mock()
    mocker.patch("charge_planner.views.get_trip_planner", return_value=planner)

    planner.plan.side_effect = InvalidPlanInputError("Route distance must be positive")
    response = _post(api_client, "/api/v1/charging-plan", PLAN_PAYLOAD)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "invalid_plan_input"

    planner.plan.side_effect = ExternalServiceError("Station registry request failed")
    response = _post(api_client, "/api/v1/charging-plan", PLAN_PAYLOAD)
    assert response.status_code == 502
    assert response.json()["error"]["code"] == "upstream_error"


def test_station_search_returns_stations(api_client, mocker) -> None:
    planner = mocker.Mock()
    planner.search_stations.return_value = StationSearchResponse(
        stations=[
            StationResponse(
                station_id="1234",
                name="Kadikoy Hub",
                latitude=40.99,
                longitude=29.03,
                power_kw=150.0,
                connector_types=["CCS (Type 2)"],
                price_per_kwh=None,
                rating=4.5,
                operational=True,
                address="Moda Cd. 1, Istanbul",
            )
        ],
        metrics=_metrics(),
    )
    mocker.patch("charge_planner.views.get_trip_planner", return_value=planner)

    response = _post(
        api_client,
        "/api/v1/stations",
        {
            "polyline": [
                {"latitude": 41.0082, "longitude": 28.9784},
                {"latitude": 40.99, "longitude": 29.03},
            ]
        },
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["stations"][0]["station_id"] == "1234"
    assert payload["metrics"]["search_points"] == 3


def test_station_search_requires_two_points(api_client) -> None:
    response = _post(
        api_client, "/api/v1/stations", {"polyline": [{"latitude": 41.0, "longitude": 29.0}]}
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "validation_error"
