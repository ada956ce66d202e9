from __future__ import annotations

import json
from typing import Any

from django.conf import settings
from django.http import HttpRequest, HttpResponse, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST
from pydantic import BaseModel, ValidationError

from charge_planner.exceptions import (
    ExternalServiceError,
    InvalidPlanInputError,
    NoRouteFoundError,
)
from charge_planner.schemas import ChargingPlanRequest, StationSearchRequest
from charge_planner.services.trip import TripPlannerService

_trip_service: TripPlannerService | None = None


def get_trip_planner() -> TripPlannerService:
    global _trip_service
    if _trip_service is None:
        _trip_service = TripPlannerService()
    return _trip_service


@require_GET
def health_view(_: HttpRequest) -> HttpResponse:
    return JsonResponse(
        {
            "status": "ok",
            "planner": {
                "min_soc_percent": float(settings.PLANNER_MIN_SOC),
                "max_soc_percent": float(settings.PLANNER_MAX_SOC),
                "start_soc_percent": float(settings.PLANNER_START_SOC),
                "arrival_soc_percent": float(settings.PLANNER_ARRIVAL_SOC),
            },
            "registry": {
                "base_url": settings.OCM_BASE_URL,
                "min_interval_seconds": float(settings.REGISTRY_MIN_INTERVAL_SECONDS),
            },
        }
    )


@csrf_exempt
@require_POST
def charging_plan_view(request: HttpRequest) -> HttpResponse:
    plan_request = _validated_request(request, ChargingPlanRequest)
    if isinstance(plan_request, JsonResponse):
        return plan_request

    planner = get_trip_planner()
    try:
        response = planner.plan(plan_request)
    except InvalidPlanInputError as exc:
        return _error_response("invalid_plan_input", str(exc), status=400)
    except NoRouteFoundError as exc:
        return _error_response("no_route", str(exc), status=502)
    except ExternalServiceError as exc:
        return _error_response("upstream_error", str(exc), status=502)

    return JsonResponse(response.model_dump(mode="json"), status=200)


@csrf_exempt
@require_POST
def station_search_view(request: HttpRequest) -> HttpResponse:
    search_request = _validated_request(request, StationSearchRequest)
    if isinstance(search_request, JsonResponse):
        return search_request

    planner = get_trip_planner()
    try:
        response = planner.search_stations(search_request)
    except ExternalServiceError as exc:
        return _error_response("upstream_error", str(exc), status=502)

    return JsonResponse(response.model_dump(mode="json"), status=200)


def _validated_request(request: HttpRequest, schema: type[BaseModel]) -> Any:
    payload = _parse_json_payload(request)
    if isinstance(payload, JsonResponse):
        return payload

    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        return JsonResponse(
            {
                "error": {
                    "code": "validation_error",
                    "message": "Invalid request payload",
                    "details": exc.errors(include_url=False, include_context=False),
                }
            },
            status=400,
        )


def _parse_json_payload(request: HttpRequest) -> dict[str, Any] | JsonResponse:
    if not request.body:
        return {}

    try:
        payload = json.loads(request.body)
    except json.JSONDecodeError:
        return _error_response("invalid_json", "Request body must be valid JSON", status=400)

    if not isinstance(payload, dict):
        return _error_response("invalid_json", "JSON body must be an object", status=400)

    return payload


def _error_response(code: str, message: str, status: int) -> JsonResponse:
    return JsonResponse({"error": {"code": code, "message": message}}, status=status)
