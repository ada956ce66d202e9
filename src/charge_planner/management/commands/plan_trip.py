from __future__ import annotations

import json
from typing import Any

from django.core.management.base import BaseCommand, CommandError
from pydantic import ValidationError

from charge_planner.exceptions import ChargePlannerError
from charge_planner.schemas import ChargingPlanRequest
from charge_planner.services.trip import TripPlannerService


def _coordinate(value: str) -> dict[str, float]:
    try:
        latitude, longitude = (float(part) for part in value.split(","))
    except ValueError as exc:
        raise CommandError(f"Expected LAT,LNG but got {value!r}") from exc
    return {"latitude": latitude, "longitude": longitude}


class Command(BaseCommand):
    help = "Plan charging stops for a trip and print the plan as JSON."

    def add_arguments(self, parser: Any) -> None:
        parser.add_argument("--origin", required=True, help="Origin as LAT,LNG")
        parser.add_argument("--destination", required=True, help="Destination as LAT,LNG")
        parser.add_argument("--capacity", type=float, required=True, help="Battery capacity in kWh")
        parser.add_argument(
            "--consumption", type=float, required=True, help="Consumption in kWh/100km"
        )
        parser.add_argument(
            "--connector", choices=["Type2", "CCS", "CHAdeMO"], default="CCS"
        )
        parser.add_argument("--max-charge-kw", type=float, default=None)
        parser.add_argument("--start-soc", type=float, default=None, help="Start SOC percent")
        parser.add_argument("--search-radius", type=float, default=15.0)
        parser.add_argument(
            "--alternatives",
            action="store_true",
            help="Also plan the fewest-stops and least-time alternatives",
        )
        parser.add_argument(
            "--no-elevation", action="store_true", help="Skip elevation lookups"
        )

    def handle(self, *_: Any, **options: Any) -> None:
        payload = {
            "origin": _coordinate(options["origin"]),
            "destination": _coordinate(options["destination"]),
            "vehicle": {
                "battery_capacity_kwh": options["capacity"],
                "consumption_kwh_per_100km": options["consumption"],
                "connector_type": options["connector"],
                "max_charge_kw": options["max_charge_kw"],
            },
            "start_soc_percent": options["start_soc"],
            "search_radius_km": options["search_radius"],
            "include_alternatives": bool(options["alternatives"]),
            "use_elevation": not options["no_elevation"],
        }
        try:
            request = ChargingPlanRequest.model_validate(payload)
        except ValidationError as exc:
            raise CommandError(f"Invalid trip parameters: {exc}") from exc

        try:
            response = TripPlannerService().plan(request)
        except ChargePlannerError as exc:
            raise CommandError(str(exc)) from exc

        self.stdout.write(json.dumps(response.model_dump(mode="json"), indent=2))
        if response.plan.can_reach_destination:
            self.stdout.write(
                self.style.SUCCESS(
                    f"Destination reachable with {len(response.plan.stops)} charging stop(s)"
                )
            )
        else:
            self.stdout.write(self.style.WARNING("Destination not reachable with this plan"))
