from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass

from charge_planner.services.types import ConnectorType, Station, StationScore, TripConstraints

DC_FAST_MIN_KW = 50.0
UNKNOWN_PRICE_SCORE = 0.5

CONNECTOR_ALIASES: dict[ConnectorType, tuple[str, ...]] = {
    ConnectorType.TYPE2: ("type 2", "type2", "mennekes"),
    ConnectorType.CCS: ("ccs", "combined charging system"),
    ConnectorType.CHADEMO: ("chademo",),
}


@dataclass(slots=True, frozen=True)
class ScoreWeights:
    power: float = 0.30
    price: float = 0.20
    rating: float = 0.15
    amenities: float = 0.15
    availability: float = 0.10
    connector: float = 0.10

    def __post_init__(self) -> None:
        total = (
            self.power
            + self.price
            + self.rating
            + self.amenities
            + self.availability
            + self.connector
        )
        if not math.isclose(total, 1.0, abs_tol=1e-9):
            raise ValueError(f"Score weights must sum to 1.0, got {total:.4f}")


@dataclass(slots=True, frozen=True)
class ScoringProfile:
    name: str
    weights: ScoreWeights
    distance_reference_km: float = 5.0
    power_reference_kw: float = 150.0


DEFAULT_PROFILE = ScoringProfile(name="balanced", weights=ScoreWeights())
FEWEST_STOPS_PROFILE = ScoringProfile(
    name="fewest_stops",
    weights=ScoreWeights(
        power=0.55, price=0.0, rating=0.10, amenities=0.10, availability=0.15, connector=0.10
    ),
)
LEAST_TIME_PROFILE = ScoringProfile(
    name="least_time",
    weights=ScoreWeights(
        power=0.25, price=0.05, rating=0.30, amenities=0.10, availability=0.15, connector=0.15
    ),
    distance_reference_km=2.5,
)


def is_connector_compatible(station: Station, connector_type: ConnectorType) -> bool:
    """DC fast stations count as compatible; slower ones must declare the connector family."""
    if station.power_kw >= DC_FAST_MIN_KW:
        return True
    aliases = CONNECTOR_ALIASES[connector_type]
    for title in station.connector_types:
        lowered = title.lower()
        if any(alias in lowered for alias in aliases):
            return True
    return False


class StationScorer:
    def __init__(self, profile: ScoringProfile = DEFAULT_PROFILE) -> None:
        self.profile = profile

    def score(
        self,
        station: Station,
        constraints: TripConstraints,
        distance_from_route_km: float,
    ) -> StationScore:
        weights = self.profile.weights

        power_score = min(station.power_kw / self.profile.power_reference_kw, 1.0)
        price_score = self._price_score(station, constraints)
        rating_score = max(0.0, min(station.rating / 5.0, 1.0))
        amenity_score = self._amenity_score(station, constraints)
        availability_score = 1.0 if station.operational else 0.0
        compatible = is_connector_compatible(station, constraints.connector_type)
        connector_score = 1.0 if compatible else 0.0

        weighted = (
            power_score * weights.power
            + price_score * weights.price
            + rating_score * weights.rating
            + amenity_score * weights.amenities
            + availability_score * weights.availability
            + connector_score * weights.connector
        )
        distance_penalty = max(
            0.0, 1.0 - distance_from_route_km / self.profile.distance_reference_km
        )

        reasons = [
            f"Power: {station.power_kw:g}kW ({power_score:.0%})",
            self._price_reason(station, price_score),
            f"Rating: {station.rating:.1f}/5 ({rating_score:.0%})",
            f"Amenities: {amenity_score:.0%} of required",
            "Operational" if station.operational else "Not operational",
            (
                f"Connector: {constraints.connector_type.value} compatible"
                if compatible
                else f"Connector: no {constraints.connector_type.value} match"
            ),
            f"Distance from route: {distance_from_route_km:.1f}km ({distance_penalty:.0%})",
        ]
        return StationScore(
            station_id=station.station_id,
            value=weighted * distance_penalty,
            reasons=tuple(reasons),
        )

    def rank(
        self,
        candidates: Iterable[tuple[Station, float]],
        constraints: TripConstraints,
    ) -> list[tuple[Station, StationScore]]:
        """Score ``(station, distance_from_route_km)`` pairs, best first, ties by station id."""
        scored = [
            (station, self.score(station, constraints, distance))
            for station, distance in candidates
        ]
        return sorted(scored, key=lambda item: (-item[1].value, item[0].station_id))

    @staticmethod
    def _price_score(station: Station, constraints: TripConstraints) -> float:
        if constraints.max_price_per_kwh is None:
            return 1.0
        if station.price_per_kwh is None:
            return UNKNOWN_PRICE_SCORE
        return max(0.0, 1.0 - station.price_per_kwh / constraints.max_price_per_kwh)

    @staticmethod
    def _price_reason(station: Station, price_score: float) -> str:
        if station.price_per_kwh is None:
            return f"Price: unknown ({price_score:.0%})"
        return f"Price: {station.price_per_kwh:.2f}/kWh ({price_score:.0%})"

    @staticmethod
    def _amenity_score(station: Station, constraints: TripConstraints) -> float:
        if not constraints.required_amenities:
            return 1.0
        required = {amenity.lower() for amenity in constraints.required_amenities}
        available = {amenity.lower() for amenity in station.amenities}
        return len(required & available) / len(required)
