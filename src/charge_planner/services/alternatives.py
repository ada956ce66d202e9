from __future__ import annotations

from collections.abc import Sequence

from charge_planner.services.config import PlannerConfig
from charge_planner.services.planner import plan_charging
from charge_planner.services.scoring import (
    DEFAULT_PROFILE,
    FEWEST_STOPS_PROFILE,
    LEAST_TIME_PROFILE,
    ScoringProfile,
    StationScorer,
)
from charge_planner.services.types import (
    AlternativePlan,
    FailureReason,
    Route,
    Station,
    Strategy,
    TripConstraints,
    VehicleProfile,
)

STRATEGY_PROFILES: dict[Strategy, ScoringProfile] = {
    Strategy.MIN_STOPS: FEWEST_STOPS_PROFILE,
    Strategy.MIN_TIME: LEAST_TIME_PROFILE,
    Strategy.BALANCED: DEFAULT_PROFILE,
}


def generate_alternatives(
    route: Route,
    stations: Sequence[Station],
    vehicle: VehicleProfile,
    start_soc: float,
    *,
    config: PlannerConfig | None = None,
    constraints: TripConstraints | None = None,
    elevations: Sequence[float] | None = None,
) -> list[AlternativePlan]:
    """Plan the same trip once per strategy, each with its own scoring profile.

    Every strategy yields an entry; infeasible ones carry ``success=False`` and
    the failure reason instead of being dropped.
    """
    alternatives: list[AlternativePlan] = []
    for strategy, profile in STRATEGY_PROFILES.items():
        plan = plan_charging(
            vehicle,
            route,
            stations,
            config=config,
            start_soc=start_soc,
            elevations=elevations,
            constraints=constraints,
            scorer=StationScorer(profile),
        )

        failure_reason: FailureReason | None = None
        if plan.failure is not None:
            failure_reason = plan.failure.reason
        elif not plan.can_reach_destination:
            failure_reason = FailureReason.ARRIVAL_BELOW_FLOOR
        alternatives.append(
            AlternativePlan(
                strategy=strategy,
                plan=plan,
                success=plan.success,
                failure_reason=failure_reason,
            )
        )
    return alternatives
