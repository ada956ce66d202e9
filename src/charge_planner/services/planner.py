from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

from charge_planner.exceptions import InvalidPlanInputError
from charge_planner.services.config import PlannerConfig
from charge_planner.services.energy import (
    build_segments,
    charge_time_minutes,
    segment_energy_kwh,
    soc_delta_for_energy,
    soc_to_energy,
)
from charge_planner.services.geo import nearest_point_index
from charge_planner.services.scoring import StationScorer, is_connector_compatible
from charge_planner.services.types import (
    ChargingStop,
    ConnectorType,
    FailureReason,
    GeoPoint,
    PlanFailure,
    PlanResult,
    Route,
    RouteSegment,
    SocSample,
    Station,
    TripConstraints,
    VehicleProfile,
)

logger = logging.getLogger(__name__)

EPSILON = 1e-6
MIN_CAPACITY_KWH = 10.0
MAX_CAPACITY_KWH = 200.0
MIN_CONSUMPTION = 10.0
MAX_CONSUMPTION = 50.0


class _Phase(Enum):
    DRIVING = "driving"
    INSERTING_STOP = "inserting_stop"
    FAILED = "failed"
    # walked past the last segment; the arrival floor is checked afterwards
    REACHED = "reached"


@dataclass(slots=True, frozen=True)
class _Candidate:
    station: Station
    node_index: int
    lateral_km: float


@dataclass(slots=True)
class _PlanState:
    soc: float
    segment_index: int = 0
    consumed_kwh: float = 0.0
    stops: list[ChargingStop] = field(default_factory=list)
    used_station_ids: set[str] = field(default_factory=set)
    stops_by_segment: dict[int, int] = field(default_factory=dict)
    trace: list[SocSample] = field(default_factory=list)
    failure: PlanFailure | None = None


@dataclass(slots=True, frozen=True)
class _Corridor:
    """Route geometry the planner walks: segment energies and node positions."""

    segments: list[RouteSegment]
    energies: list[float]
    reverse_energies: list[float]
    nodes: list[GeoPoint]
    node_km: list[float]
    need_soc_from: list[float]

    @property
    def total_km(self) -> float:
        return self.node_km[-1]


def plan_charging(
    vehicle: VehicleProfile,
    route: Route,
    stations: Sequence[Station],
    *,
    config: PlannerConfig | None = None,
    start_soc: float | None = None,
    elevations: Sequence[float] | None = None,
    segments: Sequence[RouteSegment] | None = None,
    segment_energies: Sequence[float] | None = None,
    constraints: TripConstraints | None = None,
    scorer: StationScorer | None = None,
) -> PlanResult:
    """Walk the route segment by segment and insert charging stops where SOC would dip.

    Input problems raise ``InvalidPlanInputError`` before anything is simulated.
    Running out of stations or battery is reported through ``PlanResult.failure``
    together with the stops and SOC trace built up to that point.
    """
    config = config or PlannerConfig()
    start_soc = config.start_soc if start_soc is None else float(start_soc)
    _validate_inputs(vehicle, route, start_soc, config)
    constraints = constraints or TripConstraints(connector_type=vehicle.connector_type)
    scorer = scorer or StationScorer()

    corridor = _build_corridor(vehicle, route, config, elevations, segments, segment_energies)
    candidates = _project_stations(stations, corridor, vehicle.connector_type, config)

    state = _PlanState(soc=start_soc)
    state.trace.append(SocSample(distance_km=0.0, soc_percent=start_soc))
    segment_count = len(corridor.segments)

    phase = _Phase.DRIVING
    allow_stop = True
    while phase in (_Phase.DRIVING, _Phase.INSERTING_STOP):
        index = state.segment_index

        if phase is _Phase.INSERTING_STOP:
            if _insert_stop(state, vehicle, corridor, candidates, constraints, scorer, config):
                phase = _Phase.DRIVING
            elif state.failure is not None:
                phase = _Phase.FAILED
            else:
                # charging here cannot raise SOC, so drive the segment as it is
                allow_stop = False
                phase = _Phase.DRIVING
            continue

        if index >= segment_count:
            phase = _Phase.REACHED
            continue

        soc_after = state.soc - soc_delta_for_energy(
            corridor.energies[index], vehicle.battery_capacity_kwh
        )
        remaining_km = corridor.total_km - corridor.node_km[index + 1]
        if allow_stop and soc_after < config.min_soc and remaining_km > EPSILON:
            phase = _Phase.INSERTING_STOP
            continue

        allow_stop = True
        soc_after = _drive_segment(state, vehicle, corridor, index)
        if soc_after < 0 or (soc_after <= EPSILON and index < segment_count - 1):
            state.failure = _failure(
                FailureReason.BATTERY_DEPLETED, 0.0, corridor, index + 1, index
            )
            logger.warning("Battery depleted at km %.1f", corridor.node_km[index + 1])
            phase = _Phase.FAILED

    return _build_result(state, vehicle, route, corridor, start_soc, config)


def _validate_inputs(
    vehicle: VehicleProfile, route: Route, start_soc: float, config: PlannerConfig
) -> None:
    if not MIN_CAPACITY_KWH <= vehicle.battery_capacity_kwh <= MAX_CAPACITY_KWH:
        raise InvalidPlanInputError(
            f"Battery capacity must be between {MIN_CAPACITY_KWH:g} and {MAX_CAPACITY_KWH:g} kWh"
        )
    if not MIN_CONSUMPTION <= vehicle.consumption_kwh_per_100km <= MAX_CONSUMPTION:
        raise InvalidPlanInputError(
            f"Consumption must be between {MIN_CONSUMPTION:g} and {MAX_CONSUMPTION:g} kWh/100km"
        )
    if not isinstance(vehicle.connector_type, ConnectorType):
        raise InvalidPlanInputError(f"Unsupported connector type: {vehicle.connector_type!r}")
    if vehicle.max_charge_kw is not None and vehicle.max_charge_kw <= 0:
        raise InvalidPlanInputError("Maximum charging power must be positive")
    if len(route.points) < 2:
        raise InvalidPlanInputError("Route needs at least two points")
    if route.distance_meters <= 0:
        raise InvalidPlanInputError("Route distance must be positive")
    if not 0.0 <= start_soc <= 100.0:
        raise InvalidPlanInputError("Start SOC must be between 0 and 100")
    if not 0.0 <= config.min_soc < config.max_soc <= 100.0:
        raise InvalidPlanInputError("Planner SOC bounds must satisfy 0 <= min < max <= 100")
    if config.max_stops_per_segment < 1:
        raise InvalidPlanInputError("At least one stop per segment must be allowed")


def _build_corridor(
    vehicle: VehicleProfile,
    route: Route,
    config: PlannerConfig,
    elevations: Sequence[float] | None,
    segments: Sequence[RouteSegment] | None,
    segment_energies: Sequence[float] | None,
) -> _Corridor:
    if segments is None:
        built = build_segments(route, elevations, config.max_segment_km)
    else:
        built = list(segments)
    if not built:
        raise InvalidPlanInputError("Route produced no segments")

    if segment_energies is None:
        energies = [
            segment_energy_kwh(
                segment.distance_km,
                segment.elevation_delta_m,
                vehicle.consumption_kwh_per_100km,
                regen_efficiency=config.regen_efficiency,
                climb_kwh_per_100m=config.climb_kwh_per_100m,
            )
            for segment in built
        ]
        # driving a segment backwards turns its climb into a descent
        reverse_energies = [
            segment_energy_kwh(
                segment.distance_km,
                -segment.elevation_delta_m,
                vehicle.consumption_kwh_per_100km,
                regen_efficiency=config.regen_efficiency,
                climb_kwh_per_100m=config.climb_kwh_per_100m,
            )
            for segment in built
        ]
    else:
        energies = [float(energy) for energy in segment_energies]
        if len(energies) != len(built):
            raise InvalidPlanInputError("Segment energies must match route segments")
        reverse_energies = list(energies)

    nodes = [built[0].start] + [segment.end for segment in built]
    node_km = [0.0]
    for segment in built:
        node_km.append(node_km[-1] + segment.distance_km)

    # SOC needed at each node so that the rest of the route never drops below zero
    need_soc_from = [0.0] * (len(built) + 1)
    for index in range(len(built) - 1, -1, -1):
        delta = soc_delta_for_energy(energies[index], vehicle.battery_capacity_kwh)
        need_soc_from[index] = max(0.0, delta + need_soc_from[index + 1])

    return _Corridor(
        segments=built,
        energies=energies,
        reverse_energies=reverse_energies,
        nodes=nodes,
        node_km=node_km,
        need_soc_from=need_soc_from,
    )


def _project_stations(
    stations: Sequence[Station],
    corridor: _Corridor,
    connector_type: ConnectorType,
    config: PlannerConfig,
) -> list[_Candidate]:
    candidates: list[_Candidate] = []
    seen: set[str] = set()
    for station in sorted(stations, key=lambda value: value.station_id):
        if station.station_id in seen or station.power_kw <= 0:
            continue
        if not is_connector_compatible(station, connector_type):
            continue
        node_index, lateral_km = nearest_point_index(station.location, corridor.nodes)
        if lateral_km > config.corridor_km:
            continue
        seen.add(station.station_id)
        candidates.append(_Candidate(station=station, node_index=node_index, lateral_km=lateral_km))
    return candidates


def _insert_stop(
    state: _PlanState,
    vehicle: VehicleProfile,
    corridor: _Corridor,
    candidates: list[_Candidate],
    constraints: TripConstraints,
    scorer: StationScorer,
    config: PlannerConfig,
) -> bool:
    """Try to schedule a stop for the current segment.

    Returns True when a stop was recorded and the walk should resume from the
    station's node. Returns False either with ``state.failure`` set or, when
    charging cannot raise SOC any further, to let the caller drive on.
    """
    index = state.segment_index
    capacity = vehicle.battery_capacity_kwh

    inserted_here = state.stops_by_segment.get(index, 0)
    if inserted_here >= config.max_stops_per_segment:
        state.failure = _failure(
            FailureReason.STOP_LIMIT_EXCEEDED, state.soc, corridor, index, index
        )
        logger.warning("Stop limit reached at km %.1f", corridor.node_km[index])
        return False

    earliest_km = corridor.node_km[index] - config.max_backtrack_km - EPSILON
    reachable: dict[str, tuple[_Candidate, float, float]] = {}
    for candidate in candidates:
        if candidate.station.station_id in state.used_station_ids:
            continue
        if corridor.node_km[candidate.node_index] < earliest_km:
            continue
        if candidate.node_index >= len(corridor.segments):
            # nothing left to drive after the final node
            continue
        approach_kwh, lowest_soc = _approach(
            state.soc, corridor, index, candidate.node_index, vehicle
        )
        inbound_kwh = approach_kwh + _flat_energy(candidate.lateral_km, vehicle)
        arrival_soc = state.soc - soc_delta_for_energy(inbound_kwh, capacity)
        if min(arrival_soc, lowest_soc) < config.reserve_soc:
            continue
        reachable[candidate.station.station_id] = (candidate, inbound_kwh, arrival_soc)

    if not reachable:
        state.failure = _failure(
            FailureReason.NO_STATION_IN_RANGE, state.soc, corridor, index, index
        )
        logger.warning(
            "No reachable charging station near km %.1f (SOC %.1f%%)",
            corridor.node_km[index],
            state.soc,
        )
        return False

    ranked = scorer.rank(
        [(candidate.station, candidate.lateral_km) for candidate, _, _ in reachable.values()],
        constraints,
    )
    best_station = ranked[0][0]
    candidate, inbound_kwh, arrival_soc = reachable[best_station.station_id]

    node = candidate.node_index
    lateral_soc = soc_delta_for_energy(_flat_energy(candidate.lateral_km, vehicle), capacity)
    next_segment_soc = 0.0
    if node < len(corridor.segments):
        next_segment_soc = soc_delta_for_energy(corridor.energies[node], capacity)
    required = max(
        corridor.need_soc_from[node] + config.arrival_soc,
        config.min_soc + next_segment_soc,
    )
    target_soc = min(config.max_soc, required + config.safety_buffer_soc + lateral_soc)
    if target_soc <= arrival_soc + EPSILON:
        return False

    energy_added = soc_to_energy(target_soc - arrival_soc, capacity)
    stop = ChargingStop(
        station_id=best_station.station_id,
        station_name=best_station.name,
        location=best_station.location,
        distance_from_start_km=corridor.node_km[node],
        soc_before_percent=arrival_soc,
        soc_after_percent=target_soc,
        energy_added_kwh=energy_added,
        charge_time_minutes=charge_time_minutes(
            energy_added,
            best_station.power_kw,
            arrival_soc,
            target_soc,
            efficiency=config.charging_efficiency,
            vehicle_max_kw=vehicle.max_charge_kw,
        ),
        station_power_kw=best_station.power_kw,
    )
    logger.info(
        "Charging stop at %s (km %.1f): %.1f%% -> %.1f%%",
        best_station.name,
        stop.distance_from_start_km,
        arrival_soc,
        target_soc,
    )

    state.stops.append(stop)
    state.used_station_ids.add(best_station.station_id)
    state.stops_by_segment[index] = inserted_here + 1
    state.consumed_kwh += inbound_kwh + _flat_energy(candidate.lateral_km, vehicle)
    state.trace.append(SocSample(distance_km=stop.distance_from_start_km, soc_percent=arrival_soc))
    state.trace.append(SocSample(distance_km=stop.distance_from_start_km, soc_percent=target_soc))
    state.soc = target_soc - lateral_soc
    state.segment_index = node
    return True


def _approach(
    soc: float, corridor: _Corridor, index: int, node: int, vehicle: VehicleProfile
) -> tuple[float, float]:
    """Energy to move along the route from node ``index`` to ``node`` and the lowest SOC on the way.

    Moving backwards drives the segments in reverse, so climbs become descents.
    """
    capacity = vehicle.battery_capacity_kwh
    energy = 0.0
    lowest_soc = soc
    if node >= index:
        steps = [corridor.energies[position] for position in range(index, node)]
    else:
        steps = [corridor.reverse_energies[position] for position in range(index - 1, node - 1, -1)]
    for step in steps:
        energy += step
        lowest_soc = min(lowest_soc, soc - soc_delta_for_energy(energy, capacity))
    return energy, lowest_soc


def _drive_segment(
    state: _PlanState, vehicle: VehicleProfile, corridor: _Corridor, index: int
) -> float:
    """Apply one segment and return the unclamped SOC after it."""
    capacity = vehicle.battery_capacity_kwh
    soc_after = state.soc - soc_delta_for_energy(corridor.energies[index], capacity)
    applied_soc = max(0.0, min(100.0, soc_after))

    state.consumed_kwh += (state.soc - applied_soc) / 100.0 * capacity
    state.soc = applied_soc
    state.trace.append(
        SocSample(distance_km=corridor.node_km[index + 1], soc_percent=applied_soc)
    )
    state.segment_index = index + 1
    return soc_after


def _flat_energy(distance_km: float, vehicle: VehicleProfile) -> float:
    return vehicle.consumption_kwh_per_100km / 100.0 * distance_km


def _failure(
    reason: FailureReason, soc: float, corridor: _Corridor, node: int, segment_index: int
) -> PlanFailure:
    return PlanFailure(
        reason=reason,
        soc_percent=max(0.0, soc),
        location=corridor.nodes[node],
        segment_index=segment_index,
        distance_from_start_km=corridor.node_km[node],
    )


def _build_result(
    state: _PlanState,
    vehicle: VehicleProfile,
    route: Route,
    corridor: _Corridor,
    start_soc: float,
    config: PlannerConfig,
) -> PlanResult:
    final_soc = max(0.0, min(100.0, state.soc))
    warnings = list(route.warnings)

    if state.failure is not None:
        warnings.append(_failure_message(state.failure))
        can_reach = False
    else:
        can_reach = final_soc + EPSILON >= config.arrival_soc
        if not can_reach:
            warnings.append(
                f"Arrival SOC {final_soc:.1f}% is below the {config.arrival_soc:g}% target"
            )

    total_charge_time = sum(stop.charge_time_minutes for stop in state.stops)
    if len(state.stops) > config.stop_count_warning:
        warnings.append(f"Trip needs {len(state.stops)} charging stops")
    if total_charge_time > config.charge_time_warning_minutes:
        warnings.append(f"Total charging time is {total_charge_time:.0f} minutes")

    return PlanResult(
        stops=tuple(state.stops),
        final_soc_percent=final_soc,
        can_reach_destination=can_reach,
        total_charge_time_minutes=total_charge_time,
        total_energy_consumed_kwh=state.consumed_kwh,
        warnings=tuple(warnings),
        start_soc_percent=start_soc,
        total_distance_km=corridor.total_km,
        soc_trace=tuple(state.trace),
        failure=state.failure,
    )


def _failure_message(failure: PlanFailure) -> str:
    location = f"km {failure.distance_from_start_km:.1f} (SOC {failure.soc_percent:.1f}%)"
    if failure.reason is FailureReason.NO_STATION_IN_RANGE:
        return f"NoStationInRange: no reachable compatible station near {location}"
    if failure.reason is FailureReason.BATTERY_DEPLETED:
        return f"BatteryDepleted: battery runs out near {location}"
    return f"StopLimitExceeded: too many stops needed near {location}"
