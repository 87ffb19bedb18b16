"""
Route sequencing for one driver on one day.

Nearest-neighbour reordering under pickup time windows. This is a local
heuristic: it is not guaranteed to find the shortest feasible order, and the
score it reports only compares the proposal with the current order.
"""
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Sequence, Set, Tuple

import numpy as np

from tripcap.timeparse import format_hhmm, minutes_of_day

from .config import EngineSettings
from .distance import DistanceEstimator
from .models import CandidateCustomer, GeoPoint, PlannedStop, RoutePlan, Trip

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60
SCORE_DESCRIPTION = (
    "Score compares the proposed order with the current order (100 = no shorter order found). "
    "Ordering is a nearest-neighbour heuristic and is not guaranteed to be optimal."
)


@dataclass(frozen=True)
class Stop:
    trip: Trip
    original_min: int
    window_start: int
    window_end: int


@dataclass
class LegMatrix:
    dist: np.ndarray        # miles, row = leaving stop, col = next stop's pickup
    time: np.ndarray        # minutes
    ride_time: np.ndarray   # minutes from a stop's pickup to its drop-off
    sources: Set[str]
    degraded: bool


@dataclass
class Timeline:
    pickups: List[float]
    arrivals: List[float]
    feasible: List[bool]

    @property
    def violations(self) -> int:
        return sum(1 for ok in self.feasible if not ok)


def plan_version(trips: Iterable[Trip]) -> str:
    parts = sorted(f"{t.trip_id}|{t.pickup_time}|{t.revision}" for t in trips)
    return hashlib.sha1("\n".join(parts).encode("utf-8")).hexdigest()[:16]

def score_status(score: float) -> str:
    if score >= 90:
        return "optimal"
    if score >= 70:
        return "good"
    return "needs-optimization"

def optimization_score(original: float, optimized: float) -> Tuple[float, float]:
    """(score, improvement_pct), both clamped to [0, 100]."""
    if original <= 0:
        return 100.0, 0.0
    ratio = optimized / original
    score = float(np.clip(100.0 * ratio, 0.0, 100.0))
    improvement = float(np.clip(100.0 * (1.0 - ratio), 0.0, 100.0))
    return round(score, 1), round(improvement, 1)


def build_stops(
    trips: Sequence[Trip],
    customers: Mapping[str, CandidateCustomer],
    weekday: str,
    tolerance_minutes: int,
) -> List[Stop]:
    """Time window = customer's scheduled pickup for the weekday (else current pickup) +/- tolerance."""
    stops = []
    for t in trips:
        original = minutes_of_day(t.pickup_time)
        preferred = original
        cust = customers.get(t.customer_id) if t.customer_id else None
        day = cust.schedule_for(weekday) if cust else None
        if day is not None and day.pickup_time:
            try:
                preferred = minutes_of_day(day.pickup_time)
            except ValueError:
                logger.debug("Unparseable schedule time %r for customer %s", day.pickup_time, t.customer_id)
        stops.append(Stop(
            trip=t,
            original_min=original,
            window_start=max(0, preferred - tolerance_minutes),
            window_end=min(MINUTES_PER_DAY - 1, preferred + tolerance_minutes),
        ))
    stops.sort(key=lambda s: (s.original_min, s.trip.trip_id))
    return stops

def _departure_point(trip: Trip) -> GeoPoint:
    d = trip.dropoff
    return d if (d.has_coords or d.query_string()) else trip.pickup

def build_leg_matrix(stops: Sequence[Stop], estimator: DistanceEstimator) -> LegMatrix:
    n = len(stops)
    dist = np.zeros((n, n), dtype=float)
    tmat = np.zeros((n, n), dtype=float)
    ride = np.zeros(n, dtype=float)
    sources: Set[str] = set()
    degraded = False
    for i, si in enumerate(stops):
        leave = _departure_point(si.trip)
        if leave != si.trip.pickup:
            est = estimator.estimate(si.trip.pickup, leave)
            ride[i] = est.duration_minutes
            sources.add(est.source); degraded |= est.degraded
        for j, sj in enumerate(stops):
            if i == j:
                continue
            est = estimator.estimate(leave, sj.trip.pickup)
            dist[i, j] = max(0.0, est.distance_miles)
            tmat[i, j] = max(0.0, est.duration_minutes)
            sources.add(est.source); degraded |= est.degraded
    return LegMatrix(dist=dist, time=tmat, ride_time=ride, sources=sources, degraded=degraded)


def _first_pickup(stop: Stop) -> float:
    return float(min(max(stop.original_min, stop.window_start), stop.window_end))

def _arrival(prev_pickup: float, prev: int, nxt: int, legs: LegMatrix, dwell: float) -> float:
    return prev_pickup + legs.ride_time[prev] + dwell + legs.time[prev, nxt]

def simulate(order: Sequence[int], stops: Sequence[Stop], legs: LegMatrix, dwell: float) -> Timeline:
    pickups: List[float] = []
    arrivals: List[float] = []
    feasible: List[bool] = []
    for pos, idx in enumerate(order):
        stop = stops[idx]
        if pos == 0:
            arrival = _first_pickup(stop)
        else:
            arrival = _arrival(pickups[-1], order[pos - 1], idx, legs, dwell)
        pickups.append(max(arrival, float(stop.window_start)))
        arrivals.append(arrival)
        feasible.append(arrival <= stop.window_end + 1e-9)
    return Timeline(pickups, arrivals, feasible)

def route_distance(order: Sequence[int], legs: LegMatrix) -> float:
    return float(sum(legs.dist[a, b] for a, b in zip(order, order[1:])))

def route_time(order: Sequence[int], legs: LegMatrix) -> float:
    return float(sum(legs.time[a, b] for a, b in zip(order, order[1:])))

def nearest_neighbour_order(stops: Sequence[Stop], legs: LegMatrix, dwell: float) -> Tuple[List[int], bool]:
    """
    Greedy walk from the chronologically first stop. Returns (order, fell_back):
    when no remaining stop's window is reachable the rest keep chronological order.
    """
    n = len(stops)
    if n <= 1:
        return list(range(n)), False
    order = [0]
    remaining = list(range(1, n))
    current_pickup = _first_pickup(stops[0])
    while remaining:
        cur = order[-1]
        reachable = [
            j for j in remaining
            if _arrival(current_pickup, cur, j, legs, dwell) <= stops[j].window_end + 1e-9
        ]
        if not reachable:
            order.extend(remaining)
            return order, True
        best = min(reachable, key=lambda j: (legs.dist[cur, j], stops[j].window_start, j))
        current_pickup = max(_arrival(current_pickup, cur, best, legs, dwell), float(stops[best].window_start))
        order.append(best)
        remaining.remove(best)
    return order, False


def sequence_route(
    tenant_id: str,
    driver_id: str,
    day: str,
    trips: Sequence[Trip],
    customers: Mapping[str, CandidateCustomer],
    weekday: str,
    estimator: DistanceEstimator,
    settings: EngineSettings,
) -> RoutePlan:
    stops = build_stops(trips, customers, weekday, settings.time_window_tolerance_minutes)
    legs = build_leg_matrix(stops, estimator)
    dwell = float(settings.dwell_minutes)
    warnings: List[str] = []

    seed = list(range(len(stops)))
    nn, fell_back = nearest_neighbour_order(stops, legs, dwell)
    seed_tl = simulate(seed, stops, legs, dwell)
    nn_tl = simulate(nn, stops, legs, dwell)
    seed_dist = route_distance(seed, legs)
    nn_dist = route_distance(nn, legs)

    # fewer window violations first, then shorter; ties keep the current order
    if (nn_tl.violations, nn_dist) < (seed_tl.violations, seed_dist - 1e-9):
        order, timeline, optimized_dist = nn, nn_tl, nn_dist
    else:
        order, timeline, optimized_dist = seed, seed_tl, seed_dist

    if fell_back and order is nn:
        warnings.append("No time-window-respecting continuation found; remaining stops kept in current order.")
    if len(stops) < 2:
        warnings.append("Fewer than two trips; nothing to reorder.")
    for pos, idx in enumerate(order):
        if not timeline.feasible[pos]:
            s = stops[idx]
            warnings.append(
                f"Trip {s.trip.trip_id}: earliest arrival {format_hhmm(timeline.arrivals[pos])} "
                f"is after window end {format_hhmm(s.window_end)}"
            )
    if legs.degraded:
        warnings.append(
            "Some legs use estimated distances (mapping service unavailable or coordinates missing); "
            "results may be less accurate."
        )

    score, improvement = optimization_score(seed_dist, optimized_dist)
    planned = []
    for pos, idx in enumerate(order):
        s = stops[idx]
        prev = order[pos - 1] if pos > 0 else None
        planned.append(PlannedStop(
            sequence=pos + 1,
            trip_id=s.trip.trip_id,
            customer_id=s.trip.customer_id,
            customer_name=s.trip.customer_name,
            pickup_address=s.trip.pickup.query_string(),
            destination=s.trip.destination,
            original_pickup_time=s.trip.pickup_time,
            pickup_time=format_hhmm(timeline.pickups[pos]),
            window_start=format_hhmm(s.window_start),
            window_end=format_hhmm(s.window_end),
            leg_miles=round(float(legs.dist[prev, idx]), 2) if prev is not None else 0.0,
            leg_minutes=round(float(legs.time[prev, idx]), 1) if prev is not None else 0.0,
            feasible=timeline.feasible[pos],
        ))

    if legs.sources == {"remote"}:
        method = "remote"
    elif legs.sources <= {"geometric"}:
        method = "geometric"
    else:
        method = "mixed"

    feasible = all(timeline.feasible)
    if not feasible:
        logger.warning("Route for driver %s on %s has %d window violations", driver_id, day, timeline.violations)

    return RoutePlan(
        tenant_id=str(tenant_id),
        driver_id=str(driver_id),
        date=day,
        plan_version=plan_version(trips),
        method=method,
        degraded=legs.degraded,
        reliable=not legs.degraded,
        feasible=feasible,
        stops=planned,
        original_order=[s.trip.trip_id for s in stops],
        original_distance_miles=round(seed_dist, 2),
        optimized_distance_miles=round(optimized_dist, 2),
        distance_saved_miles=round(max(0.0, seed_dist - optimized_dist), 2),
        time_saved_minutes=round(max(0.0, route_time(seed, legs) - route_time(order, legs)), 1),
        score=score,
        improvement_pct=improvement,
        status=score_status(score),
        warnings=warnings,
        score_description=SCORE_DESCRIPTION,
    )
