from __future__ import annotations
from typing import Any, Dict, List, Sequence

from tripcap.timeparse import minutes_of_day

from .geo import postcode_proximity
from .models import ConsolidatedRoute, Trip

MAX_PICKUP_GAP_MINUTES = 30
MIN_POSTCODE_PROXIMITY = 40


def consolidate_trips(trips: Sequence[Trip], vehicle_capacity: int) -> List[ConsolidatedRoute]:
    """
    Greedy shared-vehicle grouping. Each route is opened by the earliest
    unassigned trip and takes later trips within 30 minutes of that opener,
    in a nearby postcode (proximity > 40), while passengers fit the vehicle.
    A trip larger than the vehicle still gets a route of its own.
    """
    if vehicle_capacity <= 0:
        raise ValueError("vehicle_capacity must be > 0")
    ordered = sorted(trips, key=lambda t: (minutes_of_day(t.pickup_time), t.trip_id))
    assigned = set()
    routes: List[ConsolidatedRoute] = []
    for opener in ordered:
        if opener.trip_id in assigned:
            continue
        assigned.add(opener.trip_id)
        members = [opener.trip_id]
        load = opener.passenger_count
        opened_at = minutes_of_day(opener.pickup_time)
        for other in ordered:
            if other.trip_id in assigned:
                continue
            if load + other.passenger_count > vehicle_capacity:
                continue
            if abs(minutes_of_day(other.pickup_time) - opened_at) > MAX_PICKUP_GAP_MINUTES:
                continue
            if postcode_proximity(opener.pickup.postcode, other.pickup.postcode) <= MIN_POSTCODE_PROXIMITY:
                continue
            members.append(other.trip_id)
            load += other.passenger_count
            assigned.add(other.trip_id)
        routes.append(ConsolidatedRoute(
            route_id=len(routes) + 1,
            trips=members,
            total_passengers=load,
            capacity_used=round(100.0 * load / vehicle_capacity, 1),
        ))
    return routes


def consolidation_statistics(trips: Sequence[Trip], routes: Sequence[ConsolidatedRoute]) -> Dict[str, Any]:
    total_trips = len(trips)
    needed = len(routes)
    saved = max(0, total_trips - needed)
    avg_used = sum(r.capacity_used for r in routes) / needed if needed else 0.0
    return {
        "total_trips": total_trips,
        "total_passengers": sum(t.passenger_count for t in trips),
        "vehicles_needed": needed,
        "vehicles_saved": saved,
        "average_capacity_used": round(avg_used),
        "efficiency": round(100 * saved / total_trips) if total_trips else 0,
    }
