from __future__ import annotations
from typing import Dict, Iterable, Mapping, Optional

from .models import ACTIVE_STATUSES, Driver, GroupKey, ServiceGroup, Trip, Vehicle


def group_key(trip: Trip) -> GroupKey:
    # exact string equality on destination; "Hospital" and "hospital" are different groups
    return (trip.driver_id, trip.vehicle_id, trip.pickup_time, trip.destination)

def format_group_key(key: GroupKey) -> str:
    return "_".join("" if part is None else str(part) for part in key)

def group_trips(
    trips: Iterable[Trip],
    vehicles: Mapping[str, Vehicle],
    drivers: Optional[Mapping[str, Driver]] = None,
) -> Dict[GroupKey, ServiceGroup]:
    """
    Single pass over one day's trips. Only scheduled/in-progress trips with a
    vehicle are grouped; everything else is skipped.
    """
    drivers = drivers or {}
    groups: Dict[GroupKey, ServiceGroup] = {}
    for trip in trips:
        if trip.status not in ACTIVE_STATUSES or not trip.vehicle_id:
            continue
        key = group_key(trip)
        group = groups.get(key)
        if group is None:
            drv = drivers.get(trip.driver_id) if trip.driver_id else None
            group = ServiceGroup(
                key=key,
                driver_id=trip.driver_id,
                vehicle_id=trip.vehicle_id,
                pickup_time=trip.pickup_time,
                destination=trip.destination,
                driver_name=drv.name if drv else None,
                vehicle=vehicles.get(trip.vehicle_id),
                destination_address=trip.destination_address,
            )
            groups[key] = group
        group.add(trip)
    return groups
