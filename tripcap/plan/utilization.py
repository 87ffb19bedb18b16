from __future__ import annotations
from typing import Iterable, List, Optional

from .config import EngineSettings
from .models import ServiceGroup, UtilizationFinding


def severity_for(empty_seats: int, settings: EngineSettings) -> str:
    if empty_seats >= settings.high_severity_empty_seats:
        return "high"
    if empty_seats >= settings.medium_severity_empty_seats:
        return "medium"
    return "low"

def assess_group(group: ServiceGroup, settings: EngineSettings) -> Optional[UtilizationFinding]:
    """Finding for an under-used group, or None when it should not raise an alert."""
    capacity = group.capacity
    if capacity < settings.min_vehicle_capacity:
        return None
    riders = group.rider_count
    empty_seats = max(0, capacity - riders)
    utilization = min(1.0, riders / capacity) if capacity > 0 else 0.0
    if empty_seats <= 0 or utilization >= settings.utilization_threshold:
        return None
    potential_revenue = empty_seats * group.average_price if group.riders else 0.0
    return UtilizationFinding(
        group=group,
        empty_seats=empty_seats,
        utilization=utilization,
        potential_revenue=potential_revenue,
        severity=severity_for(empty_seats, settings),
    )

def find_underused_groups(groups: Iterable[ServiceGroup], settings: EngineSettings) -> List[UtilizationFinding]:
    findings = [f for f in (assess_group(g, settings) for g in groups) if f is not None]
    findings.sort(key=lambda f: f.potential_revenue, reverse=True)
    return findings
