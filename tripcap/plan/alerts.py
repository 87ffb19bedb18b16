from __future__ import annotations
from typing import List, Optional, Sequence, Set

from tripcap.timeparse import weekday_key

from .candidates import customers_in, recommend_riders
from .config import EngineSettings
from .grouping import format_group_key, group_trips
from .models import (
    AlertCapacity,
    AlertRevenue,
    AlertSummary,
    AlertTripDetails,
    AlertVehicle,
    CapacityAlert,
    CurrentPassenger,
    DaySnapshot,
    UtilizationFinding,
)
from .utilization import find_underused_groups


def _money(v: float) -> float:
    return round(float(v) + 1e-9, 2)

def build_alert(finding: UtilizationFinding, day: str, recommended) -> CapacityAlert:
    g = finding.group
    v = g.vehicle
    return CapacityAlert(
        trip_group_key=format_group_key(g.key),
        date=day,
        driver_id=g.driver_id,
        driver_name=g.driver_name,
        vehicle=AlertVehicle(
            id=g.vehicle_id,
            registration=v.registration if v else None,
            make=v.make if v else None,
            model=v.model if v else None,
            capacity=g.capacity,
            wheelchair_accessible=g.wheelchair_accessible,
        ),
        trip_details=AlertTripDetails(
            pickup_time=g.pickup_time,
            destination=g.destination,
            destination_address=g.destination_address,
            trip_ids=list(g.trip_ids),
        ),
        capacity=AlertCapacity(
            total_seats=g.capacity,
            occupied_seats=g.rider_count,
            empty_seats=finding.empty_seats,
            utilization=round(finding.utilization, 4),
            utilization_percentage=round(finding.utilization * 100),
        ),
        revenue=AlertRevenue(
            average_trip_price=_money(g.average_price),
            potential_additional_revenue=_money(finding.potential_revenue),
        ),
        severity=finding.severity,
        current_passengers=[
            CurrentPassenger(customer_id=r.customer_id, customer_name=r.customer_name, price=_money(r.price))
            for r in g.riders
        ],
        recommended_passengers=list(recommended),
    )


def alerts_for_day(snapshot: DaySnapshot, settings: EngineSettings, driver_id: Optional[str] = None) -> List[CapacityAlert]:
    """
    Group, assess and attach recommendations for one day. Alerts come back in
    potential-revenue order; with settings.dedupe_recommendations a candidate
    is only offered to the first (highest revenue) alert that matches them.
    """
    trips = [t for t in snapshot.trips if driver_id is None or t.driver_id == str(driver_id)]
    groups = group_trips(trips, snapshot.vehicles, snapshot.drivers)
    findings = find_underused_groups(groups.values(), settings)
    weekday = weekday_key(snapshot.day)
    offered: Set[str] = set()
    day = snapshot.day.isoformat()
    alerts = []
    for f in findings:
        recs = recommend_riders(
            f.group, snapshot.candidates, weekday, settings,
            exclude=offered if settings.dedupe_recommendations else None,
        )
        if settings.dedupe_recommendations:
            offered |= customers_in(recs)
        alerts.append(build_alert(f, day, recs))
    return alerts


def rank_alerts(alerts: Sequence[CapacityAlert]) -> List[CapacityAlert]:
    return sorted(alerts, key=lambda a: a.revenue.potential_additional_revenue, reverse=True)


def summarize(alerts: Sequence[CapacityAlert]) -> AlertSummary:
    """average_utilization is the mean of the alerted groups, 100 when nothing was alerted."""
    average = round(sum(a.capacity.utilization_percentage for a in alerts) / len(alerts)) if alerts else 100
    return AlertSummary(
        total_alerts=len(alerts),
        total_empty_seats=sum(a.capacity.empty_seats for a in alerts),
        total_potential_revenue=_money(sum(a.revenue.potential_additional_revenue for a in alerts)),
        average_utilization=average,
    )

