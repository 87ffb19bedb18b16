# tripcap/plan/service.py
"""
Request-level operations. Each call reads one consistent snapshot from the
store, runs the pure planning functions and returns the HTTP payload models.
Routers translate EngineError subclasses into status codes.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Callable, Dict, List, Optional, Set

from tripcap.timeparse import format_hhmm, iter_dates, minutes_of_day, parse_date, weekday_key

from .alerts import alerts_for_day, rank_alerts, summarize
from .config import EngineSettings
from .consolidation import consolidate_trips, consolidation_statistics
from .distance import DistanceEstimator, build_estimator
from .errors import InvalidRequestError, PlanConflictError
from .models import (
    ACTIVE_STATUSES,
    ALL_STATUSES,
    CapacityAlertsResponse,
    CapacityOptimizeResponse,
    ConfirmRouteRequest,
    ConfirmRouteResponse,
    DaySnapshot,
    OptimizationScore,
    OptimizationScoresResponse,
    RoutePlan,
)
from .sequencer import plan_version, sequence_route
from .store import DatasetStore

logger = logging.getLogger(__name__)

MAX_RANGE_DAYS = 31
EstimatorFactory = Callable[[EngineSettings], DistanceEstimator]


def _parse_day(value: Optional[str], field: str) -> date:
    if not value:
        raise InvalidRequestError(f"{field} is required")
    try:
        return parse_date(value)
    except (ValueError, OverflowError) as e:
        raise InvalidRequestError(f"Invalid {field}: {value!r}") from e

def _parse_range(start: Optional[str], end: Optional[str], start_field: str, end_field: str):
    d0 = _parse_day(start, start_field)
    d1 = _parse_day(end, end_field) if end else d0
    if d1 < d0:
        raise InvalidRequestError(f"{end_field} must not be before {start_field}")
    if (d1 - d0).days >= MAX_RANGE_DAYS:
        raise InvalidRequestError(f"Date range is limited to {MAX_RANGE_DAYS} days")
    return d0, d1

def _estimator(settings: EngineSettings, factory: Optional[EstimatorFactory]) -> DistanceEstimator:
    return factory(settings) if factory is not None else build_estimator(settings)


def day_snapshot(store: DatasetStore, tenant_id: str, day: date) -> DaySnapshot:
    trips = store.trips(tenant_id, day, day)
    return DaySnapshot(
        tenant_id=str(tenant_id),
        day=day,
        trips=tuple(trips),
        vehicles=store.vehicles(tenant_id),
        drivers=store.drivers(tenant_id),
        candidates=tuple(store.candidate_customers(tenant_id, day)),
    )


# ------------------- Capacity alerts -------------------

def get_capacity_alerts(
    store: DatasetStore,
    settings: EngineSettings,
    tenant_id: str,
    day: Optional[str],
    driver_id: Optional[str] = None,
    end_date: Optional[str] = None,
) -> CapacityAlertsResponse:
    d0, d1 = _parse_range(day, end_date, "date", "end_date")
    store.require_tenant(tenant_id)
    if driver_id:
        store.require_driver(tenant_id, driver_id)
    snapshots = [day_snapshot(store, tenant_id, d) for d in iter_dates(d0, d1)]
    alerts = []
    for snap in snapshots:
        alerts.extend(alerts_for_day(snap, settings, driver_id=driver_id))
    alerts = rank_alerts(alerts)
    summary = summarize(alerts)
    logger.info(
        "Capacity alerts tenant=%s %s..%s driver=%s: %d alerts, %.2f potential revenue",
        tenant_id, d0, d1, driver_id or "*", summary.total_alerts, summary.total_potential_revenue,
    )
    return CapacityAlertsResponse(
        date=d0.isoformat(),
        end_date=d1.isoformat() if end_date else None,
        summary=summary,
        alerts=alerts,
    )


# ------------------- Route sequencing -------------------

def propose_route(
    store: DatasetStore,
    settings: EngineSettings,
    tenant_id: str,
    driver_id: str,
    day: str,
    estimator_factory: Optional[EstimatorFactory] = None,
) -> RoutePlan:
    d = _parse_day(day, "date")
    store.require_tenant(tenant_id)
    store.require_driver(tenant_id, driver_id)
    trips = store.trips(tenant_id, d, d, statuses=ACTIVE_STATUSES, driver_id=driver_id)
    plan = sequence_route(
        tenant_id, driver_id, d.isoformat(), trips,
        store.customers(tenant_id), weekday_key(d),
        _estimator(settings, estimator_factory), settings,
    )
    logger.info(
        "Proposed route tenant=%s driver=%s date=%s stops=%d score=%.1f method=%s degraded=%s",
        tenant_id, driver_id, d, len(plan.stops), plan.score, plan.method, plan.degraded,
    )
    return plan


def confirm_route(
    store: DatasetStore,
    settings: EngineSettings,
    tenant_id: str,
    req: ConfirmRouteRequest,
    estimator_factory: Optional[EstimatorFactory] = None,
) -> ConfirmRouteResponse:
    """
    Persist the proposed plan. The route is sequenced again under the driver-day
    lock and those pickup times are written; the plan_version must still match
    the driver's stored trips, so a second confirmation of the same plan is a
    conflict. Stops echoed back by the client must agree with the plan.
    """
    d = _parse_day(req.date, "date")
    store.require_tenant(tenant_id)
    store.require_driver(tenant_id, req.driver_id)

    with store.driver_day_lock(tenant_id, req.driver_id, d):
        trips = store.trips(tenant_id, d, d, statuses=ACTIVE_STATUSES, driver_id=req.driver_id)
        current = plan_version(trips)
        if current != req.plan_version:
            logger.warning(
                "Stale confirmation tenant=%s driver=%s date=%s: got %s, current %s",
                tenant_id, req.driver_id, d, req.plan_version, current,
            )
            raise PlanConflictError(
                "Route changed since it was proposed; request a new proposal", current_version=current,
            )
        if not trips:
            raise InvalidRequestError(f"Driver {req.driver_id} has no active trips on {d}")

        plan = sequence_route(
            tenant_id, req.driver_id, d.isoformat(), trips,
            store.customers(tenant_id), weekday_key(d),
            _estimator(settings, estimator_factory), settings,
        )
        planned = {s.trip_id: s.pickup_time for s in plan.stops}
        if req.stops:
            _check_echoed_stops(req, planned, d)

        by_id = {t.trip_id: t for t in trips}
        updated = store.apply_pickup_times(
            tenant_id, planned, {tid: by_id[tid].revision for tid in planned},
        )
        new_version = plan_version(
            store.trips(tenant_id, d, d, statuses=ACTIVE_STATUSES, driver_id=req.driver_id)
        )

    logger.info("Confirmed route tenant=%s driver=%s date=%s updated=%d", tenant_id, req.driver_id, d, updated)
    return ConfirmRouteResponse(
        driver_id=req.driver_id, date=d.isoformat(), updated=updated, plan_version=new_version,
    )


def _check_echoed_stops(req: ConfirmRouteRequest, planned: Dict[str, str], d: date) -> None:
    seen: Set[str] = set()
    for stop in req.stops:
        if stop.trip_id not in planned:
            raise InvalidRequestError(f"Trip {stop.trip_id} is not on this driver's route for {d}")
        if stop.trip_id in seen:
            raise InvalidRequestError(f"Trip {stop.trip_id} appears more than once")
        seen.add(stop.trip_id)
        try:
            sent = format_hhmm(minutes_of_day(stop.pickup_time))
        except ValueError as e:
            raise InvalidRequestError(f"Invalid pickup_time {stop.pickup_time!r} for trip {stop.trip_id}") from e
        if sent != planned[stop.trip_id]:
            raise InvalidRequestError(
                f"Trip {stop.trip_id}: pickup_time {stop.pickup_time} does not match the proposed "
                f"{planned[stop.trip_id]}; request a new proposal"
            )
    if seen != set(planned):
        missing = sorted(set(planned) - seen)
        raise InvalidRequestError(f"Confirmed stops must cover every trip on the route; missing {missing}")


def get_optimization_scores(
    store: DatasetStore,
    settings: EngineSettings,
    tenant_id: str,
    start_date: Optional[str],
    end_date: Optional[str],
    estimator_factory: Optional[EstimatorFactory] = None,
) -> OptimizationScoresResponse:
    """Score every driver-date in the range with at least two non-cancelled trips."""
    if not end_date:
        raise InvalidRequestError("end_date is required")
    d0, d1 = _parse_range(start_date, end_date, "start_date", "end_date")
    store.require_tenant(tenant_id)
    customers = store.customers(tenant_id)
    statuses = [s for s in ALL_STATUSES if s != "cancelled"]
    estimator = _estimator(settings, estimator_factory)

    scores: List[OptimizationScore] = []
    for d in iter_dates(d0, d1):
        by_driver: Dict[str, list] = {}
        for t in store.trips(tenant_id, d, d, statuses=statuses):
            if t.driver_id:
                by_driver.setdefault(t.driver_id, []).append(t)
        for drv, trips in sorted(by_driver.items()):
            if len(trips) < 2:
                continue
            plan = sequence_route(tenant_id, drv, d.isoformat(), trips, customers, weekday_key(d), estimator, settings)
            scores.append(OptimizationScore(
                driver_id=drv,
                date=d.isoformat(),
                score=plan.score,
                status=plan.status,
                trip_count=len(trips),
                current_distance=plan.original_distance_miles,
                optimal_distance=plan.optimized_distance_miles,
                savings_potential=plan.distance_saved_miles,
                degraded=plan.degraded,
            ))

    scores.sort(key=lambda s: s.score)
    counts = {k: sum(1 for s in scores if s.status == k) for k in ("optimal", "good", "needs-optimization")}
    details = {
        "routes_scored": len(scores),
        "average_score": round(sum(s.score for s in scores) / len(scores), 1) if scores else None,
        "status_counts": counts,
        "degraded": any(s.degraded for s in scores),
    }
    logger.info("Scored %d driver-days for tenant %s (%s..%s)", len(scores), tenant_id, d0, d1)
    return OptimizationScoresResponse(start_date=d0.isoformat(), end_date=d1.isoformat(), scores=scores, details=details)


# ------------------- Capacity consolidation -------------------

def capacity_optimize(
    store: DatasetStore,
    settings: EngineSettings,
    tenant_id: str,
    day: Optional[str],
    vehicle_capacity: Optional[int] = None,
) -> CapacityOptimizeResponse:
    d = _parse_day(day, "date")
    store.require_tenant(tenant_id)
    capacity = int(vehicle_capacity or settings.default_vehicle_capacity)
    statuses = [s for s in ALL_STATUSES if s != "cancelled"]
    trips = store.trips(tenant_id, d, d, statuses=statuses)
    routes = consolidate_trips(trips, capacity)
    stats = consolidation_statistics(trips, routes)
    stats["vehicle_capacity"] = capacity
    logger.info(
        "Capacity consolidation tenant=%s date=%s: %d trips -> %d vehicles",
        tenant_id, d, stats["total_trips"], stats["vehicles_needed"],
    )
    return CapacityOptimizeResponse(date=d.isoformat(), routes=routes, statistics=stats)
