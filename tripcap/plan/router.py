from __future__ import annotations
from typing import Callable, Optional

from fastapi import APIRouter, HTTPException, Query

from . import service
from .config import EngineSettings
from .errors import EngineError, PlanConflictError
from .models import (
    CapacityAlertsResponse,
    CapacityOptimizeRequest,
    CapacityOptimizeResponse,
    ConfirmRouteRequest,
    ConfirmRouteResponse,
    OptimizationScoresResponse,
    ProposeRouteRequest,
    RoutePlan,
)
from .store import DatasetStore


def create_router(
    get_store: Callable[[], Optional[DatasetStore]],
    get_settings: Callable[[], EngineSettings],
    estimator_factory: Optional[service.EstimatorFactory] = None,
) -> APIRouter:
    """
    Factory that returns the /tenants router. Uses callables to fetch the
    current in-memory dataset and engine settings from the backend.
    """
    router = APIRouter(prefix="/tenants/{tenant_id}", tags=["Capacity & Routes"])

    # ------------------- Shared Helpers -------------------

    def ensure_ready() -> DatasetStore:
        store = get_store()
        if store is None:
            raise HTTPException(
                status_code=503,
                detail="Trip data not loaded. Place a dataset in PRIVATE_DATA_DIR and POST /admin/reload.",
            )
        return store

    def fail(e: EngineError):
        detail = str(e)
        if isinstance(e, PlanConflictError) and e.current_version:
            detail = {"error": str(e), "current_plan_version": e.current_version}
        raise HTTPException(status_code=e.status_code, detail=detail) from e

    # ------------------- Endpoints -------------------

    @router.get("/capacity-alerts", response_model=CapacityAlertsResponse)
    def capacity_alerts(
        tenant_id: str,
        date: Optional[str] = Query(None, description="ISO date"),
        driver_id: Optional[str] = None,
        end_date: Optional[str] = None,
    ):
        store = ensure_ready()
        try:
            return service.get_capacity_alerts(store, get_settings(), tenant_id, date, driver_id, end_date)
        except EngineError as e:
            fail(e)

    @router.get("/routes/optimization-scores", response_model=OptimizationScoresResponse)
    def optimization_scores(tenant_id: str, start_date: Optional[str] = None, end_date: Optional[str] = None):
        store = ensure_ready()
        try:
            return service.get_optimization_scores(
                store, get_settings(), tenant_id, start_date, end_date, estimator_factory,
            )
        except EngineError as e:
            fail(e)

    @router.post("/routes/propose", response_model=RoutePlan)
    def propose(tenant_id: str, req: ProposeRouteRequest):
        store = ensure_ready()
        try:
            return service.propose_route(store, get_settings(), tenant_id, req.driver_id, req.date, estimator_factory)
        except EngineError as e:
            fail(e)

    @router.post("/routes/confirm", response_model=ConfirmRouteResponse)
    def confirm(tenant_id: str, req: ConfirmRouteRequest):
        store = ensure_ready()
        try:
            return service.confirm_route(store, get_settings(), tenant_id, req, estimator_factory)
        except EngineError as e:
            fail(e)

    @router.post("/routes/capacity-optimize", response_model=CapacityOptimizeResponse)
    def capacity_optimize(tenant_id: str, req: CapacityOptimizeRequest):
        store = ensure_ready()
        try:
            return service.capacity_optimize(store, get_settings(), tenant_id, req.date, req.vehicle_capacity)
        except EngineError as e:
            fail(e)

    return router
