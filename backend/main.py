#!/usr/bin/env python3

"""
Backend for the trip capacity & route optimization engine.

Run locally:
  uvicorn backend.main:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations
import os
import traceback
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter

from backend.settings_routes import router as settings_router
from tripcap.plan import config as plan_config
from tripcap.plan.config import dataset_dir, load_engine_settings
from tripcap.plan.distance import RemoteDistanceEstimator
from tripcap.plan.router import create_router as create_tenant_router
from tripcap.plan.store import DatasetStore
from tripcap.runtime import configure_logging


# --------------------------------------------------------------------------------------------------
# Global Constants & Environment
# --------------------------------------------------------------------------------------------------
logger = configure_logging("backend.main")

DEBUG_API = os.getenv("DEBUG_API", "0") == "1"
CORS_ALLOW_ORIGINS = os.getenv("CORS_ALLOW_ORIGINS", "*")
ALLOW_ORIGINS = [o.strip() for o in CORS_ALLOW_ORIGINS.split(",") if o.strip()] or ["*"]

STORE: Optional[DatasetStore] = None


def load_store() -> DatasetStore:
    return DatasetStore.load(dataset_dir())


# --------------------------------------------------------------------------------------------------
# Admin Router (reload)
# --------------------------------------------------------------------------------------------------
def admin_router() -> APIRouter:
    router = APIRouter(prefix="/admin", tags=["Admin"])

    @router.post("/reload")
    def admin_reload():
        """Reload the dataset from disk"""
        global STORE
        try:
            STORE = load_store()
        except (FileNotFoundError, ValueError) as e:
            logger.error("Reload failed: %s", e)
            raise HTTPException(status_code=400, detail=f"Dataset not loadable: {e}")
        return {"status": "ok", "reloaded": STORE.stats(), "dataset_dir": str(dataset_dir())}

    return router

# --------------------------------------------------------------------------------------------------
# Public Endpoints
# --------------------------------------------------------------------------------------------------
def register_routes(app: FastAPI):
    @app.get("/health")
    def health():
        base = {
            "status": "ok" if STORE else "needs_data",
            "dataset_dir": str(dataset_dir()),
            "remote_distance": plan_config.USE_REMOTE_DISTANCE and RemoteDistanceEstimator().configured,
        }
        if STORE is None:
            return {**base, "message": "Trip data not loaded. POST /admin/reload."}
        return {**base, **STORE.stats()}

    @app.get("/config")
    def config():
        return {
            "engine_settings": load_engine_settings().to_dict(),
            "use_remote_distance": plan_config.USE_REMOTE_DISTANCE,
            "distance_api_url": plan_config.DISTANCE_API_URL,
            "distance_timeout_sec": plan_config.DISTANCE_TIMEOUT_SEC,
            "cors_allow_origins": ALLOW_ORIGINS,
            "dataset_dir": str(dataset_dir()),
        }

# --------------------------------------------------------------------------------------------------
# FastAPI App (with lifespan)
# --------------------------------------------------------------------------------------------------
def create_app() -> FastAPI:
    async def lifespan(app: FastAPI):
        global STORE
        try:
            STORE = load_store()
            logger.info("Loaded trip data OK: %s", STORE.stats())
        except (FileNotFoundError, ValueError) as e:
            logger.warning("Trip data not loaded: %s", e)
        yield

    app = FastAPI(title="Trip Capacity & Route Optimization", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        payload = {"error": str(exc)}
        if DEBUG_API:
            payload["traceback"] = traceback.format_exc()
        return JSONResponse(status_code=500, content=payload)

    app.include_router(settings_router)
    app.include_router(admin_router())
    app.include_router(create_tenant_router(lambda: STORE, load_engine_settings))

    register_routes(app)
    return app

app = create_app()


# --------------------------------------------------------------------------------------------------
# Entrypoint
# --------------------------------------------------------------------------------------------------
if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("backend.main:app", host="0.0.0.0", port=port, reload=False)
