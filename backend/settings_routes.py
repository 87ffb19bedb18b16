# backend/settings_routes.py
from __future__ import annotations

import logging
from dataclasses import fields
from typing import Any, Dict

from fastapi import APIRouter, HTTPException

from tripcap.plan.config import (
    EngineSettings,
    SETTINGS_FILENAME,
    dataset_dir,
    load_engine_settings,
    save_engine_settings,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["settings"])

KNOWN_KEYS = {f.name for f in fields(EngineSettings)}


@router.get("/settings")
def get_settings():
    try:
        settings = load_engine_settings()
    except ValueError as e:
        raise HTTPException(status_code=500, detail=f"Invalid {SETTINGS_FILENAME}: {e}")
    return {
        "settings": settings.to_dict(),
        "defaults": EngineSettings().to_dict(),
        "path": str(dataset_dir() / SETTINGS_FILENAME),
    }

@router.post("/settings")
def post_settings(payload: Dict[str, Any]):
    # accept either {"settings": {...}} or the flat mapping
    raw = payload.get("settings", payload) if isinstance(payload.get("settings"), dict) else payload
    unknown = sorted(set(raw) - KNOWN_KEYS)
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown setting(s): {', '.join(unknown)}")
    try:
        settings = load_engine_settings(raw)
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid settings: {e}")
    try:
        path = save_engine_settings(settings)
    except OSError as e:
        raise HTTPException(status_code=500, detail=f"Failed to write {SETTINGS_FILENAME}: {e}")
    logger.info("Engine settings updated: %s", ", ".join(sorted(raw)) or "(none)")
    return {"status": "ok", "message": f"{path.name} updated", "settings": settings.to_dict()}
