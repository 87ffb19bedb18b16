from __future__ import annotations
import os, json
import logging
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = "engine_settings.json"

def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name, str(default)).strip().lower()
    return v in ("1", "true", "yes", "y", "on")

def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return float(default)

USE_REMOTE_DISTANCE = _env_bool("USE_REMOTE_DISTANCE", True)
DISTANCE_TIMEOUT_SEC = _env_float("DISTANCE_TIMEOUT_SEC", 5.0)
DISTANCE_API_URL = os.getenv(
    "DISTANCE_API_URL", "https://maps.googleapis.com/maps/api/distancematrix/json"
)


@dataclass(frozen=True)
class EngineSettings:
    # capacity alerts
    utilization_threshold: float = 0.6
    min_vehicle_capacity: int = 4
    high_severity_empty_seats: int = 4
    medium_severity_empty_seats: int = 2
    # recommendations
    max_time_diff_minutes: int = 30
    max_recommendations: int = 5
    dedupe_recommendations: bool = False
    # sequencing
    time_window_tolerance_minutes: int = 15
    dwell_minutes: float = 5.0
    # geometric distance model
    circuity_factor: float = 1.25
    average_speed_mph: float = 30.0
    leg_overhead_minutes: float = 0.0
    missing_coords_miles: float = 5.0
    missing_coords_minutes: float = 15.0
    # consolidation
    default_vehicle_capacity: int = 8

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def dataset_dir() -> Path:
    base = Path(os.getenv("PRIVATE_DATA_DIR", "./data/private")).resolve()
    d = base / "active"
    return d if d.exists() else base

def _load_json(path: Path, default: Any) -> Any:
    try:
        if path.exists():
            return json.loads(path.read_text(encoding="utf-8"))
    except Exception as e:
        logger.warning("Ignoring unreadable %s: %s", path.name, e)
    return default

def _coerce(settings: EngineSettings, raw: Dict[str, Any]) -> EngineSettings:
    """Apply known keys from `raw`, casting to each field's default type; unknown keys are ignored."""
    updates: Dict[str, Any] = {}
    for f in fields(EngineSettings):
        if f.name not in raw or raw[f.name] is None:
            continue
        current = getattr(settings, f.name)
        value = raw[f.name]
        if isinstance(current, bool):
            updates[f.name] = value if isinstance(value, bool) else str(value).strip().lower() in ("1", "true", "yes", "y", "on")
        else:
            updates[f.name] = type(current)(value)
    return replace(settings, **updates)

def _env_overrides() -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for f in fields(EngineSettings):
        v = os.getenv(f"ENGINE_{f.name.upper()}")
        if v not in (None, ""):
            out[f.name] = v
    return out

def validate_settings(settings: EngineSettings) -> None:
    if not 0.0 < settings.utilization_threshold <= 1.0:
        raise ValueError("utilization_threshold must be in (0, 1]")
    if settings.min_vehicle_capacity < 0:
        raise ValueError("min_vehicle_capacity must be >= 0")
    if settings.medium_severity_empty_seats > settings.high_severity_empty_seats:
        raise ValueError("medium_severity_empty_seats must not exceed high_severity_empty_seats")
    if settings.max_time_diff_minutes < 0 or settings.max_recommendations < 0:
        raise ValueError("recommendation limits must be >= 0")
    if settings.average_speed_mph <= 0 or settings.circuity_factor < 1.0:
        raise ValueError("average_speed_mph must be > 0 and circuity_factor >= 1")
    if settings.time_window_tolerance_minutes < 0 or settings.dwell_minutes < 0:
        raise ValueError("time window tolerance and dwell must be >= 0")

def load_engine_settings(raw: Dict[str, Any] | None = None) -> EngineSettings:
    """Defaults <- engine_settings.json <- ENGINE_* environment variables (<- explicit `raw`)."""
    settings = EngineSettings()
    settings = _coerce(settings, _load_json(dataset_dir() / SETTINGS_FILENAME, {}))
    settings = _coerce(settings, _env_overrides())
    if raw:
        settings = _coerce(settings, raw)
    validate_settings(settings)
    return settings

def save_engine_settings(settings: EngineSettings) -> Path:
    validate_settings(settings)
    path = dataset_dir() / SETTINGS_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(settings.to_dict(), indent=2), encoding="utf-8")
    return path
