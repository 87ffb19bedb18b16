# tripcap/plan/store.py
"""
Dataset-backed trip store.

Layout of a dataset directory (see conftest / scripts for examples):
  trips.csv       one row per trip booking
  vehicles.csv    vehicle_id, tenant_id, seats, wheelchair_accessible, ...
  drivers.csv     driver_id, tenant_id, name
  customers.json  [{customer_id, tenant_id, schedule: {mon: {...}}, ...}]

Reads return immutable records. The only mutation is apply_pickup_times(),
which rewrites trips.csv all-or-nothing.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from tripcap.timeparse import format_hhmm, minutes_of_day, parse_date

from .errors import InvalidRequestError, PlanConflictError, UnknownEntityError
from .geo import extract_postcode
from .models import (
    ASSIGNED_STATUSES,
    CandidateCustomer,
    DaySchedule,
    Driver,
    GeoPoint,
    Trip,
    Vehicle,
)

logger = logging.getLogger(__name__)

TRIPS_FILE = "trips.csv"
VEHICLES_FILE = "vehicles.csv"
DRIVERS_FILE = "drivers.csv"
CUSTOMERS_FILE = "customers.json"

TRIP_COLUMNS = [
    "trip_id", "tenant_id", "trip_date", "pickup_time", "destination", "destination_address",
    "pickup_address", "pickup_postcode", "pickup_lat", "pickup_lng",
    "destination_lat", "destination_lng", "driver_id", "vehicle_id", "customer_id",
    "customer_name", "status", "price", "passenger_count", "revision",
]


def _s(v) -> Optional[str]:
    if v is None:
        return None
    if isinstance(v, float) and pd.isna(v):
        return None
    s = str(v).strip()
    return s or None

def _f(v, default: Optional[float] = None) -> Optional[float]:
    s = _s(v)
    if s is None:
        return default
    try:
        return float(s)
    except ValueError:
        return default

def _i(v, default: int = 0) -> int:
    f = _f(v)
    return int(f) if f is not None else default

def _b(v) -> bool:
    if isinstance(v, bool):
        return v
    return (_s(v) or "").lower() in ("1", "true", "t", "yes", "y")


def _normalise_trips(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    for col in TRIP_COLUMNS:
        if col not in df.columns:
            df[col] = ""
    df = df[TRIP_COLUMNS].fillna("").astype(str)
    df["status"] = df["status"].str.strip().str.lower().replace({"in-progress": "in_progress"})
    df.loc[df["revision"].str.strip() == "", "revision"] = "0"
    return df.reset_index(drop=True)


def _trip_from_row(r: Mapping[str, Any]) -> Trip:
    pickup_address = _s(r.get("pickup_address")) or ""
    return Trip(
        trip_id=str(r["trip_id"]),
        tenant_id=str(r["tenant_id"]),
        trip_date=parse_date(r["trip_date"]),
        pickup_time=format_hhmm(minutes_of_day(r["pickup_time"])),
        destination=_s(r.get("destination")) or "",
        status=_s(r.get("status")) or "scheduled",
        driver_id=_s(r.get("driver_id")),
        vehicle_id=_s(r.get("vehicle_id")),
        customer_id=_s(r.get("customer_id")),
        customer_name=_s(r.get("customer_name")),
        price=_f(r.get("price"), 0.0),
        destination_address=_s(r.get("destination_address")),
        pickup=GeoPoint(
            address=pickup_address,
            postcode=_s(r.get("pickup_postcode")) or extract_postcode(pickup_address),
            lat=_f(r.get("pickup_lat")),
            lng=_f(r.get("pickup_lng")),
        ),
        dropoff=GeoPoint(
            address=_s(r.get("destination_address")) or _s(r.get("destination")) or "",
            postcode=extract_postcode(_s(r.get("destination_address"))),
            lat=_f(r.get("destination_lat")),
            lng=_f(r.get("destination_lng")),
        ),
        passenger_count=max(1, _i(r.get("passenger_count"), 1)),
        revision=_i(r.get("revision"), 0),
    )


def _customer_from_dict(c: Mapping[str, Any]) -> CandidateCustomer:
    schedule: Dict[str, DaySchedule] = {}
    for day_key, entry in (c.get("schedule") or {}).items():
        if not isinstance(entry, Mapping):
            continue
        dest = entry.get("destination") or entry.get("outbound_destination") or ""
        when = entry.get("pickup_time") or entry.get("outbound_time") or "09:00"
        schedule[str(day_key).lower()[:3]] = DaySchedule(destination=str(dest), pickup_time=str(when))
    return CandidateCustomer(
        customer_id=str(c["customer_id"]),
        name=_s(c.get("name")) or "",
        address=_s(c.get("address")),
        postcode=_s(c.get("postcode")),
        phone=_s(c.get("phone")),
        schedule=schedule,
        mobility_requirements=_s(c.get("mobility_requirements")),
        requires_wheelchair=_b(c.get("requires_wheelchair")),
    )


class DatasetStore:
    def __init__(
        self,
        trips: pd.DataFrame,
        vehicles: pd.DataFrame,
        drivers: pd.DataFrame,
        customers: Sequence[Mapping[str, Any]],
        directory: Optional[Path] = None,
    ):
        self.directory = directory
        self._trips = _normalise_trips(trips)
        self._vehicles = vehicles.fillna("").astype(str) if not vehicles.empty else pd.DataFrame(columns=["vehicle_id", "tenant_id", "seats"])
        self._drivers = drivers.fillna("").astype(str) if not drivers.empty else pd.DataFrame(columns=["driver_id", "tenant_id", "name"])
        self._customers = [dict(c) for c in customers]
        self._write_lock = threading.Lock()
        self._locks_guard = threading.Lock()
        self._day_locks: Dict[Tuple[str, str, date], threading.Lock] = {}

    # ------------------- Loading -------------------

    @classmethod
    def load(cls, directory: Path) -> "DatasetStore":
        directory = Path(directory)
        trips_path = directory / TRIPS_FILE
        if not trips_path.exists():
            raise FileNotFoundError(f"{TRIPS_FILE} not found in {directory}")
        trips = pd.read_csv(trips_path, dtype=str, keep_default_na=False)
        vehicles = pd.read_csv(directory / VEHICLES_FILE, dtype=str, keep_default_na=False) if (directory / VEHICLES_FILE).exists() else pd.DataFrame()
        drivers = pd.read_csv(directory / DRIVERS_FILE, dtype=str, keep_default_na=False) if (directory / DRIVERS_FILE).exists() else pd.DataFrame()
        customers: List[Dict[str, Any]] = []
        if (directory / CUSTOMERS_FILE).exists():
            raw = json.loads((directory / CUSTOMERS_FILE).read_text(encoding="utf-8"))
            customers = raw.get("customers", []) if isinstance(raw, dict) else list(raw)
        store = cls(trips, vehicles, drivers, customers, directory=directory)
        logger.info(
            "Loaded dataset from %s: trips=%d vehicles=%d drivers=%d customers=%d",
            directory, len(store._trips), len(store._vehicles), len(store._drivers), len(store._customers),
        )
        return store

    def stats(self) -> Dict[str, int]:
        return {
            "trips": int(len(self._trips)),
            "vehicles": int(len(self._vehicles)),
            "drivers": int(len(self._drivers)),
            "customers": len(self._customers),
            "tenants": len(self.tenants()),
        }

    # ------------------- Read queries -------------------

    def tenants(self) -> set[str]:
        ids = set(self._trips["tenant_id"]) | set(self._drivers.get("tenant_id", pd.Series(dtype=str)))
        ids |= set(self._vehicles.get("tenant_id", pd.Series(dtype=str)))
        ids |= {str(c.get("tenant_id")) for c in self._customers if c.get("tenant_id") is not None}
        return {t for t in ids if t}

    def require_tenant(self, tenant_id: str) -> None:
        if str(tenant_id) not in self.tenants():
            raise UnknownEntityError(f"Unknown tenant '{tenant_id}'")

    def trips(
        self,
        tenant_id: str,
        start: date,
        end: Optional[date] = None,
        statuses: Iterable[str] = ASSIGNED_STATUSES,
        driver_id: Optional[str] = None,
    ) -> List[Trip]:
        end = end or start
        df = self._trips  # snapshot: write-back swaps the frame, never mutates it
        mask = (df["tenant_id"] == str(tenant_id)) & df["status"].isin(list(statuses))
        if driver_id is not None:
            mask &= df["driver_id"] == str(driver_id)
        rows = df[mask]
        out = []
        for r in rows.to_dict(orient="records"):
            t = _trip_from_row(r)
            if start <= t.trip_date <= end:
                out.append(t)
        out.sort(key=lambda t: (t.trip_date, minutes_of_day(t.pickup_time), t.trip_id))
        return out

    def vehicles(self, tenant_id: str, ids: Optional[Iterable[str]] = None) -> Dict[str, Vehicle]:
        df = self._vehicles
        if "tenant_id" in df.columns:
            df = df[df["tenant_id"] == str(tenant_id)]
        wanted = {str(i) for i in ids} if ids is not None else None
        out: Dict[str, Vehicle] = {}
        for r in df.to_dict(orient="records"):
            vid = str(r["vehicle_id"])
            if wanted is not None and vid not in wanted:
                continue
            out[vid] = Vehicle(
                vehicle_id=vid,
                seats=_i(r.get("seats", r.get("capacity")), 0),
                wheelchair_accessible=_b(r.get("wheelchair_accessible")),
                registration=_s(r.get("registration")),
                make=_s(r.get("make")),
                model=_s(r.get("model")),
            )
        return out

    def drivers(self, tenant_id: str) -> Dict[str, Driver]:
        df = self._drivers
        if "tenant_id" in df.columns:
            df = df[df["tenant_id"] == str(tenant_id)]
        return {str(r["driver_id"]): Driver(str(r["driver_id"]), _s(r.get("name")) or "") for r in df.to_dict(orient="records")}

    def require_driver(self, tenant_id: str, driver_id: str) -> Driver:
        drv = self.drivers(tenant_id).get(str(driver_id))
        if drv is None:
            raise UnknownEntityError(f"Unknown driver '{driver_id}' for tenant '{tenant_id}'")
        return drv

    def customers(self, tenant_id: str) -> Dict[str, CandidateCustomer]:
        out: Dict[str, CandidateCustomer] = {}
        for c in self._customers:
            if str(c.get("tenant_id")) != str(tenant_id) or c.get("customer_id") is None:
                continue
            out[str(c["customer_id"])] = _customer_from_dict(c)
        return out

    def candidate_customers(self, tenant_id: str, day: date, exclude_assigned: bool = True) -> List[CandidateCustomer]:
        assigned: set[str] = set()
        if exclude_assigned:
            assigned = {t.customer_id for t in self.trips(tenant_id, day, day, ASSIGNED_STATUSES) if t.customer_id}
        out = []
        for c in self._customers:
            if str(c.get("tenant_id")) != str(tenant_id) or c.get("customer_id") is None:
                continue
            if "is_active" in c and not _b(c.get("is_active")):
                continue
            if str(c["customer_id"]) in assigned:
                continue
            out.append(_customer_from_dict(c))
        return out

    # ------------------- Write-back -------------------

    @contextmanager
    def driver_day_lock(self, tenant_id: str, driver_id: str, day: date) -> Iterator[None]:
        key = (str(tenant_id), str(driver_id), day)
        with self._locks_guard:
            lock = self._day_locks.setdefault(key, threading.Lock())
        with lock:
            yield

    def apply_pickup_times(
        self,
        tenant_id: str,
        updates: Mapping[str, str],
        expected_revisions: Mapping[str, int],
    ) -> int:
        """
        Rewrite pickup times for exactly the trips in `updates`, all or nothing.
        Every touched trip must still carry its expected revision; each gets revision + 1.
        """
        if not updates:
            return 0
        normalised = {}
        for trip_id, when in updates.items():
            try:
                normalised[str(trip_id)] = format_hhmm(minutes_of_day(when))
            except ValueError as e:
                raise InvalidRequestError(f"Invalid pickup time for trip {trip_id}: {when!r}") from e

        with self._write_lock:
            df = self._trips.copy()
            mask = (df["tenant_id"] == str(tenant_id)) & df["trip_id"].isin(list(normalised))
            found = set(df.loc[mask, "trip_id"])
            missing = set(normalised) - found
            if missing:
                raise PlanConflictError(f"Trips no longer exist: {sorted(missing)}")
            for idx in df.index[mask]:
                trip_id = df.at[idx, "trip_id"]
                current_rev = _i(df.at[idx, "revision"], 0)
                if trip_id in expected_revisions and int(expected_revisions[trip_id]) != current_rev:
                    raise PlanConflictError(f"Trip {trip_id} was modified concurrently")
                df.at[idx, "pickup_time"] = normalised[trip_id]
                df.at[idx, "revision"] = str(current_rev + 1)

            if self.directory is not None:
                self._write_trips_file(df)
            self._trips = df
        logger.info("Applied %d pickup time updates for tenant %s", len(normalised), tenant_id)
        return len(normalised)

    def _write_trips_file(self, df: pd.DataFrame) -> None:
        target = Path(self.directory) / TRIPS_FILE
        fd, tmp = tempfile.mkstemp(prefix=".trips-", suffix=".csv", dir=str(target.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
                df.to_csv(fh, index=False)
            os.replace(tmp, target)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
