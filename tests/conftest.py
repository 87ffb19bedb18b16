# tests/conftest.py
import os
import json
from pathlib import Path
from importlib import reload

import pandas as pd
import pytest
from fastapi.testclient import TestClient

TENANT = "t1"
DAY = "2025-09-02"  # a Tuesday

HOSPITAL_ADDR = "Queen's Medical Centre, Derby Rd, Nottingham NG7 2UH"
LIBRARY_ADDR = "Central Library, Angel Row, Nottingham NG1 6HP"


def _trip(trip_id, time, dest, driver, vehicle, customer, name, price, pc, lat, lng,
          dest_addr="", dlat="", dlng="", status="scheduled", tenant=TENANT, day=DAY):
    return {
        "trip_id": trip_id, "tenant_id": tenant, "trip_date": day, "pickup_time": time,
        "destination": dest, "destination_address": dest_addr,
        "pickup_address": f"{name} house, Nottingham {pc}", "pickup_postcode": pc,
        "pickup_lat": lat, "pickup_lng": lng, "destination_lat": dlat, "destination_lng": dlng,
        "driver_id": driver, "vehicle_id": vehicle, "customer_id": customer,
        "customer_name": name, "status": status, "price": price,
        "passenger_count": 1, "revision": 0,
    }


def _customer(cid, name, pc, schedule, tenant=TENANT, **extra):
    return {"customer_id": cid, "tenant_id": tenant, "name": name, "postcode": pc,
            "address": f"{name} house, Nottingham {pc}", "phone": "0115 000 0000",
            "schedule": schedule, **extra}


@pytest.fixture(autouse=True)
def _env_test_data(monkeypatch, tmp_path: Path):
    """
    Prepare a tiny dataset under a temp PRIVATE_DATA_DIR:
      D1/V1  8 seats, 3 riders to Hospital at 09:00 (one alert)
      D2/V2  4 seats, 3 riders to Day Centre at 10:00 (no alert)
      D3/V3  2 seats, three single-rider trips 08:00-08:20 (route sequencing)
    """
    data_root = tmp_path / "data"
    data_root.mkdir(parents=True, exist_ok=True)

    h = dict(dest_addr=HOSPITAL_ADDR, dlat=52.9436, dlng=-1.1857)
    lib = dict(dest_addr=LIBRARY_ADDR, dlat=52.9530, dlng=-1.1520)
    trips = pd.DataFrame([
        _trip("T1", "09:00", "Hospital", "D1", "V1", "C1", "Alice", 15.0, "NG1 1AA", 52.9540, -1.1500, **h),
        _trip("T2", "09:00", "Hospital", "D1", "V1", "C2", "Bob", 15.0, "NG1 2BB", 52.9550, -1.1480, **h),
        _trip("T3", "09:00", "Hospital", "D1", "V1", "C3", "Carol", 15.0, "NG2 3CC", 52.9400, -1.1300, **h),
        _trip("T7", "09:00", "Hospital", "D1", "V1", "C7", "Gail", 15.0, "NG2 4DD", 52.9410, -1.1310, status="cancelled", **h),
        _trip("T4", "10:00", "Day Centre", "D2", "V2", "C4", "Dan", 12.5, "NG5 1AA", 52.9900, -1.1600),
        _trip("T5", "10:00", "Day Centre", "D2", "V2", "C5", "Eve", 12.5, "NG5 1AB", 52.9910, -1.1610),
        _trip("T6", "10:00", "Day Centre", "D2", "V2", "C6", "Finn", 12.5, "NG5 2AB", 52.9920, -1.1620),
        _trip("T20", "08:00", "Library", "D3", "V3", "C20", "Hana", 8.0, "NG3 1AA", 52.9600, -1.1400, **lib),
        _trip("T21", "08:10", "Library", "D3", "V3", "C21", "Ivan", 8.0, "NG3 2AA", 52.9620, -1.1350, **lib),
        _trip("T22", "08:20", "Library", "D3", "V3", "C22", "Jo", 8.0, "NG3 1AB", 52.9605, -1.1395, **lib),
        _trip("T90", "09:00", "Hospital", "D9", "V9", "C90", "Zara", 20.0, "LE1 1AA", 52.6360, -1.1330, tenant="t2"),
    ])
    trips.to_csv(data_root / "trips.csv", index=False)

    pd.DataFrame([
        {"vehicle_id": "V1", "tenant_id": TENANT, "seats": 8, "wheelchair_accessible": "false", "registration": "AB12 CDE", "make": "Ford", "model": "Transit"},
        {"vehicle_id": "V2", "tenant_id": TENANT, "seats": 4, "wheelchair_accessible": "false", "registration": "FG34 HIJ", "make": "Skoda", "model": "Octavia"},
        {"vehicle_id": "V3", "tenant_id": TENANT, "seats": 2, "wheelchair_accessible": "true", "registration": "KL56 MNO", "make": "Peugeot", "model": "Partner"},
        {"vehicle_id": "V9", "tenant_id": "t2", "seats": 8, "wheelchair_accessible": "false", "registration": "PQ78 RST", "make": "Ford", "model": "Transit"},
    ]).to_csv(data_root / "vehicles.csv", index=False)

    pd.DataFrame([
        {"driver_id": "D1", "tenant_id": TENANT, "name": "Dave"},
        {"driver_id": "D2", "tenant_id": TENANT, "name": "Erin"},
        {"driver_id": "D3", "tenant_id": TENANT, "name": "Frank"},
        {"driver_id": "D9", "tenant_id": "t2", "name": "Zed"},
    ]).to_csv(data_root / "drivers.csv", index=False)

    tue_hospital = {"tue": {"destination": "Hospital", "pickup_time": "09:00"}}
    customers = [
        _customer("C1", "Alice", "NG1 1AA", tue_hospital),
        _customer("C2", "Bob", "NG1 2BB", tue_hospital),
        _customer("C3", "Carol", "NG2 3CC", tue_hospital),
        _customer("C20", "Hana", "NG3 1AA", {"tue": {"destination": "Library", "pickup_time": "08:00"}}),
        _customer("C21", "Ivan", "NG3 2AA", {"tue": {"destination": "Library", "pickup_time": "08:10"}}),
        _customer("C22", "Jo", "NG3 1AB", {"tue": {"destination": "Library", "pickup_time": "08:20"}}),
        # unassigned candidates for the Hospital group
        _customer("C10", "Nina", "NG1 3DD", {"tue": {"destination": "City Hospital", "pickup_time": "09:20"}}),
        _customer("C11", "Omar", "NG1 4EE", {"tue": {"destination": "Hospital", "pickup_time": "09:05"}},
                  requires_wheelchair=True),
        _customer("C12", "Pia", "NG1 5FF", {"tue": {"destination": "Hospital", "pickup_time": "10:00"}}),
        _customer("C13", "Quinn", "NG1 6GG", {"mon": {"destination": "Hospital", "pickup_time": "09:00"}}),
        _customer("C14", "Ria", "NG1 7HH", tue_hospital, is_active=False),
        _customer("C15", "Sam", "NG7 1JJ", {"tue": {"outbound_destination": "Hospital Outpatients", "outbound_time": "08:45"}}),
    ]
    (data_root / "customers.json").write_text(json.dumps(customers), encoding="utf-8")

    # Point the app to our temp data dir; never reach the real mapping service
    monkeypatch.setenv("PRIVATE_DATA_DIR", str(data_root))
    monkeypatch.delenv("GOOGLE_MAPS_API_KEY", raising=False)
    monkeypatch.setattr("tripcap.plan.distance.USE_REMOTE_DISTANCE", False)
    for key in list(os.environ):
        if key.startswith("ENGINE_"):
            monkeypatch.delenv(key, raising=False)

    yield data_root  # tmp_path is auto-cleaned


@pytest.fixture
def data_root(_env_test_data) -> Path:
    return _env_test_data


@pytest.fixture
def store(data_root):
    from tripcap.plan.store import DatasetStore
    return DatasetStore.load(data_root)


@pytest.fixture
def app(_env_test_data):
    # Import AFTER env vars/files so startup readers find our toy data
    import backend.main as bm
    bm = reload(bm)
    return bm.app


@pytest.fixture
def client(app):
    c = TestClient(app)
    r = c.post("/admin/reload")
    assert r.status_code == 200, f"/admin/reload failed: {r.status_code} {r.text}"
    return c
