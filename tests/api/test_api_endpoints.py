import json

import pandas as pd

DAY = "2025-09-02"


def test_health_and_config(client):
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["trips"] == 11
    r = client.get("/config")
    assert r.status_code == 200
    assert r.json()["engine_settings"]["utilization_threshold"] == 0.6


def test_capacity_alerts(client):
    r = client.get("/tenants/t1/capacity-alerts", params={"date": DAY})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["summary"]["total_alerts"] == 1
    assert body["summary"]["total_potential_revenue"] == 75.0
    alert = body["alerts"][0]
    assert alert["trip_group_key"] == "D1_V1_09:00_Hospital"
    assert alert["severity"] == "high"
    assert alert["capacity"]["empty_seats"] == 5
    assert alert["capacity"]["utilization"] == 0.375
    recs = [p["customer_id"] for p in alert["recommended_passengers"]]
    # Sam (08:45, "Hospital Outpatients") then Nina (09:20, "City Hospital")
    assert recs == ["C15", "C10"]
    assert "C11" not in recs  # wheelchair user, standard vehicle

def test_capacity_alerts_driver_filter_and_range(client):
    r = client.get("/tenants/t1/capacity-alerts", params={"date": DAY, "driver_id": "D2"})
    assert r.json()["summary"]["total_alerts"] == 0
    r = client.get("/tenants/t1/capacity-alerts", params={"date": "2025-09-01", "end_date": "2025-09-03"})
    assert r.status_code == 200
    assert r.json()["end_date"] == "2025-09-03"
    assert r.json()["summary"]["total_alerts"] == 1

def test_capacity_alerts_validation(client):
    assert client.get("/tenants/t1/capacity-alerts").status_code == 400
    assert client.get("/tenants/t1/capacity-alerts", params={"date": "not-a-date"}).status_code == 400
    r = client.get("/tenants/t1/capacity-alerts", params={"date": "2025-09-03", "end_date": "2025-09-01"})
    assert r.status_code == 400
    assert client.get("/tenants/nope/capacity-alerts", params={"date": DAY}).status_code == 404
    r = client.get("/tenants/t1/capacity-alerts", params={"date": DAY, "driver_id": "NOPE"})
    assert r.status_code == 404
    # dates are checked before the tenant lookup
    assert client.get("/tenants/nope/capacity-alerts", params={"date": "bad"}).status_code == 400


def test_optimization_scores(client):
    r = client.get("/tenants/t1/routes/optimization-scores", params={"start_date": DAY, "end_date": DAY})
    assert r.status_code == 200
    scores = r.json()["scores"]
    assert {s["driver_id"] for s in scores} == {"D1", "D2", "D3"}
    for s in scores:
        assert 0 <= s["score"] <= 100
        assert s["status"] in ("optimal", "good", "needs-optimization")
        assert s["trip_count"] >= 2
    assert client.get("/tenants/t1/routes/optimization-scores", params={"start_date": DAY}).status_code == 400


def test_propose_then_confirm_once(client, data_root):
    r = client.post("/tenants/t1/routes/propose", json={"driver_id": "D3", "date": DAY})
    assert r.status_code == 200
    plan = r.json()
    assert [s["trip_id"] for s in plan["stops"]]
    assert sorted(s["trip_id"] for s in plan["stops"]) == ["T20", "T21", "T22"]
    assert 0 <= plan["score"] <= 100
    assert plan["method"] == "geometric"
    assert plan["score_description"]

    confirm = {
        "driver_id": "D3",
        "date": DAY,
        "plan_version": plan["plan_version"],
        "stops": [{"trip_id": s["trip_id"], "pickup_time": s["pickup_time"]} for s in plan["stops"]],
    }
    r = client.post("/tenants/t1/routes/confirm", json=confirm)
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "confirmed"
    assert r.json()["updated"] == 3

    on_disk = pd.read_csv(data_root / "trips.csv", dtype=str).set_index("trip_id")
    for s in plan["stops"]:
        assert on_disk.loc[s["trip_id"], "pickup_time"] == s["pickup_time"]

    # same plan again: stale
    r = client.post("/tenants/t1/routes/confirm", json=confirm)
    assert r.status_code == 409
    assert r.json()["detail"]["current_plan_version"] != plan["plan_version"]

def test_confirm_rejects_foreign_trip(client):
    plan = client.post("/tenants/t1/routes/propose", json={"driver_id": "D3", "date": DAY}).json()
    r = client.post("/tenants/t1/routes/confirm", json={
        "driver_id": "D3", "date": DAY, "plan_version": plan["plan_version"],
        "stops": [{"trip_id": "T1", "pickup_time": "09:00"}],
    })
    assert r.status_code == 400

def test_confirm_rejects_times_that_differ_from_plan(client, data_root):
    plan = client.post("/tenants/t1/routes/propose", json={"driver_id": "D3", "date": DAY}).json()
    r = client.post("/tenants/t1/routes/confirm", json={
        "driver_id": "D3", "date": DAY, "plan_version": plan["plan_version"],
        "stops": [{"trip_id": s["trip_id"], "pickup_time": "23:30"} for s in plan["stops"]],
    })
    assert r.status_code == 400
    on_disk = pd.read_csv(data_root / "trips.csv", dtype=str).set_index("trip_id")
    assert on_disk.loc["T20", "pickup_time"] == "08:00"
    assert on_disk.loc["T22", "pickup_time"] == "08:20"

def test_confirm_without_stops_writes_proposed_times(client, data_root):
    plan = client.post("/tenants/t1/routes/propose", json={"driver_id": "D3", "date": DAY}).json()
    r = client.post("/tenants/t1/routes/confirm", json={
        "driver_id": "D3", "date": DAY, "plan_version": plan["plan_version"],
    })
    assert r.status_code == 200, r.text
    assert r.json()["updated"] == 3
    on_disk = pd.read_csv(data_root / "trips.csv", dtype=str).set_index("trip_id")
    for s in plan["stops"]:
        assert on_disk.loc[s["trip_id"], "pickup_time"] == s["pickup_time"]
        assert s["window_start"] <= on_disk.loc[s["trip_id"], "pickup_time"] <= s["window_end"]

def test_propose_unknown_driver(client):
    r = client.post("/tenants/t1/routes/propose", json={"driver_id": "D9", "date": DAY})
    assert r.status_code == 404


def test_capacity_optimize(client):
    r = client.post("/tenants/t1/routes/capacity-optimize", json={"date": DAY, "vehicle_capacity": 8})
    assert r.status_code == 200
    body = r.json()
    assert body["statistics"]["total_trips"] == 9
    placed = [tid for route in body["routes"] for tid in route["trips"]]
    assert sorted(placed) == sorted(set(placed))
    assert "T7" not in placed


def test_settings_round_trip(client, data_root):
    r = client.get("/settings")
    assert r.status_code == 200
    assert r.json()["settings"]["max_recommendations"] == 5

    r = client.post("/settings", json={"max_recommendations": 1})
    assert r.status_code == 200
    saved = json.loads((data_root / "engine_settings.json").read_text())
    assert saved["max_recommendations"] == 1

    alert = client.get("/tenants/t1/capacity-alerts", params={"date": DAY}).json()["alerts"][0]
    assert [p["customer_id"] for p in alert["recommended_passengers"]] == ["C15"]

    assert client.post("/settings", json={"bogus": 1}).status_code == 400
    assert client.post("/settings", json={"utilization_threshold": 2}).status_code == 400
