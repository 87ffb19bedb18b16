#!/usr/bin/env python3
"""Read-only smoke check: reload, capacity alerts, scores and one route proposal."""
from __future__ import annotations

import argparse
import json
import os
import sys
from importlib import reload
from pathlib import Path
from typing import Any

import requests

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)


class LiveClient:
    """requests.Session bound to a base URL, with the TestClient call shape."""

    def __init__(self, api_base_url: str, timeout: int):
        self.api_base_url = api_base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()

    def get(self, path: str, params: dict[str, str] | None = None):
        return self.session.get(f"{self.api_base_url}{path}", params=params, timeout=self.timeout)

    def post(self, path: str, json: dict[str, Any] | None = None):
        return self.session.post(f"{self.api_base_url}{path}", json=json, timeout=self.timeout)


def in_process_client():
    from fastapi.testclient import TestClient
    import backend.main as bm

    return TestClient(reload(bm).app)


def _body(response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _require_keys(obj: dict[str, Any], keys: list[str], label: str) -> list[str]:
    missing = [key for key in keys if key not in obj]
    return [f"{label}: missing keys {missing}"] if missing else []


def run_smoke(
    *,
    api_base_url: str,
    in_process: bool,
    timeout_seconds: int,
    tenant_id: str,
    date: str,
    driver_id: str | None,
    output_path: str | None,
) -> int:
    client = in_process_client() if in_process else LiveClient(api_base_url, timeout_seconds)
    try:
        reload_resp = client.post("/admin/reload")
    except requests.RequestException as exc:
        print(f"FAIL: backend not reachable at {api_base_url}: {exc}")
        return 2
    if reload_resp.status_code != 200:
        print(f"FAIL: POST /admin/reload returned {reload_resp.status_code}")
        return 2

    base = f"/tenants/{tenant_id}"
    alerts_resp = client.get(f"{base}/capacity-alerts", params={"date": date})
    scores_resp = client.get(f"{base}/routes/optimization-scores", params={"start_date": date, "end_date": date})
    alerts_body, scores_body = _body(alerts_resp), _body(scores_resp)

    errors: list[str] = []
    if alerts_resp.status_code != 200:
        errors.append(f"capacity-alerts returned {alerts_resp.status_code}")
    if scores_resp.status_code != 200:
        errors.append(f"optimization-scores returned {scores_resp.status_code}")

    errors.extend(_require_keys(alerts_body.get("summary", {}),
                                ["total_alerts", "total_empty_seats", "total_potential_revenue", "average_utilization"],
                                "capacity-alerts.summary"))

    scores = scores_body.get("scores", [])
    if driver_id is None and scores:
        # worst-scoring route is the interesting one to propose
        driver_id = scores[0]["driver_id"]

    plan: dict[str, Any] = {}
    if driver_id:
        propose_resp = client.post(f"{base}/routes/propose", json={"driver_id": driver_id, "date": date})
        if propose_resp.status_code != 200:
            errors.append(f"routes/propose returned {propose_resp.status_code}")
        else:
            plan = _body(propose_resp)
            errors.extend(_require_keys(plan, ["plan_version", "stops", "score", "status", "degraded"], "routes/propose"))
            if not 0 <= float(plan.get("score", -1)) <= 100:
                errors.append(f"routes/propose score out of range: {plan.get('score')}")

    summary = {
        "api_base_url": api_base_url,
        "in_process": in_process,
        "inputs": {"tenant_id": tenant_id, "date": date, "driver_id": driver_id},
        "status_codes": {
            "capacity_alerts": alerts_resp.status_code,
            "optimization_scores": scores_resp.status_code,
        },
        "alerts": alerts_body.get("summary", {}),
        "routes_scored": len(scores),
        "proposed": {k: plan.get(k) for k in ("score", "status", "method", "degraded", "feasible")} if plan else None,
        "errors": errors,
    }

    if output_path:
        out = Path(output_path).expanduser().resolve()
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps(summary, indent=2), encoding="utf-8")
        print(f"Wrote smoke report: {out}")

    if errors:
        print("FAIL: backend smoke checks failed")
        for err in errors:
            print(f"  - {err}")
        return 1

    print("PASS: backend smoke checks passed")
    print(f"Alerts: {summary['alerts'].get('total_alerts')}  routes scored: {len(scores)}")
    if plan:
        print(f"Proposed route for {driver_id}: score={plan.get('score')} status={plan.get('status')} method={plan.get('method')}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Backend smoke test for capacity and route endpoints (read-only)")
    parser.add_argument("--api-base-url", default="http://localhost:8000", help="Base URL for live backend")
    parser.add_argument("--in-process", action="store_true", help="Use in-process FastAPI TestClient instead of live HTTP")
    parser.add_argument("--timeout-seconds", type=int, default=30)
    parser.add_argument("--tenant-id", required=True)
    parser.add_argument("--date", required=True, help="ISO date, e.g. 2025-09-02")
    parser.add_argument("--driver-id", default=None, help="Driver to propose a route for (default: lowest score)")
    parser.add_argument("--output", default="artifacts/smoke_report.json")
    args = parser.parse_args()

    code = run_smoke(
        api_base_url=args.api_base_url,
        in_process=bool(args.in_process),
        timeout_seconds=max(1, int(args.timeout_seconds)),
        tenant_id=args.tenant_id,
        date=args.date,
        driver_id=args.driver_id,
        output_path=args.output,
    )
    raise SystemExit(code)


if __name__ == "__main__":
    main()
