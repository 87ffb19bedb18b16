import pytest
import requests
import responses

from tripcap.plan.config import EngineSettings
from tripcap.plan.distance import (
    CachingDistanceEstimator,
    FallbackDistanceEstimator,
    GeometricDistanceEstimator,
    RemoteDistanceEstimator,
    build_estimator,
)
from tripcap.plan.errors import DistanceServiceError
from tripcap.plan.geo import extract_postcode, haversine_miles, postcode_proximity
from tripcap.plan.models import GeoPoint

URL = "https://maps.example.test/distancematrix/json"

A = GeoPoint(address="1 High St", postcode="NG1 1AA", lat=52.9540, lng=-1.1500)
B = GeoPoint(address="QMC", postcode="NG7 2UH", lat=52.9436, lng=-1.1857)
NO_COORDS = GeoPoint(address="Somewhere without coordinates")


def ok_body(meters=16093.44, seconds=1200):
    return {
        "status": "OK",
        "rows": [{"elements": [{"status": "OK",
                                "distance": {"value": meters},
                                "duration": {"value": seconds}}]}],
    }


@responses.activate
def test_remote_estimate_converts_units():
    responses.add(responses.GET, URL, json=ok_body(), status=200)
    est = RemoteDistanceEstimator(api_key="k", base_url=URL).estimate(A, B)
    assert est.distance_miles == pytest.approx(10.0)
    assert est.duration_minutes == pytest.approx(20.0)
    assert est.source == "remote"
    assert not est.degraded
    sent = responses.calls[0].request.url
    assert "origins=NG1" in sent and "key=k" in sent

@responses.activate
def test_remote_raises_on_http_error():
    responses.add(responses.GET, URL, status=500)
    with pytest.raises(DistanceServiceError):
        RemoteDistanceEstimator(api_key="k", base_url=URL).estimate(A, B)

@responses.activate
def test_remote_raises_on_element_status():
    body = {"status": "OK", "rows": [{"elements": [{"status": "ZERO_RESULTS"}]}]}
    responses.add(responses.GET, URL, json=body)
    with pytest.raises(DistanceServiceError):
        RemoteDistanceEstimator(api_key="k", base_url=URL).estimate(A, B)

def test_remote_without_key_is_unavailable():
    remote = RemoteDistanceEstimator(api_key="", base_url=URL)
    assert not remote.configured
    with pytest.raises(DistanceServiceError):
        remote.estimate(A, B)


def test_geometric_uses_circuity_and_speed():
    geo = GeometricDistanceEstimator(circuity_factor=1.5, average_speed_mph=30.0)
    est = geo.estimate(A, B)
    direct = haversine_miles(A.lat, A.lng, B.lat, B.lng)
    assert est.distance_miles == pytest.approx(direct * 1.5)
    assert est.duration_minutes == pytest.approx(direct * 1.5 * 2.0)
    assert est.source == "geometric"
    assert not est.degraded

def test_geometric_missing_coordinates_uses_default_leg():
    est = GeometricDistanceEstimator(missing_miles=7.0, missing_minutes=20.0).estimate(A, NO_COORDS)
    assert (est.distance_miles, est.duration_minutes) == (7.0, 20.0)
    assert est.degraded
    assert "coordinates missing" in est.warning

def test_geometric_same_point_is_zero():
    est = GeometricDistanceEstimator().estimate(A, A)
    assert est.distance_miles == 0.0 and est.duration_minutes == 0.0


@responses.activate
def test_fallback_marks_degraded_when_remote_fails():
    responses.add(responses.GET, URL, body=requests.ConnectionError("boom"))
    est = FallbackDistanceEstimator(
        RemoteDistanceEstimator(api_key="k", base_url=URL), GeometricDistanceEstimator()
    ).estimate(A, B)
    assert est.degraded
    assert est.source == "geometric"
    assert est.distance_miles > 0

@pytest.mark.parametrize("body", [
    ["unexpected"],
    {"status": "OK", "rows": [{"elements": [{"status": "OK"}]}]},
    {"status": "OK", "rows": [{"elements": ["not-an-object"]}]},
    {"status": "OK", "rows": [{"elements": [{"status": "OK", "distance": {"value": "far"},
                                             "duration": {"value": 60}}]}]},
])
@responses.activate
def test_malformed_remote_body_falls_back(body):
    responses.add(responses.GET, URL, json=body)
    remote = RemoteDistanceEstimator(api_key="k", base_url=URL)
    with pytest.raises(DistanceServiceError):
        remote.estimate(A, B)
    est = FallbackDistanceEstimator(remote, GeometricDistanceEstimator()).estimate(A, B)
    assert est.degraded
    assert est.source == "geometric"

@responses.activate
def test_fallback_passes_remote_answer_through():
    responses.add(responses.GET, URL, json=ok_body())
    est = FallbackDistanceEstimator(
        RemoteDistanceEstimator(api_key="k", base_url=URL), GeometricDistanceEstimator()
    ).estimate(A, B)
    assert not est.degraded
    assert est.source == "remote"

@responses.activate
def test_cache_hits_network_once_per_pair():
    responses.add(responses.GET, URL, json=ok_body())
    est = CachingDistanceEstimator(RemoteDistanceEstimator(api_key="k", base_url=URL))
    est.estimate(A, B)
    est.estimate(A, B)
    est.estimate(B, A)
    assert len(responses.calls) == 2

def test_build_estimator_wraps_given_remote():
    class Down:
        def estimate(self, a, b):
            raise DistanceServiceError("down")

    est = build_estimator(EngineSettings(), remote=Down()).estimate(A, B)
    assert est.degraded


def test_postcode_helpers():
    assert extract_postcode("12 Some Rd, Nottingham ng7 2uh") == "NG72UH"
    assert extract_postcode("no postcode here") is None
    assert postcode_proximity("NG1 1AA", "ng11aa") == 100
    assert postcode_proximity("NG1 1AA", "NG1 2BB") == 75
    assert postcode_proximity("NG1 1AA", "NG7 2UH") == 40
    assert postcode_proximity("NG1 1AA", "LE1 1AA") == 10
    assert postcode_proximity(None, "LE1 1AA") == 0
