"""
Distance/duration estimation between two points.

Three strategies share one call shape, ``estimate(a, b) -> DistanceEstimate``:

  RemoteDistanceEstimator     Google Distance Matrix over HTTP (fallible)
  GeometricDistanceEstimator  haversine x circuity factor, never fails
  FallbackDistanceEstimator   primary first, geometric on any failure

Wrap the composed estimator in ``CachingDistanceEstimator`` for the lifetime
of one request so repeated pairs hit the network only once.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Dict, Optional, Protocol, Tuple

import requests

from .config import DISTANCE_API_URL, DISTANCE_TIMEOUT_SEC, USE_REMOTE_DISTANCE, EngineSettings
from .errors import DistanceServiceError
from .geo import haversine_miles
from .models import GeoPoint

logger = logging.getLogger(__name__)

METERS_PER_MILE = 1609.344
PLACEHOLDER_KEYS = {"", "your_google_maps_api_key_here"}


@dataclass(frozen=True)
class DistanceEstimate:
    distance_miles: float
    duration_minutes: float
    degraded: bool = False
    source: str = "remote"
    warning: str = ""


class DistanceEstimator(Protocol):
    def estimate(self, a: GeoPoint, b: GeoPoint) -> DistanceEstimate:
        ...


class RemoteDistanceEstimator:
    """Distance Matrix client. Raises DistanceServiceError on every failure mode."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = DISTANCE_API_URL,
        timeout_sec: float = DISTANCE_TIMEOUT_SEC,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = (api_key if api_key is not None else os.getenv("GOOGLE_MAPS_API_KEY", "")).strip()
        self.base_url = base_url
        self.timeout_sec = float(timeout_sec)
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return self.api_key not in PLACEHOLDER_KEYS

    def estimate(self, a: GeoPoint, b: GeoPoint) -> DistanceEstimate:
        if not self.configured:
            raise DistanceServiceError("mapping API key not configured")
        origin, destination = a.query_string(), b.query_string()
        if not origin or not destination:
            raise DistanceServiceError("origin or destination has no address")

        params = {
            "origins": origin,
            "destinations": destination,
            "key": self.api_key,
            "units": "imperial",
        }
        try:
            response = self.session.get(self.base_url, params=params, timeout=self.timeout_sec)
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            raise DistanceServiceError(f"distance request failed: {e}") from e

        if not isinstance(body, dict):
            raise DistanceServiceError(f"unexpected distance response type {type(body).__name__}")
        if body.get("status") != "OK":
            raise DistanceServiceError(f"distance service status {body.get('status')!r}")
        try:
            element = body["rows"][0]["elements"][0]
            if element.get("status") != "OK":
                raise DistanceServiceError(f"no route {origin!r} -> {destination!r}: {element.get('status')}")
            miles = float(element["distance"]["value"]) / METERS_PER_MILE
            minutes = float(element["duration"]["value"]) / 60.0
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
            raise DistanceServiceError(f"malformed distance response: {e!r}") from e
        return DistanceEstimate(miles, minutes, degraded=False, source="remote")


class GeometricDistanceEstimator:
    def __init__(
        self,
        circuity_factor: float = 1.25,
        average_speed_mph: float = 30.0,
        overhead_minutes: float = 0.0,
        missing_miles: float = 5.0,
        missing_minutes: float = 15.0,
    ):
        self.circuity_factor = circuity_factor
        self.average_speed_mph = max(1.0, average_speed_mph)
        self.overhead_minutes = overhead_minutes
        self.missing_miles = missing_miles
        self.missing_minutes = missing_minutes

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> "GeometricDistanceEstimator":
        return cls(
            circuity_factor=settings.circuity_factor,
            average_speed_mph=settings.average_speed_mph,
            overhead_minutes=settings.leg_overhead_minutes,
            missing_miles=settings.missing_coords_miles,
            missing_minutes=settings.missing_coords_minutes,
        )

    def estimate(self, a: GeoPoint, b: GeoPoint) -> DistanceEstimate:
        if a == b:
            return DistanceEstimate(0.0, 0.0, degraded=False, source="geometric")
        if a.has_coords and b.has_coords:
            direct = haversine_miles(a.lat, a.lng, b.lat, b.lng)
            miles = direct * self.circuity_factor
            minutes = (miles / self.average_speed_mph) * 60.0 + (self.overhead_minutes if miles > 0 else 0.0)
            return DistanceEstimate(
                miles, minutes, degraded=False, source="geometric",
                warning=f"estimated via haversine ({direct:.1f}mi direct)",
            )
        missing = [p.query_string() or "?" for p in (a, b) if not p.has_coords]
        return DistanceEstimate(
            self.missing_miles, self.missing_minutes, degraded=True, source="geometric",
            warning=f"coordinates missing ({', '.join(missing)}), distance assumed",
        )


class FallbackDistanceEstimator:
    def __init__(self, primary: DistanceEstimator, fallback: DistanceEstimator):
        self.primary = primary
        self.fallback = fallback
        self._warned = False

    def estimate(self, a: GeoPoint, b: GeoPoint) -> DistanceEstimate:
        try:
            return self.primary.estimate(a, b)
        except (DistanceServiceError, requests.RequestException) as e:
            if not self._warned:
                logger.warning("Distance service unavailable, using geometric estimate: %s", e)
                self._warned = True
            else:
                logger.debug("Geometric fallback: %s", e)
            est = self.fallback.estimate(a, b)
            return replace(est, degraded=True, warning=est.warning or str(e))


class CachingDistanceEstimator:
    def __init__(self, inner: DistanceEstimator):
        self.inner = inner
        self._memo: Dict[Tuple[GeoPoint, GeoPoint], DistanceEstimate] = {}

    def estimate(self, a: GeoPoint, b: GeoPoint) -> DistanceEstimate:
        key = (a, b)
        if key not in self._memo:
            self._memo[key] = self.inner.estimate(a, b)
        return self._memo[key]


def build_estimator(settings: EngineSettings, remote: Optional[DistanceEstimator] = None) -> DistanceEstimator:
    """Fresh per-request estimator: remote with geometric fallback, memoised."""
    geometric = GeometricDistanceEstimator.from_settings(settings)
    if remote is None and USE_REMOTE_DISTANCE:
        remote = RemoteDistanceEstimator()
    if remote is None:
        # remote disabled: geometric answers are the expected path, not a degradation
        return CachingDistanceEstimator(geometric)
    return CachingDistanceEstimator(FallbackDistanceEstimator(remote, geometric))
