# tripcap/plan/errors.py
from __future__ import annotations


class EngineError(Exception):
    """Base class for failures the engine reports back to its caller."""

    status_code = 500


class InvalidRequestError(EngineError, ValueError):
    status_code = 400


class UnknownEntityError(EngineError, LookupError):
    status_code = 404


class PlanConflictError(EngineError):
    """Raised when a confirmation targets a plan that no longer matches stored trips."""

    status_code = 409

    def __init__(self, message: str, current_version: str | None = None):
        super().__init__(message)
        self.current_version = current_version


class DistanceServiceError(Exception):
    """Mapping service unavailable or returned an unusable answer.

    Never leaves the distance layer: FallbackDistanceEstimator swallows it.
    """
