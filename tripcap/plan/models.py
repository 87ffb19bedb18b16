from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field


ACTIVE_STATUSES = ("scheduled", "in_progress")
ASSIGNED_STATUSES = ("scheduled", "in_progress", "completed")
ALL_STATUSES = ("scheduled", "in_progress", "completed", "cancelled")


# -----------------------------
# Records read from the trip store
# -----------------------------

@dataclass(frozen=True)
class GeoPoint:
    address: str = ""
    postcode: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None

    @property
    def has_coords(self) -> bool:
        return self.lat is not None and self.lng is not None

    def query_string(self) -> str:
        # mapping services resolve postcodes more reliably than free text
        return (self.postcode or self.address or "").strip()


@dataclass(frozen=True)
class Trip:
    trip_id: str
    tenant_id: str
    trip_date: date
    pickup_time: str
    destination: str
    status: str
    driver_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    price: float = 0.0
    destination_address: Optional[str] = None
    pickup: GeoPoint = field(default_factory=GeoPoint)
    dropoff: GeoPoint = field(default_factory=GeoPoint)
    passenger_count: int = 1
    revision: int = 0


@dataclass(frozen=True)
class Vehicle:
    vehicle_id: str
    seats: int
    wheelchair_accessible: bool = False
    registration: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None


@dataclass(frozen=True)
class Driver:
    driver_id: str
    name: str = ""


@dataclass(frozen=True)
class DaySchedule:
    destination: str
    pickup_time: str


@dataclass(frozen=True)
class CandidateCustomer:
    customer_id: str
    name: str = ""
    address: Optional[str] = None
    postcode: Optional[str] = None
    phone: Optional[str] = None
    schedule: Dict[str, DaySchedule] = field(default_factory=dict)
    mobility_requirements: Optional[str] = None
    requires_wheelchair: bool = False

    @property
    def needs_accessible_vehicle(self) -> bool:
        if self.requires_wheelchair:
            return True
        return "wheelchair" in (self.mobility_requirements or "").lower()

    def schedule_for(self, weekday: str) -> Optional[DaySchedule]:
        return self.schedule.get(weekday.lower()[:3])


GroupKey = Tuple[Optional[str], Optional[str], str, str]


@dataclass
class Rider:
    customer_id: Optional[str]
    customer_name: Optional[str]
    price: float
    postcode: Optional[str] = None


@dataclass
class ServiceGroup:
    """Trips sharing driver, vehicle, pickup time and destination. Never persisted."""

    key: GroupKey
    driver_id: Optional[str]
    vehicle_id: Optional[str]
    pickup_time: str
    destination: str
    driver_name: Optional[str] = None
    vehicle: Optional[Vehicle] = None
    destination_address: Optional[str] = None
    trip_ids: List[str] = field(default_factory=list)
    riders: List[Rider] = field(default_factory=list)
    _rider_keys: set = field(default_factory=set, repr=False)

    @property
    def capacity(self) -> int:
        return int(self.vehicle.seats) if self.vehicle else 0

    @property
    def wheelchair_accessible(self) -> bool:
        return bool(self.vehicle and self.vehicle.wheelchair_accessible)

    @property
    def rider_count(self) -> int:
        return len(self._rider_keys)

    @property
    def total_price(self) -> float:
        return sum(r.price for r in self.riders)

    @property
    def average_price(self) -> float:
        return self.total_price / len(self.riders) if self.riders else 0.0

    def add(self, trip: Trip) -> None:
        self.trip_ids.append(trip.trip_id)
        self.riders.append(Rider(trip.customer_id, trip.customer_name, float(trip.price or 0.0), trip.pickup.postcode))
        self._rider_keys.add(trip.customer_id if trip.customer_id is not None else f"trip:{trip.trip_id}")


@dataclass(frozen=True)
class DaySnapshot:
    """Everything one capacity analysis reads, fetched once at request start."""

    tenant_id: str
    day: date
    trips: Tuple[Trip, ...]
    vehicles: Dict[str, Vehicle]
    drivers: Dict[str, Driver]
    candidates: Tuple[CandidateCustomer, ...] = ()


@dataclass(frozen=True)
class UtilizationFinding:
    group: ServiceGroup
    empty_seats: int
    utilization: float
    potential_revenue: float
    severity: str


# -----------------------------
# Capacity alerts (HTTP payloads)
# -----------------------------

class RecommendedRider(BaseModel):
    customer_id: str
    customer_name: str = ""
    address: Optional[str] = None
    postcode: Optional[str] = None
    phone: Optional[str] = None
    destination: str
    pickup_time: str
    time_diff_minutes: int
    mobility_requirements: Optional[str] = None
    requires_wheelchair: bool = False
    compatibility_score: int = 0
    reasoning: List[str] = []


class AlertVehicle(BaseModel):
    id: Optional[str] = None
    registration: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    capacity: int
    wheelchair_accessible: bool = False


class AlertTripDetails(BaseModel):
    pickup_time: str
    destination: str
    destination_address: Optional[str] = None
    trip_ids: List[str]


class AlertCapacity(BaseModel):
    total_seats: int
    occupied_seats: int
    empty_seats: int
    utilization: float = Field(..., ge=0.0, le=1.0)
    utilization_percentage: int


class AlertRevenue(BaseModel):
    average_trip_price: float
    potential_additional_revenue: float


class CurrentPassenger(BaseModel):
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    price: float = 0.0


class CapacityAlert(BaseModel):
    trip_group_key: str
    date: str
    driver_id: Optional[str] = None
    driver_name: Optional[str] = None
    vehicle: AlertVehicle
    trip_details: AlertTripDetails
    capacity: AlertCapacity
    revenue: AlertRevenue
    severity: str = Field(..., pattern="^(high|medium|low)$")
    current_passengers: List[CurrentPassenger] = []
    recommended_passengers: List[RecommendedRider] = []


class AlertSummary(BaseModel):
    total_alerts: int
    total_empty_seats: int
    total_potential_revenue: float
    average_utilization: int


class CapacityAlertsResponse(BaseModel):
    success: bool = True
    date: str
    end_date: Optional[str] = None
    summary: AlertSummary
    alerts: List[CapacityAlert]


# -----------------------------
# Route plans
# -----------------------------

class PlannedStop(BaseModel):
    sequence: int
    trip_id: str
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    pickup_address: str = ""
    destination: str = ""
    original_pickup_time: str
    pickup_time: str
    window_start: str
    window_end: str
    leg_miles: float = 0.0
    leg_minutes: float = 0.0
    feasible: bool = True


class RoutePlan(BaseModel):
    tenant_id: str
    driver_id: str
    date: str
    plan_version: str
    method: str = Field(..., description="remote | geometric | mixed")
    degraded: bool = False
    reliable: bool = True
    feasible: bool = True
    stops: List[PlannedStop]
    original_order: List[str]
    original_distance_miles: float
    optimized_distance_miles: float
    distance_saved_miles: float
    time_saved_minutes: float
    score: float = Field(..., ge=0.0, le=100.0)
    improvement_pct: float = Field(0.0, ge=0.0, le=100.0)
    status: str
    warnings: List[str] = []
    score_description: str = ""


class ProposeRouteRequest(BaseModel):
    driver_id: str = Field(..., min_length=1)
    date: str = Field(..., description="ISO date, e.g. 2025-09-02")


class ConfirmedStop(BaseModel):
    trip_id: str
    pickup_time: str


class ConfirmRouteRequest(BaseModel):
    driver_id: str = Field(..., min_length=1)
    date: str
    plan_version: str = Field(..., min_length=1)
    stops: List[ConfirmedStop] = Field(default_factory=list)


class ConfirmRouteResponse(BaseModel):
    status: str = "confirmed"
    driver_id: str
    date: str
    updated: int
    plan_version: str


class OptimizationScore(BaseModel):
    driver_id: str
    date: str
    score: float
    status: str
    trip_count: int
    current_distance: float
    optimal_distance: float
    savings_potential: float
    degraded: bool = False
    error: Optional[str] = None


class OptimizationScoresResponse(BaseModel):
    start_date: str
    end_date: str
    scores: List[OptimizationScore]
    details: Dict[str, Any] = {}


# -----------------------------
# Capacity consolidation
# -----------------------------

class CapacityOptimizeRequest(BaseModel):
    date: str
    vehicle_capacity: Optional[int] = Field(None, ge=1, le=100)


class ConsolidatedRoute(BaseModel):
    route_id: int
    trips: List[str]
    total_passengers: int
    capacity_used: float


class CapacityOptimizeResponse(BaseModel):
    success: bool = True
    date: str
    routes: List[ConsolidatedRoute]
    statistics: Dict[str, Any]
