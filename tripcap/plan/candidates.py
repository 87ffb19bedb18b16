from __future__ import annotations
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from tripcap.timeparse import minutes_of_day

from .config import EngineSettings
from .geo import postcode_proximity
from .models import CandidateCustomer, RecommendedRider, ServiceGroup

DEFAULT_PICKUP_TIME = "09:00"


def destinations_compatible(a: Optional[str], b: Optional[str]) -> bool:
    """Case-insensitive substring match in either direction. Empty strings never match."""
    if not a or not b:
        return False
    x, y = a.strip().lower(), b.strip().lower()
    if not x or not y:
        return False
    return x in y or y in x

def time_difference_minutes(t1: str, t2: str) -> int:
    return abs(minutes_of_day(t1) - minutes_of_day(t2))

def vehicle_supports(candidate: CandidateCustomer, group: ServiceGroup) -> bool:
    if candidate.needs_accessible_vehicle:
        return group.wheelchair_accessible
    return True

def compatibility_score(
    candidate: CandidateCustomer,
    group: ServiceGroup,
    time_diff: int,
) -> Tuple[int, List[str]]:
    """
    Informational 0-100 score shown next to a recommendation; ordering is by
    time difference only.
    """
    # only called once the destination has matched
    score = 30
    reasoning: List[str] = ["Same destination"]

    rider_postcodes = [r.postcode for r in group.riders if r.postcode]
    proximity = max((postcode_proximity(candidate.postcode, pc) for pc in rider_postcodes), default=0)
    score += round(proximity * 0.25)
    if proximity > 75:
        reasoning.append("Very close to current riders")
    elif proximity > 40:
        reasoning.append("Same general area as current riders")
    elif proximity > 0:
        reasoning.append("Different area from current riders")

    if time_diff <= 15:
        score += 25
        reasoning.append("Very similar pickup time")
    elif time_diff <= 30:
        score += 20
        reasoning.append("Similar pickup time (within 30 min)")
    elif time_diff <= 60:
        score += 10
        reasoning.append("Pickup time within 1 hour")
    else:
        reasoning.append("Different pickup time")

    return min(100, score), reasoning


def match_candidate(
    candidate: CandidateCustomer,
    group: ServiceGroup,
    weekday: str,
    settings: EngineSettings,
) -> Optional[RecommendedRider]:
    day = candidate.schedule_for(weekday)
    if day is None:
        return None
    if not destinations_compatible(day.destination, group.destination):
        return None
    pickup_time = day.pickup_time or DEFAULT_PICKUP_TIME
    try:
        diff = time_difference_minutes(pickup_time, group.pickup_time or DEFAULT_PICKUP_TIME)
    except ValueError:
        return None
    if diff > settings.max_time_diff_minutes:
        return None
    if not vehicle_supports(candidate, group):
        return None

    score, reasoning = compatibility_score(candidate, group, diff)
    return RecommendedRider(
        customer_id=candidate.customer_id,
        customer_name=candidate.name,
        address=candidate.address,
        postcode=candidate.postcode,
        phone=candidate.phone,
        destination=day.destination,
        pickup_time=pickup_time,
        time_diff_minutes=diff,
        mobility_requirements=candidate.mobility_requirements,
        requires_wheelchair=candidate.needs_accessible_vehicle,
        compatibility_score=score,
        reasoning=reasoning,
    )


def recommend_riders(
    group: ServiceGroup,
    candidates: Sequence[CandidateCustomer],
    weekday: str,
    settings: EngineSettings,
    exclude: Optional[Set[str]] = None,
) -> List[RecommendedRider]:
    """
    Greedy per-group match: closest pickup time first, truncated to
    settings.max_recommendations. The same candidate may be offered to
    several groups unless `exclude` removes them.
    """
    exclude = exclude or set()
    matches: List[RecommendedRider] = []
    for cand in candidates:
        if cand.customer_id in exclude:
            continue
        rec = match_candidate(cand, group, weekday, settings)
        if rec is not None:
            matches.append(rec)
    matches.sort(key=lambda r: r.time_diff_minutes)
    return matches[: max(0, settings.max_recommendations)]


def customers_in(recs: Iterable[RecommendedRider]) -> Set[str]:
    return {r.customer_id for r in recs}
