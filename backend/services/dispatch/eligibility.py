"""
Operator eligibility and distance ranking.

The same predicate feeds the scheduler's notification pools and the
operator-facing "available requests" listing, so it lives in one place.
"""

from typing import Iterable, List, Optional, Tuple

from common.utils import calculate_distance

from .types import Coordinates, OperatorSnapshot, RequestSnapshot


def distance_km(a: Coordinates, b: Coordinates) -> float:
    return calculate_distance(a.latitude, a.longitude, b.latitude, b.longitude)


def operator_distance(request: RequestSnapshot, operator: OperatorSnapshot) -> Optional[float]:
    """Distance from the operator to the request origin, or None when the operator has no location."""
    if operator.location is None:
        return None
    return distance_km(operator.location, request.origin)


def is_eligible(request: RequestSnapshot, operator: OperatorSnapshot) -> bool:
    """
    True when the operator may be offered this request:
    available, located, within its own service radius, and carrying the
    required equipment (if the request names one).
    """
    if not operator.is_available:
        return False

    distance = operator_distance(request, operator)
    if distance is None or distance > operator.service_radius_km:
        return False

    if request.required_equipment_id is not None:
        return request.required_equipment_id in operator.equipment_ids

    return True


def rank_eligible_operators(
    request: RequestSnapshot,
    operators: Iterable[OperatorSnapshot],
    limit: Optional[int] = None,
) -> List[Tuple[OperatorSnapshot, float]]:
    """
    Filter operators by eligibility and sort nearest first.

    Args:
        request: Request whose origin is the reference point
        operators: Candidate operators
        limit: Keep only the first `limit` entries (None keeps all)

    Returns:
        List of (operator, distance_km) tuples; equal distances are ordered by operator id
    """
    candidates: List[Tuple[OperatorSnapshot, float]] = []
    for operator in operators:
        if not is_eligible(request, operator):
            continue
        candidates.append((operator, operator_distance(request, operator)))

    candidates.sort(key=lambda item: (item[1], str(item[0].id)))

    if limit is not None:
        candidates = candidates[:max(limit, 0)]
    return candidates


def rank_requests_for_operator(
    operator: OperatorSnapshot,
    requests: Iterable[RequestSnapshot],
) -> List[Tuple[RequestSnapshot, float]]:
    """Requests this operator is eligible for, nearest first."""
    matches: List[Tuple[RequestSnapshot, float]] = []
    for request in requests:
        if is_eligible(request, operator):
            matches.append((request, operator_distance(request, operator)))

    matches.sort(key=lambda item: (item[1], str(item[0].id)))
    return matches
