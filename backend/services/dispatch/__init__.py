"""
Request dispatch service.

This module handles:
    - Operator eligibility (availability, distance, equipment)
    - Expanding-search rounds and request timeout
    - The background scheduler that notifies operators round by round
"""

from .eligibility import is_eligible, rank_eligible_operators, rank_requests_for_operator
from .expansion import expansion_round, has_timed_out, pool_size
from .scheduler import DispatchScheduler
from .types import (
    Coordinates,
    DispatchConfig,
    EquipmentSnapshot,
    OfferSnapshot,
    OfferStatus,
    OperatorSnapshot,
    PushResult,
    PushStatus,
    RequestSnapshot,
    RequestStatus,
    TickSummary,
    WriteOutcome,
)

__all__ = [
    "DispatchScheduler",
    "is_eligible",
    "rank_eligible_operators",
    "rank_requests_for_operator",
    "expansion_round",
    "has_timed_out",
    "pool_size",
    "Coordinates",
    "DispatchConfig",
    "EquipmentSnapshot",
    "OfferSnapshot",
    "OfferStatus",
    "OperatorSnapshot",
    "PushResult",
    "PushStatus",
    "RequestSnapshot",
    "RequestStatus",
    "TickSummary",
    "WriteOutcome",
]
