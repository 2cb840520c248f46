"""
Value objects shared by the dispatch scheduler, the offer lifecycle manager
and the persistence/notification adapters.

Everything here is a plain, fully materialized snapshot: reading a field never
touches the database.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import FrozenSet, Optional
from uuid import UUID


class RequestStatus(str, Enum):
    PENDING = "pending"
    SEARCHING = "searching"
    OFFER_RECEIVED = "offer_received"
    ACCEPTED = "accepted"
    ON_THE_WAY = "on_the_way"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OfferStatus(str, Enum):
    PROPOSED = "proposed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


# Visible to the scheduler
OPEN_REQUEST_STATUSES = frozenset({RequestStatus.PENDING, RequestStatus.SEARCHING})

# Still accepting offers
OFFERABLE_REQUEST_STATUSES = frozenset({
    RequestStatus.PENDING,
    RequestStatus.SEARCHING,
    RequestStatus.OFFER_RECEIVED,
})

# Shown to operators in the "available requests" read path
ACTIVE_REQUEST_STATUSES = frozenset({
    RequestStatus.PENDING,
    RequestStatus.SEARCHING,
    RequestStatus.OFFER_RECEIVED,
    RequestStatus.ACCEPTED,
    RequestStatus.ON_THE_WAY,
})

TERMINAL_REQUEST_STATUSES = frozenset({RequestStatus.COMPLETED, RequestStatus.CANCELLED})


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class RequestSnapshot:
    """A customer's roadside-assistance request."""
    id: UUID
    phone_number: str
    origin: Coordinates
    status: RequestStatus
    created_at: datetime
    destination: Optional[Coordinates] = None
    description: str = ""
    required_equipment_id: Optional[UUID] = None
    updated_at: Optional[datetime] = None
    last_notified_round: Optional[int] = None
    version: int = 1
    has_proposed_offer: bool = False


@dataclass(frozen=True)
class OperatorSnapshot:
    """A service operator as seen by the matching logic."""
    id: UUID
    name: str
    phone: str = ""
    location: Optional[Coordinates] = None
    is_available: bool = False
    service_radius_km: float = 20.0
    equipment_ids: FrozenSet[UUID] = field(default_factory=frozenset)
    vehicle_type: str = ""


@dataclass(frozen=True)
class OfferSnapshot:
    """An operator's bid against one request."""
    id: UUID
    request_id: UUID
    operator_id: UUID
    price: Decimal
    status: OfferStatus
    created_at: datetime
    estimated_time_minutes: Optional[int] = None
    accepted_at: Optional[datetime] = None
    version: int = 1
    operator_name: str = ""
    operator_phone: str = ""


@dataclass(frozen=True)
class EquipmentSnapshot:
    id: UUID
    name: str
    description: str = ""
    requires_transport: bool = False


class WriteOutcome(str, Enum):
    APPLIED = "applied"
    VERSION_CONFLICT = "version_conflict"


class PushStatus(str, Enum):
    DELIVERED = "delivered"
    INVALID = "invalid"
    TRANSIENT = "transient"


@dataclass(frozen=True)
class PushResult:
    """Outcome of one offline push attempt to one subscription."""
    status: PushStatus
    subscription_id: Optional[UUID] = None
    detail: str = ""


@dataclass
class TickSummary:
    """Counters for one scheduler pass, mostly for logging and tests."""
    scanned: int = 0
    skipped: int = 0
    timed_out: int = 0
    rounds_notified: int = 0
    operators_notified: int = 0
    conflicts: int = 0
    failures: int = 0

    @property
    def eventful(self) -> bool:
        return bool(
            self.timed_out or self.operators_notified or self.conflicts or self.failures
        )


@dataclass(frozen=True)
class DispatchConfig:
    """Tunable knobs for the scheduler and offer validation."""
    tick_interval_seconds: float = 5.0
    round_duration_seconds: int = 30
    initial_pool_size: int = 15
    expansion_increment: int = 10
    max_rounds: int = 3
    max_offer_price: Decimal = Decimal("100000")
    max_estimated_minutes: int = 1440

    def __post_init__(self):
        if self.tick_interval_seconds <= 0:
            raise ValueError("tick_interval_seconds must be positive")
        if self.round_duration_seconds <= 0:
            raise ValueError("round_duration_seconds must be positive")
        if self.initial_pool_size < 0 or self.expansion_increment < 0:
            raise ValueError("pool sizes must not be negative")
        if self.max_rounds < 0:
            raise ValueError("max_rounds must not be negative")
        if self.max_offer_price < 0 or self.max_estimated_minutes < 0:
            raise ValueError("offer bounds must not be negative")

    @classmethod
    def from_settings(cls, settings=None) -> "DispatchConfig":
        """Build the config from Django settings, falling back to the defaults."""
        if settings is None:
            from django.conf import settings
        return cls(
            tick_interval_seconds=float(getattr(settings, "DISPATCH_TICK_INTERVAL_SECONDS", 5)),
            round_duration_seconds=int(getattr(settings, "DISPATCH_ROUND_DURATION_SECONDS", 30)),
            initial_pool_size=int(getattr(settings, "DISPATCH_INITIAL_POOL_SIZE", 15)),
            expansion_increment=int(getattr(settings, "DISPATCH_EXPANSION_INCREMENT", 10)),
            max_rounds=int(getattr(settings, "DISPATCH_MAX_ROUNDS", 3)),
            max_offer_price=Decimal(str(getattr(settings, "OFFER_MAX_PRICE", "100000"))),
            max_estimated_minutes=int(getattr(settings, "OFFER_MAX_ESTIMATED_MINUTES", 1440)),
        )
