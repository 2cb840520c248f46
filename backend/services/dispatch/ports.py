"""
Boundary contracts consumed by the dispatch engine.

Concrete implementations:
    - assistance.repository.DjangoRepository   (Persistence)
    - realtime.notifications.ChannelsNotifier  (Notifier)
    - common.utils.clock.SystemClock           (Clock)
"""

from __future__ import annotations

from datetime import datetime
from typing import AbstractSet, Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple, Union, runtime_checkable
from uuid import UUID

from common.utils.clock import Clock

from .types import (
    EquipmentSnapshot,
    OfferSnapshot,
    OfferStatus,
    OperatorSnapshot,
    PushResult,
    RequestSnapshot,
    WriteOutcome,
)

Entity = Union[RequestSnapshot, OfferSnapshot]


@runtime_checkable
class Persistence(Protocol):
    """
    Responsibilities:
      • Return fully materialized snapshots (no lazy loading).
      • Apply multi-entity writes atomically, guarded by per-entity versions.
    """

    def list_open_requests(self) -> List[RequestSnapshot]: ...
    def list_available_operators(self) -> List[OperatorSnapshot]: ...
    def get_request(self, request_id: UUID) -> Optional[RequestSnapshot]: ...
    def get_operator(self, operator_id: UUID) -> Optional[OperatorSnapshot]: ...
    def get_offer(self, offer_id: UUID) -> Optional[OfferSnapshot]: ...

    def list_offers(
        self, request_id: UUID, status: Optional[OfferStatus] = None
    ) -> List[OfferSnapshot]: ...

    def transactional_update(
        self,
        entities: Sequence[Entity],
        expected_versions: Mapping[UUID, int],
        created: Sequence[OfferSnapshot] = (),
        expected_statuses: Optional[Mapping[UUID, AbstractSet]] = None,
    ) -> WriteOutcome:
        """
        Persist `entities` and insert `created` in one transaction.
        An entity listed in `expected_versions` is written only if its stored
        version still matches; one listed in `expected_statuses` only if its
        stored status is still one of the given statuses. Every applied write
        bumps the version by one. Any mismatch rolls back everything and
        returns VERSION_CONFLICT.
        """

    def claim_notification_round(self, request_id: UUID, round_number: int) -> bool:
        """Raise last_notified_round to `round_number` if lower; True if this call did it."""

    def notified_operator_ids(self, request_id: UUID) -> set: ...

    def record_notifications(
        self, request_id: UUID, operator_ids: Iterable[UUID], round_number: int
    ) -> None: ...

    def deactivate_push_subscription(self, subscription_id: UUID) -> None: ...

    def purge_terminal_requests(self, cutoff: datetime) -> Tuple[int, int]: ...

    # Customer and operator read/write paths
    def add_request(self, request: RequestSnapshot) -> RequestSnapshot: ...
    def get_equipment(self, equipment_id: UUID) -> Optional[EquipmentSnapshot]: ...
    def list_active_requests(self) -> List[RequestSnapshot]: ...


@runtime_checkable
class Notifier(Protocol):
    """
    Responsibilities:
      • Live events to request/operator channels.
      • Best-effort offline push; per-subscription outcomes, never raises for a bad target.
    """

    def publish_to_request_channel(
        self, request_id: UUID, event_name: str, payload: Dict[str, Any]
    ) -> None: ...

    def publish_to_operator_channel(
        self, operator_id: UUID, event_name: str, payload: Dict[str, Any]
    ) -> None: ...

    def send_offline_push(self, operator_id: UUID, payload: Dict[str, Any]) -> List[PushResult]: ...


__all__ = ["Clock", "Entity", "Notifier", "Persistence"]
