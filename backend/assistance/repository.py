"""
Django ORM implementation of the dispatch Persistence port.

Reads return frozen snapshots so the engine never triggers lazy queries.
Writes are conditional UPDATEs filtered on the expected version, so a
concurrent writer makes the whole transaction roll back instead of being
silently overwritten.
"""

import logging
import uuid
from datetime import datetime
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import Exists, F, OuterRef, Prefetch, Q
from django.utils import timezone

from operators.models import Equipment, Operator, PushSubscription
from services.dispatch.types import (
    ACTIVE_REQUEST_STATUSES,
    OPEN_REQUEST_STATUSES,
    TERMINAL_REQUEST_STATUSES,
    Coordinates,
    EquipmentSnapshot,
    OfferSnapshot,
    OfferStatus,
    OperatorSnapshot,
    RequestSnapshot,
    RequestStatus,
    WriteOutcome,
)
from services.exceptions import TransientInfrastructureError

from .models import AssistanceRequest, DispatchNotification, Offer

logger = logging.getLogger(__name__)


class _VersionConflict(Exception):
    """Raised inside the atomic block to roll back a partially applied write."""


def _as_uuid(value) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


def _coordinates(latitude, longitude) -> Optional[Coordinates]:
    if latitude is None or longitude is None:
        return None
    return Coordinates(float(latitude), float(longitude))


def request_to_snapshot(request: AssistanceRequest) -> RequestSnapshot:
    return RequestSnapshot(
        id=request.id,
        phone_number=request.phone_number,
        origin=Coordinates(float(request.from_latitude), float(request.from_longitude)),
        destination=_coordinates(request.to_latitude, request.to_longitude),
        status=RequestStatus(request.status),
        created_at=request.created_at,
        updated_at=request.updated_at,
        description=request.description or "",
        required_equipment_id=request.required_equipment_id,
        last_notified_round=request.last_notified_round,
        version=request.version,
        has_proposed_offer=bool(getattr(request, "has_proposed_offer", False)),
    )


def operator_to_snapshot(operator: Operator) -> OperatorSnapshot:
    return OperatorSnapshot(
        id=operator.id,
        name=operator.name,
        phone=operator.phone,
        location=_coordinates(operator.current_latitude, operator.current_longitude),
        is_available=operator.is_available,
        service_radius_km=float(operator.service_radius_km),
        # Uses the prefetch cache when present
        equipment_ids=frozenset(equipment.id for equipment in operator.equipment.all()),
        vehicle_type=operator.vehicle_type,
    )


def offer_to_snapshot(offer: Offer) -> OfferSnapshot:
    return OfferSnapshot(
        id=offer.id,
        request_id=offer.request_id,
        operator_id=offer.operator_id,
        price=offer.price,
        status=OfferStatus(offer.status),
        created_at=offer.created_at,
        estimated_time_minutes=offer.estimated_time_minutes,
        accepted_at=offer.accepted_at,
        version=offer.version,
        operator_name=offer.operator.name,
        operator_phone=offer.operator.phone,
    )


def equipment_to_snapshot(equipment: Equipment) -> EquipmentSnapshot:
    return EquipmentSnapshot(
        id=equipment.id,
        name=equipment.name,
        description=equipment.description,
        requires_transport=equipment.requires_transport,
    )


class DjangoRepository:
    """Persistence port backed by the assistance and operators models."""

    # ===================== Reads =====================

    @staticmethod
    def _requests():
        proposed = Offer.objects.filter(request=OuterRef("pk"), status=OfferStatus.PROPOSED.value)
        return AssistanceRequest.objects.annotate(has_proposed_offer=Exists(proposed))

    @staticmethod
    def _operators():
        return Operator.objects.prefetch_related(Prefetch("equipment", queryset=Equipment.objects.only("id")))

    def list_open_requests(self) -> List[RequestSnapshot]:
        statuses = [status.value for status in OPEN_REQUEST_STATUSES]
        queryset = self._requests().filter(status__in=statuses).order_by("created_at")
        return [request_to_snapshot(request) for request in queryset]

    def list_active_requests(self) -> List[RequestSnapshot]:
        statuses = [status.value for status in ACTIVE_REQUEST_STATUSES]
        queryset = self._requests().filter(status__in=statuses).order_by("-created_at")
        return [request_to_snapshot(request) for request in queryset]

    def list_available_operators(self) -> List[OperatorSnapshot]:
        queryset = self._operators().filter(
            is_available=True,
            current_latitude__isnull=False,
            current_longitude__isnull=False,
        )
        return [operator_to_snapshot(operator) for operator in queryset]

    def get_request(self, request_id) -> Optional[RequestSnapshot]:
        pk = _as_uuid(request_id)
        if pk is None:
            return None
        request = self._requests().filter(pk=pk).first()
        return request_to_snapshot(request) if request else None

    def get_operator(self, operator_id) -> Optional[OperatorSnapshot]:
        pk = _as_uuid(operator_id)
        if pk is None:
            return None
        operator = self._operators().filter(pk=pk).first()
        return operator_to_snapshot(operator) if operator else None

    def get_offer(self, offer_id) -> Optional[OfferSnapshot]:
        pk = _as_uuid(offer_id)
        if pk is None:
            return None
        offer = Offer.objects.select_related("operator").filter(pk=pk).first()
        return offer_to_snapshot(offer) if offer else None

    def get_equipment(self, equipment_id) -> Optional[EquipmentSnapshot]:
        pk = _as_uuid(equipment_id)
        if pk is None:
            return None
        equipment = Equipment.objects.filter(pk=pk).first()
        return equipment_to_snapshot(equipment) if equipment else None

    def list_offers(self, request_id, status: Optional[OfferStatus] = None) -> List[OfferSnapshot]:
        pk = _as_uuid(request_id)
        if pk is None:
            return []
        queryset = Offer.objects.select_related("operator").filter(request_id=pk)
        if status is not None:
            queryset = queryset.filter(status=status.value)
        return [offer_to_snapshot(offer) for offer in queryset.order_by("price", "created_at")]

    # ===================== Writes =====================

    def add_request(self, request: RequestSnapshot) -> RequestSnapshot:
        destination = request.destination
        try:
            row = AssistanceRequest.objects.create(
                id=request.id,
                phone_number=request.phone_number,
                from_latitude=request.origin.latitude,
                from_longitude=request.origin.longitude,
                to_latitude=destination.latitude if destination else None,
                to_longitude=destination.longitude if destination else None,
                description=request.description,
                required_equipment_id=request.required_equipment_id,
                status=request.status.value,
                created_at=request.created_at,
                updated_at=request.updated_at,
                version=request.version,
            )
        except DatabaseError as exc:
            logger.error("Could not store request %s: %s", request.id, exc)
            raise TransientInfrastructureError() from exc
        row.refresh_from_db()
        return request_to_snapshot(row)

    def transactional_update(
        self,
        entities: Sequence,
        expected_versions: Mapping,
        created: Sequence[OfferSnapshot] = (),
        expected_statuses: Optional[Mapping] = None,
    ) -> WriteOutcome:
        """
        Apply status writes and offer inserts atomically.

        Only the lifecycle columns are written: status and updated_at for
        requests, status and accepted_at for offers. Each row is matched on
        its expected version and/or its allowed current statuses (when given)
        and its version is bumped.

        Returns:
            WriteOutcome.APPLIED, or VERSION_CONFLICT if any row was stale

        Raises:
            TransientInfrastructureError: database unavailable
        """
        expected_statuses = expected_statuses or {}
        try:
            with transaction.atomic():
                for entity in entities:
                    self._apply(
                        entity,
                        expected_versions.get(entity.id),
                        expected_statuses.get(entity.id),
                    )
                for offer in created:
                    self._insert_offer(offer)
        except _VersionConflict as conflict:
            logger.info("Version conflict on %s; transaction rolled back", conflict)
            return WriteOutcome.VERSION_CONFLICT
        except IntegrityError as exc:
            # Partial unique index on accepted offers, or a duplicate insert
            logger.info("Integrity conflict; transaction rolled back: %s", exc)
            return WriteOutcome.VERSION_CONFLICT
        except DatabaseError as exc:
            logger.error("Database error during transactional update: %s", exc)
            raise TransientInfrastructureError() from exc
        return WriteOutcome.APPLIED

    def _apply(self, entity, expected_version: Optional[int], allowed_statuses=None):
        if isinstance(entity, RequestSnapshot):
            queryset = AssistanceRequest.objects.filter(pk=entity.id)
            values = {"status": entity.status.value, "updated_at": entity.updated_at or timezone.now()}
        elif isinstance(entity, OfferSnapshot):
            queryset = Offer.objects.filter(pk=entity.id)
            values = {"status": entity.status.value, "accepted_at": entity.accepted_at}
        else:
            raise TypeError(f"Unsupported entity type: {type(entity).__name__}")

        if expected_version is not None:
            queryset = queryset.filter(version=expected_version)
        if allowed_statuses is not None:
            queryset = queryset.filter(status__in=[status.value for status in allowed_statuses])

        updated = queryset.update(version=F("version") + 1, **values)
        if updated != 1:
            raise _VersionConflict(f"{type(entity).__name__} {entity.id}")

    @staticmethod
    def _insert_offer(offer: OfferSnapshot):
        Offer.objects.create(
            id=offer.id,
            request_id=offer.request_id,
            operator_id=offer.operator_id,
            price=offer.price,
            estimated_time_minutes=offer.estimated_time_minutes,
            status=offer.status.value,
            created_at=offer.created_at,
            accepted_at=offer.accepted_at,
            version=offer.version,
        )

    # ===================== Dispatch bookkeeping =====================

    def claim_notification_round(self, request_id, round_number: int) -> bool:
        # Does not bump version; a round claim never conflicts with offer writes.
        # A request that got an offer since it was listed is no longer claimable.
        statuses = [status.value for status in OPEN_REQUEST_STATUSES]
        updated = (
            AssistanceRequest.objects.filter(pk=request_id, status__in=statuses)
            .filter(Q(last_notified_round__isnull=True) | Q(last_notified_round__lt=round_number))
            .update(last_notified_round=round_number)
        )
        return updated == 1

    def notified_operator_ids(self, request_id) -> set:
        return set(
            DispatchNotification.objects.filter(request_id=request_id).values_list("operator_id", flat=True)
        )

    def record_notifications(self, request_id, operator_ids: Iterable, round_number: int) -> None:
        now = timezone.now()
        DispatchNotification.objects.bulk_create(
            [
                DispatchNotification(
                    request_id=request_id,
                    operator_id=operator_id,
                    round=round_number,
                    sent_at=now,
                )
                for operator_id in operator_ids
            ],
            ignore_conflicts=True,
        )

    def deactivate_push_subscription(self, subscription_id) -> None:
        updated = PushSubscription.objects.filter(pk=subscription_id, is_active=True).update(is_active=False)
        if updated:
            logger.info("Deactivated push subscription %s", subscription_id)

    def purge_terminal_requests(self, cutoff: datetime) -> Tuple[int, int]:
        """
        Delete completed/cancelled requests last updated before `cutoff`.

        Returns:
            (requests_deleted, offers_deleted)
        """
        with transaction.atomic():
            stale = self._terminal_before(cutoff)
            offers_deleted = Offer.objects.filter(request__in=stale).count()
            _, per_model = stale.delete()
        requests_deleted = per_model.get(AssistanceRequest._meta.label, 0)
        return requests_deleted, offers_deleted

    def count_terminal_requests(self, cutoff: datetime) -> Tuple[int, int]:
        """Same selection as purge_terminal_requests, without deleting."""
        stale = self._terminal_before(cutoff)
        return stale.count(), Offer.objects.filter(request__in=stale).count()

    @staticmethod
    def _terminal_before(cutoff: datetime):
        statuses = [status.value for status in TERMINAL_REQUEST_STATUSES]
        return AssistanceRequest.objects.filter(status__in=statuses).filter(
            Q(updated_at__lt=cutoff) | Q(updated_at__isnull=True, created_at__lt=cutoff)
        )
