"""
Customer-side request operations: create, look up, cancel, browse offers.

Ownership is proven by the phone number the request was created with.
Dispatch itself is left to the scheduler; creating a request only makes it
visible in the Searching state.
"""

import logging
import uuid
from dataclasses import replace
from typing import List, Optional

from common.utils import is_valid_coordinate
from common.utils.clock import Clock, SystemClock
from services.dispatch import events
from services.dispatch.ports import Notifier, Persistence
from services.dispatch.types import (
    OPEN_REQUEST_STATUSES,
    Coordinates,
    OfferSnapshot,
    OfferStatus,
    RequestSnapshot,
    RequestStatus,
    WriteOutcome,
)
from services.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MAX_PHONE_LENGTH = 20
MAX_DESCRIPTION_LENGTH = 1000


def _coerce_uuid(value, label: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        raise ValidationError(f"Invalid {label}")


class RequestService:
    """Operations a customer performs on their own request."""

    def __init__(self, repository: Persistence, notifier: Notifier, clock: Optional[Clock] = None):
        self.repository = repository
        self.notifier = notifier
        self.clock = clock or SystemClock()

    def create_request(
        self,
        phone_number: str,
        from_latitude,
        from_longitude,
        to_latitude=None,
        to_longitude=None,
        description: str = "",
        required_equipment_id=None,
    ) -> RequestSnapshot:
        """
        Open a new roadside-assistance request in the Searching state.

        Raises:
            ValidationError: missing phone, bad coordinates, overlong description
            NotFoundError: required equipment does not exist
        """
        phone_number = (phone_number or "").strip()
        if not phone_number or len(phone_number) > MAX_PHONE_LENGTH:
            raise ValidationError("A valid phone number is required")

        if not is_valid_coordinate(from_latitude, from_longitude):
            raise ValidationError("Invalid pickup coordinates")

        destination = None
        if to_latitude is not None or to_longitude is not None:
            if not is_valid_coordinate(to_latitude, to_longitude):
                raise ValidationError("Invalid destination coordinates")
            destination = Coordinates(float(to_latitude), float(to_longitude))

        description = (description or "").strip()
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters")

        equipment_id = None
        if required_equipment_id:
            equipment_id = _coerce_uuid(required_equipment_id, "equipment id")
            if self.repository.get_equipment(equipment_id) is None:
                raise NotFoundError("Required equipment not found")

        now = self.clock.now()
        request = self.repository.add_request(
            RequestSnapshot(
                id=uuid.uuid4(),
                phone_number=phone_number,
                origin=Coordinates(float(from_latitude), float(from_longitude)),
                destination=destination,
                description=description,
                required_equipment_id=equipment_id,
                status=RequestStatus.SEARCHING,
                created_at=now,
                updated_at=now,
            )
        )

        logger.info("Request %s created (equipment=%s)", request.id, equipment_id)
        self._publish(request, events.REQUEST_CREATED, events.request_created_payload(request))
        return request

    def get_request_for_owner(self, request_id, phone_number: str) -> RequestSnapshot:
        request = self.repository.get_request(_coerce_uuid(request_id, "request id"))
        if request is None:
            raise NotFoundError("Request not found")
        if request.phone_number != phone_number:
            raise AuthorizationError("This request belongs to another phone number")
        return request

    def cancel_request(self, request_id, phone_number: str) -> RequestSnapshot:
        """
        Cancel a request that is still searching.

        Raises:
            NotFoundError, AuthorizationError
            ConflictError: request already has offers or is closed, or changed concurrently
        """
        request = self.get_request_for_owner(request_id, phone_number)

        if request.status not in OPEN_REQUEST_STATUSES:
            raise ConflictError(f"Cannot cancel request in current status ({request.status.value})")

        cancelled = replace(request, status=RequestStatus.CANCELLED, updated_at=self.clock.now())
        outcome = self.repository.transactional_update([cancelled], {request.id: request.version})
        if outcome is WriteOutcome.VERSION_CONFLICT:
            raise ConflictError("The request changed while cancelling. Please refresh and try again.")

        logger.info("Request %s cancelled by customer", request.id)
        self._publish(cancelled, events.REQUEST_CANCELLED, events.request_cancelled_payload(cancelled))
        return replace(cancelled, version=request.version + 1)

    def list_proposed_offers(self, request_id) -> List[OfferSnapshot]:
        """Proposed offers of a request, cheapest first."""
        request_id = _coerce_uuid(request_id, "request id")
        if self.repository.get_request(request_id) is None:
            raise NotFoundError("Request not found")
        offers = self.repository.list_offers(request_id, status=OfferStatus.PROPOSED)
        return sorted(offers, key=lambda offer: (offer.price, offer.created_at))

    def _publish(self, request: RequestSnapshot, event_name: str, payload):
        try:
            self.notifier.publish_to_request_channel(request.id, event_name, payload)
        except Exception:
            logger.warning("Could not publish %s for request %s", event_name, request.id, exc_info=True)
