"""
Offer lifecycle operations.

This is the only place where a request moves into OfferReceived, Accepted,
OnTheWay or Completed, and the only place acceptance races are resolved.
Status changes are version-checked through Persistence.transactional_update,
so a lost race shows up as a ConflictError instead of a silent overwrite. New
bids are only guarded on the request still being open, so rival operators
bidding at the same moment all land.
"""

import logging
import uuid
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from typing import FrozenSet, Optional

from common.utils.clock import Clock, SystemClock
from services.dispatch import events
from services.dispatch.ports import Notifier, Persistence
from services.dispatch.types import (
    OFFERABLE_REQUEST_STATUSES,
    DispatchConfig,
    OfferSnapshot,
    OfferStatus,
    RequestSnapshot,
    RequestStatus,
    WriteOutcome,
)
from services.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    OfferAlreadyAcceptedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

# Bound on re-reads when new bids keep landing during an acceptance
ACCEPT_ATTEMPTS = 3

ACCEPTED_OR_LATER = frozenset({
    RequestStatus.ACCEPTED,
    RequestStatus.ON_THE_WAY,
    RequestStatus.COMPLETED,
})


@dataclass
class OfferResult:
    """Result object for offer operations."""
    success: bool
    offer: Optional[OfferSnapshot] = None
    request: Optional[RequestSnapshot] = None
    message: str = ""


def parse_price(price, max_price: Decimal) -> Decimal:
    """Coerce a price to Decimal with at most two decimal places, within [0, max_price]."""
    if isinstance(price, bool):
        raise ValidationError("Invalid price")
    try:
        value = Decimal(str(price))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError("Invalid price")
    if not value.is_finite() or value < 0 or value > max_price:
        raise ValidationError(f"Invalid price. Must be between 0 and {max_price}.")
    if value != value.quantize(CENT):
        raise ValidationError("Invalid price. At most two decimal places are allowed.")
    return value.quantize(CENT)


def parse_estimated_minutes(minutes, max_minutes: int) -> Optional[int]:
    """Optional ETA in whole minutes within [0, max_minutes]."""
    if minutes is None:
        return None
    if isinstance(minutes, bool) or (isinstance(minutes, float) and not minutes.is_integer()):
        raise ValidationError("Estimated time must be a whole number of minutes")
    try:
        value = int(minutes)
    except (TypeError, ValueError):
        raise ValidationError("Invalid estimated time")
    if value < 0 or value > max_minutes:
        raise ValidationError(
            f"Invalid estimated time. Must be between 0 and {max_minutes} minutes."
        )
    return value


class OfferLifecycleManager:
    """Validates, records and resolves offers against requests."""

    def __init__(
        self,
        repository: Persistence,
        notifier: Notifier,
        clock: Optional[Clock] = None,
        config: Optional[DispatchConfig] = None,
    ):
        self.repository = repository
        self.notifier = notifier
        self.clock = clock or SystemClock()
        self.config = config or DispatchConfig()

    # ===================== Operator Operations =====================

    def submit_offer(
        self,
        request_id,
        operator_id,
        price,
        estimated_time_minutes=None,
    ) -> OfferResult:
        """
        Record a new Proposed offer from an operator.

        Args:
            request_id: Request the offer is for
            operator_id: Operator making the offer
            price: Non-negative amount, at most the configured maximum
            estimated_time_minutes: Optional ETA within [0, max_estimated_minutes]

        Returns:
            OfferResult with the stored offer and the updated request

        Raises:
            ValidationError: price or ETA out of range
            NotFoundError: request or operator does not exist
            ConflictError: operator unavailable or request closed (possibly meanwhile)
        """
        amount = parse_price(price, self.config.max_offer_price)
        eta = parse_estimated_minutes(estimated_time_minutes, self.config.max_estimated_minutes)

        request = self.repository.get_request(request_id)
        if request is None:
            raise NotFoundError("Request not found")

        operator = self.repository.get_operator(operator_id)
        if operator is None:
            raise NotFoundError("Operator not found")

        if not operator.is_available:
            raise ConflictError("Operator not available")

        if request.status not in OFFERABLE_REQUEST_STATUSES:
            raise ConflictError("This request is no longer accepting offers")

        now = self.clock.now()
        offer = OfferSnapshot(
            id=uuid.uuid4(),
            request_id=request.id,
            operator_id=operator.id,
            price=amount,
            status=OfferStatus.PROPOSED,
            created_at=now,
            estimated_time_minutes=eta,
            operator_name=operator.name,
            operator_phone=operator.phone,
        )
        updated_request = replace(
            request,
            status=RequestStatus.OFFER_RECEIVED,
            updated_at=now,
            has_proposed_offer=True,
        )

        # Status-guarded so concurrent bids all land; the version bump still
        # forces an in-flight accept to re-read its siblings
        outcome = self.repository.transactional_update(
            [updated_request],
            {},
            created=[offer],
            expected_statuses={request.id: OFFERABLE_REQUEST_STATUSES},
        )
        if outcome is WriteOutcome.VERSION_CONFLICT:
            logger.info("Offer from operator %s arrived after request %s closed", operator.id, request.id)
            raise ConflictError("This request is no longer accepting offers")

        logger.info(
            "Operator %s offered %s for request %s (offer %s)",
            operator.id, amount, request.id, offer.id,
        )
        self._publish(request.id, events.OFFER_RECEIVED, events.offer_received_payload(offer))

        return OfferResult(
            success=True,
            offer=offer,
            request=self.repository.get_request(request.id) or updated_request,
            message="Offer submitted",
        )

    def mark_on_the_way(self, offer_id, operator_id) -> OfferResult:
        """Operator of the accepted offer reports they are driving to the customer."""
        return self._advance(
            offer_id,
            operator_id,
            allowed_from=frozenset({RequestStatus.ACCEPTED}),
            target=RequestStatus.ON_THE_WAY,
            message="Customer notified that help is on the way",
        )

    def complete(self, offer_id, operator_id) -> OfferResult:
        """Operator of the accepted offer closes the job."""
        return self._advance(
            offer_id,
            operator_id,
            allowed_from=frozenset({RequestStatus.ACCEPTED, RequestStatus.ON_THE_WAY}),
            target=RequestStatus.COMPLETED,
            message="Request completed",
        )

    # ===================== Customer Operations =====================

    def accept_offer(self, offer_id, phone_number: str) -> OfferResult:
        """
        Accept one offer on behalf of the request owner.

        In a single version-checked write: the offer becomes Accepted, the
        request becomes Accepted, and every other Proposed offer of the
        request becomes Rejected. A new bid landing between the read and the
        write forces a fresh read of the competing offers.

        Raises:
            NotFoundError: offer (or its request) does not exist
            AuthorizationError: phone number is not the request owner's
            ConflictError: offer no longer Proposed, request closed meanwhile,
                or kept changing underneath every attempt
            OfferAlreadyAcceptedError: another acceptance won the race
        """
        for attempt in range(1, ACCEPT_ATTEMPTS + 1):
            offer = self.repository.get_offer(offer_id)
            if offer is None:
                logger.warning("Offer not found: %s", offer_id)
                raise NotFoundError("Offer not found")

            request = self.repository.get_request(offer.request_id)
            if request is None:
                raise NotFoundError("Request not found")

            if request.phone_number != phone_number:
                logger.warning("Phone number mismatch when accepting offer %s", offer.id)
                raise AuthorizationError("Only the customer who created the request can accept its offers")

            if offer.status is not OfferStatus.PROPOSED:
                if offer.status is OfferStatus.ACCEPTED:
                    raise ConflictError("This offer has already been accepted")
                raise ConflictError(f"Offer cannot be accepted (status: {offer.status.value})")

            if request.status not in OFFERABLE_REQUEST_STATUSES:
                raise ConflictError(f"Offer cannot be accepted (request is {request.status.value})")

            now = self.clock.now()
            siblings = [
                sibling
                for sibling in self.repository.list_offers(request.id, status=OfferStatus.PROPOSED)
                if sibling.id != offer.id
            ]

            accepted = replace(offer, status=OfferStatus.ACCEPTED, accepted_at=now)
            rejected = [replace(sibling, status=OfferStatus.REJECTED) for sibling in siblings]
            updated_request = replace(request, status=RequestStatus.ACCEPTED, updated_at=now)

            expected_versions = {offer.id: offer.version, request.id: request.version}
            expected_versions.update({sibling.id: sibling.version for sibling in siblings})

            outcome = self.repository.transactional_update(
                [accepted, updated_request, *rejected], expected_versions
            )
            if outcome is WriteOutcome.APPLIED:
                break

            current = self.repository.get_request(request.id)
            if current is None:
                raise NotFoundError("Request not found")
            if current.status in ACCEPTED_OR_LATER:
                logger.warning("Concurrent acceptance detected for offer %s (request %s)", offer.id, request.id)
                raise OfferAlreadyAcceptedError()
            if current.status not in OFFERABLE_REQUEST_STATUSES:
                raise ConflictError(f"Offer cannot be accepted (request is {current.status.value})")
            logger.info(
                "Request %s changed while accepting offer %s (attempt %s), retrying",
                request.id, offer.id, attempt,
            )
        else:
            logger.warning("Gave up accepting offer %s after %s attempts", offer_id, ACCEPT_ATTEMPTS)
            raise ConflictError()

        logger.info(
            "Offer %s accepted for request %s; %s competing offers rejected",
            offer.id, request.id, len(rejected),
        )
        self._publish(request.id, events.OFFER_ACCEPTED, events.offer_accepted_payload(accepted))

        return OfferResult(
            success=True,
            offer=replace(accepted, version=offer.version + 1),
            request=replace(updated_request, version=request.version + 1),
            message="Offer accepted. The operator is being notified.",
        )

    # ===================== Helpers =====================

    def _advance(
        self,
        offer_id,
        operator_id,
        allowed_from: FrozenSet[RequestStatus],
        target: RequestStatus,
        message: str,
    ) -> OfferResult:
        offer = self.repository.get_offer(offer_id)
        if offer is None:
            raise NotFoundError("Offer not found")

        if str(offer.operator_id) != str(operator_id):
            raise AuthorizationError("Only the operator who made this offer can update it")

        if offer.status is not OfferStatus.ACCEPTED:
            raise ConflictError("Only an accepted offer can be progressed")

        request = self.repository.get_request(offer.request_id)
        if request is None:
            raise NotFoundError("Request not found")

        if request.status not in allowed_from:
            raise ConflictError(
                f"Cannot move request from {request.status.value} to {target.value}"
            )

        updated_request = replace(request, status=target, updated_at=self.clock.now())
        outcome = self.repository.transactional_update(
            [updated_request], {request.id: request.version}
        )
        if outcome is WriteOutcome.VERSION_CONFLICT:
            raise ConflictError()

        logger.info("Request %s moved to %s by operator %s", request.id, target.value, operator_id)
        self._publish(
            request.id,
            events.REQUEST_STATUS_CHANGED,
            events.request_status_changed_payload(updated_request, offer),
        )

        return OfferResult(
            success=True,
            offer=offer,
            request=replace(updated_request, version=request.version + 1),
            message=message,
        )

    def _publish(self, request_id, event_name: str, payload):
        # Best effort: the state change is already committed
        try:
            self.notifier.publish_to_request_channel(request_id, event_name, payload)
        except Exception:
            logger.warning("Could not publish %s for request %s", event_name, request_id, exc_info=True)
