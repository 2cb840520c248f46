"""
Operator self-service operations and operator-facing read paths.

Operators have no login in this service; every call names the operator id.
"""

import logging
from typing import List, Optional, Tuple

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone

from common.utils import calculate_distance, is_valid_coordinate
from services.dispatch import rank_requests_for_operator
from services.dispatch.types import RequestSnapshot
from services.exceptions import NotFoundError, ValidationError

from .models import Equipment, Operator, PushSubscription

logger = logging.getLogger(__name__)


def get_operator(operator_id) -> Operator:
    try:
        return Operator.objects.get(pk=operator_id)
    except (Operator.DoesNotExist, DjangoValidationError, ValueError, TypeError):
        # Malformed UUIDs land here too
        raise NotFoundError("Operator not found")


# OPERATOR LOCATION UPDATE
def update_operator_location(operator: Operator, lat, lon) -> Operator:
    """
    Store the operator's current position.

    Raises:
        ValidationError: latitude/longitude out of range
    """
    if not is_valid_coordinate(lat, lon):
        raise ValidationError("Invalid coordinates")

    operator.current_latitude = lat
    operator.current_longitude = lon
    operator.last_location_update = timezone.now()
    operator.save(update_fields=["current_latitude", "current_longitude", "last_location_update"])

    logger.debug("Operator %s moved to (%s, %s)", operator.id, lat, lon)
    return operator


# OPERATOR AVAILABILITY
def set_operator_availability(operator: Operator, is_available: bool) -> Operator:
    operator.is_available = bool(is_available)
    operator.save(update_fields=["is_available"])
    logger.info("Operator %s is now %s", operator.id, "available" if operator.is_available else "unavailable")
    return operator


# OPERATOR EQUIPMENT
def replace_operator_equipment(operator: Operator, equipment_ids) -> List[Equipment]:
    """
    Replace the operator's equipment set.

    Raises:
        ValidationError: duplicate ids or ids that do not exist
    """
    ids = [str(equipment_id) for equipment_id in equipment_ids]
    if len(set(ids)) != len(ids):
        raise ValidationError("Duplicate equipment ids")

    equipment = list(Equipment.objects.filter(pk__in=ids)) if ids else []
    if len(equipment) != len(ids):
        raise ValidationError("Unknown equipment ids")

    with transaction.atomic():
        operator.equipment.set(equipment)

    logger.info("Operator %s equipment set to %s items", operator.id, len(equipment))
    return sorted(equipment, key=lambda item: item.name)


# PUSH SUBSCRIPTIONS
def register_push_subscription(operator: Operator, endpoint: str, p256dh_key: str, auth_key: str) -> PushSubscription:
    """Create or refresh the subscription for this endpoint (one row per operator+endpoint)."""
    subscription, created = PushSubscription.objects.update_or_create(
        operator=operator,
        endpoint=endpoint,
        defaults={"p256dh_key": p256dh_key, "auth_key": auth_key, "is_active": True},
    )
    logger.info(
        "%s push subscription %s for operator %s",
        "Registered" if created else "Refreshed", subscription.id, operator.id,
    )
    return subscription


def remove_push_subscription(operator: Operator, endpoint: str) -> bool:
    """Deactivate the subscription; False when the operator has no such endpoint."""
    updated = PushSubscription.objects.filter(operator=operator, endpoint=endpoint, is_active=True).update(
        is_active=False
    )
    return bool(updated)


# OPERATOR READ PATHS
def available_requests_for_operator(operator_id, repository) -> List[Tuple[RequestSnapshot, float]]:
    """
    Requests the operator could help with, nearest first.

    Uses the same eligibility rule as the scheduler, over requests that are
    still open or in progress. Unavailable or unlocated operators get [].
    """
    operator = repository.get_operator(operator_id)
    if operator is None:
        raise NotFoundError("Operator not found")
    if not operator.is_available or operator.location is None:
        return []
    return rank_requests_for_operator(operator, repository.list_active_requests())


def find_nearby_operators(lat, lon, radius_km: Optional[float] = None) -> List[Tuple[Operator, float]]:
    """
    Available, located operators within radius_km of a point, nearest first.

    Raises:
        ValidationError: bad point or negative radius
    """
    if not is_valid_coordinate(lat, lon):
        raise ValidationError("Invalid coordinates")
    if radius_km is None:
        radius_km = getattr(settings, "OPERATOR_DEFAULT_SERVICE_RADIUS_KM", 20)
    radius_km = float(radius_km)
    if radius_km < 0:
        raise ValidationError("Radius must not be negative")

    candidates = Operator.objects.prefetch_related("equipment").filter(
        is_available=True,
        current_latitude__isnull=False,
        current_longitude__isnull=False,
    )

    nearby = []
    for operator in candidates:
        distance = calculate_distance(
            float(lat), float(lon),
            float(operator.current_latitude), float(operator.current_longitude),
        )
        if distance <= radius_km:
            nearby.append((operator, distance))

    # Sort closest → farthest
    nearby.sort(key=lambda item: (item[1], str(item[0].id)))
    return nearby


def list_equipment():
    return Equipment.objects.order_by("name")
