"""
Event names and payload builders for request/operator channels.

Payloads are JSON-safe (ids as strings, ISO timestamps, floats) so they can
travel through any channel layer or push gateway unchanged.
"""

from typing import Any, Dict, Optional

from .types import Coordinates, OfferSnapshot, RequestSnapshot

# Request channel
REQUEST_CREATED = "request_created"
REQUEST_CANCELLED = "request_cancelled"
SEARCH_TIMED_OUT = "search_timed_out"
OFFER_RECEIVED = "offer_received"
OFFER_ACCEPTED = "offer_accepted"
REQUEST_STATUS_CHANGED = "request_status_changed"

# Operator channel
NEW_REQUEST = "new_request"

REQUEST_EVENTS = (
    REQUEST_CREATED,
    REQUEST_CANCELLED,
    SEARCH_TIMED_OUT,
    OFFER_RECEIVED,
    OFFER_ACCEPTED,
    REQUEST_STATUS_CHANGED,
)
OPERATOR_EVENTS = (NEW_REQUEST,)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _coords(point: Optional[Coordinates]) -> Dict[str, Optional[float]]:
    if point is None:
        return {"latitude": None, "longitude": None}
    return {"latitude": point.latitude, "longitude": point.longitude}


def new_request_payload(request: RequestSnapshot, distance_km: float, round_number: int) -> Dict[str, Any]:
    """Operator-specific notification about a request in their pool."""
    origin = _coords(request.origin)
    destination = _coords(request.destination)
    return {
        "request_id": str(request.id),
        "phone_number": request.phone_number,
        "from_latitude": origin["latitude"],
        "from_longitude": origin["longitude"],
        "to_latitude": destination["latitude"],
        "to_longitude": destination["longitude"],
        "description": request.description,
        "required_equipment_id": (
            str(request.required_equipment_id) if request.required_equipment_id else None
        ),
        "created_at": _iso(request.created_at),
        "distance": round(distance_km, 1),
        "round": round_number,
    }


def search_timed_out_payload(request: RequestSnapshot) -> Dict[str, Any]:
    return {
        "request_id": str(request.id),
        "status": request.status.value,
        "message": "No available help could be found. Please try again later.",
    }


def request_created_payload(request: RequestSnapshot) -> Dict[str, Any]:
    return {
        "request_id": str(request.id),
        "status": request.status.value,
        "created_at": _iso(request.created_at),
    }


def request_cancelled_payload(request: RequestSnapshot) -> Dict[str, Any]:
    return {
        "request_id": str(request.id),
        "status": request.status.value,
        "message": "Request has been cancelled",
    }


def offer_received_payload(offer: OfferSnapshot) -> Dict[str, Any]:
    return {
        "request_id": str(offer.request_id),
        "offer_id": str(offer.id),
        "price": float(offer.price),
        "estimated_time_minutes": offer.estimated_time_minutes,
        "operator_name": offer.operator_name,
    }


def offer_accepted_payload(offer: OfferSnapshot) -> Dict[str, Any]:
    return {
        "request_id": str(offer.request_id),
        "offer_id": str(offer.id),
        "price": float(offer.price),
        "operator_name": offer.operator_name,
        "operator_phone": offer.operator_phone,
        "accepted_at": _iso(offer.accepted_at),
    }


def request_status_changed_payload(request: RequestSnapshot, offer: OfferSnapshot) -> Dict[str, Any]:
    return {
        "request_id": str(request.id),
        "offer_id": str(offer.id),
        "status": request.status.value,
        "updated_at": _iso(request.updated_at),
    }
