"""
Services package - Business logic layer.

This package contains the dispatch engine and the request/offer services.
They work on plain snapshots behind the Persistence and Notifier ports, so
they are decoupled from Django models and from the HTTP/WebSocket layer.

Modules:
    - dispatch: Eligibility, expanding search rounds and the background scheduler
    - offers: Offer submission, acceptance and post-acceptance progress
    - help_requests: Customer-side request creation, lookup and cancellation
    - exceptions: Error hierarchy shared by all services
"""

from .exceptions import (
    AuthorizationError,
    ConflictError,
    DispatchError,
    NotFoundError,
    OfferAlreadyAcceptedError,
    PermanentSubscriptionError,
    TransientInfrastructureError,
    ValidationError,
)

__all__ = [
    "AuthorizationError",
    "ConflictError",
    "DispatchError",
    "NotFoundError",
    "OfferAlreadyAcceptedError",
    "PermanentSubscriptionError",
    "TransientInfrastructureError",
    "ValidationError",
]
