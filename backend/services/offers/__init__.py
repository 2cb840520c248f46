"""
Offer management service.

This module handles:
    - Submitting offers (price/ETA validation, first offer moves the request to OfferReceived)
    - Accepting an offer (single winner, competitors rejected, race-safe)
    - Post-acceptance progress (on the way, completed)
"""

from .offer_lifecycle import (
    OfferLifecycleManager,
    OfferResult,
    parse_estimated_minutes,
    parse_price,
)

__all__ = [
    "OfferLifecycleManager",
    "OfferResult",
    "parse_estimated_minutes",
    "parse_price",
]
