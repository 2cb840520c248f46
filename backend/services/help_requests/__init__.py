"""
Request management service - customer-side operations.

This module handles:
    - Creating requests
    - Fetching a request for its owner
    - Cancelling a request that is still searching
    - Listing proposed offers
"""

from .request_lifecycle import RequestService

__all__ = ["RequestService"]
