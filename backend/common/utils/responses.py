"""Maps service-layer errors onto DRF responses."""

import logging

from rest_framework.response import Response

from services.exceptions import DispatchError

logger = logging.getLogger(__name__)


def error_response(exc: DispatchError) -> Response:
    """
    Build the {"error", "code"} body used by every API view.

    Args:
        exc: Error raised by a service

    Returns:
        Response with the error's HTTP status (retryable errors carry "retryable": true)
    """
    body = {"error": exc.message, "code": exc.code}
    if exc.retryable:
        body["retryable"] = True
    if exc.status_code >= 500:
        logger.error("Service error %s: %s", exc.code, exc.message)
    return Response(body, status=exc.status_code)
