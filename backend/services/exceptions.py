"""Custom exceptions for request dispatch and offer handling."""


class DispatchError(Exception):
    """Base class for errors surfaced by the dispatch and offer services."""
    code = "error"
    status_code = 400
    retryable = False
    default_message = "Request could not be processed"

    def __init__(self, message: str = ""):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(DispatchError):
    """Raised when input is malformed or out of range."""
    code = "validation_error"
    status_code = 400
    default_message = "Invalid input"


class NotFoundError(DispatchError):
    """Raised when a request, operator, offer or equipment cannot be found."""
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class AuthorizationError(DispatchError):
    """Raised when the caller does not own the resource it is acting on."""
    code = "forbidden"
    status_code = 403
    default_message = "You are not allowed to perform this action"


class ConflictError(DispatchError):
    """
    Raised on a business-rule conflict: unavailable operator, stale offer state,
    or a lost concurrent write. Safe to retry after refetching state.
    """
    code = "conflict"
    status_code = 409
    retryable = True
    default_message = "The resource was modified concurrently. Please refresh and try again."


class OfferAlreadyAcceptedError(ConflictError):
    """Raised when another acceptance for the same request won the race."""
    default_message = (
        "This offer has already been accepted by someone else. "
        "Please refresh and try again."
    )


class TransientInfrastructureError(DispatchError):
    """Raised when persistence or notification I/O fails in a recoverable way."""
    code = "transient_failure"
    status_code = 503
    retryable = True
    default_message = "Temporary infrastructure failure"


class PermanentSubscriptionError(DispatchError):
    """Raised by the push transport when a subscription is gone for good (404/410)."""
    code = "subscription_gone"
    status_code = 410
    default_message = "Push subscription is no longer valid"

    def __init__(self, message: str = "", subscription_id=None, status_code=None):
        super().__init__(message)
        self.subscription_id = subscription_id
        self.http_status = status_code
