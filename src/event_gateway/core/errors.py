"""
Exception hierarchy for the Event Gateway.

ClientError and AdmissionRejectedError surface synchronously in the HTTP
response. Infrastructure errors are absorbed by the delivery pipeline and are
only observable through logs, metrics and the dead-letter sink.
"""


class GatewayError(Exception):
    """Base exception for gateway errors."""
    pass


class ClientError(GatewayError):
    """Malformed, oversized or unsupported request. Never retried."""

    status_code: int = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class BadRequestError(ClientError):
    """Topic missing or unknown."""
    status_code = 400


class PayloadTooLargeError(ClientError):
    """Request body exceeds the configured limit."""
    status_code = 413


class UnsupportedMediaTypeError(ClientError):
    """Content-Type is not one of the accepted types."""
    status_code = 415


class AdmissionRejectedError(GatewayError):
    """The broker signalled backpressure; the caller should retry later."""

    def __init__(self, detail: str, retry_after: int = 1):
        super().__init__(detail)
        self.detail = detail
        self.retry_after = retry_after


class InfrastructureError(GatewayError):
    """A broker or sink operation failed."""
    pass


class TransientInfrastructureError(InfrastructureError):
    """Temporarily unavailable; retried per backoff policy."""
    pass


class PermanentInfrastructureError(InfrastructureError):
    """Auth or configuration failure; never retried."""
    pass


class InvariantViolationError(GatewayError):
    """Raised in strict mode when a delivery invariant is broken."""
    pass


class DuplicateDeliveryError(InvariantViolationError):
    """A second delivery was started for an (event, sink) pair already in flight."""
    pass
