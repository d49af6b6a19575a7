"""
Exceptions for the x402 payment core.

Each exception maps onto one HTTP status class at the API boundary:

- ValidationError     -> 400
- UnauthorizedError   -> 401
- NotFoundError       -> 404
- UpstreamError       -> 502 (Gateway / pricing authority / AA-API failures)
- InternalError       -> 500

Validation and auth errors are raised before any external call is made and
never leave side effects behind.
"""
from typing import Optional


class X402Error(Exception):
    """Base exception for x402 payment errors."""
    pass


class ValidationError(X402Error):
    """Raised when required input is missing or malformed."""
    pass


class UnauthorizedError(X402Error):
    """Raised when a credential is missing or invalid."""
    pass


class NotFoundError(X402Error):
    """Raised when a referenced quote, transaction or asset does not exist."""
    pass


class UpstreamError(X402Error):
    """Raised when an external service returns a failure."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class GatewayResponseError(UpstreamError):
    """Raised when the Gateway answers with a non-2xx status."""
    pass


class GatewayConnectionError(UpstreamError):
    """Raised when the Gateway cannot be reached at all."""
    pass


class QuoteIssuanceError(UpstreamError):
    """Raised when a quote cannot be priced or persisted."""
    pass


class SettlementTimeoutError(X402Error, TimeoutError):
    """
    Raised when polling gives up while the transaction is still pending.

    This is a client-side give-up only; the transaction may still settle
    later through the Gateway callback.
    """

    def __init__(self, request_id: str, attempts: int):
        self.request_id = request_id
        self.attempts = attempts
        super().__init__(
            f"Transaction {request_id} still pending after {attempts} status checks"
        )


class PaymentFailedError(X402Error):
    """Raised when a transaction reaches the failed state."""

    def __init__(self, request_id: str, status: str = "failed"):
        self.request_id = request_id
        self.status = status
        super().__init__(f"Payment for transaction {request_id} {status}")


class InternalError(X402Error):
    """Raised for unexpected failures; the message shown to callers is generic."""
    pass


class FeedEventError(X402Error):
    """Raised (and reported via callback) for a malformed live feed event."""

    def __init__(self, message: str, raw: Optional[str] = None):
        self.raw = raw
        super().__init__(message)


class FeedConnectionError(UpstreamError):
    """Raised (and reported via callback) when the live feed connection drops."""
    pass
