"""
Domain exceptions for payments app.

Payment errors extend the marketplace hierarchy so views handle them the
same way as need and offer errors.
"""
from apps.needs.exceptions import MarketplaceError


class PaymentError(MarketplaceError):
    """Base exception for payment service errors."""
    code = 'payment_error'


class GatewayUnavailableError(PaymentError):
    """Gateway could not be reached after all retries."""
    code = 'gateway_unavailable'
    status_code = 503


class PaymentVerificationFailedError(PaymentError):
    """Server-side verification reported the payment as not completed."""
    code = 'payment_verification_failed'
    status_code = 402


class PaymentNotFoundError(PaymentError):
    """Payment does not exist or is not visible to the user."""
    code = 'payment_not_found'
    status_code = 404
