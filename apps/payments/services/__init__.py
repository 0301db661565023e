"""
Payments app services layer.

The payment authorizer: card authorization with 3-D Secure, verified
callbacks and the reconciliation sweep.
"""

from apps.payments.exceptions import (
    PaymentError,
    GatewayUnavailableError,
    PaymentVerificationFailedError,
    PaymentNotFoundError,
)

from .payment_authorization import (
    initialize_payment,
    verify_callback,
    get_payment,
    list_payments_for_user,
)

from .reconciliation import (
    reconcile_stale_payments,
    find_abandoned_payments,
    find_stuck_verifications,
)


__all__ = [
    # Exceptions
    'PaymentError',
    'GatewayUnavailableError',
    'PaymentVerificationFailedError',
    'PaymentNotFoundError',

    # Authorization
    'initialize_payment',
    'verify_callback',
    'get_payment',
    'list_payments_for_user',

    # Reconciliation
    'reconcile_stale_payments',
    'find_abandoned_payments',
    'find_stuck_verifications',
]
