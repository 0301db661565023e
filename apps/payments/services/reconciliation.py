"""
Payment reconciliation sweep.

Closes payments the user or the gateway left hanging:

- initialized or pending_three_d_secure for longer than
  THREE_D_SECURE_TIMEOUT_MINUTES are failed as abandoned;
- verifying for longer than VERIFICATION_TIMEOUT_MINUTES are verified once
  more with the stored token, and failed if the gateway still cannot be
  reached.

Idempotent; schedule it with the ``reconcile_payments`` command.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from django.conf import settings
from django.db.models import QuerySet
from django.utils import timezone

from apps.payments.exceptions import GatewayUnavailableError
from apps.payments.gateway import get_payment_gateway
from apps.payments.models import Payment, PaymentStatus

from .payment_authorization import apply_verification, fail_payment

logger = logging.getLogger(__name__)


def find_abandoned_payments(*, now: Optional[datetime] = None) -> QuerySet:
    now = now or timezone.now()
    cutoff = now - timedelta(minutes=settings.PAYMENT_GATEWAY['THREE_D_SECURE_TIMEOUT_MINUTES'])
    return Payment.objects.filter(
        status__in=[PaymentStatus.INITIALIZED, PaymentStatus.PENDING_THREE_D_SECURE],
        updated_at__lt=cutoff,
    )


def find_stuck_verifications(*, now: Optional[datetime] = None) -> QuerySet:
    now = now or timezone.now()
    cutoff = now - timedelta(minutes=settings.PAYMENT_GATEWAY['VERIFICATION_TIMEOUT_MINUTES'])
    return Payment.objects.filter(
        status=PaymentStatus.VERIFYING,
        verification_started_at__lt=cutoff,
    )


def reconcile_stale_payments(*, now: Optional[datetime] = None, gateway=None) -> Dict[str, int]:
    """
    Finish every payment stuck past its timeout.

    Returns:
        Counts: ``abandoned`` (failed for inactivity), ``succeeded`` and
        ``failed`` (after re-verification)
    """
    now = now or timezone.now()
    summary = {'abandoned': 0, 'succeeded': 0, 'failed': 0}

    for payment_id in list(find_abandoned_payments(now=now).values_list('id', flat=True)):
        payment = fail_payment(payment_id, 'timeout', '3-D Secure was not completed in time')
        if payment.status == PaymentStatus.FAILED and payment.failure_code == 'timeout':
            summary['abandoned'] += 1

    stuck = list(find_stuck_verifications(now=now))
    if stuck:
        gateway = gateway or get_payment_gateway()

    for payment in stuck:
        try:
            result = gateway.verify(
                payment_id=payment.id,
                reference=payment.gateway_reference,
                status_token=payment.status_token,
            )
        except GatewayUnavailableError:
            payment = fail_payment(
                payment.id,
                'verification_timeout',
                'Payment could not be verified in time'
            )
        else:
            payment = apply_verification(payment.id, result)

        if payment.status == PaymentStatus.SUCCEEDED:
            summary['succeeded'] += 1
        elif payment.status == PaymentStatus.FAILED:
            summary['failed'] += 1

    if any(summary.values()):
        logger.info("Payment reconciliation: %s", summary)
    return summary
