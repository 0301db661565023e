"""
Payment authorization service.

Drives a Payment from creation through 3-D Secure to a verified outcome:

    initialized -> pending_three_d_secure -> verifying -> succeeded | failed
    initialized -> succeeded | failed            (no challenge required)

Gateway calls are made outside database transactions; each state change
is a short transaction that re-reads the payment under a row lock and
applies a compare-and-swap update. The redirect callback is never
trusted: its token is re-verified with the gateway before the payment
is marked succeeded.
"""

import logging
from typing import Optional
from uuid import UUID

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import Q, QuerySet
from django.utils import timezone

from apps.accounts.models import User
from apps.needs.exceptions import (
    DomainValidationError,
    InvalidStateTransitionError,
    NotAuthorizedError,
    OfferNotFoundError,
)
from apps.needs.models import NeedStatus, Offer, OfferStatus
from apps.needs.services import record_payment_received, require_transacting_user
from apps.needs.services.need_management import lock_need
from apps.notifications.events import PaymentFailed, PaymentSucceeded, emit
from apps.payments.exceptions import (
    GatewayUnavailableError,
    PaymentNotFoundError,
    PaymentVerificationFailedError,
)
from apps.payments.gateway import CardDetails, GatewayResult, get_payment_gateway
from apps.payments.models import Payment, PaymentStatus

logger = logging.getLogger(__name__)


# =============================================================================
# State helpers
# =============================================================================

def lock_payment(payment_id: UUID) -> Payment:
    """Fetch a payment with a row lock. Must be called inside a transaction."""
    try:
        return Payment.objects.select_for_update().select_related('offer').get(id=payment_id)
    except (Payment.DoesNotExist, ValueError, ValidationError):
        raise PaymentNotFoundError(f"Payment with ID {payment_id} not found")


def transition_payment(payment: Payment, new_status: str, **fields) -> None:
    """Compare-and-swap ``payment`` into ``new_status`` and set ``fields``."""
    payment.ensure_can_transition_to(new_status)
    old_status = payment.status
    now = timezone.now()
    changes = {'status': new_status, 'updated_at': now, **fields}
    if new_status in Payment.TERMINAL_STATUSES:
        changes['finalized_at'] = now
    if new_status != PaymentStatus.PENDING_THREE_D_SECURE:
        changes['three_d_secure_url'] = ''

    updated = Payment.objects.filter(id=payment.id, status=old_status).update(**changes)
    if updated != 1:
        raise InvalidStateTransitionError(
            f"Payment {payment.id} changed concurrently; expected {old_status}"
        )

    for key, value in changes.items():
        setattr(payment, key, value)
    logger.info("Payment %s: %s -> %s", payment.id, old_status, new_status)


def mark_succeeded(payment: Payment, reference: str = '') -> None:
    """Finalize a locked payment as succeeded and hand over to the need."""
    fields = {}
    if reference:
        fields['gateway_reference'] = reference
    transition_payment(payment, PaymentStatus.SUCCEEDED, **fields)

    try:
        record_payment_received(offer_id=payment.offer_id)
    except InvalidStateTransitionError:
        logger.error(
            "Payment %s succeeded but offer %s can no longer be paid; manual refund required",
            payment.id, payment.offer_id
        )

    emit(PaymentSucceeded(
        payment_id=payment.id,
        offer_id=payment.offer_id,
        amount=payment.amount,
        currency=payment.currency,
        recipient_id=payment.offer.provider_id,
    ))


def mark_failed(payment: Payment, code: str, reason: str) -> None:
    """Finalize a locked payment as failed."""
    transition_payment(
        payment,
        PaymentStatus.FAILED,
        failure_code=(code or 'declined')[:64],
        failure_reason=(reason or 'Payment was declined')[:500],
    )
    emit(PaymentFailed(
        payment_id=payment.id,
        offer_id=payment.offer_id,
        reason=payment.failure_reason,
        recipient_id=payment.payer_id,
    ))


def fail_payment(payment_id: UUID, code: str, reason: str) -> Payment:
    """Fail a payment in its own transaction unless it already finished."""
    with transaction.atomic():
        payment = lock_payment(payment_id)
        if not payment.is_final:
            mark_failed(payment, code, reason)
    return payment


def apply_verification(payment_id: UUID, result: GatewayResult) -> Payment:
    """Apply a verified gateway outcome to a payment still in verifying."""
    with transaction.atomic():
        payment = lock_payment(payment_id)
        if payment.status != PaymentStatus.VERIFYING:
            # Finished by a concurrent callback or the reconciliation sweep
            return payment
        if result.success:
            mark_succeeded(payment, result.reference)
        else:
            mark_failed(
                payment,
                result.error_code or 'verification_failed',
                result.error_message or 'Payment could not be verified',
            )
    return payment


# =============================================================================
# Payment operations
# =============================================================================

def _open_payment(
    *,
    offer_id: UUID,
    acting_user: User,
    idempotency_key: str,
):
    """
    Create the initialized Payment row, or return the one matching the key.

    Returns:
        (payment, created)
    """
    try:
        need_id = Offer.objects.values_list('need_id', flat=True).get(id=offer_id)
    except (Offer.DoesNotExist, ValueError, ValidationError):
        raise OfferNotFoundError(f"Offer with ID {offer_id} not found")

    # Lock order matches the offer services: need first, then offer.
    need = lock_need(need_id)
    offer = Offer.objects.select_for_update().get(id=offer_id)

    if need.owner_id != acting_user.id:
        raise NotAuthorizedError("Only the owner of the need can pay for this offer")

    if idempotency_key:
        existing = Payment.objects.filter(offer=offer, idempotency_key=idempotency_key).first()
        if existing is not None:
            return existing, False

    if offer.status != OfferStatus.ACCEPTED:
        raise InvalidStateTransitionError(f"Offer is {offer.status}; only accepted offers can be paid")
    if need.status != NeedStatus.IN_PROGRESS:
        raise InvalidStateTransitionError(f"Need is {need.status}; payment is not possible")
    if offer.payments.exclude(status=PaymentStatus.FAILED).exists():
        raise InvalidStateTransitionError("This offer already has a payment in progress or completed")

    try:
        with transaction.atomic():
            payment = Payment.objects.create(
                offer=offer,
                payer=acting_user,
                amount=offer.price,
                currency=offer.currency,
                idempotency_key=idempotency_key,
            )
    except IntegrityError:
        raise InvalidStateTransitionError("This offer already has a payment in progress or completed")

    return payment, True


def initialize_payment(
    *,
    offer_id: UUID,
    acting_user: User,
    card: CardDetails,
    idempotency_key: Optional[str] = None,
    gateway=None,
) -> Payment:
    """
    Start paying for an accepted offer.

    Args:
        offer_id: UUID of the accepted offer
        acting_user: Must be the owner of the offer's need
        card: Card details, used for this gateway call only
        idempotency_key: Optional client key; a repeat returns the same payment
        gateway: Gateway client (defaults to the configured one)

    Returns:
        The Payment. pending_three_d_secure carries the challenge URL to
        redirect to; otherwise it is succeeded or failed.

    Raises:
        NotAuthorizedError: If user is a guest or not the need owner
        OfferNotFoundError: If offer doesn't exist
        InvalidStateTransitionError: If the offer is not accepted or already
            has an open or successful payment (no payment is created)
        GatewayUnavailableError: If the gateway could not be reached; the
            payment is recorded as failed
    """
    require_transacting_user(acting_user)
    idempotency_key = (idempotency_key or '').strip()
    if len(idempotency_key) > 64:
        raise DomainValidationError("Idempotency key is too long", field='idempotency_key')

    with transaction.atomic():
        payment, created = _open_payment(
            offer_id=offer_id,
            acting_user=acting_user,
            idempotency_key=idempotency_key,
        )
    if not created:
        return payment

    gateway = gateway or get_payment_gateway()
    try:
        result = gateway.authorize(
            payment_id=payment.id,
            amount=payment.amount,
            currency=payment.currency,
            card=card,
            callback_url=settings.PAYMENT_GATEWAY['CALLBACK_URL'],
        )
    except GatewayUnavailableError:
        fail_payment(payment.id, 'gateway_unavailable', 'Payment provider unavailable')
        raise

    with transaction.atomic():
        payment = lock_payment(payment.id)
        if payment.status != PaymentStatus.INITIALIZED:
            return payment

        if result.requires_three_d_secure:
            transition_payment(
                payment,
                PaymentStatus.PENDING_THREE_D_SECURE,
                three_d_secure_url=result.three_d_secure_url,
                gateway_reference=result.reference,
            )
        elif result.success:
            mark_succeeded(payment, result.reference)
        else:
            mark_failed(
                payment,
                result.error_code or 'declined',
                result.error_message or 'Payment was declined',
            )

    return payment


def verify_callback(*, payment_id: UUID, status_token: str, gateway=None) -> Payment:
    """
    Handle the 3-D Secure redirect for a payment.

    The token from the redirect is only a hint; the outcome comes from the
    gateway's verification endpoint.

    Args:
        payment_id: UUID of the payment from the redirect
        status_token: Status token from the redirect
        gateway: Gateway client (defaults to the configured one)

    Returns:
        The succeeded Payment

    Raises:
        PaymentNotFoundError: If payment doesn't exist
        DomainValidationError: If the token is missing
        InvalidStateTransitionError: If the payment is not awaiting 3-D Secure,
            including a repeated callback after success
        PaymentVerificationFailedError: If the gateway reports failure
        GatewayUnavailableError: If verification could not be reached; the
            payment is recorded as failed
    """
    status_token = (status_token or '').strip()
    if not status_token or len(status_token) > 255:
        raise DomainValidationError("A valid status token is required", field='status')

    with transaction.atomic():
        payment = lock_payment(payment_id)
        if payment.status != PaymentStatus.PENDING_THREE_D_SECURE:
            raise InvalidStateTransitionError(
                f"Payment is {payment.status}; it is not awaiting verification"
            )
        transition_payment(
            payment,
            PaymentStatus.VERIFYING,
            status_token=status_token,
            verification_started_at=timezone.now(),
        )

    gateway = gateway or get_payment_gateway()
    try:
        result = gateway.verify(
            payment_id=payment.id,
            reference=payment.gateway_reference,
            status_token=status_token,
        )
    except GatewayUnavailableError:
        fail_payment(payment.id, 'gateway_unavailable', 'Payment provider unavailable during verification')
        raise

    payment = apply_verification(payment.id, result)
    if payment.status == PaymentStatus.FAILED:
        raise PaymentVerificationFailedError(payment.failure_reason or "Payment could not be verified")
    if payment.status != PaymentStatus.SUCCEEDED:
        raise InvalidStateTransitionError(f"Payment is {payment.status}")
    return payment


# =============================================================================
# Queries
# =============================================================================

def get_payment(*, payment_id: UUID, acting_user: User) -> Payment:
    """
    Return a payment visible to the user: the payer or the offer's provider.

    Raises:
        PaymentNotFoundError: If payment doesn't exist or is not visible
    """
    try:
        payment = Payment.objects.select_related('offer', 'payer').get(id=payment_id)
    except (Payment.DoesNotExist, ValueError, ValidationError):
        raise PaymentNotFoundError(f"Payment with ID {payment_id} not found")

    if acting_user.id not in (payment.payer_id, payment.offer.provider_id):
        raise PaymentNotFoundError(f"Payment with ID {payment_id} not found")
    return payment


def list_payments_for_user(*, user: User, offer_id: Optional[UUID] = None) -> QuerySet:
    """Payments the user made or received."""
    queryset = (
        Payment.objects
        .filter(Q(payer=user) | Q(offer__provider=user))
        .select_related('offer', 'payer')
    )
    if offer_id:
        queryset = queryset.filter(offer_id=offer_id)
    return queryset
