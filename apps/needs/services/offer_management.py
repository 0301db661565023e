"""
Offer management service.

Handles submission, edits, withdrawal and the buyer's accept/reject
decisions. All writes lock the parent need first, so every decision on
one need is applied one at a time while different needs proceed in
parallel.
"""

import logging
from typing import Optional
from uuid import UUID

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import Avg, Count, Min, QuerySet
from django.utils import timezone

from apps.accounts.models import User
from apps.needs.exceptions import (
    DomainValidationError,
    InvalidStateTransitionError,
    NeedNotAcceptingOffersError,
    NotAuthorizedError,
    OfferNotFoundError,
    SelfOfferNotAllowedError,
)
from apps.needs.models import Need, NeedStatus, Offer, OfferStatus
from apps.notifications.events import (
    OfferAccepted,
    OfferRejected,
    OfferSubmitted,
    OfferWithdrawn,
    emit,
)

from .need_management import (
    change_need_status,
    get_need,
    lock_need,
    require_transacting_user,
    to_money,
    validate_currency,
)

logger = logging.getLogger(__name__)


def _validate_delivery_days(delivery_days) -> int:
    if isinstance(delivery_days, bool):
        raise DomainValidationError("Delivery days must be a whole number", field='delivery_days')
    try:
        days = int(delivery_days)
    except (TypeError, ValueError):
        raise DomainValidationError("Delivery days must be a whole number", field='delivery_days')
    if days != delivery_days and str(days) != str(delivery_days):
        raise DomainValidationError("Delivery days must be a whole number", field='delivery_days')
    if not 1 <= days <= 365:
        raise DomainValidationError(
            "Delivery days must be between 1 and 365",
            field='delivery_days'
        )
    return days


def _validate_description(description: str) -> str:
    description = (description or '').strip()
    if not 10 <= len(description) <= 2000:
        raise DomainValidationError(
            "Description must be between 10 and 2000 characters",
            field='description'
        )
    return description


def _check_price_within_budget(need: Need, price) -> None:
    if need.min_budget is not None and price < need.min_budget:
        raise DomainValidationError(
            f"Price must be at least {need.min_budget} {need.currency}",
            field='price'
        )
    if need.max_budget is not None and price > need.max_budget:
        raise DomainValidationError(
            f"Price cannot exceed {need.max_budget} {need.currency}",
            field='price'
        )


def _lock_offer(offer_id: UUID) -> Offer:
    try:
        return Offer.objects.select_for_update().get(id=offer_id)
    except (Offer.DoesNotExist, ValueError, ValidationError):
        raise OfferNotFoundError(f"Offer with ID {offer_id} not found")


def _need_id_for_offer(offer_id: UUID) -> UUID:
    try:
        return Offer.objects.values_list('need_id', flat=True).get(id=offer_id)
    except (Offer.DoesNotExist, ValueError, ValidationError):
        raise OfferNotFoundError(f"Offer with ID {offer_id} not found")


def _resolve_offer(offer: Offer, new_status: str, **fields) -> None:
    """Compare-and-swap a pending offer into a terminal status and set ``fields``."""
    offer.ensure_can_transition_to(new_status)
    now = timezone.now()
    updated = (
        Offer.objects
        .filter(id=offer.id, status=OfferStatus.PENDING)
        .update(status=new_status, resolved_at=now, updated_at=now, **fields)
    )
    if updated != 1:
        raise InvalidStateTransitionError(f"Offer {offer.id} is no longer pending")
    offer.status = new_status
    offer.resolved_at = now
    offer.updated_at = now
    for name, value in fields.items():
        setattr(offer, name, value)


def _load_decision(need_id: UUID, offer_id: UUID, acting_user: User):
    """Lock the need and offer for an owner decision and run the shared checks."""
    require_transacting_user(acting_user)
    need = lock_need(need_id)

    if need.owner_id != acting_user.id:
        raise NotAuthorizedError("Only the owner of the need can decide on offers")

    offer = _lock_offer(offer_id)
    if offer.need_id != need.id:
        raise InvalidStateTransitionError(f"Offer {offer_id} does not belong to need {need_id}")
    if need.status != NeedStatus.ACTIVE:
        raise InvalidStateTransitionError(f"Need is {need.status}, not accepting decisions")
    if offer.status != OfferStatus.PENDING:
        raise InvalidStateTransitionError(f"Offer is already {offer.status}")

    return need, offer


# =============================================================================
# Provider operations
# =============================================================================

@transaction.atomic
def submit_offer(
    *,
    need_id: UUID,
    provider: User,
    price,
    description: str,
    delivery_days: int,
    currency: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> Offer:
    """
    Submit an offer on an active need.

    A repeated call with the same ``idempotency_key`` from the same provider
    returns the offer created by the first call.

    Args:
        need_id: UUID of the need
        provider: User making the offer
        price: Offered price, greater than zero
        description: Offer details (10-2000 characters)
        delivery_days: Days to deliver (1-365)
        currency: Must match the need's currency when given
        idempotency_key: Optional client key for safe retries

    Returns:
        The pending Offer

    Raises:
        NotAuthorizedError: If provider is a guest
        NeedNotFoundError: If need doesn't exist
        DomainValidationError: If price, delivery days, description or currency
            are invalid, or the provider already has a pending offer
        NeedNotAcceptingOffersError: If need is not active or has expired
        SelfOfferNotAllowedError: If provider owns the need
    """
    require_transacting_user(provider)

    price = to_money(price, 'price')
    delivery_days = _validate_delivery_days(delivery_days)
    description = _validate_description(description)
    idempotency_key = (idempotency_key or '').strip()
    if len(idempotency_key) > 64:
        raise DomainValidationError("Idempotency key is too long", field='idempotency_key')

    need = lock_need(need_id)

    if idempotency_key:
        existing = Offer.objects.filter(
            provider=provider, need=need, idempotency_key=idempotency_key
        ).first()
        if existing is not None:
            return existing

    if not need.is_accepting_offers:
        raise NeedNotAcceptingOffersError(f"Need is {need.status} and not accepting offers")
    if need.owner_id == provider.id:
        raise SelfOfferNotAllowedError("You cannot make an offer on your own need")

    if currency is not None and validate_currency(currency) != need.currency:
        raise DomainValidationError(
            f"Offer currency must be {need.currency}",
            field='currency'
        )
    _check_price_within_budget(need, price)

    limit = settings.MARKETPLACE['MAX_PENDING_OFFERS_PER_PROVIDER']
    if need.offers.filter(provider=provider, status=OfferStatus.PENDING).count() >= limit:
        raise DomainValidationError(
            "You already have a pending offer on this need",
            field='need'
        )

    try:
        with transaction.atomic():
            offer = Offer.objects.create(
                need=need,
                provider=provider,
                price=price,
                currency=need.currency,
                description=description,
                delivery_days=delivery_days,
                idempotency_key=idempotency_key,
            )
    except IntegrityError:
        # Same key committed by a concurrent retry
        if not idempotency_key:
            raise
        existing = Offer.objects.filter(
            provider=provider, need=need, idempotency_key=idempotency_key
        ).first()
        if existing is None:
            raise
        return existing

    logger.info("Offer %s submitted on need %s by %s", offer.id, need.id, provider.id)
    emit(OfferSubmitted(
        need_id=need.id,
        offer_id=offer.id,
        provider_id=provider.id,
        recipient_id=need.owner_id,
    ))
    return offer


@transaction.atomic
def update_offer(
    *,
    offer_id: UUID,
    acting_user: User,
    price=None,
    description: Optional[str] = None,
    delivery_days: Optional[int] = None,
) -> Offer:
    """
    Revise a pending offer. Only the provider may do this.

    Raises:
        OfferNotFoundError: If offer doesn't exist
        NotAuthorizedError: If user is not the provider
        InvalidStateTransitionError: If the offer is not pending
        NeedNotAcceptingOffersError: If the need stopped taking offers
        DomainValidationError: If a field is invalid
    """
    require_transacting_user(acting_user)
    need = lock_need(_need_id_for_offer(offer_id))
    offer = _lock_offer(offer_id)

    if offer.provider_id != acting_user.id:
        raise NotAuthorizedError("Only the provider can edit this offer")
    if offer.status != OfferStatus.PENDING:
        raise InvalidStateTransitionError(f"Offer is already {offer.status}")
    if not need.is_accepting_offers:
        raise NeedNotAcceptingOffersError(f"Need is {need.status} and not accepting offers")

    update_fields = ['updated_at']
    if price is not None:
        offer.price = to_money(price, 'price')
        _check_price_within_budget(need, offer.price)
        update_fields.append('price')
    if description is not None:
        offer.description = _validate_description(description)
        update_fields.append('description')
    if delivery_days is not None:
        offer.delivery_days = _validate_delivery_days(delivery_days)
        update_fields.append('delivery_days')

    offer.save(update_fields=update_fields)
    return offer


@transaction.atomic
def withdraw_offer(*, offer_id: UUID, acting_user: User) -> Offer:
    """
    Withdraw a pending offer. Only the provider may do this.

    Raises:
        OfferNotFoundError: If offer doesn't exist
        NotAuthorizedError: If user is not the provider
        InvalidStateTransitionError: If the offer is not pending
    """
    require_transacting_user(acting_user)
    need = lock_need(_need_id_for_offer(offer_id))
    offer = _lock_offer(offer_id)

    if offer.provider_id != acting_user.id:
        raise NotAuthorizedError("Only the provider can withdraw this offer")

    _resolve_offer(offer, OfferStatus.WITHDRAWN)

    logger.info("Offer %s withdrawn by %s", offer.id, acting_user.id)
    emit(OfferWithdrawn(need_id=need.id, offer_id=offer.id, recipient_id=need.owner_id))
    return offer


# =============================================================================
# Owner decisions
# =============================================================================

@transaction.atomic
def accept_offer(*, need_id: UUID, offer_id: UUID, acting_user: User) -> Offer:
    """
    Accept one offer and reject every other pending offer on the need.

    The accepted offer, the cascaded rejections and the need's move to
    in_progress are written in one transaction while the need row is
    locked. A concurrent accept on the same need waits for the lock and
    then fails because the need is no longer active. The partial unique
    constraint on accepted offers backs this up at the database level.

    Args:
        need_id: UUID of the need
        offer_id: UUID of the offer to accept
        acting_user: Must be the need owner

    Returns:
        The accepted Offer

    Raises:
        NeedNotFoundError: If need doesn't exist
        OfferNotFoundError: If offer doesn't exist
        NotAuthorizedError: If user is not the need owner
        InvalidStateTransitionError: If the need is not active, the offer is
            not pending or belongs to another need, or another accept won
    """
    need, offer = _load_decision(need_id, offer_id, acting_user)

    change_need_status(need, NeedStatus.IN_PROGRESS, acting_user.id)

    now = timezone.now()
    siblings = (
        Offer.objects
        .filter(need_id=need.id, status=OfferStatus.PENDING)
        .exclude(id=offer.id)
    )
    rejected = list(siblings.values_list('id', 'provider_id'))
    Offer.objects.filter(id__in=[pk for pk, _ in rejected]).update(
        status=OfferStatus.REJECTED,
        resolved_at=now,
        updated_at=now,
    )

    try:
        with transaction.atomic():
            _resolve_offer(offer, OfferStatus.ACCEPTED)
    except IntegrityError:
        raise InvalidStateTransitionError(f"Need {need.id} already has an accepted offer")

    logger.info(
        "Offer %s accepted on need %s; %d other offer(s) rejected",
        offer.id, need.id, len(rejected)
    )
    emit(OfferAccepted(need_id=need.id, offer_id=offer.id, recipient_id=offer.provider_id))
    for rejected_id, provider_id in rejected:
        emit(OfferRejected(need_id=need.id, offer_id=rejected_id, recipient_id=provider_id))

    return offer


@transaction.atomic
def reject_offer(
    *,
    need_id: UUID,
    offer_id: UUID,
    acting_user: User,
    reason: Optional[str] = None
) -> Offer:
    """
    Reject a single pending offer. Other offers are not affected.

    The optional reason is stored on the offer and passed to the provider.

    Raises:
        NeedNotFoundError: If need doesn't exist
        OfferNotFoundError: If offer doesn't exist
        NotAuthorizedError: If user is not the need owner
        DomainValidationError: If the reason is longer than 500 characters
        InvalidStateTransitionError: If the offer is no longer pending or the
            need is not active
    """
    reason = (reason or '').strip()
    if len(reason) > 500:
        raise DomainValidationError("Rejection reason is too long", field='reason')

    need, offer = _load_decision(need_id, offer_id, acting_user)

    _resolve_offer(offer, OfferStatus.REJECTED, rejection_reason=reason)

    logger.info("Offer %s rejected on need %s", offer.id, need.id)
    emit(OfferRejected(
        need_id=need.id,
        offer_id=offer.id,
        recipient_id=offer.provider_id,
        reason=reason,
    ))
    return offer


# =============================================================================
# Queries
# =============================================================================

def get_offer(*, offer_id: UUID, acting_user: User) -> Offer:
    """
    Return an offer visible to the user: its provider or the need owner.

    Raises:
        OfferNotFoundError: If offer doesn't exist or is not visible
    """
    try:
        offer = Offer.objects.select_related('need', 'provider').get(id=offer_id)
    except (Offer.DoesNotExist, ValueError, ValidationError):
        raise OfferNotFoundError(f"Offer with ID {offer_id} not found")

    if acting_user.id not in (offer.provider_id, offer.need.owner_id):
        raise OfferNotFoundError(f"Offer with ID {offer_id} not found")
    return offer


def list_offers_for_need(*, need_id: UUID, acting_user: User) -> QuerySet:
    """
    Offers on a need. The owner sees all of them, anyone else only their own.

    Raises:
        NeedNotFoundError: If need doesn't exist
    """
    need = get_need(need_id=need_id)
    queryset = Offer.objects.filter(need=need).select_related('provider')
    if need.owner_id != acting_user.id:
        queryset = queryset.filter(provider_id=acting_user.id)
    return queryset.order_by('price', 'created_at')


def list_offers_by_provider(*, provider: User, status: Optional[str] = None) -> QuerySet:
    queryset = Offer.objects.filter(provider=provider).select_related('need')
    if status:
        queryset = queryset.filter(status=status)
    return queryset


def get_offer_stats(*, need_id: UUID, acting_user: User) -> dict:
    """
    Summary of offers on a need for its owner.

    Returns:
        Dict with total, per-status counts, lowest and average price and
        average delivery days of pending offers

    Raises:
        NeedNotFoundError: If need doesn't exist
        NotAuthorizedError: If user is not the owner
    """
    need = get_need(need_id=need_id)
    if need.owner_id != acting_user.id:
        raise NotAuthorizedError("Only the owner can view offer statistics")

    offers = Offer.objects.filter(need=need)
    counts = {row['status']: row['total'] for row in offers.values('status').annotate(total=Count('id'))}
    pending = offers.filter(status=OfferStatus.PENDING).aggregate(
        lowest_price=Min('price'),
        average_price=Avg('price'),
        average_delivery_days=Avg('delivery_days'),
    )

    return {
        'total': sum(counts.values()),
        'pending': counts.get(OfferStatus.PENDING, 0),
        'accepted': counts.get(OfferStatus.ACCEPTED, 0),
        'rejected': counts.get(OfferStatus.REJECTED, 0),
        'withdrawn': counts.get(OfferStatus.WITHDRAWN, 0),
        'lowest_price': pending['lowest_price'],
        'average_price': pending['average_price'],
        'average_delivery_days': pending['average_delivery_days'],
    }
