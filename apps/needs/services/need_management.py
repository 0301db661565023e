"""
Need management service.

Handles the need side of the lifecycle: creation, edits, cancellation,
completion and the payment hand-off from the payments app. Every write
locks the need row so that it is serialized with offer operations on the
same need.
"""

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional
from uuid import UUID

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Q, QuerySet
from django.utils import timezone

from apps.accounts.models import User
from apps.needs.exceptions import (
    CategoryNotFoundError,
    DomainValidationError,
    InvalidStateTransitionError,
    NeedNotFoundError,
    NotAuthorizedError,
    OfferNotFoundError,
)
from apps.needs.models import Category, Need, NeedStatus, Offer, OfferStatus, Urgency
from apps.notifications.events import NeedStatusChanged, emit

logger = logging.getLogger(__name__)

MAX_BUDGET = Decimal('1000000')
# Largest value a DecimalField(max_digits=12, decimal_places=2) column holds
MAX_AMOUNT = Decimal('9999999999.99')
EDITABLE_FIELDS = (
    'title', 'description', 'category_id', 'min_budget', 'max_budget',
    'address', 'urgency', 'expires_at',
)


# =============================================================================
# Guards and validation
# =============================================================================

def require_transacting_user(user: User) -> None:
    """
    Reject guests and inactive accounts for state-changing operations.

    Raises:
        NotAuthorizedError: If the user may only browse
    """
    if user is None or not getattr(user, 'is_authenticated', False):
        raise NotAuthorizedError("Authentication required")
    if not user.can_transact:
        raise NotAuthorizedError("Guest accounts cannot perform this action")


def to_money(value, field: str, allow_zero: bool = False) -> Decimal:
    """Convert input to a two-place Decimal, raising DomainValidationError."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise DomainValidationError(f"{field} must be a number", field=field)

    if not amount.is_finite():
        raise DomainValidationError(f"{field} must be a number", field=field)
    if amount.as_tuple().exponent < -2:
        raise DomainValidationError(f"{field} cannot have more than 2 decimal places", field=field)
    if amount < 0 or (amount == 0 and not allow_zero):
        raise DomainValidationError(f"{field} must be greater than zero", field=field)
    if amount > MAX_AMOUNT:
        raise DomainValidationError(f"{field} cannot exceed {MAX_AMOUNT}", field=field)
    return amount.quantize(Decimal('0.01'))


def validate_currency(currency: str) -> str:
    code = (currency or '').upper()
    if code not in settings.MARKETPLACE['SUPPORTED_CURRENCIES']:
        raise DomainValidationError(f"Unsupported currency: {currency}", field='currency')
    return code


def _validate_text(value: str, field: str, min_length: int, max_length: int) -> str:
    value = (value or '').strip()
    if not min_length <= len(value) <= max_length:
        raise DomainValidationError(
            f"{field} must be between {min_length} and {max_length} characters",
            field=field
        )
    return value


def _validate_budget(min_budget, max_budget):
    if min_budget is not None:
        min_budget = to_money(min_budget, 'min_budget', allow_zero=True)
    if max_budget is not None:
        max_budget = to_money(max_budget, 'max_budget', allow_zero=True)

    for field, amount in (('min_budget', min_budget), ('max_budget', max_budget)):
        if amount is not None and amount > MAX_BUDGET:
            raise DomainValidationError(f"{field} cannot exceed {MAX_BUDGET}", field=field)

    if min_budget is not None and max_budget is not None and min_budget >= max_budget:
        raise DomainValidationError(
            "Minimum budget must be lower than maximum budget",
            field='min_budget'
        )
    return min_budget, max_budget


def _validate_expiry(expires_at: Optional[datetime]) -> Optional[datetime]:
    if expires_at is not None and expires_at <= timezone.now():
        raise DomainValidationError("Expiry must be in the future", field='expires_at')
    return expires_at


def _get_active_category(category_id) -> Category:
    try:
        return Category.objects.get(id=category_id, is_active=True)
    except (Category.DoesNotExist, ValueError, ValidationError):
        raise CategoryNotFoundError(f"Category with ID {category_id} not found")


def lock_need(need_id: UUID) -> Need:
    """Fetch a need with a row lock. Must be called inside a transaction."""
    try:
        return Need.objects.select_for_update().get(id=need_id)
    except (Need.DoesNotExist, ValueError, ValidationError):
        raise NeedNotFoundError(f"Need with ID {need_id} not found")


def change_need_status(need: Need, new_status: str, acting_user_id=None) -> None:
    """
    Move a locked need to ``new_status`` with a compare-and-swap update.

    The update only applies while the row still has the status read under
    the lock; a concurrent writer that got there first surfaces as
    InvalidStateTransitionError.
    """
    need.ensure_can_transition_to(new_status)
    old_status = need.status
    now = timezone.now()
    changes = {'status': new_status, 'updated_at': now}
    if new_status in Need.TERMINAL_STATUSES:
        changes['closed_at'] = now

    updated = Need.objects.filter(id=need.id, status=old_status).update(**changes)
    if updated != 1:
        raise InvalidStateTransitionError(
            f"Need {need.id} changed concurrently; expected {old_status}"
        )

    for key, value in changes.items():
        setattr(need, key, value)

    logger.info(
        "Need %s: %s -> %s (by %s)", need.id, old_status, new_status, acting_user_id or 'system'
    )
    emit(NeedStatusChanged(
        need_id=need.id,
        old_status=old_status,
        new_status=new_status,
        recipient_id=need.owner_id,
    ))


# =============================================================================
# Need operations
# =============================================================================

@transaction.atomic
def create_need(
    *,
    owner: User,
    title: str,
    description: str,
    category_id: UUID,
    min_budget=None,
    max_budget=None,
    currency: Optional[str] = None,
    address: str = '',
    urgency: str = Urgency.NORMAL,
    expires_at: Optional[datetime] = None,
) -> Need:
    """
    Post a new need.

    Args:
        owner: User posting the need
        title: Short summary (5-200 characters)
        description: Details (10-2000 characters)
        category_id: UUID of an active category
        min_budget: Optional lower bound of the budget
        max_budget: Optional upper bound of the budget
        currency: ISO currency code (defaults to the marketplace currency)
        address: Optional location text
        urgency: flexible, normal or urgent
        expires_at: Optional time after which the need stops taking offers

    Returns:
        Created Need in active status

    Raises:
        NotAuthorizedError: If the owner is a guest
        DomainValidationError: If any field is invalid
        CategoryNotFoundError: If the category is missing or inactive
    """
    require_transacting_user(owner)

    title = _validate_text(title, 'title', 5, 200)
    description = _validate_text(description, 'description', 10, 2000)
    min_budget, max_budget = _validate_budget(min_budget, max_budget)
    currency = validate_currency(currency or settings.MARKETPLACE['DEFAULT_CURRENCY'])
    if urgency not in Urgency.values:
        raise DomainValidationError(f"Invalid urgency: {urgency}", field='urgency')
    if len(address or '') > 500:
        raise DomainValidationError("Address is too long", field='address')
    expires_at = _validate_expiry(expires_at)
    category = _get_active_category(category_id)

    need = Need.objects.create(
        owner=owner,
        category=category,
        title=title,
        description=description,
        min_budget=min_budget,
        max_budget=max_budget,
        currency=currency,
        address=address or '',
        urgency=urgency,
        expires_at=expires_at,
    )

    logger.info("Need %s created by %s", need.id, owner.id)
    emit(NeedStatusChanged(
        need_id=need.id,
        old_status=None,
        new_status=need.status,
        recipient_id=owner.id,
    ))
    return need


@transaction.atomic
def update_need(*, need_id: UUID, acting_user: User, **fields) -> Need:
    """
    Edit an active need. Only the owner may edit; status is never changed here.

    Raises:
        NeedNotFoundError: If need doesn't exist
        NotAuthorizedError: If user is not the owner
        InvalidStateTransitionError: If the need is no longer active
        DomainValidationError: If a field is invalid or not editable
    """
    require_transacting_user(acting_user)
    need = lock_need(need_id)

    if need.owner_id != acting_user.id:
        raise NotAuthorizedError("Only the owner can edit this need")
    if need.status != NeedStatus.ACTIVE:
        raise InvalidStateTransitionError("Only active needs can be edited")

    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise DomainValidationError(
            f"Fields cannot be edited: {', '.join(sorted(unknown))}",
            field=sorted(unknown)[0]
        )

    if 'title' in fields:
        need.title = _validate_text(fields['title'], 'title', 5, 200)
    if 'description' in fields:
        need.description = _validate_text(fields['description'], 'description', 10, 2000)
    if 'min_budget' in fields or 'max_budget' in fields:
        need.min_budget, need.max_budget = _validate_budget(
            fields.get('min_budget', need.min_budget),
            fields.get('max_budget', need.max_budget),
        )
    if 'category_id' in fields:
        need.category = _get_active_category(fields['category_id'])
    if 'urgency' in fields:
        if fields['urgency'] not in Urgency.values:
            raise DomainValidationError(f"Invalid urgency: {fields['urgency']}", field='urgency')
        need.urgency = fields['urgency']
    if 'address' in fields:
        if len(fields['address'] or '') > 500:
            raise DomainValidationError("Address is too long", field='address')
        need.address = fields['address'] or ''
    if 'expires_at' in fields:
        need.expires_at = _validate_expiry(fields['expires_at'])

    need.save()
    return need


@transaction.atomic
def cancel_need(*, need_id: UUID, acting_user: User) -> Need:
    """
    Cancel a need.

    An active need may be cancelled by its owner. A need in progress may be
    cancelled by the owner or by the provider whose offer was accepted.
    Pending offers are left untouched; they can no longer be accepted.

    Raises:
        NeedNotFoundError: If need doesn't exist
        NotAuthorizedError: If user may not cancel
        InvalidStateTransitionError: If the need is already closed
    """
    require_transacting_user(acting_user)
    need = lock_need(need_id)

    if need.status == NeedStatus.IN_PROGRESS:
        allowed = {need.owner_id}
        accepted = need.offers.filter(status=OfferStatus.ACCEPTED).values_list('provider_id', flat=True)
        allowed.update(accepted)
    else:
        allowed = {need.owner_id}

    if acting_user.id not in allowed:
        raise NotAuthorizedError("You cannot cancel this need")

    change_need_status(need, NeedStatus.CANCELLED, acting_user.id)
    return need


@transaction.atomic
def complete_need(*, need_id: UUID, acting_user: User) -> Need:
    """
    Owner confirms the work was delivered.

    Requires the need to be in progress with a successful payment recorded.

    Raises:
        NeedNotFoundError: If need doesn't exist
        NotAuthorizedError: If user is not the owner
        InvalidStateTransitionError: If not in progress or not paid
    """
    require_transacting_user(acting_user)
    need = lock_need(need_id)

    if need.owner_id != acting_user.id:
        raise NotAuthorizedError("Only the owner can complete this need")
    if need.status == NeedStatus.IN_PROGRESS and need.payment_received_at is None:
        raise InvalidStateTransitionError("Need cannot be completed before payment succeeds")

    change_need_status(need, NeedStatus.COMPLETED, acting_user.id)
    return need


@transaction.atomic
def record_payment_received(*, offer_id: UUID) -> Need:
    """
    Mark the need of an accepted offer as paid.

    Called by the payments app once a payment has been verified. The need
    stays in progress until the owner completes it.

    Raises:
        OfferNotFoundError: If offer doesn't exist
        InvalidStateTransitionError: If the offer is not the accepted one
            of an in-progress need
    """
    try:
        need_id = Offer.objects.values_list('need_id', flat=True).get(id=offer_id)
    except (Offer.DoesNotExist, ValueError, ValidationError):
        raise OfferNotFoundError(f"Offer with ID {offer_id} not found")

    need = lock_need(need_id)
    offer = Offer.objects.get(id=offer_id)

    if offer.status != OfferStatus.ACCEPTED or need.status != NeedStatus.IN_PROGRESS:
        raise InvalidStateTransitionError(
            f"Payment cannot be recorded for offer {offer_id} in status {offer.status}"
        )

    if need.payment_received_at is None:
        need.payment_received_at = timezone.now()
        need.save(update_fields=['payment_received_at', 'updated_at'])
        logger.info("Need %s paid via offer %s", need.id, offer_id)
    return need


# =============================================================================
# Queries
# =============================================================================

def get_need(*, need_id: UUID) -> Need:
    """
    Raises:
        NeedNotFoundError: If need doesn't exist
    """
    try:
        return Need.objects.select_related('owner', 'category').get(id=need_id)
    except (Need.DoesNotExist, ValueError, ValidationError):
        raise NeedNotFoundError(f"Need with ID {need_id} not found")


def list_needs(
    *,
    status: Optional[str] = None,
    category_id: Optional[UUID] = None,
    owner: Optional[User] = None,
    search: Optional[str] = None,
) -> QuerySet:
    """Needs filtered by status, category, owner and a title/description search."""
    queryset = Need.objects.select_related('owner', 'category')

    if status:
        queryset = queryset.filter(status=status)
    if category_id:
        queryset = queryset.filter(category_id=category_id)
    if owner is not None:
        queryset = queryset.filter(owner=owner)
    if search:
        queryset = queryset.filter(Q(title__icontains=search) | Q(description__icontains=search))

    return queryset
