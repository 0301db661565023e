"""
Needs app services layer.

The transaction coordinator for needs and offers. All state-changing
operations run in a transaction with the need row locked.
"""

from apps.needs.exceptions import (
    MarketplaceError,
    NotAuthorizedError,
    InvalidStateTransitionError,
    NeedNotAcceptingOffersError,
    SelfOfferNotAllowedError,
    DomainValidationError,
    NeedNotFoundError,
    OfferNotFoundError,
    CategoryNotFoundError,
)

from .need_management import (
    create_need,
    update_need,
    cancel_need,
    complete_need,
    record_payment_received,
    get_need,
    list_needs,
    require_transacting_user,
)

from .offer_management import (
    submit_offer,
    update_offer,
    withdraw_offer,
    accept_offer,
    reject_offer,
    get_offer,
    list_offers_for_need,
    list_offers_by_provider,
    get_offer_stats,
)

from .expiry import (
    expire_needs,
    find_expired_needs,
)


__all__ = [
    # Exceptions
    'MarketplaceError',
    'NotAuthorizedError',
    'InvalidStateTransitionError',
    'NeedNotAcceptingOffersError',
    'SelfOfferNotAllowedError',
    'DomainValidationError',
    'NeedNotFoundError',
    'OfferNotFoundError',
    'CategoryNotFoundError',

    # Need Management
    'create_need',
    'update_need',
    'cancel_need',
    'complete_need',
    'record_payment_received',
    'get_need',
    'list_needs',
    'require_transacting_user',

    # Offer Management
    'submit_offer',
    'update_offer',
    'withdraw_offer',
    'accept_offer',
    'reject_offer',
    'get_offer',
    'list_offers_for_need',
    'list_offers_by_provider',
    'get_offer_stats',

    # Expiry
    'expire_needs',
    'find_expired_needs',
]
