"""
Domain exceptions for the marketplace lifecycle.

These exceptions represent business rule violations. They are raised by
the service layer before any state is changed and converted to HTTP
responses in views. Each carries a stable ``code`` clients use to pick a
localized message, and the HTTP status views respond with.
"""


class MarketplaceError(Exception):
    """Base exception for all marketplace service errors."""
    code = 'marketplace_error'
    status_code = 400


class NotAuthorizedError(MarketplaceError):
    """Raised when the acting user may not perform the operation."""
    code = 'not_authorized'
    status_code = 403


class InvalidStateTransitionError(MarketplaceError):
    """Raised when an entity's status does not allow the operation."""
    code = 'invalid_state_transition'
    status_code = 409


class NeedNotAcceptingOffersError(MarketplaceError):
    """Raised when an offer is submitted to a need that is not active."""
    code = 'need_not_accepting_offers'


class SelfOfferNotAllowedError(MarketplaceError):
    """Raised when a need owner tries to make an offer on their own need."""
    code = 'self_offer_not_allowed'


class DomainValidationError(MarketplaceError):
    """Raised for malformed prices, delivery days, budgets or texts."""
    code = 'validation_error'

    def __init__(self, message, field=None):
        super().__init__(message)
        self.field = field


class NeedNotFoundError(MarketplaceError):
    """Raised when a need does not exist."""
    code = 'need_not_found'
    status_code = 404


class OfferNotFoundError(MarketplaceError):
    """Raised when an offer does not exist."""
    code = 'offer_not_found'
    status_code = 404


class CategoryNotFoundError(MarketplaceError):
    """Raised when a category does not exist or is inactive."""
    code = 'category_not_found'
    status_code = 404
