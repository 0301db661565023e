"""
Domain events for the marketplace lifecycle.

Services publish events with ``emit()``. Events are delivered through the
``domain_event`` signal only after the surrounding database transaction
commits, so receivers never observe state that was rolled back.

Delivery to users (push, email, in-app) is handled by receivers outside
this project; the bundled receiver only logs.
"""

import logging
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Optional
from uuid import UUID

from django.db import transaction
from django.dispatch import Signal

logger = logging.getLogger(__name__)

# Sent with ``event=<DomainEvent instance>``.
domain_event = Signal()


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all lifecycle events."""

    @property
    def name(self) -> str:
        return type(self).__name__

    def as_dict(self) -> dict:
        payload = {}
        for key, value in asdict(self).items():
            if isinstance(value, (UUID, Decimal)):
                value = str(value)
            payload[key] = value
        return payload


@dataclass(frozen=True)
class OfferSubmitted(DomainEvent):
    need_id: UUID
    offer_id: UUID
    provider_id: UUID
    recipient_id: UUID


@dataclass(frozen=True)
class OfferAccepted(DomainEvent):
    need_id: UUID
    offer_id: UUID
    recipient_id: UUID


@dataclass(frozen=True)
class OfferRejected(DomainEvent):
    need_id: UUID
    offer_id: UUID
    recipient_id: UUID
    reason: str = ''


@dataclass(frozen=True)
class OfferWithdrawn(DomainEvent):
    need_id: UUID
    offer_id: UUID
    recipient_id: UUID


@dataclass(frozen=True)
class NeedStatusChanged(DomainEvent):
    need_id: UUID
    old_status: Optional[str]
    new_status: str
    recipient_id: UUID


@dataclass(frozen=True)
class PaymentSucceeded(DomainEvent):
    payment_id: UUID
    offer_id: UUID
    amount: Decimal
    currency: str
    recipient_id: UUID


@dataclass(frozen=True)
class PaymentFailed(DomainEvent):
    payment_id: UUID
    offer_id: UUID
    reason: str
    recipient_id: UUID


def _send(event: DomainEvent) -> None:
    responses = domain_event.send_robust(sender=type(event), event=event)
    for receiver, response in responses:
        if isinstance(response, Exception):
            logger.error(
                "Receiver %s failed for %s: %s",
                getattr(receiver, '__qualname__', receiver),
                event.name,
                response,
            )


def emit(event: DomainEvent) -> None:
    """
    Publish an event once the current transaction commits.

    Outside of an atomic block the event is sent immediately.
    """
    transaction.on_commit(lambda: _send(event))
