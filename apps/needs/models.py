from django.conf import settings
from django.core.validators import MaxValueValidator, MinLengthValidator, MinValueValidator
from django.db import models
from django.utils import timezone
from decimal import Decimal
import uuid

from .exceptions import InvalidStateTransitionError


def default_currency():
    return settings.MARKETPLACE['DEFAULT_CURRENCY']


class Category(models.Model):
    """Category a need is filed under. Categories may be nested one level."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100, unique=True)
    slug = models.SlugField(max_length=100, unique=True)
    description = models.CharField(max_length=500, blank=True)
    parent = models.ForeignKey(
        'self',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='subcategories'
    )
    is_active = models.BooleanField(default=True)
    sort_order = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'categories'
        verbose_name_plural = 'categories'
        ordering = ['sort_order', 'name']

    def __str__(self):
        return self.name


class NeedStatus(models.TextChoices):
    ACTIVE = 'active', 'Active'
    IN_PROGRESS = 'in_progress', 'In progress'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'
    EXPIRED = 'expired', 'Expired'


class Urgency(models.TextChoices):
    FLEXIBLE = 'flexible', 'Flexible'
    NORMAL = 'normal', 'Normal'
    URGENT = 'urgent', 'Urgent'


class Need(models.Model):
    """A buyer's request for goods or services, open to offers while active."""

    TRANSITIONS = {
        NeedStatus.ACTIVE: {NeedStatus.IN_PROGRESS, NeedStatus.EXPIRED, NeedStatus.CANCELLED},
        NeedStatus.IN_PROGRESS: {NeedStatus.COMPLETED, NeedStatus.CANCELLED},
        NeedStatus.COMPLETED: set(),
        NeedStatus.CANCELLED: set(),
        NeedStatus.EXPIRED: set(),
    }

    TERMINAL_STATUSES = (NeedStatus.COMPLETED, NeedStatus.CANCELLED, NeedStatus.EXPIRED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='needs'
    )
    category = models.ForeignKey(
        Category,
        on_delete=models.PROTECT,
        related_name='needs'
    )

    title = models.CharField(max_length=200, validators=[MinLengthValidator(5)])
    description = models.TextField(
        max_length=2000,
        validators=[MinLengthValidator(10)]
    )

    # Budget (both optional)
    min_budget = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(Decimal('0'))]
    )
    max_budget = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(Decimal('0'))]
    )
    currency = models.CharField(max_length=3, default=default_currency)

    address = models.CharField(max_length=500, blank=True)
    urgency = models.CharField(
        max_length=20,
        choices=Urgency.choices,
        default=Urgency.NORMAL
    )

    status = models.CharField(
        max_length=20,
        choices=NeedStatus.choices,
        default=NeedStatus.ACTIVE,
        db_index=True
    )

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    expires_at = models.DateTimeField(null=True, blank=True)
    payment_received_at = models.DateTimeField(null=True, blank=True)
    closed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'needs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'expires_at'], name='needs_status_expiry_idx'),
            models.Index(fields=['owner', 'status'], name='needs_owner_status_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    models.Q(min_budget__isnull=True)
                    | models.Q(max_budget__isnull=True)
                    | models.Q(min_budget__lt=models.F('max_budget'))
                ),
                name='need_min_budget_below_max',
            ),
        ]

    def __str__(self):
        return f"{self.title} ({self.status})"

    @property
    def is_accepting_offers(self):
        """Active and not past its expiry time."""
        if self.status != NeedStatus.ACTIVE:
            return False
        return self.expires_at is None or self.expires_at > timezone.now()

    def can_transition_to(self, new_status):
        return new_status in self.TRANSITIONS.get(self.status, set())

    def ensure_can_transition_to(self, new_status):
        """Raise InvalidStateTransitionError unless the transition is allowed."""
        if not self.can_transition_to(new_status):
            raise InvalidStateTransitionError(
                f"Need cannot move from {self.status} to {new_status}"
            )


class OfferStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    ACCEPTED = 'accepted', 'Accepted'
    REJECTED = 'rejected', 'Rejected'
    WITHDRAWN = 'withdrawn', 'Withdrawn'


class Offer(models.Model):
    """A provider's priced proposal against a need."""

    TRANSITIONS = {
        OfferStatus.PENDING: {OfferStatus.ACCEPTED, OfferStatus.REJECTED, OfferStatus.WITHDRAWN},
        OfferStatus.ACCEPTED: set(),
        OfferStatus.REJECTED: set(),
        OfferStatus.WITHDRAWN: set(),
    }

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    need = models.ForeignKey(
        Need,
        on_delete=models.PROTECT,
        related_name='offers'
    )
    provider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='offers'
    )

    price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))]
    )
    currency = models.CharField(max_length=3, default=default_currency)
    description = models.TextField(
        max_length=2000,
        validators=[MinLengthValidator(10)]
    )
    delivery_days = models.PositiveSmallIntegerField(
        validators=[MinValueValidator(1), MaxValueValidator(365)]
    )

    status = models.CharField(
        max_length=20,
        choices=OfferStatus.choices,
        default=OfferStatus.PENDING,
        db_index=True
    )

    # Client-supplied key so a retried submission returns the same offer
    idempotency_key = models.CharField(max_length=64, blank=True, default='')

    rejection_reason = models.CharField(max_length=500, blank=True, default='')

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    resolved_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'offers'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['need', 'status'], name='offers_need_status_idx'),
            models.Index(fields=['provider', 'status'], name='offers_provider_status_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['need'],
                condition=models.Q(status='accepted'),
                name='unique_accepted_offer_per_need',
            ),
            models.UniqueConstraint(
                fields=['provider', 'need', 'idempotency_key'],
                condition=~models.Q(idempotency_key=''),
                name='unique_offer_idempotency_key',
            ),
            models.CheckConstraint(
                condition=models.Q(price__gt=0),
                name='offer_price_positive',
            ),
            models.CheckConstraint(
                condition=models.Q(delivery_days__gte=1, delivery_days__lte=365),
                name='offer_delivery_days_range',
            ),
        ]

    def __str__(self):
        return f"Offer {self.price} {self.currency} on {self.need_id} ({self.status})"

    def can_transition_to(self, new_status):
        return new_status in self.TRANSITIONS.get(self.status, set())

    def ensure_can_transition_to(self, new_status):
        """Raise InvalidStateTransitionError unless the transition is allowed."""
        if not self.can_transition_to(new_status):
            raise InvalidStateTransitionError(
                f"Offer cannot move from {self.status} to {new_status}"
            )
