from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from decimal import Decimal
import uuid

from apps.needs.exceptions import InvalidStateTransitionError


class PaymentStatus(models.TextChoices):
    INITIALIZED = 'initialized', 'Initialized'
    PENDING_THREE_D_SECURE = 'pending_three_d_secure', 'Awaiting 3-D Secure'
    VERIFYING = 'verifying', 'Verifying'
    SUCCEEDED = 'succeeded', 'Succeeded'
    FAILED = 'failed', 'Failed'


class Payment(models.Model):
    """
    One card payment attempt for an accepted offer.

    Succeeded and failed payments are final. Paying again after a failure
    creates a new Payment. Card data is never stored.
    """

    TRANSITIONS = {
        PaymentStatus.INITIALIZED: {
            PaymentStatus.PENDING_THREE_D_SECURE,
            PaymentStatus.SUCCEEDED,
            PaymentStatus.FAILED,
        },
        PaymentStatus.PENDING_THREE_D_SECURE: {PaymentStatus.VERIFYING, PaymentStatus.FAILED},
        PaymentStatus.VERIFYING: {PaymentStatus.SUCCEEDED, PaymentStatus.FAILED},
        PaymentStatus.SUCCEEDED: set(),
        PaymentStatus.FAILED: set(),
    }

    TERMINAL_STATUSES = (PaymentStatus.SUCCEEDED, PaymentStatus.FAILED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    offer = models.ForeignKey(
        'needs.Offer',
        on_delete=models.PROTECT,
        related_name='payments'
    )
    payer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='payments'
    )

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))]
    )
    currency = models.CharField(max_length=3)

    status = models.CharField(
        max_length=30,
        choices=PaymentStatus.choices,
        default=PaymentStatus.INITIALIZED,
        db_index=True
    )

    # Gateway interaction
    three_d_secure_url = models.URLField(max_length=1000, blank=True)
    gateway_reference = models.CharField(max_length=128, blank=True)
    status_token = models.CharField(max_length=255, blank=True)
    idempotency_key = models.CharField(max_length=64, blank=True, default='')

    failure_code = models.CharField(max_length=64, blank=True)
    failure_reason = models.CharField(max_length=500, blank=True)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    verification_started_at = models.DateTimeField(null=True, blank=True)
    finalized_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'payments'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'updated_at'], name='payments_status_updated_idx'),
            models.Index(fields=['offer', 'status'], name='payments_offer_status_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['offer'],
                condition=~models.Q(status='failed'),
                name='unique_open_payment_per_offer',
            ),
            models.UniqueConstraint(
                fields=['offer', 'idempotency_key'],
                condition=~models.Q(idempotency_key=''),
                name='unique_payment_idempotency_key',
            ),
        ]

    def __str__(self):
        return f"Payment {self.amount} {self.currency} ({self.status})"

    @property
    def is_final(self):
        return self.status in self.TERMINAL_STATUSES

    def can_transition_to(self, new_status):
        return new_status in self.TRANSITIONS.get(self.status, set())

    def ensure_can_transition_to(self, new_status):
        """Raise InvalidStateTransitionError unless the transition is allowed."""
        if not self.can_transition_to(new_status):
            raise InvalidStateTransitionError(
                f"Payment cannot move from {self.status} to {new_status}"
            )
