from django.contrib import admin
from django.utils.html import format_html
from .models import Payment, PaymentStatus


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    """
    Read-only view of payments.

    Payments change state only through the authorization service and the
    reconciliation sweep.
    """

    list_display = [
        'id',
        'offer',
        'payer',
        'amount',
        'currency',
        'status_badge',
        'failure_code',
        'created_at',
    ]
    list_filter = ['status', 'currency', 'created_at']
    search_fields = ['id', 'gateway_reference', 'payer__email']
    date_hierarchy = 'created_at'
    readonly_fields = [
        'offer',
        'payer',
        'amount',
        'currency',
        'status',
        'three_d_secure_url',
        'gateway_reference',
        'idempotency_key',
        'failure_code',
        'failure_reason',
        'created_at',
        'updated_at',
        'verification_started_at',
        'finalized_at',
    ]
    exclude = ['status_token']

    def status_badge(self, obj):
        """Display payment status as colored badge."""
        colors = {
            PaymentStatus.INITIALIZED: ('#ccc', '#666'),
            PaymentStatus.PENDING_THREE_D_SECURE: ('#E5C49A', '#2C1810'),
            PaymentStatus.VERIFYING: ('#A47449', 'white'),
            PaymentStatus.SUCCEEDED: ('#6B8E5E', 'white'),
            PaymentStatus.FAILED: ('#B85C5C', 'white'),
        }
        bg, fg = colors.get(obj.status, ('#ccc', '#666'))
        return format_html(
            '<span style="background: {}; color: {}; padding: 3px 8px; '
            'border-radius: 10px; font-size: 11px;">{}</span>',
            bg, fg, obj.get_status_display()
        )
    status_badge.short_description = 'Status'

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
