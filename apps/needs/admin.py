from django.contrib import admin
from django.utils.html import format_html
from .models import Category, Need, NeedStatus, Offer, OfferStatus


STATUS_COLORS = {
    NeedStatus.ACTIVE: ('#6B8E5E', 'white'),
    NeedStatus.IN_PROGRESS: ('#A47449', 'white'),
    NeedStatus.COMPLETED: ('#3E6A8A', 'white'),
    NeedStatus.CANCELLED: ('#B85C5C', 'white'),
    NeedStatus.EXPIRED: ('#ccc', '#666'),
    OfferStatus.PENDING: ('#E5C49A', '#2C1810'),
    OfferStatus.ACCEPTED: ('#6B8E5E', 'white'),
    OfferStatus.REJECTED: ('#B85C5C', 'white'),
    OfferStatus.WITHDRAWN: ('#ccc', '#666'),
}


def status_badge(obj):
    """Display status as colored badge."""
    bg, fg = STATUS_COLORS.get(obj.status, ('#ccc', '#666'))
    return format_html(
        '<span style="background: {}; color: {}; padding: 3px 8px; '
        'border-radius: 10px; font-size: 11px;">{}</span>',
        bg, fg, obj.get_status_display()
    )


status_badge.short_description = 'Status'


class OfferInline(admin.TabularInline):
    """Offers within a need. Read-only: state changes go through the services."""
    model = Offer
    extra = 0
    fields = ['provider', 'price', 'currency', 'delivery_days', 'status', 'created_at']
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ['name', 'slug', 'parent', 'is_active', 'sort_order']
    list_filter = ['is_active']
    search_fields = ['name', 'slug']
    prepopulated_fields = {'slug': ('name',)}


@admin.register(Need)
class NeedAdmin(admin.ModelAdmin):
    """
    Admin interface for needs.

    Status is read-only here; transitions must go through the services so
    that offers are resolved and events are published.
    """

    list_display = ['title', 'owner', 'category', status_badge, 'currency', 'expires_at', 'created_at']
    list_filter = ['status', 'category', 'urgency', 'created_at']
    search_fields = ['title', 'description', 'owner__email']
    date_hierarchy = 'created_at'
    readonly_fields = ['status', 'payment_received_at', 'closed_at', 'created_at', 'updated_at']
    inlines = [OfferInline]


@admin.register(Offer)
class OfferAdmin(admin.ModelAdmin):
    list_display = ['need', 'provider', 'price', 'currency', 'delivery_days', status_badge, 'created_at']
    list_filter = ['status', 'created_at']
    search_fields = ['need__title', 'provider__email']
    readonly_fields = ['status', 'idempotency_key', 'rejection_reason', 'resolved_at', 'created_at', 'updated_at']
