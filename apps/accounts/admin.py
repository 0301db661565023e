from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from .models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """Admin for marketplace accounts, keyed by email instead of username."""

    list_display = [
        'email',
        'display_name',
        'is_guest',
        'is_active',
        'is_staff',
        'created_at',
        'last_login',
    ]

    list_filter = [
        'is_guest',
        'is_active',
        'is_staff',
        'is_superuser',
        'email_verified',
    ]

    search_fields = [
        'email',
        'display_name',
    ]

    ordering = ['-created_at']
    date_hierarchy = 'created_at'

    fieldsets = (
        ('Basic Information', {
            'fields': ('email', 'display_name', 'password')
        }),
        ('Role', {
            'fields': ('is_guest', 'email_verified'),
        }),
        ('Permissions', {
            'fields': ('is_active', 'is_staff', 'is_superuser', 'groups', 'user_permissions'),
        }),
        ('Timestamps', {
            'fields': ('created_at', 'last_login'),
            'classes': ('collapse',),
        }),
    )

    add_fieldsets = (
        ('Create User', {
            'classes': ('wide',),
            'fields': ('email', 'display_name', 'password1', 'password2'),
        }),
        ('Role', {
            'fields': ('is_guest', 'is_active', 'is_staff'),
        }),
    )

    readonly_fields = [
        'created_at',
        'last_login',
    ]

    filter_horizontal = ['groups', 'user_permissions']

    actions = ['demote_to_guest', 'promote_from_guest']

    @admin.action(description='Restrict selected users to browsing (guest)')
    def demote_to_guest(self, request, queryset):
        count = queryset.filter(is_superuser=False).update(is_guest=True)
        self.message_user(request, f'Restricted {count} user(s).')

    @admin.action(description='Allow selected guests to transact')
    def promote_from_guest(self, request, queryset):
        count = queryset.update(is_guest=False)
        self.message_user(request, f'Promoted {count} user(s).')
