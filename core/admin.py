"""
Django Admin configuration for CORE app.
"""

import csv
from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.http import HttpResponse

from .models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """Custom admin for User model with email-based auth."""

    list_display = (
        'email',
        'full_name',
        'role',
        'wallet_balance',
        'average_rating',
        'stripe_onboarding_complete',
        'is_active',
        'date_joined'
    )
    list_filter = ('role', 'stripe_onboarding_complete', 'is_active', 'is_staff')
    search_fields = ('email', 'full_name', 'phone_number')
    ordering = ('-date_joined',)

    fieldsets = (
        (None, {
            'fields': ('email', 'password')
        }),
        ('Profile', {
            'fields': ('full_name', 'phone_number', 'role')
        }),
        ('Wallet', {
            'fields': ('wallet_balance',),
            'description': 'Payouts accumulate here until withdrawn'
        }),
        ('Stripe Connect', {
            'fields': ('stripe_account_id', 'stripe_onboarding_complete'),
            'classes': ('collapse',)
        }),
        ('Rating', {
            'fields': ('average_rating', 'total_ratings_count'),
            'classes': ('collapse',)
        }),
        ('Permissions', {
            'fields': ('is_active', 'is_staff', 'is_superuser', 'groups', 'user_permissions'),
            'classes': ('collapse',)
        }),
    )

    add_fieldsets = (
        (None, {
            'classes': ('wide',),
            'fields': ('email', 'role', 'password1', 'password2'),
        }),
    )

    readonly_fields = ('date_joined', 'wallet_balance')

    actions = ['block_users', 'unblock_users', 'export_users_csv']

    @admin.action(description="Block selected users")
    def block_users(self, request, queryset):
        updated = queryset.exclude(role='OWNER').update(is_active=False)
        self.message_user(request, f"{updated} user(s) blocked.")

    @admin.action(description="Unblock selected users")
    def unblock_users(self, request, queryset):
        updated = queryset.update(is_active=True)
        self.message_user(request, f"{updated} user(s) unblocked.")

    @admin.action(description="Export to CSV")
    def export_users_csv(self, request, queryset):
        response = HttpResponse(content_type='text/csv')
        response['Content-Disposition'] = 'attachment; filename="partsrunner_users.csv"'

        writer = csv.writer(response)
        writer.writerow([
            'Email', 'Name', 'Phone', 'Role', 'Wallet', 'Rating', 'Active', 'Joined'
        ])
        for user in queryset:
            writer.writerow([
                user.email,
                user.full_name,
                user.phone_number,
                user.get_role_display(),
                user.wallet_balance,
                user.average_rating,
                'Yes' if user.is_active else 'No',
                user.date_joined.strftime('%Y-%m-%d'),
            ])
        return response
