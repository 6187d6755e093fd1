"""
Django Admin configuration for PARTNERS app.
"""

from django.contrib import admin
from django.utils.html import format_html

from .models import MerchantAPIKey, WebhookEndpoint


@admin.register(MerchantAPIKey)
class MerchantAPIKeyAdmin(admin.ModelAdmin):
    """Admin for merchant API keys."""

    list_display = ('name', 'merchant', 'prefix', 'revoked_badge', 'created', 'expiry_date')
    list_filter = ('revoked',)
    search_fields = ('name', 'prefix', 'merchant__email')
    ordering = ('-created',)

    readonly_fields = ('prefix', 'hashed_key', 'created')

    fieldsets = (
        ('API key', {
            'fields': ('name', 'merchant', 'prefix', 'revoked')
        }),
        ('Validity', {
            'fields': ('expiry_date',),
            'description': 'Leave empty for a key that never expires.'
        }),
        ('Technical', {
            'fields': ('hashed_key', 'created'),
            'classes': ('collapse',)
        }),
    )

    actions = ['revoke_keys']

    @admin.display(description="Status")
    def revoked_badge(self, obj):
        if obj.revoked:
            return format_html(
                '<span style="padding:2px 6px;border-radius:8px;color:white;background:#ef4444;font-size:11px;">Revoked</span>'
            )
        return format_html(
            '<span style="padding:2px 6px;border-radius:8px;color:white;background:#10b981;font-size:11px;">Active</span>'
        )

    @admin.action(description="Revoke selected keys")
    def revoke_keys(self, request, queryset):
        updated = queryset.update(revoked=True)
        self.message_user(request, f"{updated} key(s) revoked.")


@admin.register(WebhookEndpoint)
class WebhookEndpointAdmin(admin.ModelAdmin):
    """Admin for merchant webhook endpoints."""

    list_display = (
        'merchant',
        'url_short',
        'is_active',
        'events_count',
        'last_status_badge',
        'failure_count',
        'last_delivery_at',
    )
    list_filter = ('is_active', 'last_status_code')
    search_fields = ('merchant__email', 'url')
    ordering = ('-updated_at',)

    readonly_fields = (
        'secret',
        'last_delivery_at',
        'last_status_code',
        'failure_count',
        'created_at',
        'updated_at',
    )

    fieldsets = (
        ('Merchant', {
            'fields': ('merchant', 'is_active')
        }),
        ('Configuration', {
            'fields': ('url', 'events')
        }),
        ('Security', {
            'fields': ('secret',),
            'description': 'The HMAC secret signs every delivery. Share it only with the merchant.'
        }),
        ('Monitoring', {
            'fields': ('last_delivery_at', 'last_status_code', 'failure_count'),
            'classes': ('collapse',)
        }),
        ('History', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    actions = ['reset_failures', 'deactivate_webhooks']

    @admin.display(description="URL")
    def url_short(self, obj):
        return obj.url[:40] + ('...' if len(obj.url) > 40 else '')

    @admin.display(description="Events")
    def events_count(self, obj):
        return len(obj.events or [])

    @admin.display(description="Last HTTP")
    def last_status_badge(self, obj):
        if obj.last_status_code is None:
            return "-"
        code = obj.last_status_code
        color = '#10b981' if 200 <= code < 300 else '#ef4444'
        return format_html(
            '<span style="padding:2px 6px;border-radius:8px;color:white;background:{};font-size:11px;">{}</span>',
            color, code
        )

    @admin.action(description="Reset failure counter and re-enable")
    def reset_failures(self, request, queryset):
        updated = queryset.update(failure_count=0, is_active=True)
        self.message_user(request, f"Counter reset for {updated} webhook(s).")

    @admin.action(description="Disable selected webhooks")
    def deactivate_webhooks(self, request, queryset):
        updated = queryset.update(is_active=False)
        self.message_user(request, f"{updated} webhook(s) disabled.")
