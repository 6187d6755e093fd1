"""
Partners App Models - Merchant API Keys & Webhook Endpoints

Key security model: MerchantAPIKey links each API key to a specific
merchant User, so external calls can only act on that merchant's stores.
"""
import secrets
from django.db import models
from django.conf import settings
from rest_framework_api_key.models import AbstractAPIKey


class WebhookEvent(models.TextChoices):
    ORDER_CREATED = 'order.created', 'Order created'
    ORDER_STATUS_CHANGED = 'order.status_changed', 'Order status changed'
    ORDER_DELIVERED = 'order.delivered', 'Order delivered'
    PAYOUT_COMPLETED = 'payout.completed', 'Payout completed'


def default_events():
    return list(WebhookEvent.values)


def generate_secret():
    return secrets.token_hex(32)


class MerchantAPIKey(AbstractAPIKey):
    """
    API key bound to a merchant.

    Usage in views:
        key = MerchantAPIKey.objects.get_from_key(raw_key)
        merchant = key.merchant
    """

    merchant = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='api_keys',
        help_text="Merchant who owns this key"
    )

    class Meta(AbstractAPIKey.Meta):
        verbose_name = "Merchant API key"
        verbose_name_plural = "Merchant API keys"

    def __str__(self):
        return f"API Key: {self.merchant.email} - {self.name}"


class WebhookEndpoint(models.Model):
    """
    HTTP callback registered by a merchant for order and payout events.
    """

    merchant = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='webhook_endpoints'
    )

    url = models.URLField(help_text="URL to receive webhook POST requests")

    secret = models.CharField(
        max_length=64,
        default=generate_secret,
        help_text="HMAC secret for signature verification"
    )

    events = models.JSONField(
        default=default_events,
        help_text="List of event types to subscribe to"
    )

    is_active = models.BooleanField(default=True)

    last_delivery_at = models.DateTimeField(null=True, blank=True)
    last_status_code = models.IntegerField(null=True, blank=True)
    failure_count = models.IntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Webhook endpoint"
        verbose_name_plural = "Webhook endpoints"
        ordering = ['-created_at']

    def __str__(self):
        return f"Webhook: {self.merchant.email} -> {self.url} ({'Active' if self.is_active else 'Inactive'})"

    def subscribes_to(self, event: str) -> bool:
        return self.is_active and event in (self.events or [])

    def regenerate_secret(self):
        """Generate a new HMAC secret."""
        self.secret = generate_secret()
        self.save(update_fields=['secret', 'updated_at'])
        return self.secret
