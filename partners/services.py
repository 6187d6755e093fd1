"""
Partners App Services - Webhook Delivery & External Orders
"""
import json
import hmac
import hashlib
import logging
from decimal import Decimal
from typing import Tuple

import requests
from django.conf import settings
from django.utils import timezone

from .models import WebhookEndpoint

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = 'X-PartsRunner-Signature'
USER_AGENT = 'PartsRunner-Webhook/1.0'


def sign(secret: str, body: str) -> str:
    """HMAC-SHA256 of the raw body, hex encoded."""
    return hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()


class WebhookService:
    """
    Service for sending webhooks to merchant endpoints.
    """

    @staticmethod
    def timeout() -> int:
        return getattr(settings, 'WEBHOOK_TIMEOUT_SECONDS', 10)

    @staticmethod
    def max_failures() -> int:
        return getattr(settings, 'WEBHOOK_MAX_FAILURES', 10)

    @classmethod
    def dispatch_event(cls, merchant, event: str, payload: dict) -> int:
        """
        Queue one delivery per active endpoint subscribed to `event`.

        Returns:
            int: Number of deliveries queued
        """
        from .tasks import deliver_webhook

        endpoints = [
            endpoint for endpoint in WebhookEndpoint.objects.filter(merchant=merchant, is_active=True)
            if endpoint.subscribes_to(event)
        ]
        for endpoint in endpoints:
            deliver_webhook.delay(endpoint.pk, event, payload)

        if endpoints:
            logger.info(f"[WEBHOOK] Queued {event} for {len(endpoints)} endpoint(s) of {merchant.email}")
        return len(endpoints)

    @classmethod
    def build_request(cls, endpoint: WebhookEndpoint, event: str, payload: dict) -> Tuple[str, dict]:
        body = json.dumps({
            'event': event,
            'timestamp': timezone.now().isoformat(),
            'data': payload
        }, default=str)

        headers = {
            'Content-Type': 'application/json',
            SIGNATURE_HEADER: f'sha256={sign(endpoint.secret, body)}',
            'X-PartsRunner-Event': event,
            'User-Agent': USER_AGENT
        }
        return body, headers

    @classmethod
    def send(cls, endpoint: WebhookEndpoint, event: str, payload: dict) -> bool:
        """
        POST one signed event and record the outcome on the endpoint.

        Raises:
            requests.RequestException: Network failure (the task retries)
        """
        body, headers = cls.build_request(endpoint, event, payload)

        try:
            response = requests.post(endpoint.url, data=body, headers=headers, timeout=cls.timeout())
        except requests.RequestException as e:
            cls._record_failure(endpoint, None)
            logger.error(f"[WEBHOOK] Error sending {event} to {endpoint.url}: {e}")
            raise

        if response.status_code < 400:
            endpoint.failure_count = 0
            endpoint.last_status_code = response.status_code
            endpoint.last_delivery_at = timezone.now()
            endpoint.save(update_fields=['failure_count', 'last_status_code', 'last_delivery_at', 'updated_at'])
            logger.info(f"[WEBHOOK] Sent {event} to {endpoint.url}: {response.status_code}")
            return True

        cls._record_failure(endpoint, response.status_code)
        logger.warning(f"[WEBHOOK] Failed {event} to {endpoint.url}: {response.status_code}")
        return False

    @classmethod
    def _record_failure(cls, endpoint: WebhookEndpoint, status_code):
        endpoint.failure_count += 1
        endpoint.last_status_code = status_code
        endpoint.last_delivery_at = timezone.now()
        if endpoint.failure_count >= cls.max_failures():
            endpoint.is_active = False
            logger.warning(
                f"[WEBHOOK] Disabled {endpoint.url} after {endpoint.failure_count} consecutive failures"
            )
        endpoint.save(update_fields=[
            'failure_count', 'last_status_code', 'last_delivery_at', 'is_active', 'updated_at'
        ])

    @classmethod
    def test_webhook(cls, endpoint: WebhookEndpoint) -> Tuple[bool, str]:
        """
        Send a test event synchronously.

        Returns:
            Tuple[bool, str]: (success, message)
        """
        body, headers = cls.build_request(endpoint, 'test', {
            'message': 'This is a PartsRunner test webhook',
            'test': True
        })

        try:
            response = requests.post(endpoint.url, data=body, headers=headers, timeout=cls.timeout())
        except requests.RequestException as e:
            return False, str(e)

        endpoint.last_status_code = response.status_code
        endpoint.last_delivery_at = timezone.now()
        endpoint.save(update_fields=['last_status_code', 'last_delivery_at', 'updated_at'])

        if response.status_code < 400:
            return True, f"Response {response.status_code}"
        return False, f"HTTP error {response.status_code}"


class DuplicateExternalOrder(ValueError):
    """An order with this external id already exists for the store."""


class ExternalOrderService:
    """
    Orders pushed by merchant systems through the integration API.
    """

    @staticmethod
    def create_order(merchant, store, data: dict):
        """
        Create an API order with the merchant's own amounts.

        Raises:
            PermissionError: Store belongs to another merchant
            DuplicateExternalOrder: External id already used for this store
            ValueError: Store inactive or order rejected
        """
        from logistics.models import Order, OrderSource, PaymentMethod
        from logistics.services.orders import OrderService

        if store.merchant_id != merchant.pk:
            raise PermissionError("You can only create orders for your own stores")
        if not store.is_active:
            raise ValueError(f"{store.name} is not accepting orders")

        external_id = data['externalOrderId']
        if Order.objects.filter(store=store, external_order_id=external_id).exists():
            raise DuplicateExternalOrder(f"Order {external_id} already exists for {store.name}")

        lines = [
            {
                'product': None,
                'name': item['name'],
                'sku': item.get('sku', ''),
                'unit_price': item['price'],
                'quantity': item['quantity'],
            }
            for item in data['items']
        ]

        delivery = {
            'delivery_address': data['deliveryAddress'],
            'delivery_unit': data.get('deliveryUnit', ''),
            'delivery_city': data['deliveryCity'],
            'delivery_state': data['deliveryState'],
            'delivery_zip_code': data['deliveryZipCode'],
            'delivery_latitude': data.get('deliveryLatitude'),
            'delivery_longitude': data.get('deliveryLongitude'),
            'delivery_instructions': data.get('notes', ''),
        }

        order = OrderService.create_order(
            store=store,
            lines=lines,
            delivery=delivery,
            contact={
                'name': data['customerName'],
                'email': data['customerEmail'],
                'phone': data['customerPhone'],
            },
            payment_method=PaymentMethod.MERCHANT_COLLECTED,
            service_level=data['serviceLevel'],
            source=OrderSource.API,
            external_order_id=external_id,
            amounts={
                'subtotal': data['subtotal'],
                'tax': data['tax'],
                'delivery_fee': data['deliveryFee'],
                'service_fee': Decimal('0.00'),
                'service_fee_tax': Decimal('0.00'),
                'total': data['total'],
            },
        )
        logger.info(f"[API] {merchant.email} created {order.order_number} (external {external_id})")
        return order
