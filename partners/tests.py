"""
PartsRunner Partners Tests
==========================

Tests for:
1. Webhook delivery (signature, failure tracking, fan-out)
2. External orders API (API key auth, validation, scoping)
3. Key and webhook management
"""

import hashlib
import hmac
from decimal import Decimal
from unittest.mock import MagicMock, patch

import requests
from django.test import TestCase
from rest_framework.test import APIClient

from core.models import User, UserRole
from logistics.models import Order, OrderSource, OrderStatus, PaymentMethod, PaymentStatus
from partners.models import MerchantAPIKey, WebhookEndpoint, WebhookEvent
from partners.services import WebhookService
from stores.models import Store


def order_payload(store, **overrides):
    payload = {
        'storeId': str(store.pk),
        'externalOrderId': 'WOO-1001',
        'customerName': 'Morgan Buyer',
        'customerEmail': 'morgan@example.com',
        'customerPhone': '2145550100',
        'deliveryAddress': '500 Elm St',
        'deliveryCity': 'Dallas',
        'deliveryState': 'tx',
        'deliveryZipCode': '75202',
        'items': [{'name': 'Oil Filter', 'sku': 'OF-12', 'quantity': 2, 'price': '20.00'}],
        'subtotal': '40.00',
        'tax': '3.30',
        'deliveryFee': '5.99',
        'total': '49.29',
    }
    payload.update(overrides)
    return payload


class MerchantFixtures:

    def setUp(self):
        self.merchant = User.objects.create_user(
            email='merchant@partsrunner.test', password='testpass123', role=UserRole.MERCHANT,
        )
        self.other_merchant = User.objects.create_user(
            email='other@partsrunner.test', password='testpass123', role=UserRole.MERCHANT,
        )
        self.store = Store.objects.create(
            merchant=self.merchant, name='Elm Auto Parts', address='100 Main St',
            city='Dallas', state='TX', zip_code='75201', latitude=32.7767, longitude=-96.7970,
        )
        self.other_store = Store.objects.create(
            merchant=self.other_merchant, name='Oak Parts', address='1 Oak St',
            city='Dallas', state='TX', zip_code='75203',
        )
        self.api_key, self.raw_key = MerchantAPIKey.objects.create_key(
            name='Shop integration', merchant=self.merchant
        )
        self.client = APIClient()
        self.client.credentials(HTTP_AUTHORIZATION=f'Api-Key {self.raw_key}')


class TestWebhookService(TestCase):

    def setUp(self):
        self.merchant = User.objects.create_user(
            email='merchant@partsrunner.test', password='testpass123', role=UserRole.MERCHANT,
        )
        self.endpoint = WebhookEndpoint.objects.create(
            merchant=self.merchant, url='https://shop.example.com/hooks',
        )

    @patch('partners.services.requests.post')
    def test_send_signs_body(self, mock_post):
        mock_post.return_value = MagicMock(status_code=200)

        self.assertTrue(WebhookService.send(self.endpoint, 'order.created', {'order_id': 'abc'}))

        kwargs = mock_post.call_args.kwargs
        expected = hmac.new(
            self.endpoint.secret.encode(), kwargs['data'].encode(), hashlib.sha256
        ).hexdigest()
        self.assertEqual(kwargs['headers']['X-PartsRunner-Signature'], f'sha256={expected}')
        self.assertEqual(kwargs['headers']['X-PartsRunner-Event'], 'order.created')

        self.endpoint.refresh_from_db()
        self.assertEqual(self.endpoint.last_status_code, 200)
        self.assertEqual(self.endpoint.failure_count, 0)

    @patch('partners.services.requests.post')
    def test_http_error_counts_failure(self, mock_post):
        mock_post.return_value = MagicMock(status_code=500)

        self.assertFalse(WebhookService.send(self.endpoint, 'order.created', {}))

        self.endpoint.refresh_from_db()
        self.assertEqual(self.endpoint.failure_count, 1)
        self.assertEqual(self.endpoint.last_status_code, 500)

    @patch('partners.services.requests.post', side_effect=requests.ConnectionError('refused'))
    def test_network_error_propagates_for_retry(self, mock_post):
        with self.assertRaises(requests.RequestException):
            WebhookService.send(self.endpoint, 'order.created', {})

        self.endpoint.refresh_from_db()
        self.assertEqual(self.endpoint.failure_count, 1)

    @patch('partners.services.requests.post')
    def test_endpoint_disabled_after_repeated_failures(self, mock_post):
        mock_post.return_value = MagicMock(status_code=503)
        WebhookEndpoint.objects.filter(pk=self.endpoint.pk).update(failure_count=9)
        self.endpoint.refresh_from_db()

        WebhookService.send(self.endpoint, 'order.created', {})

        self.endpoint.refresh_from_db()
        self.assertFalse(self.endpoint.is_active)

    @patch('partners.tasks.deliver_webhook.delay')
    def test_dispatch_respects_subscriptions(self, mock_delay):
        WebhookEndpoint.objects.create(
            merchant=self.merchant, url='https://erp.example.com/hooks',
            events=[WebhookEvent.PAYOUT_COMPLETED],
        )
        WebhookEndpoint.objects.create(
            merchant=self.merchant, url='https://off.example.com/hooks', is_active=False,
        )

        queued = WebhookService.dispatch_event(self.merchant, 'order.created', {'x': 1})

        self.assertEqual(queued, 1)
        mock_delay.assert_called_once_with(self.endpoint.pk, 'order.created', {'x': 1})


class TestExternalOrdersAPI(MerchantFixtures, TestCase):

    def test_create_order(self):
        response = self.client.post('/api/v1/external/orders/', order_payload(self.store), format='json')

        self.assertEqual(response.status_code, 201)
        self.assertTrue(response.data['success'])
        order = Order.objects.get(pk=response.data['orderId'])
        self.assertEqual(order.source, OrderSource.API)
        self.assertEqual(order.external_order_id, 'WOO-1001')
        self.assertEqual(order.payment_method, PaymentMethod.MERCHANT_COLLECTED)
        self.assertEqual(order.payment_status, PaymentStatus.PAID)
        self.assertEqual(order.total, Decimal('49.29'))
        self.assertEqual(order.service_fee, Decimal('0.00'))
        self.assertEqual(order.delivery_state, 'TX')
        self.assertIsNone(order.customer)
        self.assertEqual(order.contact_email, 'morgan@example.com')
        self.assertEqual(order.items.get().quantity, 2)

    def test_missing_key_rejected(self):
        client = APIClient()
        response = client.post('/api/v1/external/orders/', order_payload(self.store), format='json')
        self.assertIn(response.status_code, (401, 403))

    def test_revoked_key_rejected(self):
        self.api_key.revoked = True
        self.api_key.save()
        response = self.client.get('/api/v1/external/orders/')
        self.assertIn(response.status_code, (401, 403))

    def test_missing_required_field(self):
        payload = order_payload(self.store)
        del payload['customerPhone']
        response = self.client.post('/api/v1/external/orders/', payload, format='json')
        self.assertEqual(response.status_code, 400)
        self.assertIn('customerPhone', response.data)

    def test_total_must_add_up(self):
        response = self.client.post(
            '/api/v1/external/orders/', order_payload(self.store, total='60.00'), format='json'
        )
        self.assertEqual(response.status_code, 400)

    def test_other_merchants_store_forbidden(self):
        response = self.client.post(
            '/api/v1/external/orders/', order_payload(self.other_store), format='json'
        )
        self.assertEqual(response.status_code, 403)

    def test_duplicate_external_id_conflicts(self):
        self.client.post('/api/v1/external/orders/', order_payload(self.store), format='json')
        response = self.client.post('/api/v1/external/orders/', order_payload(self.store), format='json')
        self.assertEqual(response.status_code, 409)

    def test_inactive_store_rejected(self):
        Store.objects.filter(pk=self.store.pk).update(is_active=False)
        response = self.client.post('/api/v1/external/orders/', order_payload(self.store), format='json')
        self.assertEqual(response.status_code, 400)

    def test_list_detail_and_tracking_are_scoped(self):
        created = self.client.post('/api/v1/external/orders/', order_payload(self.store), format='json')
        order_id = created.data['orderId']

        listing = self.client.get('/api/v1/external/orders/')
        self.assertEqual(listing.data['count'], 1)

        tracking = self.client.get(f'/api/v1/external/orders/{order_id}/tracking/')
        self.assertEqual(tracking.status_code, 200)
        self.assertEqual(tracking.data['status'], OrderStatus.PENDING)

        _, other_raw = MerchantAPIKey.objects.create_key(name='Oak', merchant=self.other_merchant)
        other = APIClient()
        other.credentials(HTTP_AUTHORIZATION=f'Api-Key {other_raw}')
        self.assertEqual(other.get(f'/api/v1/external/orders/{order_id}/').status_code, 404)

    def test_cancel(self):
        created = self.client.post('/api/v1/external/orders/', order_payload(self.store), format='json')
        with patch('logistics.tasks.refund_cancelled_order.delay'):
            response = self.client.post(
                f"/api/v1/external/orders/{created.data['orderId']}/cancel/",
                {'reason': 'Customer changed mind'}, format='json'
            )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['status'], OrderStatus.CANCELLED)

    def test_quote_has_no_service_fee(self):
        response = self.client.post('/api/v1/external/orders/quote/', {
            'store_id': str(self.store.pk), 'subtotal': '40.00',
        }, format='json')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(Decimal(response.data['service_fee']), Decimal('0.00'))

    @patch('partners.tasks.deliver_webhook.delay')
    def test_order_created_webhook_fires(self, mock_delay):
        endpoint = WebhookEndpoint.objects.create(merchant=self.merchant, url='https://shop.example.com/h')

        with self.captureOnCommitCallbacks(execute=True):
            self.client.post('/api/v1/external/orders/', order_payload(self.store), format='json')

        events = [call.args[1] for call in mock_delay.call_args_list if call.args[0] == endpoint.pk]
        self.assertIn('order.created', events)


class TestKeyAndWebhookManagement(MerchantFixtures, TestCase):

    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.client.force_authenticate(user=self.merchant)

    def test_raw_key_shown_once(self):
        response = self.client.post('/api/v1/external/keys/', {'name': 'ERP'}, format='json')

        self.assertEqual(response.status_code, 201)
        raw_key = response.data['key']
        self.assertTrue(MerchantAPIKey.objects.is_valid(raw_key))

        detail = self.client.get(f"/api/v1/external/keys/{response.data['id']}/")
        self.assertNotIn('key', detail.data)

    def test_revoke(self):
        response = self.client.post(f'/api/v1/external/keys/{self.api_key.pk}/revoke/')
        self.assertEqual(response.status_code, 200)
        self.api_key.refresh_from_db()
        self.assertTrue(self.api_key.revoked)

    def test_customers_cannot_manage_keys(self):
        customer = User.objects.create_user(email='customer@partsrunner.test', password='testpass123')
        self.client.force_authenticate(user=customer)
        self.assertEqual(self.client.get('/api/v1/external/keys/').status_code, 403)

    def test_webhook_crud_and_test(self):
        response = self.client.post('/api/v1/external/webhooks/', {
            'url': 'https://shop.example.com/hooks',
            'events': ['order.delivered', 'order.created'],
        }, format='json')
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['events'], ['order.created', 'order.delivered'])
        self.assertTrue(response.data['secret'])

        with patch('partners.services.requests.post', return_value=MagicMock(status_code=204)):
            tested = self.client.post(f"/api/v1/external/webhooks/{response.data['id']}/test/")
        self.assertEqual(tested.status_code, 200)
        self.assertTrue(tested.data['success'])

    def test_unknown_event_rejected(self):
        response = self.client.post('/api/v1/external/webhooks/', {
            'url': 'https://shop.example.com/hooks', 'events': ['order.teleported'],
        }, format='json')
        self.assertEqual(response.status_code, 400)
