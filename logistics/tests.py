"""
PartsRunner Logistics Tests
===========================

Tests for:
1. Pricing Engine (fees, distance, rules, quote totals)
2. Order Service (checkout, status machine, cancellation, expiry)
3. Dispatch (driver search, claims, releases)
4. Orders API (role scoping, permissions)
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch

from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from core.models import User, UserRole
from drivers.models import DriverProfile
from logistics.models import (
    AdjustmentType, Order, OrderStatus, PaymentMethod, PaymentStatus,
    PricingFactor, PricingRule, RuleOperator
)
from logistics.services import dispatch
from logistics.services.orders import OrderService
from logistics.services.pricing import PricingEngine
from logistics.tasks import refund_cancelled_order
from stores.models import CartItem, Product, Store
from support.models import Refund


DALLAS = (32.7767, -96.7970)
FORT_WORTH = (32.7555, -97.3308)

DELIVERY = {
    'delivery_address': '500 Elm St',
    'delivery_city': 'Dallas',
    'delivery_state': 'TX',
    'delivery_zip_code': '75202',
}


class OrderFixtures:
    """Merchant with a located store, a customer and an online driver."""

    def setUp(self):
        self.merchant = User.objects.create_user(
            email='merchant@partsrunner.test', password='testpass123', role=UserRole.MERCHANT,
        )
        self.customer = User.objects.create_user(
            email='customer@partsrunner.test', password='testpass123', full_name='Casey Customer',
        )
        self.driver = User.objects.create_user(
            email='driver@partsrunner.test', password='testpass123', role=UserRole.DRIVER,
            full_name='Dana Driver',
        )
        self.admin = User.objects.create_user(
            email='admin@partsrunner.test', password='testpass123', role=UserRole.ADMIN,
        )
        self.store = Store.objects.create(
            merchant=self.merchant, name='Elm Auto Parts', address='100 Main St',
            city='Dallas', state='TX', zip_code='75201',
            latitude=DALLAS[0], longitude=DALLAS[1],
        )
        self.product = Product.objects.create(
            store=self.store, name='Brake Pads', price=Decimal('40.00'), stock_quantity=10,
        )
        self.profile = DriverProfile.objects.create(
            user=self.driver, is_online=True, is_available=True,
            current_latitude=DALLAS[0], current_longitude=DALLAS[1] + 0.01,
            last_location_at=timezone.now(),
        )

    def make_order(self, quantity=1, **kwargs):
        kwargs.setdefault('customer', self.customer)
        return OrderService.create_order(
            store=self.store,
            lines=[{
                'product': self.product, 'name': self.product.name,
                'sku': '', 'unit_price': self.product.price, 'quantity': quantity,
            }],
            delivery=DELIVERY,
            **kwargs
        )

    def make_paid_order(self, quantity=1, **kwargs):
        order = self.make_order(quantity, **kwargs)
        Order.objects.filter(pk=order.pk).update(payment_status=PaymentStatus.PAID)
        order.refresh_from_db()
        return order

    def advance(self, order, *statuses, actor=None):
        for new_status in statuses:
            order = OrderService.transition(order, new_status, actor=actor or self.merchant)
        return order


class TestPricingEngine(TestCase):
    """Tests for the delivery fee and quote calculation."""

    def setUp(self):
        self.engine = PricingEngine()

    def test_base_fee_within_free_miles(self):
        """Anything up to FREE_DELIVERY_MILES costs the base fee."""
        self.assertEqual(self.engine.base_delivery_fee(0), Decimal('5.99'))
        self.assertEqual(self.engine.base_delivery_fee(3), Decimal('5.99'))

    def test_per_mile_fee_beyond_free_miles(self):
        """5.99 + 0.75 * (5 - 3) = 7.49"""
        self.assertEqual(self.engine.base_delivery_fee(5), Decimal('7.49'))

    def test_service_level_multiplier(self):
        self.assertEqual(self.engine.base_delivery_fee(5, 'express'), Decimal('11.24'))
        self.assertEqual(self.engine.base_delivery_fee(5, 'same_day'), Decimal('14.98'))

    def test_unknown_service_level_rejected(self):
        with self.assertRaises(ValueError):
            self.engine.base_delivery_fee(5, 'teleport')

    def test_haversine_distance(self):
        """Dallas to Fort Worth is about 31 miles as the crow flies."""
        miles = PricingEngine.get_haversine_distance(DALLAS, FORT_WORTH)
        self.assertAlmostEqual(miles, 31.0, delta=1.0)

    def test_distance_falls_back_to_haversine_with_road_factor(self):
        with patch.object(PricingEngine, 'get_route_distance', return_value=None):
            miles = self.engine.distance_miles(DALLAS, FORT_WORTH)
        straight = PricingEngine.get_haversine_distance(DALLAS, FORT_WORTH)
        self.assertAlmostEqual(miles, straight * 1.3, places=1)

    def test_route_distance_preferred(self):
        with patch.object(PricingEngine, 'get_route_distance', return_value=35.123):
            self.assertEqual(self.engine.distance_miles(DALLAS, FORT_WORTH), 35.12)

    def test_unknown_coordinates_are_zero_miles(self):
        self.assertEqual(self.engine.distance_miles(None, FORT_WORTH), 0.0)
        self.assertEqual(self.engine.distance_miles(DALLAS, (None, None)), 0.0)

    # ==========================================
    # Pricing Rules
    # ==========================================

    def test_percent_rule_applies(self):
        rule = PricingRule(
            name='Long haul', factor=PricingFactor.DISTANCE_MILES, operator=RuleOperator.GT,
            threshold=Decimal('3'), adjustment_type=AdjustmentType.PERCENT, adjustment=Decimal('20'),
        )
        fee, applied = self.engine.apply_rules(Decimal('10.00'), {'distance_miles': 5}, rules=[rule])
        self.assertEqual(fee, Decimal('12.00'))
        self.assertEqual(applied, ['Long haul'])

    def test_rule_not_matching_is_skipped(self):
        rule = PricingRule(
            name='Night', factor=PricingFactor.HOUR_OF_DAY, operator=RuleOperator.GTE,
            threshold=Decimal('22'), adjustment_type=AdjustmentType.FIXED, adjustment=Decimal('3'),
        )
        fee, applied = self.engine.apply_rules(Decimal('10.00'), {'hour_of_day': 14}, rules=[rule])
        self.assertEqual(fee, Decimal('10.00'))
        self.assertEqual(applied, [])

    def test_discount_never_goes_below_base_fee(self):
        rule = PricingRule(
            name='Promo', factor=PricingFactor.DISTANCE_MILES, operator=RuleOperator.LT,
            threshold=Decimal('100'), adjustment_type=AdjustmentType.FIXED, adjustment=Decimal('-20'),
        )
        fee, _ = self.engine.apply_rules(Decimal('7.49'), {'distance_miles': 5}, rules=[rule])
        self.assertEqual(fee, Decimal('5.99'))

    def test_lazy_factor_only_computed_when_needed(self):
        counter = MagicMock(return_value=50)
        rule = PricingRule(
            name='Long haul', factor=PricingFactor.DISTANCE_MILES, operator=RuleOperator.GT,
            threshold=Decimal('3'), adjustment_type=AdjustmentType.PERCENT, adjustment=Decimal('10'),
        )
        self.engine.apply_rules(
            Decimal('10.00'), {'distance_miles': 5, 'pending_orders': counter}, rules=[rule]
        )
        counter.assert_not_called()

    def test_quote_totals(self):
        """Total = subtotal + tax + delivery fee + service fee + service fee tax."""
        quote = self.engine.quote(Decimal('100.00'))
        self.assertEqual(quote.tax, Decimal('8.25'))
        self.assertEqual(quote.delivery_fee, Decimal('5.99'))
        self.assertEqual(
            quote.total,
            quote.subtotal + quote.tax + quote.delivery_fee + quote.service_fee + quote.service_fee_tax
        )
        self.assertEqual(quote.distance_miles, 0.0)

    def test_quote_uses_stored_rules(self):
        PricingRule.objects.create(
            name='Flat surcharge', factor=PricingFactor.DISTANCE_MILES, operator=RuleOperator.GTE,
            threshold=Decimal('0'), adjustment_type=AdjustmentType.FIXED, adjustment=Decimal('2.00'),
        )
        quote = self.engine.quote(Decimal('10.00'))
        self.assertEqual(quote.delivery_fee, Decimal('7.99'))
        self.assertIn('Flat surcharge', quote.applied_rules)


class TestOrderService(OrderFixtures, TestCase):
    """Tests for checkout and the order status machine."""

    def test_checkout_creates_order_and_clears_cart(self):
        CartItem.objects.create(customer=self.customer, product=self.product, quantity=2)

        orders = OrderService.checkout(self.customer, DELIVERY)

        self.assertEqual(len(orders), 1)
        order = orders[0]
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(order.subtotal, Decimal('80.00'))
        self.assertEqual(order.items.count(), 1)
        self.assertFalse(CartItem.objects.filter(customer=self.customer).exists())
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 8)

    def test_checkout_splits_orders_by_store(self):
        other_store = Store.objects.create(
            merchant=self.merchant, name='Oak Cliff Parts', address='9 Oak St',
            city='Dallas', state='TX', zip_code='75208',
        )
        other_product = Product.objects.create(
            store=other_store, name='Oil Filter', price=Decimal('12.00'), stock_quantity=5,
        )
        CartItem.objects.create(customer=self.customer, product=self.product, quantity=1)
        CartItem.objects.create(customer=self.customer, product=other_product, quantity=1)

        orders = OrderService.checkout(self.customer, DELIVERY)

        self.assertEqual(len(orders), 2)
        self.assertEqual({o.store_id for o in orders}, {self.store.pk, other_store.pk})

    def test_checkout_empty_cart_rejected(self):
        with self.assertRaises(ValueError):
            OrderService.checkout(self.customer, DELIVERY)

    def test_store_minimum_enforced(self):
        self.store.minimum_order = Decimal('50.00')
        self.store.save()
        with self.assertRaises(ValueError):
            self.make_order(quantity=1)

    def test_insufficient_stock_rejected(self):
        with self.assertRaises(ValueError):
            self.make_order(quantity=11)
        self.assertEqual(Order.objects.count(), 0)

    def test_order_number_and_delivery_code_generated(self):
        order = self.make_order()
        self.assertTrue(order.order_number.startswith('PR-'))
        self.assertEqual(len(order.delivery_code), 4)
        self.assertEqual(order.status_history.count(), 1)

    # ==========================================
    # Transitions
    # ==========================================

    def test_illegal_transition_rejected(self):
        order = self.make_order()
        with self.assertRaises(ValueError):
            OrderService.transition(order, OrderStatus.DELIVERED, actor=self.admin)

    def test_merchant_confirms_order(self):
        order = self.make_paid_order()
        order = OrderService.transition(order, OrderStatus.CONFIRMED, actor=self.merchant)
        self.assertEqual(order.status, OrderStatus.CONFIRMED)
        self.assertIsNotNone(order.confirmed_at)

    def test_merchant_cannot_confirm_unpaid_card_order(self):
        order = self.make_order()
        with self.assertRaisesMessage(ValueError, 'once payment is received'):
            OrderService.transition(order, OrderStatus.CONFIRMED, actor=self.merchant)

        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.PENDING)

    def test_merchant_confirms_unpaid_cash_app_order(self):
        order = self.make_order(payment_method=PaymentMethod.CASH_APP)
        order = OrderService.transition(order, OrderStatus.CONFIRMED, actor=self.merchant)
        self.assertEqual(order.status, OrderStatus.CONFIRMED)

    def test_customer_cannot_confirm(self):
        order = self.make_order()
        with self.assertRaises(PermissionError):
            OrderService.transition(order, OrderStatus.CONFIRMED, actor=self.customer)

    def test_stranger_cannot_touch_order(self):
        stranger = User.objects.create_user(email='stranger@partsrunner.test', password='x')
        order = self.make_order()
        with self.assertRaises(PermissionError):
            OrderService.transition(order, OrderStatus.CANCELLED, actor=stranger)

    def test_pickup_requires_driver(self):
        order = self.advance(
            self.make_paid_order(), OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY_FOR_PICKUP
        )
        with self.assertRaises(ValueError):
            OrderService.transition(order, OrderStatus.PICKED_UP, actor=self.admin)

    def test_delivery_requires_code(self):
        order = self.advance(self.make_paid_order(), OrderStatus.CONFIRMED)
        dispatch.accept_order(order.pk, self.driver)
        order = self.advance(order, OrderStatus.PREPARING, OrderStatus.READY_FOR_PICKUP)
        order = OrderService.transition(order, OrderStatus.PICKED_UP, actor=self.driver)

        with self.assertRaises(ValueError):
            OrderService.transition(order, OrderStatus.DELIVERED, actor=self.driver, delivery_code='xxxx')

        order = OrderService.transition(
            order, OrderStatus.DELIVERED, actor=self.driver, delivery_code=order.delivery_code
        )
        self.assertEqual(order.status, OrderStatus.DELIVERED)
        self.profile.refresh_from_db()
        self.assertEqual(self.profile.total_deliveries, 1)
        self.assertTrue(self.profile.is_available)

    def test_driver_cannot_set_merchant_status(self):
        order = self.advance(self.make_paid_order(), OrderStatus.CONFIRMED)
        dispatch.accept_order(order.pk, self.driver)
        with self.assertRaises(PermissionError):
            OrderService.transition(order, OrderStatus.PREPARING, actor=self.driver)

    # ==========================================
    # Cancellation
    # ==========================================

    def test_cancel_releases_stock(self):
        order = self.make_order(quantity=3)
        OrderService.cancel(order, actor=self.customer, reason='Changed my mind')

        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.CANCELLED)
        self.assertEqual(order.cancellation_reason, 'Changed my mind')
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 10)

    def test_customer_cannot_cancel_once_preparing(self):
        order = self.advance(self.make_paid_order(), OrderStatus.CONFIRMED, OrderStatus.PREPARING)
        with self.assertRaises(ValueError):
            OrderService.cancel(order, actor=self.customer)

    def test_cancel_paid_order_schedules_refund(self):
        order = self.make_order()
        Order.objects.filter(pk=order.pk).update(payment_status=PaymentStatus.PAID)

        with patch('logistics.tasks.refund_cancelled_order.delay') as mock_refund:
            with self.captureOnCommitCallbacks(execute=True):
                OrderService.cancel(order, actor=self.merchant, reason='Out of stock')

        mock_refund.assert_called_once_with(str(order.pk))

    def test_cancel_unpaid_order_does_not_refund(self):
        order = self.make_order()
        with patch('logistics.tasks.refund_cancelled_order.delay') as mock_refund:
            with self.captureOnCommitCallbacks(execute=True):
                OrderService.cancel(order, actor=self.merchant)
        mock_refund.assert_not_called()

    def test_cancel_unpaid_card_order_cancels_payment_intent(self):
        order = self.make_order()
        Order.objects.filter(pk=order.pk).update(payment_intent_id='pi_open')

        with patch('finance.stripe_service.StripeService.cancel_payment_intent',
                   return_value={'success': True, 'status': 'canceled'}) as mock_cancel:
            with self.captureOnCommitCallbacks(execute=True):
                OrderService.cancel(order, actor=self.customer)

        mock_cancel.assert_called_once_with('pi_open')

    def test_cancel_paid_order_leaves_payment_intent(self):
        order = self.make_paid_order()
        Order.objects.filter(pk=order.pk).update(payment_intent_id='pi_paid')

        with patch('finance.stripe_service.StripeService.cancel_payment_intent') as mock_cancel, \
                patch('logistics.tasks.refund_cancelled_order.delay'):
            with self.captureOnCommitCallbacks(execute=True):
                OrderService.cancel(order, actor=self.merchant)

        mock_cancel.assert_not_called()

    def test_refund_task_refunds_cancelled_card_order(self):
        order = self.make_paid_order()
        Order.objects.filter(pk=order.pk).update(
            status=OrderStatus.CANCELLED, payment_intent_id='pi_paid',
            cancellation_reason='Out of stock',
        )

        with patch('finance.stripe_service.StripeService.create_refund',
                   return_value={'success': True, 'refund_id': 're_1', 'status': 'succeeded'}) as mock_refund:
            refund_id = refund_cancelled_order(str(order.pk))

        mock_refund.assert_called_once_with('pi_paid', order.total, reason='Out of stock')
        refund = Refund.objects.get(pk=refund_id)
        self.assertEqual(refund.amount, order.total)
        self.assertEqual(refund.external_reference, 're_1')
        order.refresh_from_db()
        self.assertEqual(order.payment_status, PaymentStatus.REFUNDED)

        # Nothing left, so a second run is a no-op
        self.assertIsNone(refund_cancelled_order(str(order.pk)))

    def test_refund_task_skips_open_order(self):
        order = self.make_paid_order()
        self.assertIsNone(refund_cancelled_order(str(order.pk)))

    def test_expire_stale_orders(self):
        stale = self.make_order()
        fresh = self.make_order()
        Order.objects.filter(pk=stale.pk).update(created_at=timezone.now() - timedelta(hours=30))

        self.assertEqual(OrderService.expire_stale_orders(hours=24), 1)

        stale.refresh_from_db()
        fresh.refresh_from_db()
        self.assertEqual(stale.status, OrderStatus.CANCELLED)
        self.assertEqual(fresh.status, OrderStatus.PENDING)

    def test_merchant_collected_order_created_paid(self):
        order = self.make_order(customer=None, payment_method=PaymentMethod.MERCHANT_COLLECTED)
        self.assertEqual(order.payment_status, PaymentStatus.PAID)

    def test_tracking_includes_driver_location(self):
        order = self.advance(self.make_paid_order(), OrderStatus.CONFIRMED)
        dispatch.accept_order(order.pk, self.driver)
        order.refresh_from_db()

        data = OrderService.tracking(order)

        self.assertEqual(data['status'], OrderStatus.CONFIRMED)
        self.assertEqual(data['driver']['name'], 'Dana Driver')
        self.assertEqual(data['driver']['location']['latitude'], DALLAS[0])


class TestDispatch(OrderFixtures, TestCase):
    """Tests for driver search and order claims."""

    def setUp(self):
        super().setUp()
        self.other_driver = User.objects.create_user(
            email='driver2@partsrunner.test', password='testpass123', role=UserRole.DRIVER,
        )
        self.other_profile = DriverProfile.objects.create(
            user=self.other_driver, is_online=True, is_available=True,
            current_latitude=DALLAS[0] + 0.02, current_longitude=DALLAS[1],
            last_location_at=timezone.now(),
        )

    def test_find_nearby_drivers_sorted_by_distance(self):
        found = dispatch.find_nearby_drivers(*DALLAS)
        self.assertEqual([p.user_id for p in found], [self.driver.pk, self.other_driver.pk])
        self.assertLess(found[0].distance_miles, found[1].distance_miles)

    def test_stale_location_excluded(self):
        DriverProfile.objects.filter(pk=self.other_profile.pk).update(
            last_location_at=timezone.now() - timedelta(hours=1)
        )
        found = dispatch.find_nearby_drivers(*DALLAS)
        self.assertEqual([p.user_id for p in found], [self.driver.pk])

    def test_far_driver_excluded(self):
        DriverProfile.objects.filter(pk=self.other_profile.pk).update(
            current_latitude=FORT_WORTH[0], current_longitude=FORT_WORTH[1]
        )
        found = dispatch.find_nearby_drivers(*DALLAS, radius_miles=10)
        self.assertNotIn(self.other_driver.pk, [p.user_id for p in found])

    @patch('logistics.events.broadcast_order_offer')
    def test_dispatch_notifies_nearby_drivers(self, mock_offer):
        order = self.advance(self.make_paid_order(), OrderStatus.CONFIRMED)
        self.assertEqual(dispatch.dispatch_order(order.pk), 2)
        self.assertEqual(mock_offer.call_count, 2)

    @patch('logistics.events.broadcast_order_offer')
    def test_pending_order_not_dispatched(self, mock_offer):
        order = self.make_order()
        self.assertEqual(dispatch.dispatch_order(order.pk), 0)
        mock_offer.assert_not_called()

    def test_accept_order(self):
        order = self.advance(self.make_paid_order(), OrderStatus.CONFIRMED)
        order = dispatch.accept_order(order.pk, self.driver)

        self.assertEqual(order.driver, self.driver)
        self.assertIsNotNone(order.assigned_at)
        self.profile.refresh_from_db()
        self.assertFalse(self.profile.is_available)

    def test_second_driver_cannot_take_claimed_order(self):
        order = self.advance(self.make_paid_order(), OrderStatus.CONFIRMED)
        dispatch.accept_order(order.pk, self.driver)

        with self.assertRaisesMessage(ValueError, 'already taken'):
            dispatch.accept_order(order.pk, self.other_driver)

    def test_busy_driver_cannot_take_second_order(self):
        first = self.advance(self.make_paid_order(), OrderStatus.CONFIRMED)
        second = self.advance(self.make_paid_order(), OrderStatus.CONFIRMED)
        dispatch.accept_order(first.pk, self.driver)

        with self.assertRaises(ValueError):
            dispatch.accept_order(second.pk, self.driver)

    def test_offline_driver_cannot_accept(self):
        self.profile.is_online = False
        self.profile.save()
        order = self.advance(self.make_paid_order(), OrderStatus.CONFIRMED)

        with self.assertRaises(ValueError):
            dispatch.accept_order(order.pk, self.driver)

    def test_customer_cannot_accept(self):
        order = self.advance(self.make_paid_order(), OrderStatus.CONFIRMED)
        with self.assertRaises(PermissionError):
            dispatch.accept_order(order.pk, self.customer)

    def test_release_order(self):
        order = self.advance(self.make_paid_order(), OrderStatus.CONFIRMED)
        dispatch.accept_order(order.pk, self.driver)

        with self.assertRaises(PermissionError):
            dispatch.release_order(order.pk, self.other_driver)

        with patch('logistics.tasks.dispatch_order_task.delay') as mock_dispatch:
            with self.captureOnCommitCallbacks(execute=True):
                order = dispatch.release_order(order.pk, self.driver)

        self.assertIsNone(order.driver_id)
        mock_dispatch.assert_called_with(str(order.pk))
        self.profile.refresh_from_db()
        self.assertTrue(self.profile.is_available)

    def test_admin_assign_confirms_pending_order(self):
        order = self.make_order()
        order = dispatch.assign_driver(order.pk, self.driver, self.admin)
        self.assertEqual(order.status, OrderStatus.CONFIRMED)
        self.assertEqual(order.driver_id, self.driver.pk)

    def test_available_orders_near_driver(self):
        order = self.advance(self.make_paid_order(), OrderStatus.CONFIRMED)
        self.make_order()  # pending, not offered

        orders = dispatch.available_orders(self.driver)

        self.assertEqual([o.pk for o in orders], [order.pk])
        self.assertGreaterEqual(orders[0].pickup_distance_miles, 0)


class TestOrdersAPI(OrderFixtures, TestCase):
    """Tests for the /api/orders/ endpoints."""

    def setUp(self):
        super().setUp()
        self.client = APIClient()

    def test_requires_authentication(self):
        response = self.client.get('/api/orders/')
        self.assertEqual(response.status_code, 401)

    def test_customer_sees_only_own_orders(self):
        mine = self.make_order()
        other = User.objects.create_user(email='other@partsrunner.test', password='x')
        self.make_order(customer=other)

        self.client.force_authenticate(user=self.customer)
        response = self.client.get('/api/orders/')

        self.assertEqual(response.status_code, 200)
        ids = [row['id'] for row in response.data['results']]
        self.assertEqual(ids, [str(mine.pk)])

    def test_merchant_sees_store_orders(self):
        self.make_order()
        self.client.force_authenticate(user=self.merchant)
        response = self.client.get('/api/orders/')
        self.assertEqual(response.data['count'], 1)

    def test_delivery_code_visible_to_customer_only(self):
        order = self.make_order()

        self.client.force_authenticate(user=self.customer)
        response = self.client.get(f'/api/orders/{order.pk}/')
        self.assertEqual(response.data['delivery_code'], order.delivery_code)

        self.client.force_authenticate(user=self.merchant)
        response = self.client.get(f'/api/orders/{order.pk}/')
        self.assertIsNone(response.data['delivery_code'])

    def test_quote_endpoint(self):
        self.client.force_authenticate(user=self.customer)
        response = self.client.post('/api/orders/quote/', {
            'store_id': str(self.store.pk),
            'subtotal': '100.00',
        }, format='json')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['delivery_fee'], '5.99')
        self.assertEqual(response.data['currency'], 'USD')

    def test_checkout_endpoint(self):
        CartItem.objects.create(customer=self.customer, product=self.product, quantity=1)
        self.client.force_authenticate(user=self.customer)

        response = self.client.post('/api/orders/checkout/', DELIVERY, format='json')

        self.assertEqual(response.status_code, 201)
        self.assertEqual(len(response.data), 1)

    def test_checkout_empty_cart_returns_400(self):
        self.client.force_authenticate(user=self.customer)
        response = self.client.post('/api/orders/checkout/', DELIVERY, format='json')
        self.assertEqual(response.status_code, 400)
        self.assertIn('error', response.data)

    def test_merchant_updates_status(self):
        order = self.make_paid_order()
        self.client.force_authenticate(user=self.merchant)

        response = self.client.post(
            f'/api/orders/{order.pk}/update_status/', {'status': 'confirmed'}, format='json'
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['status'], 'confirmed')

    def test_customer_status_update_forbidden(self):
        order = self.make_order()
        self.client.force_authenticate(user=self.customer)

        response = self.client.post(
            f'/api/orders/{order.pk}/update_status/', {'status': 'confirmed'}, format='json'
        )
        self.assertEqual(response.status_code, 403)

    def test_driver_accepts_via_api(self):
        order = self.advance(self.make_paid_order(), OrderStatus.CONFIRMED)
        self.client.force_authenticate(user=self.driver)

        response = self.client.get('/api/orders/available/')
        self.assertEqual([row['id'] for row in response.data], [str(order.pk)])

        response = self.client.post(f'/api/orders/{order.pk}/accept/')
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data['success'])

        response = self.client.get('/api/orders/active/')
        self.assertEqual(response.data['order']['id'], str(order.pk))

    def test_malformed_order_id_is_not_found(self):
        self.client.force_authenticate(user=self.driver)
        self.assertEqual(self.client.post('/api/orders/not-an-order/accept/').status_code, 404)
        self.assertEqual(self.client.post('/api/orders/12345/release/').status_code, 404)

        self.client.force_authenticate(user=self.customer)
        self.assertEqual(self.client.get('/api/orders/abc/').status_code, 404)

    def test_customer_cannot_use_driver_endpoints(self):
        self.client.force_authenticate(user=self.customer)
        response = self.client.get('/api/orders/available/')
        self.assertEqual(response.status_code, 403)

    def test_pricing_rules_admin_only(self):
        self.client.force_authenticate(user=self.merchant)
        self.assertEqual(self.client.get('/api/pricing-rules/').status_code, 403)

        self.client.force_authenticate(user=self.admin)
        response = self.client.post('/api/pricing-rules/', {
            'name': 'Rush hour', 'factor': 'hour_of_day', 'operator': 'gte',
            'threshold': '17', 'adjustment_type': 'percent', 'adjustment': '15',
        }, format='json')
        self.assertEqual(response.status_code, 201)
