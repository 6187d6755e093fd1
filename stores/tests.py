"""
PartsRunner Stores Tests
========================

Tests for:
1. Cart (merge, stock limits, grouping by store)
2. Inventory (reserve, release, adjust, low stock)
3. Reviews (eligibility, store and driver ratings)
4. Catalog API (public browsing, merchant ownership)
"""

from decimal import Decimal

from django.test import TestCase
from rest_framework.test import APIClient

from core.models import User, UserRole
from logistics.models import Order, OrderStatus
from logistics.tests import OrderFixtures
from stores.models import CartItem, Favorite, Product, Review, Store
from stores.services import CartService, FavoriteService, InventoryService, ReviewService


class TestCartService(OrderFixtures, TestCase):

    def test_add_merges_quantities(self):
        CartService.add(self.customer, self.product, 2)
        item = CartService.add(self.customer, self.product, 3)

        self.assertEqual(item.quantity, 5)
        self.assertEqual(CartItem.objects.filter(customer=self.customer).count(), 1)

    def test_add_beyond_stock_rejected(self):
        CartService.add(self.customer, self.product, 8)
        with self.assertRaises(ValueError):
            CartService.add(self.customer, self.product, 3)
        self.assertEqual(CartItem.objects.get(customer=self.customer).quantity, 8)

    def test_inactive_product_rejected(self):
        self.product.is_active = False
        self.product.save()
        with self.assertRaises(ValueError):
            CartService.add(self.customer, self.product)
        self.assertFalse(CartItem.objects.exists())

    def test_update_to_zero_removes_line(self):
        CartService.add(self.customer, self.product, 2)
        CartService.update_quantity(self.customer, self.product, 0)
        self.assertFalse(CartItem.objects.exists())

    def test_summary_groups_by_store(self):
        other_store = Store.objects.create(
            merchant=self.merchant, name='Oak Hardware', address='9 Oak St',
            city='Dallas', state='TX', zip_code='75203',
        )
        hammer = Product.objects.create(store=other_store, name='Hammer', price=Decimal('15.00'), stock_quantity=4)

        CartService.add(self.customer, self.product, 2)
        CartService.add(self.customer, hammer, 1)

        summary = CartService.summary(self.customer)
        self.assertEqual(len(summary['stores']), 2)
        self.assertEqual(summary['item_count'], 3)
        self.assertEqual(summary['subtotal'], Decimal('95.00'))

    def test_clear_by_store(self):
        CartService.add(self.customer, self.product, 1)
        self.assertEqual(CartService.clear(self.customer, store=self.store), 1)


class TestFavoriteService(OrderFixtures, TestCase):

    def test_toggle(self):
        self.assertTrue(FavoriteService.toggle(self.customer, self.product))
        self.assertTrue(Favorite.objects.filter(customer=self.customer).exists())
        self.assertFalse(FavoriteService.toggle(self.customer, self.product))
        self.assertFalse(Favorite.objects.exists())


class TestInventoryService(OrderFixtures, TestCase):

    def setUp(self):
        super().setUp()
        self.filter = Product.objects.create(
            store=self.store, name='Oil Filter', price=Decimal('9.00'), stock_quantity=1,
        )

    def test_reserve_decrements_stock(self):
        InventoryService.reserve([(self.product, 3), (self.filter, 1)])

        self.product.refresh_from_db()
        self.filter.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 7)
        self.assertEqual(self.filter.stock_quantity, 0)

    def test_reserve_is_all_or_nothing(self):
        with self.assertRaises(ValueError):
            InventoryService.reserve([(self.product, 3), (self.filter, 2)])

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 10)

    def test_release_returns_stock(self):
        InventoryService.release([(self.product, 2), (None, 5)])
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 12)

    def test_adjust_cannot_go_negative(self):
        with self.assertRaises(ValueError):
            InventoryService.adjust(self.filter, -2)
        self.assertEqual(InventoryService.adjust(self.filter, 4).stock_quantity, 5)

    def test_low_stock(self):
        self.assertEqual(InventoryService.low_stock(self.store), [self.filter])


class TestReviewService(OrderFixtures, TestCase):

    def setUp(self):
        super().setUp()
        self.order = self.make_order()
        Order.objects.filter(pk=self.order.pk).update(status=OrderStatus.DELIVERED, driver=self.driver)
        self.order.refresh_from_db()

    def test_review_updates_store_and_driver(self):
        ReviewService.create_review(self.customer, self.order, store_rating=4, driver_rating=5, comment='Quick')

        self.store.refresh_from_db()
        self.driver.refresh_from_db()
        self.assertEqual(self.store.average_rating, Decimal('4.00'))
        self.assertEqual(self.store.review_count, 1)
        self.assertEqual(self.driver.average_rating, Decimal('5.00'))
        self.assertEqual(self.driver.total_ratings_count, 1)

    def test_only_own_orders(self):
        other = User.objects.create_user(email='other@partsrunner.test', password='testpass123')
        with self.assertRaises(PermissionError):
            ReviewService.create_review(other, self.order, store_rating=3)

    def test_only_delivered_orders(self):
        pending = self.make_order()
        with self.assertRaises(ValueError):
            ReviewService.create_review(self.customer, pending, store_rating=3)

    def test_one_review_per_order(self):
        ReviewService.create_review(self.customer, self.order, store_rating=3)
        with self.assertRaises(ValueError):
            ReviewService.create_review(self.customer, self.order, store_rating=5)
        self.assertEqual(Review.objects.count(), 1)


class TestCatalogAPI(OrderFixtures, TestCase):

    def setUp(self):
        super().setUp()
        self.client = APIClient()

    def test_public_store_list(self):
        Store.objects.create(
            merchant=self.merchant, name='Closed Store', address='1 A St',
            city='Dallas', state='TX', zip_code='75201', is_active=False,
        )
        response = self.client.get('/api/stores/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['count'], 1)

    def test_merchant_creates_store(self):
        self.client.force_authenticate(user=self.merchant)
        response = self.client.post('/api/stores/', {
            'name': 'Elm Auto Parts', 'address': '200 Main St', 'city': 'Dallas',
            'state': 'tx', 'zip_code': '75201',
        }, format='json')

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['state'], 'TX')
        self.assertEqual(response.data['slug'], 'elm-auto-parts-1')

    def test_customer_cannot_create_store(self):
        self.client.force_authenticate(user=self.customer)
        response = self.client.post('/api/stores/', {
            'name': 'Nope', 'address': '1 A St', 'city': 'Dallas', 'state': 'TX', 'zip_code': '75201',
        }, format='json')
        self.assertEqual(response.status_code, 403)

    def test_product_in_foreign_store_rejected(self):
        rival = User.objects.create_user(
            email='rival@partsrunner.test', password='testpass123', role=UserRole.MERCHANT,
        )
        self.client.force_authenticate(user=rival)
        response = self.client.post('/api/products/', {
            'store': str(self.store.pk), 'name': 'Spark Plug', 'price': '4.50', 'stock_quantity': 20,
        }, format='json')
        self.assertEqual(response.status_code, 400)

    def test_adjust_stock_endpoint(self):
        self.client.force_authenticate(user=self.merchant)
        response = self.client.post(
            f'/api/products/{self.product.pk}/adjust_stock/', {'delta': -3}, format='json'
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['stock_quantity'], 7)

    def test_cart_endpoints(self):
        self.client.force_authenticate(user=self.customer)
        response = self.client.post('/api/cart/add/', {
            'product_id': str(self.product.pk), 'quantity': 2,
        }, format='json')
        self.assertEqual(response.status_code, 201)

        response = self.client.get('/api/cart/')
        self.assertEqual(response.data['item_count'], 2)

        response = self.client.post('/api/cart/add/', {
            'product_id': str(self.product.pk), 'quantity': 50,
        }, format='json')
        self.assertEqual(response.status_code, 400)

    def test_review_endpoint(self):
        order = self.make_order()
        Order.objects.filter(pk=order.pk).update(status=OrderStatus.DELIVERED, driver=self.driver)

        self.client.force_authenticate(user=self.customer)
        response = self.client.post('/api/reviews/', {
            'order_id': str(order.pk), 'store_rating': 5,
        }, format='json')
        self.assertEqual(response.status_code, 201)

        self.client.force_authenticate(user=self.driver)
        response = self.client.post('/api/reviews/', {
            'order_id': str(order.pk), 'store_rating': 1,
        }, format='json')
        self.assertEqual(response.status_code, 403)
