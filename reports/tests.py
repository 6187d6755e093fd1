"""
PartsRunner Reports Tests
=========================

Tests for:
1. Merchant dashboard (revenue, status mix, top products, stock alerts)
2. Driver performance
3. Platform stats
4. CSV export and endpoint permissions
"""

import csv
import io
from datetime import date, timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from core.models import UserRole
from finance.models import RecipientRole, TransactionType, WalletService
from logistics.models import Order, OrderStatus, PayoutStatus
from logistics.tests import OrderFixtures
from reports.services import ReportService, resolve_period
from stores.models import Product


class ReportFixtures(OrderFixtures):

    def setUp(self):
        super().setUp()
        self.delivered = self.make_order(quantity=2)
        Order.objects.filter(pk=self.delivered.pk).update(
            status=OrderStatus.DELIVERED, driver=self.driver, delivered_at=timezone.now(),
            payout_status=PayoutStatus.PENDING,
        )
        self.delivered.refresh_from_db()

        self.cancelled = self.make_order()
        Order.objects.filter(pk=self.cancelled.pk).update(status=OrderStatus.CANCELLED, driver=self.driver)

        self.pending = self.make_order()


class TestResolvePeriod(TestCase):

    def test_defaults_to_month_ending_today(self):
        start, end = resolve_period(end_date=date(2026, 3, 31))
        self.assertEqual(start, date(2026, 2, 28))
        self.assertEqual(end, date(2026, 3, 31))

    def test_rejects_inverted_period(self):
        with self.assertRaises(ValueError):
            resolve_period(date(2026, 5, 2), date(2026, 5, 1))


class TestMerchantDashboard(ReportFixtures, TestCase):

    def test_dashboard_numbers(self):
        report = ReportService.merchant_dashboard(self.merchant)

        self.assertEqual(report['revenue'], self.delivered.subtotal)
        self.assertEqual(report['total_orders'], 3)
        self.assertEqual(report['orders_by_status'][OrderStatus.DELIVERED], 1)
        self.assertEqual(report['orders_by_status'][OrderStatus.CANCELLED], 1)
        self.assertEqual(report['orders_by_status'][OrderStatus.PENDING], 1)
        self.assertEqual(report['today_orders'], 3)

        expected_aov = ((self.delivered.total + self.pending.total) / 2).quantize(Decimal('0.01'))
        self.assertEqual(report['average_order_value'], expected_aov)

    def test_top_products_skip_cancelled_orders(self):
        report = ReportService.merchant_dashboard(self.merchant)
        top = report['top_products'][0]
        self.assertEqual(top['name'], 'Brake Pads')
        self.assertEqual(top['quantity'], 3)
        self.assertEqual(top['revenue'], Decimal('120.00'))

    def test_low_stock_count(self):
        Product.objects.create(store=self.store, name='Wiper Blades', price=Decimal('12.00'), stock_quantity=1)
        report = ReportService.merchant_dashboard(self.merchant)
        self.assertEqual(report['low_stock_count'], 1)

    def test_period_excludes_old_orders(self):
        Order.objects.filter(pk=self.pending.pk).update(created_at=timezone.now() - timedelta(days=90))
        report = ReportService.merchant_dashboard(self.merchant)
        self.assertEqual(report['total_orders'], 2)


class TestDriverPerformance(ReportFixtures, TestCase):

    def test_performance(self):
        WalletService.credit(
            self.driver, Decimal('8.50'), TransactionType.PAYOUT, RecipientRole.DRIVER, order=self.delivered
        )

        report = ReportService.driver_performance(self.driver)

        self.assertEqual(report['deliveries'], 1)
        self.assertEqual(report['cancelled'], 1)
        self.assertEqual(report['completion_rate'], 50.0)
        self.assertEqual(report['earnings'], Decimal('8.50'))
        self.assertEqual(report['active_orders'], 0)


class TestPlatformStats(ReportFixtures, TestCase):

    def test_platform_stats(self):
        WalletService.record_house(Decimal('2.40'), TransactionType.PAYOUT, order=self.delivered)

        report = ReportService.platform_stats()

        self.assertEqual(report['users_by_role'][UserRole.DRIVER], 1)
        self.assertEqual(report['users_by_role'][UserRole.MERCHANT], 1)
        self.assertEqual(report['gmv'], self.delivered.total)
        self.assertEqual(report['house_revenue'], Decimal('2.40'))
        self.assertEqual(report['pending_order_payouts'], 1)
        self.assertEqual(report['drivers_online'], 1)


class TestReportEndpoints(ReportFixtures, TestCase):

    def setUp(self):
        super().setUp()
        self.client = APIClient()

    def test_merchant_dashboard_endpoint(self):
        self.client.force_authenticate(user=self.merchant)
        response = self.client.get('/api/reports/merchant/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['total_orders'], 3)

    def test_admin_needs_merchant_id(self):
        self.client.force_authenticate(user=self.admin)
        self.assertEqual(self.client.get('/api/reports/merchant/').status_code, 400)

        response = self.client.get(f'/api/reports/merchant/?merchant_id={self.merchant.pk}')
        self.assertEqual(response.status_code, 200)

    def test_bad_period_rejected(self):
        self.client.force_authenticate(user=self.merchant)
        response = self.client.get('/api/reports/merchant/?start_date=2026-05-02&end_date=2026-05-01')
        self.assertEqual(response.status_code, 400)

    def test_csv_export(self):
        self.client.force_authenticate(user=self.merchant)
        response = self.client.get('/api/reports/merchant/orders.csv')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'text/csv')
        rows = list(csv.reader(io.StringIO(response.content.decode())))
        self.assertEqual(rows[0][0], 'Order Number')
        self.assertEqual(len(rows), 4)

    def test_csv_escapes_formula_cells(self):
        Order.objects.filter(pk=self.pending.pk).update(
            customer=None, customer_name='=HYPERLINK("http://evil.test","Refund")',
            customer_email='', external_order_id='+1-555',
        )

        rows = list(csv.reader(io.StringIO(ReportService.merchant_orders_csv(self.merchant))))
        row = next(r for r in rows if r[0] == self.pending.order_number)

        self.assertEqual(row[5], '\'=HYPERLINK("http://evil.test","Refund")')
        self.assertEqual(row[1], "'+1-555")

    def test_csv_export_query_count(self):
        # One query for the orders, with stores and customers joined
        with self.assertNumQueries(1):
            ReportService.merchant_orders_csv(self.merchant)

    def test_platform_is_admin_only(self):
        self.client.force_authenticate(user=self.merchant)
        self.assertEqual(self.client.get('/api/reports/platform/').status_code, 403)

        self.client.force_authenticate(user=self.admin)
        self.assertEqual(self.client.get('/api/reports/platform/').status_code, 200)

    def test_driver_report(self):
        self.client.force_authenticate(user=self.driver)
        response = self.client.get('/api/reports/driver/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['deliveries'], 1)

        self.client.force_authenticate(user=self.customer)
        self.assertEqual(self.client.get('/api/reports/driver/').status_code, 403)
