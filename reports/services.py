"""
REPORTS App - Dashboard and Export Service

Aggregates orders, ledger rows and driver data into the numbers shown on
merchant, driver and platform dashboards.
"""

import csv
import io
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from dateutil.relativedelta import relativedelta
from django.conf import settings
from django.db.models import Avg, Count, F, Q, Sum
from django.utils import timezone

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')


def resolve_period(start_date: Optional[date] = None, end_date: Optional[date] = None) -> Tuple[date, date]:
    """Default to the month ending today."""
    if not end_date:
        end_date = timezone.localdate()
    if not start_date:
        start_date = end_date - relativedelta(months=1)
    if start_date > end_date:
        raise ValueError("start_date must be on or before end_date")
    return start_date, end_date


# Leading characters spreadsheets evaluate as a formula
FORMULA_PREFIXES = ('=', '+', '-', '@', '\t', '\r')


def csv_safe(value):
    if isinstance(value, str) and value.startswith(FORMULA_PREFIXES):
        return "'" + value
    return value


def _status_counts(orders) -> Dict[str, int]:
    from logistics.models import OrderStatus

    counts = {value: 0 for value in OrderStatus.values}
    for row in orders.values('status').annotate(count=Count('id')):
        counts[row['status']] = row['count']
    return counts


# ===========================================
# REPORT SERVICE
# ===========================================

class ReportService:
    """
    Read-only aggregations. Periods are inclusive calendar dates.
    """

    @staticmethod
    def _orders_in_period(queryset, start_date: date, end_date: date):
        return queryset.filter(created_at__date__gte=start_date, created_at__date__lte=end_date)

    @classmethod
    def merchant_dashboard(cls, merchant, start_date: date = None, end_date: date = None) -> Dict[str, Any]:
        """
        Revenue, order mix, top products and stock alerts for a merchant's stores.

        Revenue is the item subtotal of delivered orders.
        """
        from logistics.models import Order, OrderItem, OrderStatus
        from stores.models import Product

        start_date, end_date = resolve_period(start_date, end_date)
        today = timezone.localdate()

        all_orders = Order.objects.filter(store__merchant=merchant)
        orders = cls._orders_in_period(all_orders, start_date, end_date)
        delivered = orders.filter(status=OrderStatus.DELIVERED)
        placed = orders.exclude(status=OrderStatus.CANCELLED)

        top_products = (
            OrderItem.objects.filter(order__in=placed)
            .values('product_name')
            .annotate(quantity=Sum('quantity'), revenue=Sum(F('unit_price') * F('quantity')))
            .order_by('-quantity', 'product_name')[:5]
        )

        low_stock = Product.objects.filter(
            store__merchant=merchant,
            is_active=True,
            stock_quantity__lte=settings.LOW_STOCK_THRESHOLD
        )

        return {
            'start_date': start_date,
            'end_date': end_date,
            'revenue': delivered.aggregate(total=Sum('subtotal'))['total'] or ZERO,
            'total_orders': orders.count(),
            'orders_by_status': _status_counts(orders),
            'today_orders': all_orders.filter(created_at__date=today).count(),
            'average_order_value': (
                placed.aggregate(avg=Avg('total'))['avg'] or ZERO
            ).quantize(Decimal('0.01')),
            'top_products': [
                {
                    'name': row['product_name'],
                    'quantity': row['quantity'],
                    'revenue': row['revenue'] or ZERO,
                }
                for row in top_products
            ],
            'low_stock_count': low_stock.count(),
            'store_count': merchant.stores.count(),
        }

    @classmethod
    def driver_performance(cls, driver, start_date: date = None, end_date: date = None) -> Dict[str, Any]:
        """Deliveries, earnings and rating for one driver."""
        from finance.models import Transaction, TransactionType
        from logistics.models import ACTIVE_DRIVER_STATUSES, Order, OrderStatus

        start_date, end_date = resolve_period(start_date, end_date)

        orders = Order.objects.filter(driver=driver)
        period = cls._orders_in_period(orders, start_date, end_date)
        delivered = period.filter(status=OrderStatus.DELIVERED)
        delivered_count = delivered.count()
        cancelled_count = period.filter(status=OrderStatus.CANCELLED).count()
        finished = delivered_count + cancelled_count

        earnings = Transaction.objects.filter(
            user=driver,
            transaction_type=TransactionType.PAYOUT,
            amount__gt=0,
            created_at__date__gte=start_date,
            created_at__date__lte=end_date
        ).aggregate(total=Sum('amount'))['total'] or ZERO

        return {
            'start_date': start_date,
            'end_date': end_date,
            'deliveries': delivered_count,
            'cancelled': cancelled_count,
            'completion_rate': round(delivered_count / finished * 100, 1) if finished else 0.0,
            'earnings': earnings,
            'distance_miles': round(delivered.aggregate(total=Sum('distance_miles'))['total'] or 0.0, 1),
            'average_rating': driver.average_rating,
            'total_ratings': driver.total_ratings_count,
            'active_orders': orders.filter(status__in=ACTIVE_DRIVER_STATUSES).count(),
        }

    @classmethod
    def platform_stats(cls, start_date: date = None, end_date: date = None) -> Dict[str, Any]:
        """Marketplace KPIs for admins and owners."""
        from core.models import User, UserRole
        from drivers.models import ApplicationStatus, DriverApplication, DriverProfile
        from finance.models import RecipientRole, Transaction, WithdrawalRequest, WithdrawalStatus
        from logistics.models import Order, OrderStatus, PayoutStatus

        start_date, end_date = resolve_period(start_date, end_date)
        orders = cls._orders_in_period(Order.objects.all(), start_date, end_date)

        users_by_role = {value: 0 for value in UserRole.values}
        for row in User.objects.filter(is_active=True).values('role').annotate(count=Count('id')):
            users_by_role[row['role']] = row['count']

        pending_withdrawals = WithdrawalRequest.objects.filter(
            status__in=[WithdrawalStatus.PENDING, WithdrawalStatus.PROCESSING]
        ).aggregate(count=Count('id'), total=Sum('amount'))

        return {
            'start_date': start_date,
            'end_date': end_date,
            'users_by_role': users_by_role,
            'orders_by_status': _status_counts(orders),
            'total_orders': orders.count(),
            'gmv': orders.filter(status=OrderStatus.DELIVERED).aggregate(total=Sum('total'))['total'] or ZERO,
            'house_revenue': Transaction.objects.filter(
                recipient_role=RecipientRole.HOUSE,
                created_at__date__gte=start_date,
                created_at__date__lte=end_date
            ).aggregate(total=Sum('amount'))['total'] or ZERO,
            'pending_driver_applications': DriverApplication.objects.filter(
                status__in=[ApplicationStatus.PENDING, ApplicationStatus.UNDER_REVIEW]
            ).count(),
            'pending_order_payouts': Order.objects.filter(
                status=OrderStatus.DELIVERED
            ).filter(Q(payout_status=PayoutStatus.PENDING) | Q(payout_status=PayoutStatus.FAILED)).count(),
            'pending_withdrawals': pending_withdrawals['count'],
            'pending_withdrawal_amount': pending_withdrawals['total'] or ZERO,
            'drivers_online': DriverProfile.objects.filter(is_online=True).count(),
        }

    # ==========================================
    # EXPORTS
    # ==========================================

    CSV_HEADER = [
        'Order Number', 'External ID', 'Store', 'Status', 'Source', 'Customer',
        'Customer Email', 'Subtotal', 'Tax', 'Delivery Fee', 'Total',
        'Payment', 'Payment Status', 'Created', 'Delivered'
    ]

    @classmethod
    def merchant_orders_csv(cls, merchant, start_date: date = None, end_date: date = None) -> str:
        """The merchant's orders in the period as CSV text."""
        from logistics.models import Order

        start_date, end_date = resolve_period(start_date, end_date)
        orders = cls._orders_in_period(
            Order.objects.filter(store__merchant=merchant), start_date, end_date
        ).select_related('store', 'customer').order_by('created_at')

        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(cls.CSV_HEADER)
        for order in orders:
            writer.writerow([
                order.order_number,
                csv_safe(order.external_order_id),
                csv_safe(order.store.name),
                order.get_status_display(),
                order.source,
                csv_safe(order.contact_name),
                csv_safe(order.contact_email),
                order.subtotal,
                order.tax,
                order.delivery_fee,
                order.total,
                order.get_payment_method_display(),
                order.get_payment_status_display(),
                timezone.localtime(order.created_at).strftime('%Y-%m-%d %H:%M'),
                timezone.localtime(order.delivered_at).strftime('%Y-%m-%d %H:%M') if order.delivered_at else '',
            ])

        logger.info(f"[REPORTS] CSV export for {merchant.email}: {start_date} to {end_date}")
        return buffer.getvalue()
