"""
FINANCE App - Celery Tasks for Order Payouts
"""

import logging
from celery import shared_task
from requests import RequestException

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(RequestException, ConnectionError),
    retry_backoff=True
)
def process_order_payout(self, order_id: str):
    """
    Split a delivered order's money between merchant, driver and house.

    Ineligible orders (already paid out, not delivered) are skipped.
    """
    from finance.services import PayoutService

    result = PayoutService.process(order_id)
    if not result['success']:
        logger.info(f"[CELERY] Payout skipped for {order_id}: {result['error']}")
    return result


@shared_task
def process_pending_payouts():
    """
    Sweep delivered orders whose payout is still pending.

    Catches orders whose on-delivery payout task was lost.
    """
    from django.db.models import Q
    from logistics.models import Order, OrderStatus, PaymentMethod, PaymentStatus, PayoutStatus
    from finance.services import PayoutService

    pending = Order.objects.filter(
        Q(payment_method=PaymentMethod.MERCHANT_COLLECTED)
        | Q(payment_status__in=[PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED]),
        status=OrderStatus.DELIVERED,
        payout_status=PayoutStatus.PENDING,
        driver__isnull=False
    ).values_list('pk', flat=True)

    success_count = 0
    error_count = 0

    for order_id in pending:
        try:
            result = PayoutService.process(order_id)
        except Exception as e:
            logger.error(f"[CELERY] Payout crashed for {order_id}: {e}")
            error_count += 1
            continue
        if result['success']:
            success_count += 1
        else:
            error_count += 1

    logger.info(f"[CELERY] Pending payouts: {success_count} success, {error_count} errors")
    return {'success': success_count, 'errors': error_count}
