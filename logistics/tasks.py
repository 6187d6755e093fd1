"""
LOGISTICS App - Celery Tasks

Dispatch, refunds of cancelled orders and the stale-order sweep.
"""

from celery import shared_task
from requests import RequestException
import logging

logger = logging.getLogger(__name__)


@shared_task(name='logistics.tasks.dispatch_order_task')
def dispatch_order_task(order_id: str) -> int:
    """Offer an order to nearby drivers."""
    from logistics.services.dispatch import dispatch_order

    try:
        return dispatch_order(order_id)
    except ValueError as e:
        logger.warning(f"[DISPATCH TASK] {e}")
        return 0


@shared_task(
    bind=True,
    name='logistics.tasks.refund_cancelled_order',
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(RequestException, ConnectionError),
    retry_backoff=True
)
def refund_cancelled_order(self, order_id: str):
    """Refund whatever is left to refund on a cancelled, paid order."""
    from logistics.models import Order, OrderStatus
    from support.services import RefundService

    order = Order.objects.filter(pk=order_id, status=OrderStatus.CANCELLED).first()
    if order is None:
        return None

    remaining = RefundService.refundable_amount(order)
    if remaining <= 0:
        return None

    refund = RefundService.issue_refund(
        order, remaining, reason=order.cancellation_reason or 'Order cancelled'
    )
    return str(refund.pk)


@shared_task(name='logistics.tasks.expire_stale_orders')
def expire_stale_orders() -> int:
    """
    Cancel pending orders left unpaid past PENDING_ORDER_TTL_HOURS.

    Runs hourly.
    """
    from logistics.services.orders import OrderService
    return OrderService.expire_stale_orders()
