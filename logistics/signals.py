"""
LOGISTICS App - Django Signals

Broadcast real-time events, send emails, dispatch and pay out
when orders are created or change status.

Side effects run after the transaction commits, each guarded so one
failure never blocks the others.
"""

import logging
from django.db import transaction
from django.db.models.signals import post_save, pre_save
from django.dispatch import receiver

from logistics.models import Order, OrderStatus

logger = logging.getLogger(__name__)


STATUS_MESSAGES = {
    OrderStatus.CONFIRMED: "The store confirmed your order",
    OrderStatus.PREPARING: "The store is preparing your order",
    OrderStatus.READY_FOR_PICKUP: "Your order is ready for pickup",
    OrderStatus.PICKED_UP: "Your driver picked up your order",
    OrderStatus.IN_TRANSIT: "Your order is on the way",
    OrderStatus.DELIVERED: "Your order was delivered",
    OrderStatus.CANCELLED: "Your order was cancelled",
}


@receiver(pre_save, sender=Order)
def capture_previous_state(sender, instance, **kwargs):
    """Remember status and driver before save for change detection."""
    instance._previous_status = None
    instance._previous_driver_id = None
    if instance.pk:
        previous = Order.objects.filter(pk=instance.pk).values('status', 'driver_id').first()
        if previous:
            instance._previous_status = previous['status']
            instance._previous_driver_id = previous['driver_id']


@receiver(post_save, sender=Order)
def on_order_saved(sender, instance, created, **kwargs):
    """
    On creation: notify the store, email the customer, fire order.created.
    On status change: broadcast, email, webhook, dispatch or pay out.
    On driver assignment: tell the driver.
    """
    order_id = instance.pk

    if created:
        transaction.on_commit(lambda: _handle_new_order(order_id))
        return

    previous_status = getattr(instance, '_previous_status', None)
    if previous_status and previous_status != instance.status:
        transaction.on_commit(lambda: _handle_status_change(order_id, previous_status))

    previous_driver = getattr(instance, '_previous_driver_id', None)
    if instance.driver_id and instance.driver_id != previous_driver:
        transaction.on_commit(lambda: _handle_driver_assigned(order_id))


def _load(order_id):
    return Order.objects.select_related('store__merchant', 'customer', 'driver').filter(pk=order_id).first()


def _handle_new_order(order_id):
    order = _load(order_id)
    if order is None:
        return

    logger.info(f"[SIGNAL] New order created: {order.order_number}")

    try:
        from logistics.events import broadcast_new_order
        broadcast_new_order(order)
    except Exception as e:
        logger.warning(f"[SIGNAL] Broadcast new order failed: {e}")

    try:
        from notifications.services import NotificationService
        NotificationService.notify(
            order.store.merchant,
            'New order',
            f"Order {order.order_number} from {order.contact_name or 'a customer'} for {order.store.name}",
            related_entity_type='order',
            related_entity_id=order.pk,
        )
    except Exception as e:
        logger.warning(f"[SIGNAL] Merchant notification failed: {e}")

    try:
        from notifications.tasks import send_order_email
        send_order_email.delay(str(order.pk), 'confirmation')
    except Exception as e:
        logger.warning(f"[SIGNAL] Confirmation email failed to queue: {e}")

    try:
        from partners.services import WebhookService
        WebhookService.dispatch_event(order.store.merchant, 'order.created', _webhook_payload(order))
    except Exception as e:
        logger.warning(f"[SIGNAL] order.created webhook failed: {e}")

    # Orders that arrive already confirmed go straight to the driver pool
    if order.status == OrderStatus.CONFIRMED and not order.driver_id:
        _queue_dispatch(order)


def _handle_status_change(order_id, previous):
    order = _load(order_id)
    if order is None:
        return

    logger.info(f"[SIGNAL] Order {order.order_number} status: {previous} -> {order.status}")
    message = STATUS_MESSAGES.get(order.status, "")

    try:
        from logistics.events import broadcast_order_status
        broadcast_order_status(order, message)
    except Exception as e:
        logger.warning(f"[SIGNAL] Status broadcast failed: {e}")

    if order.customer_id:
        try:
            from notifications.models import NotificationType
            from notifications.services import NotificationService
            NotificationService.notify(
                order.customer,
                f"Order {order.order_number}",
                message,
                notification_type=(
                    NotificationType.WARNING if order.status == OrderStatus.CANCELLED
                    else NotificationType.SUCCESS if order.status == OrderStatus.DELIVERED
                    else NotificationType.INFO
                ),
                related_entity_type='order',
                related_entity_id=order.pk,
            )
        except Exception as e:
            logger.warning(f"[SIGNAL] Customer notification failed: {e}")

    try:
        from notifications.tasks import send_order_email
        send_order_email.delay(str(order.pk), 'status')
    except Exception as e:
        logger.warning(f"[SIGNAL] Status email failed to queue: {e}")

    try:
        from partners.services import WebhookService
        payload = _webhook_payload(order)
        payload['previous_status'] = previous
        WebhookService.dispatch_event(order.store.merchant, 'order.status_changed', payload)
        if order.status == OrderStatus.DELIVERED:
            WebhookService.dispatch_event(order.store.merchant, 'order.delivered', payload)
    except Exception as e:
        logger.warning(f"[SIGNAL] Status webhook failed: {e}")

    if order.status == OrderStatus.CONFIRMED and not order.driver_id:
        _queue_dispatch(order)

    if order.status == OrderStatus.DELIVERED:
        _handle_order_delivered(order)

    if order.status == OrderStatus.CANCELLED and order.driver_id:
        try:
            from logistics.events import broadcast_order_cancelled
            broadcast_order_cancelled(order.driver_id, order, order.cancellation_reason)
        except Exception as e:
            logger.warning(f"[SIGNAL] Driver cancellation notice failed: {e}")


def _handle_order_delivered(order: Order):
    """Queue the payout split."""
    try:
        from finance.tasks import process_order_payout
        process_order_payout.delay(str(order.pk))
        logger.info(f"[SIGNAL] Payout queued for {order.order_number}")
    except Exception as e:
        logger.error(f"[SIGNAL] Payout queueing failed for {order.order_number}: {e}")


def _handle_driver_assigned(order_id):
    order = _load(order_id)
    if order is None or not order.driver_id:
        return

    try:
        from logistics.events import broadcast_order_assigned
        broadcast_order_assigned(order.driver_id, order)
    except Exception as e:
        logger.warning(f"[SIGNAL] Assignment broadcast failed: {e}")

    if order.customer_id:
        try:
            from notifications.services import NotificationService
            NotificationService.notify(
                order.customer,
                f"Order {order.order_number}",
                f"{order.driver.full_name or 'A driver'} will deliver your order",
                related_entity_type='order',
                related_entity_id=order.pk,
            )
        except Exception as e:
            logger.warning(f"[SIGNAL] Assignment notification failed: {e}")


def _queue_dispatch(order: Order):
    try:
        from logistics.tasks import dispatch_order_task
        dispatch_order_task.delay(str(order.pk))
    except Exception as e:
        logger.warning(f"[SIGNAL] Dispatch failed to queue for {order.order_number}: {e}")


def _webhook_payload(order: Order) -> dict:
    return {
        'order_id': str(order.pk),
        'order_number': order.order_number,
        'external_order_id': order.external_order_id,
        'store_id': str(order.store_id),
        'status': order.status,
        'total': str(order.total),
        'driver': (
            {'name': order.driver.full_name, 'phone': order.driver.phone_number}
            if order.driver_id else None
        ),
        'updated_at': order.updated_at.isoformat() if order.updated_at else None,
    }
