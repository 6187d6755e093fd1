"""
LOGISTICS App - Order Service for PartsRunner

Checkout, order creation and the order status machine.
"""

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Iterable, List, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from logistics.models import (
    Order, OrderItem, OrderSource, OrderStatus, OrderStatusHistory,
    PaymentMethod, PaymentStatus, ServiceLevel
)
from logistics.services.pricing import pricing_engine

logger = logging.getLogger(__name__)


# Statuses each party may set (admins may set any legal one)
MERCHANT_STATUSES = {
    OrderStatus.CONFIRMED, OrderStatus.PREPARING,
    OrderStatus.READY_FOR_PICKUP, OrderStatus.CANCELLED,
}
DRIVER_STATUSES = {OrderStatus.PICKED_UP, OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED}
CUSTOMER_CANCELLABLE = {OrderStatus.PENDING, OrderStatus.CONFIRMED}

DELIVERY_FIELDS = (
    'delivery_address', 'delivery_unit', 'delivery_city', 'delivery_state',
    'delivery_zip_code', 'delivery_latitude', 'delivery_longitude', 'delivery_instructions',
)


class OrderService:
    """
    Order lifecycle.

    All status writes go through transition(); side effects (broadcasts,
    emails, dispatch, payouts) are triggered by logistics.signals.
    """

    # ==========================================
    # CREATION
    # ==========================================

    @classmethod
    def checkout(cls, customer, delivery: dict, payment_method: str = PaymentMethod.CARD,
                 service_level: str = ServiceLevel.STANDARD) -> List[Order]:
        """
        Turn the customer's cart into one order per store.

        Raises:
            ValueError: Empty cart, store minimum not met, stock shortfall
        """
        from stores.services import CartService

        if payment_method == PaymentMethod.MERCHANT_COLLECTED:
            raise ValueError("Invalid payment method")

        items = list(CartService.items(customer))
        if not items:
            raise ValueError("Your cart is empty")

        by_store = {}
        for item in items:
            by_store.setdefault(item.product.store, []).append(item)

        orders = []
        with transaction.atomic():
            for store, store_items in by_store.items():
                lines = [
                    {
                        'product': item.product,
                        'name': item.product.name,
                        'sku': item.product.sku,
                        'unit_price': item.product.price,
                        'quantity': item.quantity,
                    }
                    for item in store_items
                ]
                orders.append(cls.create_order(
                    store=store,
                    lines=lines,
                    delivery=delivery,
                    customer=customer,
                    payment_method=payment_method,
                    service_level=service_level,
                ))
                CartService.clear(customer, store=store)

        logger.info(f"[ORDER] Checkout by {customer.email}: {len(orders)} order(s)")
        return orders

    @classmethod
    @transaction.atomic
    def create_order(cls, store, lines: Iterable[dict], delivery: dict, customer=None,
                     contact: Optional[dict] = None,
                     payment_method: str = PaymentMethod.CARD,
                     service_level: str = ServiceLevel.STANDARD,
                     source: str = OrderSource.APP,
                     external_order_id: str = '',
                     amounts: Optional[dict] = None) -> Order:
        """
        Create one order for one store.

        Args:
            lines: dicts with product (or None), name, sku, unit_price, quantity
            delivery: delivery_* address fields
            contact: name/email/phone snapshot for orders without an account
            amounts: merchant-supplied money (API orders); priced here otherwise
        """
        lines = list(lines)
        if not lines:
            raise ValueError("An order needs at least one item")
        if not store.is_active:
            raise ValueError(f"{store.name} is not accepting orders")
        if service_level not in ServiceLevel.values:
            raise ValueError(f"Unknown service level: {service_level}")

        for line in lines:
            if line['quantity'] < 1:
                raise ValueError("Quantity must be at least 1")

        subtotal = sum((Decimal(line['unit_price']) * line['quantity'] for line in lines), Decimal('0.00'))

        if source == OrderSource.APP and subtotal < store.minimum_order:
            raise ValueError(f"{store.name} requires a minimum order of ${store.minimum_order}")

        destination = None
        if delivery.get('delivery_latitude') is not None and delivery.get('delivery_longitude') is not None:
            destination = (delivery['delivery_latitude'], delivery['delivery_longitude'])

        quote = pricing_engine.quote(
            subtotal,
            store=store,
            destination=destination,
            service_level=service_level,
            include_service_fee=(source == OrderSource.APP),
        )

        money = {
            'subtotal': quote.subtotal,
            'tax': quote.tax,
            'delivery_fee': quote.delivery_fee,
            'service_fee': quote.service_fee,
            'service_fee_tax': quote.service_fee_tax,
            'total': quote.total,
        }
        if amounts:
            money.update({k: v for k, v in amounts.items() if v is not None})

        reserved = [(line['product'], line['quantity']) for line in lines if line.get('product')]
        if reserved:
            from stores.services import InventoryService
            InventoryService.reserve(reserved)

        contact = contact or {}
        order = Order.objects.create(
            customer=customer,
            store=store,
            customer_name=contact.get('name', customer.full_name if customer else ''),
            customer_email=contact.get('email', customer.email if customer else ''),
            customer_phone=contact.get('phone', customer.phone_number if customer else ''),
            source=source,
            external_order_id=external_order_id,
            service_level=service_level,
            payment_method=payment_method,
            payment_status=(
                PaymentStatus.PAID if payment_method == PaymentMethod.MERCHANT_COLLECTED
                else PaymentStatus.PENDING
            ),
            distance_miles=quote.distance_miles,
            estimated_delivery_at=timezone.now() + timedelta(minutes=quote.estimated_minutes),
            **money,
            **{f: delivery.get(f, '' if f not in ('delivery_latitude', 'delivery_longitude') else None)
               for f in DELIVERY_FIELDS},
        )

        OrderItem.objects.bulk_create([
            OrderItem(
                order=order,
                product=line.get('product'),
                product_name=line['name'],
                sku=line.get('sku', ''),
                unit_price=line['unit_price'],
                quantity=line['quantity'],
            )
            for line in lines
        ])

        OrderStatusHistory.objects.create(
            order=order, status=order.status, note='Order placed', changed_by=customer
        )

        logger.info(
            f"[ORDER] Created {order.order_number} | store {store.name} | "
            f"total ${order.total} | {order.distance_miles}mi"
        )
        return order

    # ==========================================
    # STATUS MACHINE
    # ==========================================

    @staticmethod
    def check_permission(order: Order, actor, new_status: str):
        """
        Raises:
            PermissionError: If the actor may not set this status
        """
        if actor is None or actor.is_platform_admin:
            return

        if order.store.merchant_id == actor.pk:
            if new_status not in MERCHANT_STATUSES:
                raise PermissionError("Merchants cannot set this status")
            if new_status == OrderStatus.CONFIRMED and OrderService.awaiting_card_payment(order):
                raise ValueError("Card orders are confirmed once payment is received")
            return

        if order.driver_id and order.driver_id == actor.pk:
            if new_status not in DRIVER_STATUSES:
                raise PermissionError("Drivers cannot set this status")
            return

        if order.customer_id and order.customer_id == actor.pk:
            if new_status != OrderStatus.CANCELLED:
                raise PermissionError("Customers can only cancel orders")
            if order.status not in CUSTOMER_CANCELLABLE:
                raise ValueError("This order can no longer be cancelled")
            return

        raise PermissionError("You are not a party to this order")

    @classmethod
    @transaction.atomic
    def transition(cls, order: Order, new_status: str, actor=None, note: str = '',
                   delivery_code: Optional[str] = None) -> Order:
        """
        Move an order to a new status.

        actor=None is the system (webhooks, expiry sweeps).

        Raises:
            ValueError: Illegal move or wrong delivery code
            PermissionError: Actor not allowed to set the status
        """
        order = Order.objects.select_for_update().select_related('store').get(pk=order.pk)
        previous = order.status

        if not order.can_transition_to(new_status):
            raise ValueError(f"Cannot move order from {previous} to {new_status}")

        cls.check_permission(order, actor, new_status)

        now = timezone.now()

        if new_status == OrderStatus.PICKED_UP and not order.driver_id:
            raise ValueError("Assign a driver before pickup")

        if new_status == OrderStatus.DELIVERED:
            is_admin = actor is None or actor.is_platform_admin
            if not is_admin and (delivery_code or '').strip() != order.delivery_code:
                raise ValueError("Invalid delivery code")
            order.delivered_at = now
            cls._driver_finished(order, delivered=True)

        elif new_status == OrderStatus.CONFIRMED:
            order.confirmed_at = now
            minutes = pricing_engine.estimate_minutes(order.distance_miles, order.service_level)
            order.estimated_delivery_at = now + timedelta(minutes=minutes)

        elif new_status == OrderStatus.READY_FOR_PICKUP:
            order.ready_at = now

        elif new_status == OrderStatus.PICKED_UP:
            order.picked_up_at = now
            travel = int(order.distance_miles / settings.AVERAGE_DRIVER_SPEED_MPH * 60)
            order.estimated_delivery_at = now + timedelta(minutes=travel)

        elif new_status == OrderStatus.CANCELLED:
            order.cancelled_at = now
            order.cancellation_reason = note
            cls._release_stock(order)
            if order.driver_id:
                cls._driver_finished(order, delivered=False)

        order.status = new_status
        order.save()

        OrderStatusHistory.objects.create(
            order=order, status=new_status, note=note[:255], changed_by=actor
        )

        if new_status == OrderStatus.CANCELLED and cls._needs_refund(order):
            order_id = order.pk
            transaction.on_commit(lambda: cls._schedule_refund(order_id))
        elif (new_status == OrderStatus.CANCELLED and order.payment_intent_id
              and cls.awaiting_card_payment(order)):
            intent_id = order.payment_intent_id
            transaction.on_commit(lambda: cls._cancel_payment_intent(intent_id))

        logger.info(
            f"[ORDER] {order.order_number}: {previous} -> {new_status} "
            f"by {actor.email if actor else 'system'}"
        )
        return order

    @classmethod
    def cancel(cls, order: Order, actor=None, reason: str = '') -> Order:
        """Cancel, restock and refund (when paid)."""
        return cls.transition(order, OrderStatus.CANCELLED, actor=actor, note=reason or 'Cancelled')

    @staticmethod
    def _release_stock(order: Order):
        from stores.services import InventoryService
        InventoryService.release(
            (item.product, item.quantity) for item in order.items.select_related('product')
        )

    @staticmethod
    def _driver_finished(order: Order, delivered: bool):
        from drivers.models import DriverProfile
        from django.db.models import F

        profiles = DriverProfile.objects.filter(user_id=order.driver_id)
        if delivered:
            profiles.update(total_deliveries=F('total_deliveries') + 1)
        profiles.filter(is_online=True).update(is_available=True)

    @staticmethod
    def _needs_refund(order: Order) -> bool:
        return (
            order.payment_status == PaymentStatus.PAID
            and order.payment_method != PaymentMethod.MERCHANT_COLLECTED
        )

    @staticmethod
    def awaiting_card_payment(order: Order) -> bool:
        return (
            order.payment_method == PaymentMethod.CARD
            and order.payment_status in (PaymentStatus.PENDING, PaymentStatus.FAILED)
        )

    @staticmethod
    def _schedule_refund(order_id):
        from logistics.tasks import refund_cancelled_order
        refund_cancelled_order.delay(str(order_id))

    @staticmethod
    def _cancel_payment_intent(payment_intent_id: str):
        from finance.stripe_service import StripeService
        result = StripeService.cancel_payment_intent(payment_intent_id)
        if not result['success']:
            logger.warning(f"[ORDER] Could not cancel PaymentIntent {payment_intent_id}: {result['error']}")

    # ==========================================
    # MAINTENANCE
    # ==========================================

    @classmethod
    def expire_stale_orders(cls, hours: Optional[int] = None) -> int:
        """Cancel pending orders that were never paid."""
        hours = hours or settings.PENDING_ORDER_TTL_HOURS
        cutoff = timezone.now() - timedelta(hours=hours)

        stale = Order.objects.filter(
            status=OrderStatus.PENDING,
            created_at__lt=cutoff,
        ).exclude(payment_status=PaymentStatus.PAID)

        expired = 0
        for order in stale:
            try:
                cls.transition(order, OrderStatus.CANCELLED, note=f"Expired: unpaid after {hours} hours")
                expired += 1
            except ValueError as e:
                logger.warning(f"[ORDER] Could not expire {order.order_number}: {e}")

        if expired:
            logger.info(f"[ORDER] Expired {expired} stale order(s)")
        return expired

    @staticmethod
    def tracking(order: Order) -> dict:
        """Status, driver's last location and ETA."""
        from drivers.models import DriverProfile

        data = {
            'order_id': str(order.pk),
            'order_number': order.order_number,
            'status': order.status,
            'status_display': order.get_status_display(),
            'estimated_delivery_at': order.estimated_delivery_at,
            'eta_minutes': None,
            'driver': None,
            'store': {
                'name': order.store.name,
                'latitude': order.store.latitude,
                'longitude': order.store.longitude,
            },
            'delivery': {
                'address': order.full_delivery_address,
                'latitude': order.delivery_latitude,
                'longitude': order.delivery_longitude,
            },
        }

        if order.estimated_delivery_at and not order.is_terminal:
            remaining = (order.estimated_delivery_at - timezone.now()).total_seconds() / 60
            data['eta_minutes'] = max(0, int(remaining))

        if order.driver_id:
            profile = DriverProfile.objects.filter(user_id=order.driver_id).select_related('user').first()
            driver = {
                'id': str(order.driver_id),
                'name': order.driver.full_name,
                'phone': order.driver.phone_number,
                'rating': str(order.driver.average_rating),
                'location': None,
            }
            if profile is not None:
                driver['vehicle'] = profile.vehicle_description
                if profile.has_location:
                    driver['location'] = {
                        'latitude': profile.current_latitude,
                        'longitude': profile.current_longitude,
                        'updated_at': profile.last_location_at,
                    }
            data['driver'] = driver

        return data
