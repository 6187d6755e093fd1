"""
LOGISTICS App - Orders & Delivery for PartsRunner

Handles: Orders, Order items, Status history, Delivery pricing rules
"""

import uuid
import random
import string
from decimal import Decimal
from django.conf import settings
from django.db import models


class OrderStatus(models.TextChoices):
    """Order status enumeration."""
    PENDING = 'pending', 'Pending'
    CONFIRMED = 'confirmed', 'Confirmed'
    PREPARING = 'preparing', 'Preparing'
    READY_FOR_PICKUP = 'ready_for_pickup', 'Ready for pickup'
    PICKED_UP = 'picked_up', 'Picked up'
    IN_TRANSIT = 'in_transit', 'In transit'
    DELIVERED = 'delivered', 'Delivered'
    CANCELLED = 'cancelled', 'Cancelled'


# Legal moves of the order lifecycle. delivered/cancelled are terminal.
ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PREPARING, OrderStatus.CANCELLED},
    OrderStatus.PREPARING: {OrderStatus.READY_FOR_PICKUP, OrderStatus.CANCELLED},
    OrderStatus.READY_FOR_PICKUP: {OrderStatus.PICKED_UP, OrderStatus.CANCELLED},
    OrderStatus.PICKED_UP: {OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED},
    OrderStatus.IN_TRANSIT: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

# Orders a driver can still claim
CLAIMABLE_STATUSES = (
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY_FOR_PICKUP,
)

# Orders a driver is currently working on
ACTIVE_DRIVER_STATUSES = CLAIMABLE_STATUSES + (
    OrderStatus.PICKED_UP,
    OrderStatus.IN_TRANSIT,
)


class PaymentMethod(models.TextChoices):
    """Payment method enumeration."""
    CARD = 'card', 'Card (Stripe)'
    CASH_APP = 'cash_app', 'Cash App'
    VENMO = 'venmo', 'Venmo'
    MERCHANT_COLLECTED = 'merchant', 'Collected by merchant'


class PaymentStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    PAID = 'paid', 'Paid'
    FAILED = 'failed', 'Failed'
    REFUNDED = 'refunded', 'Refunded'
    PARTIALLY_REFUNDED = 'partially_refunded', 'Partially refunded'


class PayoutStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    COMPLETED = 'completed', 'Completed'
    FAILED = 'failed', 'Failed'


class ServiceLevel(models.TextChoices):
    STANDARD = 'standard', 'Standard'
    EXPRESS = 'express', 'Express'
    SAME_DAY = 'same_day', 'Same day'


class OrderSource(models.TextChoices):
    APP = 'app', 'Marketplace app'
    API = 'api', 'Merchant API'


def generate_order_number() -> str:
    return 'PR-' + ''.join(random.choices(string.ascii_uppercase + string.digits, k=8))


class Order(models.Model):
    """
    A customer order from one store, delivered by one driver.

    Money is frozen at checkout. The 4-digit delivery_code is given to
    the customer and checked by the driver at drop-off.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_number = models.CharField(max_length=16, unique=True, editable=False)

    # Actors
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='orders',
        verbose_name="Customer"
    )
    store = models.ForeignKey(
        'stores.Store',
        on_delete=models.PROTECT,
        related_name='orders',
        verbose_name="Store"
    )
    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='driver_orders',
        verbose_name="Driver"
    )

    # Contact snapshot (API orders have no customer account)
    customer_name = models.CharField(max_length=150, blank=True)
    customer_email = models.EmailField(blank=True)
    customer_phone = models.CharField(max_length=20, blank=True)

    # Status
    status = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
        default=OrderStatus.PENDING,
        db_index=True,
        verbose_name="Status"
    )
    source = models.CharField(
        max_length=10,
        choices=OrderSource.choices,
        default=OrderSource.APP
    )
    external_order_id = models.CharField(max_length=100, blank=True, verbose_name="External order ID")
    service_level = models.CharField(
        max_length=10,
        choices=ServiceLevel.choices,
        default=ServiceLevel.STANDARD
    )

    # Payment
    payment_method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        default=PaymentMethod.CARD
    )
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING
    )
    payment_intent_id = models.CharField(max_length=64, blank=True, db_index=True)
    payout_status = models.CharField(
        max_length=10,
        choices=PayoutStatus.choices,
        default=PayoutStatus.PENDING
    )

    # Money (frozen at checkout)
    subtotal = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    tax = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    delivery_fee = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    service_fee = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    service_fee_tax = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    total = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    distance_miles = models.FloatField(default=0.0, verbose_name="Distance (miles)")

    # Drop-off
    delivery_address = models.CharField(max_length=255)
    delivery_unit = models.CharField(max_length=50, blank=True)
    delivery_city = models.CharField(max_length=100)
    delivery_state = models.CharField(max_length=2)
    delivery_zip_code = models.CharField(max_length=10)
    delivery_latitude = models.FloatField(null=True, blank=True)
    delivery_longitude = models.FloatField(null=True, blank=True)
    delivery_instructions = models.TextField(blank=True)

    # Security
    delivery_code = models.CharField(max_length=4, blank=True, verbose_name="Delivery code")

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    ready_at = models.DateTimeField(null=True, blank=True)
    assigned_at = models.DateTimeField(null=True, blank=True)
    picked_up_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    estimated_delivery_at = models.DateTimeField(null=True, blank=True)

    cancellation_reason = models.TextField(blank=True)

    class Meta:
        verbose_name = "Order"
        verbose_name_plural = "Orders"
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'created_at']),
            models.Index(fields=['driver', 'status']),
            models.Index(fields=['store', 'status']),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['store', 'external_order_id'],
                condition=~models.Q(external_order_id=''),
                name='unique_external_order_per_store'
            ),
        ]

    def __str__(self):
        return f"Order {self.order_number} - {self.status}"

    def save(self, *args, **kwargs):
        if not self.order_number:
            number = generate_order_number()
            while Order.objects.filter(order_number=number).exists():
                number = generate_order_number()
            self.order_number = number
        if not self.delivery_code:
            self.delivery_code = ''.join(random.choices(string.digits, k=4))
        super().save(*args, **kwargs)

    @property
    def is_terminal(self) -> bool:
        return self.status in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)

    @property
    def has_delivery_location(self) -> bool:
        return self.delivery_latitude is not None and self.delivery_longitude is not None

    @property
    def contact_email(self) -> str:
        return self.customer.email if self.customer_id else self.customer_email

    @property
    def contact_name(self) -> str:
        if self.customer_id:
            return self.customer.full_name or self.customer.email
        return self.customer_name

    @property
    def full_delivery_address(self) -> str:
        unit = f" {self.delivery_unit}" if self.delivery_unit else ''
        return (
            f"{self.delivery_address}{unit}, {self.delivery_city}, "
            f"{self.delivery_state} {self.delivery_zip_code}"
        )

    def can_transition_to(self, new_status: str) -> bool:
        return new_status in ORDER_TRANSITIONS.get(self.status, set())


class OrderItem(models.Model):
    """
    One line of an order.

    Name, SKU and price are copied from the product at checkout so later
    catalog edits don't rewrite history.
    """

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='items')
    product = models.ForeignKey(
        'stores.Product',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='order_items'
    )
    product_name = models.CharField(max_length=200)
    sku = models.CharField(max_length=64, blank=True)
    unit_price = models.DecimalField(max_digits=10, decimal_places=2)
    quantity = models.PositiveIntegerField(default=1)

    class Meta:
        verbose_name = "Order item"
        verbose_name_plural = "Order items"

    def __str__(self):
        return f"{self.quantity} x {self.product_name}"

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class OrderStatusHistory(models.Model):
    """Audit trail of order status changes."""

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='status_history')
    status = models.CharField(max_length=20, choices=OrderStatus.choices)
    note = models.CharField(max_length=255, blank=True)
    changed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Status change"
        verbose_name_plural = "Status history"
        ordering = ['created_at', 'id']

    def __str__(self):
        return f"{self.order.order_number}: {self.status}"


# ============================================
# DELIVERY PRICING RULES
# ============================================

class PricingFactor(models.TextChoices):
    """Inputs a pricing rule can test."""
    DISTANCE_MILES = 'distance_miles', 'Distance (miles)'
    HOUR_OF_DAY = 'hour_of_day', 'Hour of day (0-23)'
    PENDING_ORDERS = 'pending_orders', 'Orders waiting for a driver'
    ONLINE_DRIVERS = 'online_drivers', 'Drivers online nearby'


class RuleOperator(models.TextChoices):
    GT = 'gt', '>'
    GTE = 'gte', '>='
    LT = 'lt', '<'
    LTE = 'lte', '<='
    EQ = 'eq', '='


class AdjustmentType(models.TextChoices):
    PERCENT = 'percent', 'Percent of delivery fee'
    FIXED = 'fixed', 'Fixed amount (USD)'


class PricingRule(models.Model):
    """
    Delivery fee adjustment applied when `factor operator threshold` holds.

    Example: distance_miles gt 15 -> +20 percent.
    Rules apply in priority order (lowest first).
    """

    name = models.CharField(max_length=100)
    factor = models.CharField(max_length=20, choices=PricingFactor.choices)
    operator = models.CharField(max_length=3, choices=RuleOperator.choices)
    threshold = models.DecimalField(max_digits=8, decimal_places=2)
    adjustment_type = models.CharField(
        max_length=10,
        choices=AdjustmentType.choices,
        default=AdjustmentType.PERCENT
    )
    adjustment = models.DecimalField(
        max_digits=8,
        decimal_places=2,
        help_text="Percent (e.g. 20 = +20%) or USD. Negative values discount."
    )
    priority = models.PositiveSmallIntegerField(default=100)
    is_active = models.BooleanField(default=True)

    class Meta:
        verbose_name = "Pricing rule"
        verbose_name_plural = "Pricing rules"
        ordering = ['priority', 'id']

    def __str__(self):
        return f"{self.name}: {self.factor} {self.get_operator_display()} {self.threshold}"

    def matches(self, value) -> bool:
        value = Decimal(str(value))
        if self.operator == RuleOperator.GT:
            return value > self.threshold
        if self.operator == RuleOperator.GTE:
            return value >= self.threshold
        if self.operator == RuleOperator.LT:
            return value < self.threshold
        if self.operator == RuleOperator.LTE:
            return value <= self.threshold
        return value == self.threshold
