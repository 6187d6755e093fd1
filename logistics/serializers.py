"""
Logistics App Serializers - Orders, Quotes & Pricing Rules
"""

from rest_framework import serializers

from .models import (
    Order, OrderItem, OrderStatus, OrderStatusHistory, PaymentMethod,
    PricingRule, ServiceLevel
)


class OrderItemSerializer(serializers.ModelSerializer):
    """Serializer for OrderItem model."""

    line_total = serializers.DecimalField(max_digits=10, decimal_places=2, read_only=True)

    class Meta:
        model = OrderItem
        fields = ['id', 'product', 'product_name', 'sku', 'unit_price', 'quantity', 'line_total']
        read_only_fields = fields


class OrderStatusHistorySerializer(serializers.ModelSerializer):
    changed_by_email = serializers.EmailField(source='changed_by.email', read_only=True, default=None)

    class Meta:
        model = OrderStatusHistory
        fields = ['status', 'note', 'changed_by_email', 'created_at']


class OrderSerializer(serializers.ModelSerializer):
    """Full serializer for Order model."""

    items = OrderItemSerializer(many=True, read_only=True)
    store_name = serializers.CharField(source='store.name', read_only=True)
    driver_name = serializers.CharField(source='driver.full_name', read_only=True, default=None)
    driver_phone = serializers.CharField(source='driver.phone_number', read_only=True, default=None)
    status_display = serializers.CharField(source='get_status_display', read_only=True)
    full_delivery_address = serializers.CharField(read_only=True)
    delivery_code = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'customer', 'customer_name', 'customer_email', 'customer_phone',
            'store', 'store_name', 'driver', 'driver_name', 'driver_phone',
            'status', 'status_display', 'source', 'external_order_id', 'service_level',
            'payment_method', 'payment_status', 'payout_status',
            'subtotal', 'tax', 'delivery_fee', 'service_fee', 'service_fee_tax', 'total',
            'distance_miles', 'delivery_address', 'delivery_unit', 'delivery_city',
            'delivery_state', 'delivery_zip_code', 'delivery_latitude', 'delivery_longitude',
            'delivery_instructions', 'full_delivery_address', 'delivery_code',
            'items', 'created_at', 'updated_at', 'confirmed_at', 'ready_at', 'assigned_at',
            'picked_up_at', 'delivered_at', 'cancelled_at', 'estimated_delivery_at',
            'cancellation_reason'
        ]
        read_only_fields = fields

    def get_delivery_code(self, obj):
        # Only the customer (and admins) see the handoff code
        request = self.context.get('request')
        if request is None:
            return None
        user = request.user
        if user.is_authenticated and (user.pk == obj.customer_id or user.is_platform_admin):
            return obj.delivery_code
        return None


class OrderListSerializer(serializers.ModelSerializer):
    """Lightweight serializer for order listings."""

    store_name = serializers.CharField(source='store.name', read_only=True)
    item_count = serializers.IntegerField(source='items.count', read_only=True)

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'store', 'store_name', 'status', 'payment_status',
            'total', 'item_count', 'delivery_city', 'distance_miles', 'created_at'
        ]


class AvailableOrderSerializer(serializers.ModelSerializer):
    """Order as offered to drivers: pickup, drop-off and the fee."""

    store_name = serializers.CharField(source='store.name', read_only=True)
    store_address = serializers.CharField(source='store.full_address', read_only=True)
    pickup_distance_miles = serializers.FloatField(read_only=True, default=None)

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'status', 'store_name', 'store_address',
            'delivery_city', 'delivery_zip_code', 'distance_miles', 'delivery_fee',
            'service_level', 'pickup_distance_miles', 'created_at'
        ]


class DeliveryAddressSerializer(serializers.Serializer):
    delivery_address = serializers.CharField(max_length=255)
    delivery_unit = serializers.CharField(max_length=50, required=False, allow_blank=True, default='')
    delivery_city = serializers.CharField(max_length=100)
    delivery_state = serializers.CharField(min_length=2, max_length=2)
    delivery_zip_code = serializers.RegexField(r'^\d{5}(-\d{4})?$', max_length=10)
    delivery_latitude = serializers.FloatField(required=False, allow_null=True, min_value=-90, max_value=90)
    delivery_longitude = serializers.FloatField(required=False, allow_null=True, min_value=-180, max_value=180)
    delivery_instructions = serializers.CharField(required=False, allow_blank=True, default='')

    def validate_delivery_state(self, value):
        return value.upper()


class CheckoutSerializer(DeliveryAddressSerializer):
    """Serializer for turning the cart into orders."""

    payment_method = serializers.ChoiceField(
        choices=[
            (PaymentMethod.CARD, PaymentMethod.CARD.label),
            (PaymentMethod.CASH_APP, PaymentMethod.CASH_APP.label),
            (PaymentMethod.VENMO, PaymentMethod.VENMO.label),
        ],
        default=PaymentMethod.CARD
    )
    service_level = serializers.ChoiceField(choices=ServiceLevel.choices, default=ServiceLevel.STANDARD)

    def delivery(self):
        return {k: v for k, v in self.validated_data.items() if k.startswith('delivery_')}


class QuoteRequestSerializer(serializers.Serializer):
    """Serializer for price estimation request."""

    store_id = serializers.UUIDField()
    subtotal = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0)
    delivery_latitude = serializers.FloatField(required=False, min_value=-90, max_value=90)
    delivery_longitude = serializers.FloatField(required=False, min_value=-180, max_value=180)
    service_level = serializers.ChoiceField(choices=ServiceLevel.choices, default=ServiceLevel.STANDARD)

    def validate(self, data):
        has_lat = data.get('delivery_latitude') is not None
        has_lng = data.get('delivery_longitude') is not None
        if has_lat != has_lng:
            raise serializers.ValidationError("Provide both delivery_latitude and delivery_longitude.")
        return data


class QuoteResponseSerializer(serializers.Serializer):
    """Serializer for price estimation response."""

    subtotal = serializers.DecimalField(max_digits=10, decimal_places=2)
    tax = serializers.DecimalField(max_digits=10, decimal_places=2)
    delivery_fee = serializers.DecimalField(max_digits=10, decimal_places=2)
    service_fee = serializers.DecimalField(max_digits=10, decimal_places=2)
    service_fee_tax = serializers.DecimalField(max_digits=10, decimal_places=2)
    total = serializers.DecimalField(max_digits=10, decimal_places=2)
    distance_miles = serializers.FloatField()
    service_level = serializers.CharField()
    estimated_minutes = serializers.IntegerField()
    applied_rules = serializers.ListField(child=serializers.CharField())
    currency = serializers.CharField(default='USD')


class OrderStatusUpdateSerializer(serializers.Serializer):
    """Serializer for order status updates."""

    status = serializers.ChoiceField(choices=OrderStatus.choices)
    note = serializers.CharField(required=False, allow_blank=True, default='')
    delivery_code = serializers.CharField(required=False, allow_blank=True, max_length=4)

    def validate(self, data):
        if data['status'] == OrderStatus.CANCELLED and not data.get('note'):
            raise serializers.ValidationError({'note': 'A reason is required to cancel an order.'})
        return data


class OrderCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class DriverAssignSerializer(serializers.Serializer):
    """Serializer for assigning a driver to an order."""

    driver_id = serializers.UUIDField()


class PricingRuleSerializer(serializers.ModelSerializer):
    """Serializer for PricingRule model."""

    class Meta:
        model = PricingRule
        fields = [
            'id', 'name', 'factor', 'operator', 'threshold',
            'adjustment_type', 'adjustment', 'priority', 'is_active'
        ]
        read_only_fields = ['id']
