"""
Partners App Serializers - External Orders, API Keys, Webhooks
"""

from decimal import Decimal
from rest_framework import serializers

from logistics.models import Order, ServiceLevel
from .models import MerchantAPIKey, WebhookEndpoint, WebhookEvent

AMOUNT_TOLERANCE = Decimal('0.01')


class ExternalItemSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=200)
    sku = serializers.CharField(max_length=64, required=False, allow_blank=True, default='')
    quantity = serializers.IntegerField(min_value=1)
    price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal('0.00'))


class ExternalOrderCreateSerializer(serializers.Serializer):
    """
    Order pushed by a merchant system. Field names follow the widget payload.
    """

    storeId = serializers.UUIDField()
    externalOrderId = serializers.CharField(max_length=100)
    customerName = serializers.CharField(max_length=150)
    customerEmail = serializers.EmailField()
    customerPhone = serializers.CharField(max_length=20)
    deliveryAddress = serializers.CharField(max_length=255)
    deliveryUnit = serializers.CharField(max_length=50, required=False, allow_blank=True, default='')
    deliveryCity = serializers.CharField(max_length=100)
    deliveryState = serializers.CharField(max_length=2)
    deliveryZipCode = serializers.CharField(max_length=10)
    deliveryLatitude = serializers.FloatField(required=False, allow_null=True, min_value=-90, max_value=90)
    deliveryLongitude = serializers.FloatField(required=False, allow_null=True, min_value=-180, max_value=180)
    items = ExternalItemSerializer(many=True, allow_empty=False)
    subtotal = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal('0.00'))
    tax = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal('0.00'),
                                   required=False, default=Decimal('0.00'))
    deliveryFee = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal('0.00'),
                                           required=False, default=Decimal('0.00'))
    total = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal('0.00'))
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    serviceLevel = serializers.ChoiceField(choices=ServiceLevel.choices, default=ServiceLevel.STANDARD)

    def validate_deliveryState(self, value):
        return value.upper()

    def validate(self, data):
        has_lat = data.get('deliveryLatitude') is not None
        has_lng = data.get('deliveryLongitude') is not None
        if has_lat != has_lng:
            raise serializers.ValidationError("Provide both deliveryLatitude and deliveryLongitude.")

        expected = data['subtotal'] + data['tax'] + data['deliveryFee']
        if abs(expected - data['total']) > AMOUNT_TOLERANCE:
            raise serializers.ValidationError(
                {'total': f"total must equal subtotal + tax + deliveryFee ({expected})"}
            )
        return data


class ExternalOrderSerializer(serializers.ModelSerializer):
    """Order as seen by the merchant system."""

    store_name = serializers.CharField(source='store.name', read_only=True)
    status_display = serializers.CharField(source='get_status_display', read_only=True)
    driver_name = serializers.CharField(source='driver.full_name', read_only=True, default=None)

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'external_order_id', 'store', 'store_name',
            'status', 'status_display', 'customer_name', 'customer_email', 'customer_phone',
            'delivery_address', 'delivery_city', 'delivery_state', 'delivery_zip_code',
            'subtotal', 'tax', 'delivery_fee', 'total', 'distance_miles',
            'driver_name', 'estimated_delivery_at', 'delivered_at', 'cancelled_at',
            'cancellation_reason', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


class ExternalCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class MerchantAPIKeySerializer(serializers.ModelSerializer):
    class Meta:
        model = MerchantAPIKey
        fields = ['id', 'name', 'prefix', 'created', 'expiry_date', 'revoked']
        read_only_fields = ['id', 'prefix', 'created', 'revoked']


class WebhookEndpointSerializer(serializers.ModelSerializer):
    events = serializers.ListField(
        child=serializers.ChoiceField(choices=WebhookEvent.choices),
        required=False,
        allow_empty=False
    )

    class Meta:
        model = WebhookEndpoint
        fields = [
            'id', 'url', 'secret', 'events', 'is_active', 'failure_count',
            'last_status_code', 'last_delivery_at', 'created_at', 'updated_at'
        ]
        read_only_fields = [
            'id', 'secret', 'failure_count', 'last_status_code', 'last_delivery_at',
            'created_at', 'updated_at'
        ]

    def validate_events(self, value):
        return sorted(set(value))
