"""
Support App Serializers - Disputes, Refunds, Contact
"""

from decimal import Decimal
from rest_framework import serializers

from .models import ContactMessage, Dispute, DisputeReason, Refund


class DisputeSerializer(serializers.ModelSerializer):
    order_number = serializers.CharField(source='order.order_number', read_only=True)
    creator_email = serializers.EmailField(source='creator.email', read_only=True)

    class Meta:
        model = Dispute
        fields = [
            'id', 'order', 'order_number', 'creator', 'creator_email',
            'reason', 'description', 'status', 'evidence',
            'resolution_note', 'resolved_by', 'resolved_at', 'refund_amount',
            'created_at', 'updated_at'
        ]
        read_only_fields = [
            'id', 'creator', 'status', 'resolution_note', 'resolved_by',
            'resolved_at', 'refund_amount', 'created_at', 'updated_at'
        ]


class DisputeCreateSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    reason = serializers.ChoiceField(choices=DisputeReason.choices)
    description = serializers.CharField()
    evidence = serializers.FileField(required=False, allow_null=True)


class DisputeResolveSerializer(serializers.Serializer):
    resolution_note = serializers.CharField()
    refund_amount = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=Decimal('0.00'), required=False, default=Decimal('0.00')
    )


class DisputeRejectSerializer(serializers.Serializer):
    reason = serializers.CharField()


class RefundSerializer(serializers.ModelSerializer):
    order_number = serializers.CharField(source='order.order_number', read_only=True)

    class Meta:
        model = Refund
        fields = [
            'id', 'order', 'order_number', 'dispute', 'user', 'amount', 'method',
            'status', 'external_reference', 'transaction', 'reason',
            'requested_by', 'created_at', 'completed_at'
        ]
        read_only_fields = fields


class RefundCreateSerializer(serializers.Serializer):
    """Manual refund (admin only)."""
    order_id = serializers.UUIDField()
    amount = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal('0.01'))
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class ContactMessageSerializer(serializers.ModelSerializer):
    class Meta:
        model = ContactMessage
        fields = [
            'id', 'name', 'email', 'subject', 'message', 'status',
            'response', 'responded_by', 'responded_at', 'created_at'
        ]
        read_only_fields = ['id', 'status', 'response', 'responded_by', 'responded_at', 'created_at']


class ContactResponseSerializer(serializers.Serializer):
    response = serializers.CharField()
