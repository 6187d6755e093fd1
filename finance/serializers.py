"""
Finance App Serializers - Transactions, Wallet, Withdrawals
"""

from decimal import Decimal
from rest_framework import serializers

from .models import PaymentSetting, PayoutMethod, Transaction, WithdrawalRequest


class TransactionSerializer(serializers.ModelSerializer):
    """Serializer for Transaction model."""

    user_email = serializers.EmailField(source='user.email', read_only=True, default=None)
    order_number = serializers.CharField(source='order.order_number', read_only=True, default=None)

    class Meta:
        model = Transaction
        fields = [
            'id', 'user', 'user_email', 'recipient_role', 'transaction_type', 'amount',
            'balance_before', 'balance_after', 'status',
            'order', 'order_number', 'description', 'external_reference',
            'transfer_error', 'created_at'
        ]
        read_only_fields = fields


class TransactionListSerializer(serializers.ModelSerializer):
    """Lightweight serializer for transaction listings."""

    class Meta:
        model = Transaction
        fields = ['id', 'transaction_type', 'recipient_role', 'amount', 'balance_after',
                  'description', 'created_at']


class AdjustmentSerializer(serializers.Serializer):
    """Manual wallet correction (admin only). Negative amounts debit."""

    user_id = serializers.UUIDField()
    amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    description = serializers.CharField(max_length=255)

    def validate_amount(self, value):
        if value == 0:
            raise serializers.ValidationError("Amount cannot be zero")
        return value


class WalletSummarySerializer(serializers.Serializer):
    """Serializer for wallet summary response."""

    balance = serializers.DecimalField(max_digits=12, decimal_places=2)
    total_earned = serializers.DecimalField(max_digits=12, decimal_places=2)
    total_withdrawn = serializers.DecimalField(max_digits=12, decimal_places=2)
    pending_withdrawal = serializers.DecimalField(max_digits=12, decimal_places=2)
    minimum_payout_amount = serializers.DecimalField(max_digits=8, decimal_places=2)
    stripe_connected = serializers.BooleanField()


class WithdrawalRequestSerializer(serializers.ModelSerializer):
    user_email = serializers.EmailField(source='user.email', read_only=True)

    class Meta:
        model = WithdrawalRequest
        fields = [
            'id', 'user', 'user_email', 'amount', 'method', 'destination', 'status',
            'external_reference', 'rejection_reason', 'created_at', 'processed_at'
        ]
        read_only_fields = [
            'id', 'user', 'status', 'external_reference', 'rejection_reason',
            'created_at', 'processed_at'
        ]


class WithdrawalCreateSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal('0.01'))
    method = serializers.ChoiceField(choices=PayoutMethod.choices)
    destination = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')

    def validate_amount(self, value):
        user = self.context.get('user')
        if user and user.wallet_balance < value:
            raise serializers.ValidationError(
                f"Insufficient balance. Available: ${user.wallet_balance}"
            )
        return value


class WithdrawalDecisionSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='')
    external_reference = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')


class PaymentSettingSerializer(serializers.ModelSerializer):
    class Meta:
        model = PaymentSetting
        fields = ['key', 'value', 'description', 'updated_at']
        read_only_fields = ['updated_at']


class PaymentIntentSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()


class PayoutTriggerSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    dry_run = serializers.BooleanField(default=False)
