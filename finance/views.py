"""
Finance App Views - Wallet, Transactions, Payouts & Payments API
"""

import json
import logging
from decimal import Decimal

from django.db.models import Sum
from django.shortcuts import get_object_or_404
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from core.permissions import IsPayoutRecipient, IsPlatformAdmin
from .models import (
    PaymentSetting, RecipientRole, Transaction, TransactionType, WalletService,
    WithdrawalRequest, WithdrawalService, WithdrawalStatus
)
from .serializers import (
    AdjustmentSerializer, PaymentIntentSerializer, PaymentSettingSerializer,
    PayoutTriggerSerializer, TransactionListSerializer, TransactionSerializer,
    WalletSummarySerializer, WithdrawalCreateSerializer, WithdrawalDecisionSerializer,
    WithdrawalRequestSerializer
)
from .services import PayoutService, StripeWebhookHandler
from .stripe_service import StripeService

logger = logging.getLogger(__name__)


class TransactionViewSet(viewsets.ReadOnlyModelViewSet):
    """
    ViewSet for Transaction (read-only).
    Users see their own ledger, admins see everything including house rows.
    """

    queryset = Transaction.objects.select_related('user', 'order')
    permission_classes = [permissions.IsAuthenticated]
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ['transaction_type', 'recipient_role', 'status', 'order']

    def get_serializer_class(self):
        if self.action == 'list':
            return TransactionListSerializer
        return TransactionSerializer

    def get_queryset(self):
        user = self.request.user
        if user.is_platform_admin:
            return self.queryset
        return self.queryset.filter(user=user)

    @action(detail=False, methods=['get'])
    def summary(self, request):
        """Get transaction summary for current user."""
        transactions = Transaction.objects.filter(user=request.user)

        credits = transactions.filter(amount__gt=0).aggregate(
            total=Sum('amount')
        )['total'] or Decimal('0.00')

        debits = transactions.filter(amount__lt=0).aggregate(
            total=Sum('amount')
        )['total'] or Decimal('0.00')

        return Response({
            'total_transactions': transactions.count(),
            'total_credits': credits,
            'total_debits': abs(debits),
            'net': credits + debits
        })


class WalletViewSet(viewsets.ViewSet):
    """
    ViewSet for wallet operations.
    """

    permission_classes = [permissions.IsAuthenticated]

    def get_permissions(self):
        if self.action == 'adjust':
            return [IsPlatformAdmin()]
        return super().get_permissions()

    @action(detail=False, methods=['get'])
    def balance(self, request):
        """Get current wallet balance."""
        user = request.user

        earned = Transaction.objects.filter(
            user=user,
            transaction_type=TransactionType.PAYOUT,
            amount__gt=0
        ).aggregate(total=Sum('amount'))['total'] or Decimal('0.00')

        withdrawn = WithdrawalRequest.objects.filter(
            user=user,
            status=WithdrawalStatus.COMPLETED
        ).aggregate(total=Sum('amount'))['total'] or Decimal('0.00')

        pending = WithdrawalRequest.objects.filter(
            user=user,
            status__in=[WithdrawalStatus.PENDING, WithdrawalStatus.PROCESSING]
        ).aggregate(total=Sum('amount'))['total'] or Decimal('0.00')

        data = {
            'balance': user.wallet_balance,
            'total_earned': earned,
            'total_withdrawn': withdrawn,
            'pending_withdrawal': pending,
            'minimum_payout_amount': PaymentSetting.load()['minimum_payout_amount'],
            'stripe_connected': user.can_receive_transfers,
        }

        return Response(WalletSummarySerializer(data).data)

    @action(detail=False, methods=['get'])
    def history(self, request):
        """Get wallet transaction history."""
        transactions = Transaction.objects.filter(
            user=request.user
        ).order_by('-created_at')[:50]

        serializer = TransactionListSerializer(transactions, many=True)
        return Response(serializer.data)

    @action(detail=False, methods=['post'], permission_classes=[IsPlatformAdmin])
    def adjust(self, request):
        """
        Manual credit or debit (Admin only).
        Used for goodwill credits and corrections.
        """
        from core.models import User, UserRole

        serializer = AdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        user = get_object_or_404(User, pk=data['user_id'])
        role = {
            UserRole.DRIVER: RecipientRole.DRIVER,
            UserRole.MERCHANT: RecipientRole.MERCHANT,
        }.get(user.role, RecipientRole.CUSTOMER)

        try:
            if data['amount'] > 0:
                tx = WalletService.credit(
                    user=user,
                    amount=data['amount'],
                    transaction_type=TransactionType.ADJUSTMENT,
                    recipient_role=role,
                    description=data['description']
                )
            else:
                tx = WalletService.debit(
                    user=user,
                    amount=-data['amount'],
                    transaction_type=TransactionType.ADJUSTMENT,
                    recipient_role=role,
                    description=data['description']
                )
        except ValueError as e:
            return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)

        logger.info(f"[FINANCE] {request.user.email} adjusted {user.email} by {data['amount']}")
        return Response({
            'new_balance': tx.balance_after,
            'transaction_id': str(tx.id)
        })


class WithdrawalViewSet(mixins.ListModelMixin,
                        mixins.RetrieveModelMixin,
                        viewsets.GenericViewSet):
    """
    Wallet cash-outs.

    Drivers and merchants create and list their own; admins review all.
    """

    serializer_class = WithdrawalRequestSerializer
    permission_classes = [permissions.IsAuthenticated]
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ['status', 'method']

    def get_queryset(self):
        queryset = WithdrawalRequest.objects.select_related('user')
        if self.request.user.is_platform_admin:
            return queryset
        return queryset.filter(user=self.request.user)

    def get_permissions(self):
        if self.action == 'create':
            return [IsPayoutRecipient()]
        if self.action in ('approve', 'reject', 'complete', 'fail'):
            return [IsPlatformAdmin()]
        return super().get_permissions()

    def create(self, request):
        serializer = WithdrawalCreateSerializer(data=request.data, context={'user': request.user})
        serializer.is_valid(raise_exception=True)

        try:
            withdrawal = WithdrawalService.create_request(request.user, **serializer.validated_data)
        except ValueError as e:
            return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(
            WithdrawalRequestSerializer(withdrawal).data,
            status=status.HTTP_201_CREATED
        )

    def _decide(self, request, operation):
        withdrawal = self.get_object()
        serializer = WithdrawalDecisionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            operation(withdrawal, serializer.validated_data)
        except ValueError as e:
            return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)
        withdrawal.refresh_from_db()
        return Response(WithdrawalRequestSerializer(withdrawal).data)

    @action(detail=True, methods=['post'])
    def approve(self, request, pk=None):
        return self._decide(
            request,
            lambda w, data: WithdrawalService.approve_request(w, request.user)
        )

    @action(detail=True, methods=['post'])
    def reject(self, request, pk=None):
        def _reject(w, data):
            if not data['reason']:
                raise ValueError("A rejection reason is required")
            WithdrawalService.reject_request(w, request.user, data['reason'])
        return self._decide(request, _reject)

    @action(detail=True, methods=['post'])
    def complete(self, request, pk=None):
        return self._decide(
            request,
            lambda w, data: WithdrawalService.complete_request(w, data['external_reference'])
        )

    @action(detail=True, methods=['post'])
    def fail(self, request, pk=None):
        return self._decide(
            request,
            lambda w, data: WithdrawalService.fail_request(w, data['reason'] or 'Payout failed')
        )


class PayoutViewSet(viewsets.ViewSet):
    """Payout processing trigger and history."""

    permission_classes = [permissions.IsAuthenticated]

    def get_permissions(self):
        if self.action == 'process':
            return [IsPlatformAdmin()]
        return super().get_permissions()

    @action(detail=False, methods=['post'], permission_classes=[IsPlatformAdmin])
    def process(self, request):
        """
        Process (or dry-run) the payout of a delivered order.

        Body: {"order_id": "...", "dry_run": false}
        """
        from logistics.models import Order

        serializer = PayoutTriggerSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = get_object_or_404(
            Order.objects.select_related('store'), pk=serializer.validated_data['order_id']
        )

        if serializer.validated_data['dry_run']:
            result = PayoutService.preview(order)
        else:
            result = PayoutService.process(order.pk)

        if not result['success']:
            return Response(result, status=status.HTTP_400_BAD_REQUEST)
        return Response(result)

    @action(detail=False, methods=['get'])
    def history(self, request):
        transactions = PayoutService.history(request.user)[:100]
        return Response(TransactionSerializer(transactions, many=True).data)


class PaymentSettingViewSet(viewsets.ModelViewSet):
    """Payment knobs (admin only)."""

    queryset = PaymentSetting.objects.all()
    serializer_class = PaymentSettingSerializer
    permission_classes = [IsPlatformAdmin]
    lookup_field = 'key'

    @action(detail=False, methods=['get'])
    def effective(self, request):
        """Every setting with defaults applied."""
        return Response({k: str(v) for k, v in PaymentSetting.load().items()})


# ===========================================
# STRIPE
# ===========================================

class CreatePaymentIntentView(APIView):
    """Create a Stripe PaymentIntent for the caller's unpaid card order."""

    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        from logistics.models import Order, PaymentMethod, PaymentStatus

        serializer = PaymentIntentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = get_object_or_404(
            Order, pk=serializer.validated_data['order_id'], customer=request.user
        )

        if order.payment_method != PaymentMethod.CARD:
            return Response({'error': 'Order is not paid by card'}, status=status.HTTP_400_BAD_REQUEST)
        if order.payment_status == PaymentStatus.PAID:
            return Response({'error': 'Order is already paid'}, status=status.HTTP_400_BAD_REQUEST)
        if order.is_terminal:
            return Response({'error': f'Order is {order.status}'}, status=status.HTTP_400_BAD_REQUEST)

        result = StripeService.create_payment_intent(order)
        if not result['success']:
            return Response({'error': result['error']}, status=status.HTTP_502_BAD_GATEWAY)

        order.payment_intent_id = result['payment_intent_id']
        order.save(update_fields=['payment_intent_id', 'updated_at'])

        return Response({
            'client_secret': result['client_secret'],
            'payment_intent_id': result['payment_intent_id'],
            'amount': result['amount'],
            'currency': 'usd',
        })


class StripeWebhookView(APIView):
    """
    Stripe event receiver.

    Authenticated by the Stripe-Signature header only.
    """

    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    def post(self, request):
        payload = request.body
        signature = request.META.get('HTTP_STRIPE_SIGNATURE', '')

        if not StripeService.verify_webhook_signature(payload, signature):
            logger.warning("[STRIPE] Webhook signature verification failed")
            return Response({'error': 'Invalid signature'}, status=status.HTTP_400_BAD_REQUEST)

        try:
            event = json.loads(payload)
        except ValueError:
            return Response({'error': 'Invalid payload'}, status=status.HTTP_400_BAD_REQUEST)
        if not isinstance(event, dict):
            return Response({'error': 'Invalid payload'}, status=status.HTTP_400_BAD_REQUEST)

        outcome = StripeWebhookHandler.handle(event)
        return Response({'received': True, 'result': outcome})


class StripeConnectView(APIView):
    """
    Stripe Connect Express onboarding for drivers and merchants.

    GET returns the connection state, POST returns an onboarding link
    (creating the account first if needed).
    """

    permission_classes = [IsPayoutRecipient]

    def get(self, request):
        user = request.user
        return Response({
            'account_id': user.stripe_account_id or None,
            'onboarding_complete': user.stripe_onboarding_complete,
        })

    def post(self, request):
        user = request.user

        if not user.stripe_account_id:
            result = StripeService.create_connect_account(user)
            if not result['success']:
                return Response({'error': result['error']}, status=status.HTTP_502_BAD_GATEWAY)
            user.stripe_account_id = result['account_id']
            user.save(update_fields=['stripe_account_id'])
            logger.info(f"[STRIPE] Connect account {user.stripe_account_id} for {user.email}")

        link = StripeService.create_account_link(user.stripe_account_id)
        if not link['success']:
            return Response({'error': link['error']}, status=status.HTTP_502_BAD_GATEWAY)

        return Response({'account_id': user.stripe_account_id, 'url': link['url']})
