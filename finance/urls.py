"""
Finance App URLs
"""

from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import (
    CreatePaymentIntentView, PaymentSettingViewSet, PayoutViewSet, StripeConnectView,
    StripeWebhookView, TransactionViewSet, WalletViewSet, WithdrawalViewSet
)

router = DefaultRouter()
router.register(r'transactions', TransactionViewSet, basename='transaction')
router.register(r'withdrawals', WithdrawalViewSet, basename='withdrawal')
router.register(r'payment-settings', PaymentSettingViewSet, basename='payment-setting')

urlpatterns = [
    # Wallet endpoints
    path('wallet/balance/', WalletViewSet.as_view({'get': 'balance'}), name='wallet-balance'),
    path('wallet/history/', WalletViewSet.as_view({'get': 'history'}), name='wallet-history'),
    path('wallet/adjust/', WalletViewSet.as_view({'post': 'adjust'}), name='wallet-adjust'),

    # Payouts
    path('payouts/process/', PayoutViewSet.as_view({'post': 'process'}), name='payout-process'),
    path('payouts/history/', PayoutViewSet.as_view({'get': 'history'}), name='payout-history'),

    # Stripe
    path('payments/intent/', CreatePaymentIntentView.as_view(), name='payment-intent'),
    path('payments/webhook/', StripeWebhookView.as_view(), name='stripe-webhook'),
    path('payments/connect/', StripeConnectView.as_view(), name='stripe-connect'),

    # Router URLs
    path('', include(router.urls)),
]
