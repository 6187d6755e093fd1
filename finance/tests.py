"""
PartsRunner Finance Tests
=========================

Tests for:
1. Wallet ledger (credit, debit, house rows)
2. Order payouts (merchant / driver / house split)
3. Withdrawals (reserve, approve, reject, fail)
4. Stripe webhooks (signature, payment events)
5. Wallet and withdrawal API
"""

import hashlib
import hmac
import json
import time
from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from drivers.models import DriverProfile
from finance.models import (
    PaymentSetting, PayoutMethod, RecipientRole, Transaction, TransactionType,
    WalletService, WithdrawalRequest, WithdrawalService, WithdrawalStatus
)
from finance.services import PayoutService, StripeWebhookHandler
from finance.stripe_service import StripeService
from finance.tasks import process_pending_payouts
from logistics.models import (
    Order, OrderStatus, PaymentMethod, PaymentStatus, PayoutStatus
)
from logistics.services import dispatch
from logistics.services.orders import OrderService
from logistics.tests import OrderFixtures
from support.models import Refund


class TestWalletService(OrderFixtures, TestCase):

    def test_credit_updates_balance_and_ledger(self):
        tx = WalletService.credit(
            self.driver, Decimal('12.50'), TransactionType.PAYOUT, RecipientRole.DRIVER
        )

        self.driver.refresh_from_db()
        self.assertEqual(self.driver.wallet_balance, Decimal('12.50'))
        self.assertEqual(tx.balance_before, Decimal('0.00'))
        self.assertEqual(tx.balance_after, Decimal('12.50'))

    def test_credit_rejects_non_positive(self):
        with self.assertRaises(ValueError):
            WalletService.credit(self.driver, Decimal('0'), TransactionType.PAYOUT, RecipientRole.DRIVER)

    def test_debit_insufficient_funds(self):
        with self.assertRaises(ValueError):
            WalletService.debit(self.merchant, Decimal('1.00'), TransactionType.CHARGE, RecipientRole.MERCHANT)

    def test_debit_may_go_negative_when_allowed(self):
        tx = WalletService.debit(
            self.merchant, Decimal('3.00'), TransactionType.CHARGE, RecipientRole.MERCHANT,
            allow_negative=True
        )
        self.merchant.refresh_from_db()
        self.assertEqual(self.merchant.wallet_balance, Decimal('-3.00'))
        self.assertEqual(tx.amount, Decimal('-3.00'))

    def test_house_rows_have_no_user(self):
        tx = WalletService.record_house(Decimal('2.00'), TransactionType.PAYOUT)
        self.assertIsNone(tx.user)
        self.assertEqual(tx.recipient_role, RecipientRole.HOUSE)


class TestPayoutService(OrderFixtures, TestCase):

    def deliver(self, order, driver=None):
        Order.objects.filter(pk=order.pk).update(
            status=OrderStatus.DELIVERED, driver=driver or self.driver,
            payment_status=PaymentStatus.PAID,
        )
        order.refresh_from_db()
        return order

    def test_split_adds_up_to_total(self):
        order = self.deliver(self.make_order(quantity=2))
        calc = PayoutService.calculate(order)

        self.assertEqual(calc.merchant_amount, order.subtotal + order.tax)
        self.assertEqual(calc.driver_amount, (order.delivery_fee * Decimal('0.80')).quantize(Decimal('0.01')))
        self.assertEqual(calc.total_payout, order.total)

    def test_driver_percentage_setting(self):
        PaymentSetting.objects.create(key='driver_payout_percentage', value=Decimal('0.5000'))
        order = self.deliver(self.make_order())
        calc = PayoutService.calculate(order)
        self.assertEqual(calc.driver_amount, (order.delivery_fee / 2).quantize(Decimal('0.01')))

    def test_process_writes_ledger(self):
        order = self.deliver(self.make_order())
        result = PayoutService.process(order.pk)

        self.assertTrue(result['success'])
        self.assertEqual(len(result['transactions']), 3)

        order.refresh_from_db()
        self.assertEqual(order.payout_status, PayoutStatus.COMPLETED)

        self.merchant.refresh_from_db()
        self.driver.refresh_from_db()
        calc = PayoutService.calculate(order)
        self.assertEqual(self.merchant.wallet_balance, calc.merchant_amount)
        self.assertEqual(self.driver.wallet_balance, calc.driver_amount)
        self.assertEqual(
            Transaction.objects.get(order=order, recipient_role=RecipientRole.HOUSE).amount,
            calc.house_amount
        )

        profile = DriverProfile.objects.get(user=self.driver)
        self.assertEqual(profile.total_earnings, calc.driver_amount)

    def test_process_twice_is_refused(self):
        order = self.deliver(self.make_order())
        self.assertTrue(PayoutService.process(order.pk)['success'])

        result = PayoutService.process(order.pk)
        self.assertFalse(result['success'])
        self.assertEqual(Transaction.objects.filter(order=order).count(), 3)

    def test_undelivered_order_not_paid_out(self):
        order = self.make_order()
        result = PayoutService.process(order.pk)
        self.assertFalse(result['success'])
        self.assertIn('delivered', result['error'])

    def test_order_without_driver_not_paid_out(self):
        order = self.make_order()
        Order.objects.filter(pk=order.pk).update(status=OrderStatus.DELIVERED)
        result = PayoutService.process(order.pk)
        self.assertFalse(result['success'])
        self.assertEqual(result['error'], 'Order has no driver')

    def test_unpaid_card_order_not_paid_out(self):
        order = self.make_order()
        Order.objects.filter(pk=order.pk).update(status=OrderStatus.DELIVERED, driver=self.driver)

        result = PayoutService.process(order.pk)

        self.assertFalse(result['success'])
        self.assertIn('payment', result['error'])
        self.assertFalse(Transaction.objects.filter(order=order).exists())
        order.refresh_from_db()
        self.assertEqual(order.payout_status, PayoutStatus.PENDING)

    def test_delivery_pays_out(self):
        order = self.advance(self.make_paid_order(), OrderStatus.CONFIRMED)
        dispatch.accept_order(order.pk, self.driver)
        order = self.advance(order, OrderStatus.PREPARING, OrderStatus.READY_FOR_PICKUP)
        order = OrderService.transition(order, OrderStatus.PICKED_UP, actor=self.driver)

        with self.captureOnCommitCallbacks(execute=True):
            OrderService.transition(
                order, OrderStatus.DELIVERED, actor=self.driver, delivery_code=order.delivery_code
            )

        order.refresh_from_db()
        self.assertEqual(order.payout_status, PayoutStatus.COMPLETED)
        self.assertEqual(
            Transaction.objects.filter(order=order, transaction_type=TransactionType.PAYOUT).count(), 3
        )
        self.driver.refresh_from_db()
        self.assertEqual(self.driver.wallet_balance, PayoutService.calculate(order).driver_amount)

    def test_pending_payout_sweep(self):
        paid = self.deliver(self.make_order())
        unpaid = self.make_order()
        Order.objects.filter(pk=unpaid.pk).update(status=OrderStatus.DELIVERED, driver=self.driver)

        self.assertEqual(process_pending_payouts(), {'success': 1, 'errors': 0})

        paid.refresh_from_db()
        unpaid.refresh_from_db()
        self.assertEqual(paid.payout_status, PayoutStatus.COMPLETED)
        self.assertEqual(unpaid.payout_status, PayoutStatus.PENDING)
        self.assertEqual(process_pending_payouts(), {'success': 0, 'errors': 0})

    def test_merchant_collected_order_charges_merchant(self):
        order = self.deliver(self.make_order(payment_method=PaymentMethod.MERCHANT_COLLECTED))
        calc = PayoutService.calculate(order)

        self.assertEqual(calc.collected, Decimal('0.00'))
        self.assertLess(calc.merchant_amount, 0)

        self.assertTrue(PayoutService.process(order.pk)['success'])
        self.merchant.refresh_from_db()
        self.assertEqual(self.merchant.wallet_balance, calc.merchant_amount)
        self.assertTrue(
            Transaction.objects.filter(
                order=order, user=self.merchant, transaction_type=TransactionType.CHARGE
            ).exists()
        )

    def test_preview_writes_nothing(self):
        order = self.deliver(self.make_order())
        preview = PayoutService.preview(order)

        self.assertTrue(preview['success'])
        self.assertEqual(len(preview['transactions']), 3)
        self.assertFalse(Transaction.objects.filter(order=order).exists())

    @override_settings(STRIPE_TRANSFERS_ENABLED=True)
    @patch.object(StripeService, 'create_transfer')
    def test_connected_driver_gets_transfer(self, mock_transfer):
        mock_transfer.return_value = {'success': True, 'transfer_id': 'tr_123'}
        self.driver.stripe_account_id = 'acct_driver'
        self.driver.stripe_onboarding_complete = True
        self.driver.save()

        order = self.deliver(self.make_order())
        PayoutService.process(order.pk)

        mock_transfer.assert_called_once()
        self.driver.refresh_from_db()
        self.assertEqual(self.driver.wallet_balance, Decimal('0.00'))
        payout = Transaction.objects.get(order=order, user=self.driver, transaction_type=TransactionType.PAYOUT)
        self.assertEqual(payout.external_reference, 'tr_123')


class TestWithdrawalService(OrderFixtures, TestCase):

    def setUp(self):
        super().setUp()
        WalletService.credit(self.driver, Decimal('50.00'), TransactionType.PAYOUT, RecipientRole.DRIVER)

    def request(self, amount='20.00', method=PayoutMethod.CASH_APP, destination='$dana'):
        return WithdrawalService.create_request(self.driver, Decimal(amount), method, destination)

    def test_request_reserves_funds(self):
        withdrawal = self.request()

        self.driver.refresh_from_db()
        self.assertEqual(self.driver.wallet_balance, Decimal('30.00'))
        self.assertEqual(withdrawal.status, WithdrawalStatus.PENDING)
        self.assertEqual(withdrawal.transaction.amount, Decimal('-20.00'))

    def test_customer_cannot_withdraw(self):
        with self.assertRaises(ValueError):
            WithdrawalService.create_request(self.customer, Decimal('10.00'), PayoutMethod.VENMO, '@casey')

    def test_minimum_amount(self):
        with self.assertRaises(ValueError):
            self.request(amount='1.00')

    def test_handle_required(self):
        with self.assertRaises(ValueError):
            self.request(destination='')

    def test_stripe_needs_connected_account(self):
        with self.assertRaises(ValueError):
            self.request(method=PayoutMethod.STRIPE, destination='')

    def test_one_request_at_a_time(self):
        self.request()
        with self.assertRaises(ValueError):
            self.request(amount='10.00')

    def test_approve_manual_then_complete(self):
        withdrawal = self.request()
        WithdrawalService.approve_request(withdrawal, self.admin)
        self.assertEqual(withdrawal.status, WithdrawalStatus.PROCESSING)

        WithdrawalService.complete_request(withdrawal, 'cashapp-789')
        withdrawal.refresh_from_db()
        self.assertEqual(withdrawal.status, WithdrawalStatus.COMPLETED)
        self.assertEqual(withdrawal.external_reference, 'cashapp-789')

    @patch.object(StripeService, 'create_transfer')
    def test_approve_stripe_completes(self, mock_transfer):
        mock_transfer.return_value = {'success': True, 'transfer_id': 'tr_456'}
        self.driver.stripe_account_id = 'acct_driver'
        self.driver.stripe_onboarding_complete = True
        self.driver.save()

        withdrawal = self.request(method=PayoutMethod.STRIPE, destination='')
        WithdrawalService.approve_request(withdrawal, self.admin)

        self.assertEqual(withdrawal.status, WithdrawalStatus.COMPLETED)
        self.assertEqual(withdrawal.external_reference, 'tr_456')

    @patch.object(StripeService, 'create_transfer')
    def test_failed_stripe_transfer_returns_funds(self, mock_transfer):
        mock_transfer.return_value = {'success': False, 'error': 'account closed'}
        self.driver.stripe_account_id = 'acct_driver'
        self.driver.stripe_onboarding_complete = True
        self.driver.save()

        withdrawal = self.request(method=PayoutMethod.STRIPE, destination='')
        WithdrawalService.approve_request(withdrawal, self.admin)

        withdrawal.refresh_from_db()
        self.driver.refresh_from_db()
        self.assertEqual(withdrawal.status, WithdrawalStatus.FAILED)
        self.assertEqual(self.driver.wallet_balance, Decimal('50.00'))

    def test_reject_returns_funds(self):
        withdrawal = self.request()
        WithdrawalService.reject_request(withdrawal, self.admin, 'Handle does not exist')

        self.driver.refresh_from_db()
        self.assertEqual(withdrawal.status, WithdrawalStatus.REJECTED)
        self.assertEqual(self.driver.wallet_balance, Decimal('50.00'))

    def test_cannot_reject_twice(self):
        withdrawal = self.request()
        WithdrawalService.reject_request(withdrawal, self.admin, 'no')
        with self.assertRaises(ValueError):
            WithdrawalService.reject_request(withdrawal, self.admin, 'no')

    def test_stale_copy_cannot_approve_rejected_request(self):
        withdrawal = self.request()
        stale = WithdrawalRequest.objects.get(pk=withdrawal.pk)
        WithdrawalService.reject_request(withdrawal, self.admin, 'Handle does not exist')

        with self.assertRaises(ValueError):
            WithdrawalService.approve_request(stale, self.admin)

        self.assertEqual(stale.status, WithdrawalStatus.REJECTED)
        self.driver.refresh_from_db()
        self.assertEqual(self.driver.wallet_balance, Decimal('50.00'))

    def test_stale_copy_cannot_reject_approved_request(self):
        withdrawal = self.request()
        stale = WithdrawalRequest.objects.get(pk=withdrawal.pk)
        WithdrawalService.approve_request(withdrawal, self.admin)

        with self.assertRaises(ValueError):
            WithdrawalService.reject_request(stale, self.admin, 'too late')

        self.driver.refresh_from_db()
        self.assertEqual(self.driver.wallet_balance, Decimal('30.00'))
        self.assertEqual(
            Transaction.objects.filter(user=self.driver, transaction_type=TransactionType.REFUND).count(), 0
        )


def stripe_signature(payload: bytes, secret='whsec_test_secret', timestamp=None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


class TestStripeWebhooks(OrderFixtures, TestCase):

    def setUp(self):
        super().setUp()
        self.order = self.make_order()
        Order.objects.filter(pk=self.order.pk).update(payment_intent_id='pi_123')

    def event(self, event_type, obj):
        return {'type': event_type, 'data': {'object': obj}}

    def test_signature_verification(self):
        payload = b'{"type": "ping"}'
        self.assertTrue(StripeService.verify_webhook_signature(payload, stripe_signature(payload)))
        self.assertFalse(StripeService.verify_webhook_signature(payload, stripe_signature(payload, 'whsec_other')))
        self.assertFalse(StripeService.verify_webhook_signature(
            payload, stripe_signature(payload, timestamp=int(time.time()) - 3600)
        ))

    def test_payment_succeeded_confirms_order(self):
        with self.captureOnCommitCallbacks(execute=True):
            outcome = StripeWebhookHandler.handle(
                self.event('payment_intent.succeeded', {'id': 'pi_123'})
            )

        self.assertEqual(outcome, 'processed')
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.PAID)
        self.assertEqual(self.order.status, OrderStatus.CONFIRMED)

    @patch.object(StripeService, 'cancel_payment_intent')
    @patch.object(StripeService, 'create_refund')
    def test_payment_after_cancellation_is_refunded(self, mock_refund, mock_cancel):
        mock_cancel.return_value = {'success': False, 'error': 'already succeeded'}
        mock_refund.return_value = {'success': True, 'refund_id': 're_late', 'status': 'succeeded'}
        with self.captureOnCommitCallbacks(execute=True):
            OrderService.cancel(self.order, actor=self.customer, reason='Changed my mind')

        with self.captureOnCommitCallbacks(execute=True):
            StripeWebhookHandler.handle(self.event('payment_intent.succeeded', {'id': 'pi_123'}))

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.CANCELLED)
        self.assertEqual(self.order.payment_status, PaymentStatus.REFUNDED)
        mock_refund.assert_called_once_with('pi_123', self.order.total, reason='Changed my mind')
        self.assertEqual(Refund.objects.get(order=self.order).external_reference, 're_late')

    def test_duplicate_payment_event_is_ignored(self):
        with self.captureOnCommitCallbacks(execute=True):
            StripeWebhookHandler.handle(self.event('payment_intent.succeeded', {'id': 'pi_123'}))
        with patch('logistics.tasks.refund_cancelled_order.delay') as mock_refund:
            with self.captureOnCommitCallbacks(execute=True) as callbacks:
                StripeWebhookHandler.handle(self.event('payment_intent.succeeded', {'id': 'pi_123'}))

        self.assertEqual(callbacks, [])
        mock_refund.assert_not_called()

    def test_payment_succeeded_by_metadata(self):
        Order.objects.filter(pk=self.order.pk).update(payment_intent_id='')
        StripeWebhookHandler.handle(self.event(
            'payment_intent.succeeded', {'id': 'pi_999', 'metadata': {'order_id': str(self.order.pk)}}
        ))
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.PAID)
        self.assertEqual(self.order.payment_intent_id, 'pi_999')

    def test_payment_failed(self):
        StripeWebhookHandler.handle(self.event('payment_intent.payment_failed', {
            'id': 'pi_123', 'last_payment_error': {'message': 'Card declined'},
        }))
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.FAILED)
        self.assertEqual(self.order.status, OrderStatus.PENDING)

    def test_charge_partially_refunded(self):
        StripeWebhookHandler.handle(self.event('charge.refunded', {
            'payment_intent': 'pi_123', 'amount': 5000, 'amount_refunded': 1000,
        }))
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.PARTIALLY_REFUNDED)

    def test_account_updated(self):
        self.driver.stripe_account_id = 'acct_driver'
        self.driver.save()
        StripeWebhookHandler.handle(self.event('account.updated', {
            'id': 'acct_driver', 'charges_enabled': True,
        }))
        self.driver.refresh_from_db()
        self.assertTrue(self.driver.stripe_onboarding_complete)

    def test_unknown_event_ignored(self):
        self.assertEqual(StripeWebhookHandler.handle(self.event('customer.created', {})), 'ignored')

    def test_webhook_endpoint_rejects_bad_signature(self):
        client = APIClient()
        payload = json.dumps(self.event('payment_intent.succeeded', {'id': 'pi_123'})).encode()

        response = client.post(
            '/api/payments/webhook/', data=payload, content_type='application/json',
            HTTP_STRIPE_SIGNATURE='t=1,v1=bad'
        )
        self.assertEqual(response.status_code, 400)

        response = client.post(
            '/api/payments/webhook/', data=payload, content_type='application/json',
            HTTP_STRIPE_SIGNATURE=stripe_signature(payload)
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['result'], 'processed')

    def test_webhook_endpoint_rejects_non_object_payload(self):
        client = APIClient()
        for payload in (b'[]', b'"payment_intent.succeeded"', b'42'):
            response = client.post(
                '/api/payments/webhook/', data=payload, content_type='application/json',
                HTTP_STRIPE_SIGNATURE=stripe_signature(payload)
            )
            self.assertEqual(response.status_code, 400)


class TestFinanceAPI(OrderFixtures, TestCase):

    def setUp(self):
        super().setUp()
        self.client = APIClient()
        WalletService.credit(self.driver, Decimal('40.00'), TransactionType.PAYOUT, RecipientRole.DRIVER)

    def test_wallet_balance(self):
        self.client.force_authenticate(user=self.driver)
        response = self.client.get('/api/wallet/balance/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(Decimal(response.data['balance']), Decimal('40.00'))
        self.assertEqual(Decimal(response.data['total_earned']), Decimal('40.00'))
        self.assertFalse(response.data['stripe_connected'])

    def test_wallet_requires_auth(self):
        self.assertEqual(self.client.get('/api/wallet/balance/').status_code, 401)

    def test_transactions_scoped_to_user(self):
        WalletService.credit(self.merchant, Decimal('5.00'), TransactionType.PAYOUT, RecipientRole.MERCHANT)

        self.client.force_authenticate(user=self.driver)
        response = self.client.get('/api/transactions/')
        self.assertEqual(response.data['count'], 1)

        self.client.force_authenticate(user=self.admin)
        response = self.client.get('/api/transactions/')
        self.assertEqual(response.data['count'], 2)

    def test_create_withdrawal(self):
        self.client.force_authenticate(user=self.driver)
        response = self.client.post('/api/withdrawals/', {
            'amount': '25.00', 'method': PayoutMethod.VENMO, 'destination': '@dana',
        }, format='json')

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['status'], WithdrawalStatus.PENDING)

    def test_withdrawal_over_balance_rejected(self):
        self.client.force_authenticate(user=self.driver)
        response = self.client.post('/api/withdrawals/', {
            'amount': '100.00', 'method': PayoutMethod.VENMO, 'destination': '@dana',
        }, format='json')
        self.assertEqual(response.status_code, 400)

    def test_customer_cannot_create_withdrawal(self):
        self.client.force_authenticate(user=self.customer)
        response = self.client.post('/api/withdrawals/', {
            'amount': '10.00', 'method': PayoutMethod.VENMO, 'destination': '@casey',
        }, format='json')
        self.assertEqual(response.status_code, 403)

    def test_admin_rejects_withdrawal(self):
        withdrawal = WithdrawalService.create_request(
            self.driver, Decimal('20.00'), PayoutMethod.CASH_APP, '$dana'
        )

        self.client.force_authenticate(user=self.driver)
        response = self.client.post(f'/api/withdrawals/{withdrawal.pk}/reject/', {'reason': 'no'})
        self.assertEqual(response.status_code, 403)

        self.client.force_authenticate(user=self.admin)
        response = self.client.post(f'/api/withdrawals/{withdrawal.pk}/reject/', {'reason': 'Bad handle'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['status'], WithdrawalStatus.REJECTED)
        self.assertFalse(WithdrawalRequest.objects.filter(status=WithdrawalStatus.PENDING).exists())

    def test_admin_adjustment(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.post('/api/wallet/adjust/', {
            'user_id': str(self.driver.pk), 'amount': '-15.00', 'description': 'Correction',
        }, format='json')

        self.assertEqual(response.status_code, 200)
        self.driver.refresh_from_db()
        self.assertEqual(self.driver.wallet_balance, Decimal('25.00'))

    def test_payout_endpoint_admin_only(self):
        order = self.make_paid_order()
        Order.objects.filter(pk=order.pk).update(status=OrderStatus.DELIVERED, driver=self.driver)

        self.client.force_authenticate(user=self.driver)
        response = self.client.post('/api/payouts/process/', {'order_id': str(order.pk)}, format='json')
        self.assertEqual(response.status_code, 403)

        self.client.force_authenticate(user=self.admin)
        response = self.client.post('/api/payouts/process/', {'order_id': str(order.pk)}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data['success'])
