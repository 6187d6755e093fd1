"""
PartsRunner Support Tests
=========================

Tests for:
1. Refund Service (card, wallet credit, limits)
2. Disputes (opening, resolution with refund, rejection)
3. Contact form
4. Support API
"""

from decimal import Decimal
from unittest.mock import patch

from django.core import mail
from django.test import TestCase
from rest_framework.test import APIClient

from core.models import User
from finance.models import Transaction, TransactionType
from logistics.models import Order, PaymentMethod, PaymentStatus
from logistics.tests import OrderFixtures
from notifications.models import Notification
from support.models import (
    ContactMessage, ContactStatus, Dispute, DisputeReason, DisputeStatus, Refund,
    RefundMethod, RefundStatus
)
from support.services import RefundService, SupportService

STRIPE_OK = {'success': True, 'refund_id': 're_test_123', 'status': 'succeeded'}


class PaidOrderFixtures(OrderFixtures):

    def make_paid_order(self, **kwargs):
        order = self.make_order(**kwargs)
        Order.objects.filter(pk=order.pk).update(payment_status=PaymentStatus.PAID)
        order.refresh_from_db()
        return order


class TestRefundService(PaidOrderFixtures, TestCase):

    def test_wallet_refund_credits_customer(self):
        order = self.make_paid_order(payment_method=PaymentMethod.CASH_APP)

        refund = RefundService.issue_refund(order, Decimal('10.00'), reason='Damaged box')

        self.assertEqual(refund.method, RefundMethod.WALLET)
        self.assertEqual(refund.status, RefundStatus.COMPLETED)
        self.assertEqual(refund.transaction.transaction_type, TransactionType.REFUND)
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.wallet_balance, Decimal('10.00'))

        order.refresh_from_db()
        self.assertEqual(order.payment_status, PaymentStatus.PARTIALLY_REFUNDED)

    @patch('finance.stripe_service.StripeService.create_refund', return_value=STRIPE_OK)
    def test_card_refund_goes_through_stripe(self, mock_refund):
        order = self.make_paid_order()
        Order.objects.filter(pk=order.pk).update(payment_intent_id='pi_test_1')
        order.refresh_from_db()

        refund = RefundService.issue_refund(order, order.total)

        mock_refund.assert_called_once_with('pi_test_1', order.total, reason='')
        self.assertEqual(refund.method, RefundMethod.STRIPE)
        self.assertEqual(refund.external_reference, 're_test_123')
        self.assertFalse(Transaction.objects.filter(transaction_type=TransactionType.REFUND).exists())

        order.refresh_from_db()
        self.assertEqual(order.payment_status, PaymentStatus.REFUNDED)

    @patch('finance.stripe_service.StripeService.create_refund',
           return_value={'success': False, 'error': 'charge_already_refunded'})
    def test_stripe_failure_rolls_back(self, mock_refund):
        order = self.make_paid_order()
        Order.objects.filter(pk=order.pk).update(payment_intent_id='pi_test_2')

        with self.assertRaises(ValueError):
            RefundService.issue_refund(order, Decimal('5.00'))

        self.assertFalse(Refund.objects.exists())
        order.refresh_from_db()
        self.assertEqual(order.payment_status, PaymentStatus.PAID)

    def test_cannot_refund_more_than_remaining(self):
        order = self.make_paid_order(payment_method=PaymentMethod.VENMO)
        RefundService.issue_refund(order, order.total - Decimal('1.00'))

        self.assertEqual(RefundService.refundable_amount(order), Decimal('1.00'))
        with self.assertRaises(ValueError):
            RefundService.issue_refund(order, Decimal('2.00'))

    def test_unpaid_order_cannot_be_refunded(self):
        order = self.make_order(payment_method=PaymentMethod.CASH_APP)
        with self.assertRaises(ValueError):
            RefundService.issue_refund(order, Decimal('1.00'))

    def test_order_without_customer_needs_card(self):
        order = self.make_paid_order(
            customer=None, payment_method=PaymentMethod.MERCHANT_COLLECTED,
            contact={'name': 'Walk In', 'email': 'walkin@example.com', 'phone': ''},
        )
        with self.assertRaises(ValueError):
            RefundService.issue_refund(order, Decimal('1.00'))

    def test_customer_notified(self):
        order = self.make_paid_order(payment_method=PaymentMethod.CASH_APP)
        with self.captureOnCommitCallbacks(execute=True):
            RefundService.issue_refund(order, Decimal('3.00'))
        self.assertTrue(
            Notification.objects.filter(user=self.customer, title='Refund issued').exists()
        )


class TestDisputes(PaidOrderFixtures, TestCase):

    def setUp(self):
        super().setUp()
        self.order = self.make_paid_order(payment_method=PaymentMethod.CASH_APP)

    def open_dispute(self, creator=None):
        return SupportService.create_dispute(
            self.order, creator or self.customer, DisputeReason.MISSING_ITEM, 'One pad missing'
        )

    def test_party_can_open_dispute(self):
        with self.captureOnCommitCallbacks(execute=True):
            dispute = self.open_dispute()

        self.assertEqual(dispute.status, DisputeStatus.OPEN)
        self.assertTrue(Notification.objects.filter(user=self.admin, title='New dispute').exists())

    def test_outsider_cannot_open_dispute(self):
        outsider = User.objects.create_user(email='outsider@partsrunner.test', password='testpass123')
        with self.assertRaises(PermissionError):
            self.open_dispute(outsider)

    def test_one_open_dispute_per_creator(self):
        self.open_dispute()
        with self.assertRaises(ValueError):
            self.open_dispute()
        # The merchant is a separate party
        self.open_dispute(self.merchant)

    def test_resolve_with_refund(self):
        dispute = self.open_dispute()
        SupportService.start_investigation(dispute, self.admin)

        with self.captureOnCommitCallbacks(execute=True):
            dispute = SupportService.resolve_dispute(
                dispute, self.admin, 'Refunding the missing pad', refund_amount=Decimal('20.00')
            )

        self.assertEqual(dispute.status, DisputeStatus.RESOLVED)
        self.assertEqual(dispute.refund.amount, Decimal('20.00'))
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.wallet_balance, Decimal('20.00'))
        self.assertTrue(Notification.objects.filter(user=self.customer, title='Dispute update').exists())

    def test_failed_refund_keeps_dispute_open(self):
        dispute = self.open_dispute()
        with self.assertRaises(ValueError):
            SupportService.resolve_dispute(dispute, self.admin, 'Too generous', refund_amount=Decimal('9999'))

        dispute.refresh_from_db()
        self.assertEqual(dispute.status, DisputeStatus.OPEN)

    def test_reject_and_no_second_decision(self):
        dispute = self.open_dispute()
        SupportService.reject_dispute(dispute, self.admin, 'Photo shows all items')

        dispute.refresh_from_db()
        self.assertEqual(dispute.status, DisputeStatus.REJECTED)
        with self.assertRaises(ValueError):
            SupportService.resolve_dispute(dispute, self.admin, 'Changed my mind')


class TestContact(TestCase):

    def setUp(self):
        from core.models import UserRole
        self.admin = User.objects.create_user(
            email='admin@partsrunner.test', password='testpass123', role=UserRole.ADMIN,
        )

    def test_respond_sends_email(self):
        contact = SupportService.submit_contact(
            'Riley', 'riley@example.com', 'Delivery areas', 'Do you deliver to Plano?'
        )
        with self.captureOnCommitCallbacks(execute=True):
            SupportService.respond_contact(contact, self.admin, 'Yes, we cover Plano.')

        contact.refresh_from_db()
        self.assertEqual(contact.status, ContactStatus.RESPONDED)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ['riley@example.com'])
        self.assertIn('Delivery areas', mail.outbox[0].subject)

    def test_cannot_respond_twice(self):
        contact = SupportService.submit_contact('Riley', 'riley@example.com', 'Hi', 'Hello')
        SupportService.respond_contact(contact, self.admin, 'Hello back')
        with self.assertRaises(ValueError):
            SupportService.respond_contact(contact, self.admin, 'Again')


class TestSupportAPI(PaidOrderFixtures, TestCase):

    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.order = self.make_paid_order(payment_method=PaymentMethod.CASH_APP)

    def test_customer_opens_dispute(self):
        self.client.force_authenticate(user=self.customer)
        response = self.client.post('/api/disputes/', {
            'order_id': str(self.order.pk),
            'reason': DisputeReason.DAMAGED,
            'description': 'Rotor arrived cracked',
        }, format='json')

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['status'], DisputeStatus.OPEN)

    def test_disputes_scoped_to_parties(self):
        SupportService.create_dispute(self.order, self.customer, DisputeReason.LATE, 'Two hours late')
        outsider = User.objects.create_user(email='outsider@partsrunner.test', password='testpass123')

        self.client.force_authenticate(user=outsider)
        self.assertEqual(self.client.get('/api/disputes/').data['count'], 0)

        self.client.force_authenticate(user=self.merchant)
        self.assertEqual(self.client.get('/api/disputes/').data['count'], 1)

    def test_only_admin_resolves(self):
        dispute = SupportService.create_dispute(self.order, self.customer, DisputeReason.LATE, 'Late')
        url = f'/api/disputes/{dispute.pk}/resolve/'

        self.client.force_authenticate(user=self.customer)
        self.assertEqual(self.client.post(url, {'resolution_note': 'ok'}, format='json').status_code, 403)

        self.client.force_authenticate(user=self.admin)
        response = self.client.post(url, {'resolution_note': 'Voucher sent', 'refund_amount': '5.00'},
                                    format='json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(Refund.objects.get().amount, Decimal('5.00'))

    def test_admin_manual_refund_over_limit(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.post('/api/refunds/issue/', {
            'order_id': str(self.order.pk), 'amount': '9999.00',
        }, format='json')
        self.assertEqual(response.status_code, 400)

    def test_contact_is_public_but_listing_is_admin_only(self):
        response = self.client.post('/api/contact/', {
            'name': 'Jordan', 'email': 'jordan@example.com',
            'subject': 'Partnership', 'message': 'We run a parts store',
        }, format='json')
        self.assertEqual(response.status_code, 201)
        self.assertEqual(ContactMessage.objects.count(), 1)

        self.client.force_authenticate(user=self.customer)
        self.assertEqual(self.client.get('/api/contact/').status_code, 403)
