import logging
from decimal import Decimal
from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from core.models import PLATFORM_ADMIN_ROLES, User
from .models import (
    ContactMessage, ContactStatus, Dispute, DisputeStatus, Refund, RefundMethod, RefundStatus
)

logger = logging.getLogger(__name__)


class RefundService:
    """
    Refunds for paid orders.
    Card payments go back through Stripe, everything else becomes wallet credit.
    """

    @staticmethod
    def refunded_total(order) -> Decimal:
        return order.refunds.exclude(status=RefundStatus.FAILED).aggregate(
            total=Sum('amount')
        )['total'] or Decimal('0.00')

    @classmethod
    def refundable_amount(cls, order) -> Decimal:
        return max(Decimal('0.00'), order.total - cls.refunded_total(order))

    @classmethod
    @transaction.atomic
    def issue_refund(cls, order, amount, reason: str = '', requested_by=None, dispute=None) -> Refund:
        """
        Refund up to what is left on the order.

        Raises:
            ValueError: Bad amount, nothing left to refund, or Stripe failure
        """
        from finance.models import RecipientRole, TransactionType, WalletService
        from finance.stripe_service import StripeService
        from logistics.models import Order, PaymentMethod, PaymentStatus

        amount = Decimal(amount)
        order = Order.objects.select_for_update().get(pk=order.pk)

        if amount <= 0:
            raise ValueError("Refund amount must be positive")
        if order.payment_status not in (PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED):
            raise ValueError("Only paid orders can be refunded")

        remaining = cls.refundable_amount(order)
        if amount > remaining:
            raise ValueError(f"Refund exceeds the refundable amount (${remaining})")

        by_card = order.payment_method == PaymentMethod.CARD and bool(order.payment_intent_id)
        if not by_card and not order.customer_id:
            raise ValueError("This order has no customer account to credit")

        refund = Refund.objects.create(
            order=order,
            dispute=dispute,
            user=order.customer,
            amount=amount,
            method=RefundMethod.STRIPE if by_card else RefundMethod.WALLET,
            reason=reason,
            requested_by=requested_by,
        )

        if by_card:
            result = StripeService.create_refund(order.payment_intent_id, amount, reason=reason)
            if not result['success']:
                logger.error(f"[REFUND] Stripe refund failed for {order.order_number}: {result['error']}")
                raise ValueError(f"Stripe refund failed: {result['error']}")
            refund.external_reference = result['refund_id'] or ''
        else:
            refund.transaction = WalletService.credit(
                user=order.customer,
                amount=amount,
                transaction_type=TransactionType.REFUND,
                recipient_role=RecipientRole.CUSTOMER,
                order=order,
                description=f"Refund for order {order.order_number}",
            )

        refund.status = RefundStatus.COMPLETED
        refund.completed_at = timezone.now()
        refund.save()

        fully_refunded = cls.refunded_total(order) >= order.total
        order.payment_status = (
            PaymentStatus.REFUNDED if fully_refunded else PaymentStatus.PARTIALLY_REFUNDED
        )
        order.save(update_fields=['payment_status', 'updated_at'])

        logger.info(
            f"[REFUND] ${amount} refunded on {order.order_number} via {refund.method} "
            f"({order.payment_status})"
        )

        if order.customer_id:
            refund_id = refund.pk
            transaction.on_commit(lambda: cls._notify_customer(refund_id))
        return refund

    @staticmethod
    def _notify_customer(refund_id):
        from notifications.models import NotificationType
        from notifications.services import NotificationService

        refund = Refund.objects.select_related('order__customer').get(pk=refund_id)
        where = 'to your card' if refund.method == RefundMethod.STRIPE else 'to your wallet'
        NotificationService.notify(
            refund.order.customer,
            'Refund issued',
            f"${refund.amount} for order {refund.order.order_number} was refunded {where}",
            notification_type=NotificationType.SUCCESS,
            related_entity_type='order',
            related_entity_id=refund.order_id,
        )


class SupportService:
    """
    Service for handling disputes and contact messages.
    """

    @staticmethod
    def is_party(order, user) -> bool:
        return user.pk in (order.customer_id, order.driver_id, order.store.merchant_id)

    @classmethod
    @transaction.atomic
    def create_dispute(cls, order, creator, reason, description, evidence=None):
        """
        Open a dispute on an order.

        Raises:
            PermissionError: Creator is not a party to the order
            ValueError: Creator already has an open dispute on it
        """
        if not cls.is_party(order, creator):
            raise PermissionError("You can only dispute your own orders")

        open_disputes = Dispute.objects.filter(order=order, creator=creator).exclude(
            status__in=[DisputeStatus.RESOLVED, DisputeStatus.REJECTED]
        )
        if open_disputes.exists():
            raise ValueError("You already have an open dispute on this order")

        dispute = Dispute.objects.create(
            order=order,
            creator=creator,
            reason=reason,
            description=description,
            evidence=evidence
        )
        logger.info(f"[SUPPORT] Dispute {str(dispute.id)[:8]} opened on {order.order_number}")

        dispute_id = dispute.pk
        transaction.on_commit(lambda: cls._notify_admins(dispute_id))
        return dispute

    @staticmethod
    def start_investigation(dispute, admin_user):
        if dispute.status != DisputeStatus.OPEN:
            raise ValueError("Only open disputes can be investigated")
        dispute.status = DisputeStatus.INVESTIGATING
        dispute.resolved_by = admin_user
        dispute.save(update_fields=['status', 'resolved_by', 'updated_at'])
        return dispute

    @classmethod
    @transaction.atomic
    def resolve_dispute(cls, dispute, admin_user, resolution_note, refund_amount=Decimal('0.00')):
        """
        Resolve a dispute and optionally trigger a refund.
        """
        dispute = Dispute.objects.select_for_update().select_related('order').get(pk=dispute.pk)
        if dispute.is_closed:
            raise ValueError("This dispute is already closed")

        dispute.status = DisputeStatus.RESOLVED
        dispute.resolution_note = resolution_note
        dispute.resolved_by = admin_user
        dispute.resolved_at = timezone.now()
        dispute.refund_amount = refund_amount or Decimal('0.00')
        dispute.save()

        if dispute.refund_amount > 0:
            RefundService.issue_refund(
                dispute.order,
                dispute.refund_amount,
                reason=resolution_note,
                requested_by=admin_user,
                dispute=dispute,
            )

        logger.info(f"[SUPPORT] Dispute {str(dispute.id)[:8]} resolved by {admin_user.email}")

        dispute_id = dispute.pk
        transaction.on_commit(lambda: cls._notify_creator(dispute_id))
        return dispute

    @classmethod
    @transaction.atomic
    def reject_dispute(cls, dispute, admin_user, rejection_reason):
        """
        Reject a dispute with a reason.
        """
        dispute = Dispute.objects.select_for_update().get(pk=dispute.pk)
        if dispute.is_closed:
            raise ValueError("This dispute is already closed")

        dispute.status = DisputeStatus.REJECTED
        dispute.resolution_note = rejection_reason
        dispute.resolved_by = admin_user
        dispute.resolved_at = timezone.now()
        dispute.save()

        logger.info(f"[SUPPORT] Dispute {str(dispute.id)[:8]} rejected by {admin_user.email}")

        dispute_id = dispute.pk
        transaction.on_commit(lambda: cls._notify_creator(dispute_id))
        return dispute

    @staticmethod
    def _notify_admins(dispute_id):
        from notifications.models import NotificationType
        from notifications.services import NotificationService

        dispute = Dispute.objects.select_related('order').get(pk=dispute_id)
        NotificationService.notify_many(
            User.objects.filter(role__in=PLATFORM_ADMIN_ROLES, is_active=True),
            'New dispute',
            f"{dispute.get_reason_display()} on order {dispute.order.order_number}",
            notification_type=NotificationType.WARNING,
            related_entity_type='dispute',
            related_entity_id=dispute.pk,
        )

    @staticmethod
    def _notify_creator(dispute_id):
        from notifications.services import NotificationService

        dispute = Dispute.objects.select_related('order', 'creator').get(pk=dispute_id)
        NotificationService.notify(
            dispute.creator,
            'Dispute update',
            f"Your dispute on order {dispute.order.order_number} was {dispute.get_status_display().lower()}",
            related_entity_type='dispute',
            related_entity_id=dispute.pk,
        )

    # ==========================================
    # CONTACT FORM
    # ==========================================

    @staticmethod
    def submit_contact(name, email, subject, message) -> ContactMessage:
        contact = ContactMessage.objects.create(name=name, email=email, subject=subject, message=message)
        logger.info(f"[SUPPORT] Contact message from {email}: {subject}")
        return contact

    @staticmethod
    @transaction.atomic
    def respond_contact(contact: ContactMessage, admin_user, response: str) -> ContactMessage:
        if contact.status == ContactStatus.RESPONDED:
            raise ValueError("This message was already answered")
        if not response.strip():
            raise ValueError("Response cannot be empty")

        contact.response = response
        contact.status = ContactStatus.RESPONDED
        contact.responded_by = admin_user
        contact.responded_at = timezone.now()
        contact.save()

        contact_id = contact.pk
        transaction.on_commit(lambda: _queue_contact_reply(contact_id))
        return contact


def _queue_contact_reply(contact_id):
    from .tasks import send_contact_response
    send_contact_response.delay(contact_id)
