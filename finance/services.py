"""
FINANCE App - Business Services for PartsRunner

Order payouts (merchant / driver / house split) and Stripe webhook handling.
"""

import logging
from dataclasses import dataclass, asdict, field
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from finance.models import (
    PaymentSetting, RecipientRole, Transaction, TransactionType, WalletService
)

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')


def money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class PayoutCalculation:
    """How one order's money is split."""
    merchant_amount: Decimal
    driver_amount: Decimal
    house_amount: Decimal
    service_fee_tax: Decimal
    driver_percentage: Decimal
    # What the platform actually collected (0 when the merchant collected)
    collected: Decimal
    total_payout: Decimal = field(init=False)

    def __post_init__(self):
        self.total_payout = self.merchant_amount + self.driver_amount + self.house_amount

    def as_dict(self) -> dict:
        return {key: str(value) for key, value in asdict(self).items()}


class PayoutService:
    """
    Splits a delivered order between merchant, driver and house.

    Flow:
    1. calculate() - pure arithmetic, raises on mismatch
    2. process()   - ledger writes under lock, order marked paid out
    3. optional Stripe Connect transfers, then payout.completed event
    """

    @staticmethod
    def calculate(order, payment_settings: Optional[dict] = None) -> PayoutCalculation:
        """
        Raises:
            ValueError: If the split does not add up to what was collected
        """
        from logistics.models import PaymentMethod

        payment_settings = payment_settings or PaymentSetting.load()
        pct = Decimal(payment_settings['driver_payout_percentage'])

        merchant_collected = order.payment_method == PaymentMethod.MERCHANT_COLLECTED
        collected = Decimal('0.00') if merchant_collected else order.total

        driver_amount = money(order.delivery_fee * pct)
        house_delivery = order.delivery_fee - driver_amount
        service_fee_tax = order.service_fee_tax
        house_amount = money(house_delivery + order.service_fee + service_fee_tax)

        merchant_amount = order.subtotal + order.tax
        if merchant_collected:
            merchant_amount -= order.total
        merchant_amount = money(merchant_amount)

        calc = PayoutCalculation(
            merchant_amount=merchant_amount,
            driver_amount=driver_amount,
            house_amount=house_amount,
            service_fee_tax=service_fee_tax,
            driver_percentage=pct,
            collected=collected,
        )

        if abs(calc.total_payout - collected) > CENT:
            raise ValueError(
                f"Payout calculation mismatch: {calc.total_payout} vs {collected}"
            )
        return calc

    @classmethod
    def preview(cls, order) -> dict:
        """Dry run: no ledger writes."""
        try:
            calc = cls.calculate(order)
        except ValueError as e:
            return {'success': False, 'order_id': str(order.pk), 'error': str(e)}
        return {
            'success': True,
            'order_id': str(order.pk),
            'calculations': calc.as_dict(),
            'transactions': cls._planned_transactions(order, calc),
        }

    @staticmethod
    def _planned_transactions(order, calc: PayoutCalculation) -> List[dict]:
        planned = [
            {
                'recipient_role': RecipientRole.MERCHANT,
                'recipient_id': str(order.store.merchant_id),
                'amount': str(calc.merchant_amount),
                'description': f"Order {order.order_number} - item total",
            },
            {
                'recipient_role': RecipientRole.DRIVER,
                'recipient_id': str(order.driver_id) if order.driver_id else None,
                'amount': str(calc.driver_amount),
                'description': (
                    f"Order {order.order_number} - delivery fee "
                    f"({int(calc.driver_percentage * 100)}%)"
                ),
            },
            {
                'recipient_role': RecipientRole.HOUSE,
                'recipient_id': None,
                'amount': str(calc.house_amount),
                'description': f"Order {order.order_number} - service fee + delivery share",
            },
        ]
        return planned

    @classmethod
    def process(cls, order_id) -> dict:
        """
        Pay out one order.

        Returns:
            Dict with success, calculations and transaction ids
        """
        try:
            order, calc, transactions = cls._record_payout(order_id)
        except ValueError as e:
            logger.warning(f"[PAYOUT] Order {order_id} not paid out: {e}")
            return {'success': False, 'order_id': str(order_id), 'error': str(e)}

        if settings.STRIPE_TRANSFERS_ENABLED:
            cls._transfer(order, transactions)

        cls._emit_completed(order, calc)

        logger.info(
            f"[PAYOUT] Order {order.order_number} | merchant {calc.merchant_amount} | "
            f"driver {calc.driver_amount} | house {calc.house_amount}"
        )
        return {
            'success': True,
            'order_id': str(order.pk),
            'calculations': calc.as_dict(),
            'transactions': [str(tx.pk) for tx in transactions],
        }

    @classmethod
    @transaction.atomic
    def _record_payout(cls, order_id):
        from logistics.models import Order, OrderStatus, PaymentMethod, PaymentStatus, PayoutStatus

        try:
            order = (
                Order.objects.select_for_update()
                .select_related('store__merchant', 'driver')
                .get(pk=order_id)
            )
        except Order.DoesNotExist:
            raise ValueError("Order not found")

        if order.status != OrderStatus.DELIVERED:
            raise ValueError("Only delivered orders can be paid out")
        if order.payout_status != PayoutStatus.PENDING:
            raise ValueError(f"Payout already {order.payout_status}")
        if not order.driver_id:
            raise ValueError("Order has no driver")
        if not (
            order.payment_method == PaymentMethod.MERCHANT_COLLECTED
            or order.payment_status in (PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED)
        ):
            raise ValueError(f"Order payment is {order.payment_status}")

        calc = cls.calculate(order)
        merchant = order.store.merchant
        transactions = []

        if calc.merchant_amount > 0:
            transactions.append(WalletService.credit(
                user=merchant,
                amount=calc.merchant_amount,
                transaction_type=TransactionType.PAYOUT,
                recipient_role=RecipientRole.MERCHANT,
                order=order,
                description=f"Order {order.order_number} - item total"
            ))
        elif calc.merchant_amount < 0:
            # Merchant collected the full total; platform fees come out of the wallet
            transactions.append(WalletService.debit(
                user=merchant,
                amount=-calc.merchant_amount,
                transaction_type=TransactionType.CHARGE,
                recipient_role=RecipientRole.MERCHANT,
                order=order,
                description=f"Order {order.order_number} - delivery and service fees",
                allow_negative=True
            ))

        if calc.driver_amount > 0:
            transactions.append(WalletService.credit(
                user=order.driver,
                amount=calc.driver_amount,
                transaction_type=TransactionType.PAYOUT,
                recipient_role=RecipientRole.DRIVER,
                order=order,
                description=(
                    f"Order {order.order_number} - delivery fee "
                    f"({int(calc.driver_percentage * 100)}%)"
                )
            ))
            from django.db.models import F
            from drivers.models import DriverProfile
            DriverProfile.objects.filter(user_id=order.driver_id).update(
                total_earnings=F('total_earnings') + calc.driver_amount
            )

        if calc.house_amount > 0:
            transactions.append(WalletService.record_house(
                amount=calc.house_amount,
                transaction_type=TransactionType.PAYOUT,
                order=order,
                description=f"Order {order.order_number} - service fee + delivery share"
            ))

        order.payout_status = PayoutStatus.COMPLETED
        order.save(update_fields=['payout_status', 'updated_at'])

        return order, calc, transactions

    @staticmethod
    def _transfer(order, transactions: List[Transaction]):
        """
        Push credited payouts to Stripe Connect accounts.

        A failed transfer stays in the wallet; the error is kept on the
        ledger row.
        """
        from finance.stripe_service import StripeService

        for tx in transactions:
            if tx.user is None or tx.amount <= 0 or not tx.user.can_receive_transfers:
                continue

            result = StripeService.create_transfer(
                amount=tx.amount,
                destination=tx.user.stripe_account_id,
                description=tx.description,
                transfer_group=f'order_{order.pk}',
                metadata={'order_id': order.pk, 'transaction_id': tx.pk},
            )
            if not result['success']:
                tx.transfer_error = result.get('error', 'Transfer failed')[:255]
                tx.save(update_fields=['transfer_error'])
                continue

            tx.external_reference = result['transfer_id']
            tx.save(update_fields=['external_reference'])
            WalletService.debit(
                user=tx.user,
                amount=tx.amount,
                transaction_type=TransactionType.WITHDRAWAL,
                recipient_role=tx.recipient_role,
                order=order,
                description=f"Stripe transfer {result['transfer_id']}"
            )

    @staticmethod
    def _emit_completed(order, calc: PayoutCalculation):
        try:
            from partners.services import WebhookService
            WebhookService.dispatch_event(
                order.store.merchant,
                'payout.completed',
                {
                    'order_id': str(order.pk),
                    'order_number': order.order_number,
                    'external_order_id': order.external_order_id,
                    'calculations': calc.as_dict(),
                    'timestamp': timezone.now().isoformat(),
                }
            )
        except Exception as e:
            logger.warning(f"[PAYOUT] payout.completed event failed for {order.pk}: {e}")

    @staticmethod
    def history(user):
        return Transaction.objects.filter(
            user=user,
            transaction_type=TransactionType.PAYOUT
        ).select_related('order')


# ===========================================
# STRIPE WEBHOOKS
# ===========================================

class StripeWebhookHandler:
    """
    Applies verified Stripe events to orders and accounts.

    Unknown event types are acknowledged and ignored.
    """

    @classmethod
    def handle(cls, event: dict) -> str:
        event_type = event.get('type', '')
        data = event.get('data')
        obj = data.get('object') if isinstance(data, dict) else None
        if not isinstance(obj, dict):
            obj = {}

        handler = {
            'payment_intent.succeeded': cls._payment_succeeded,
            'payment_intent.payment_failed': cls._payment_failed,
            'charge.refunded': cls._charge_refunded,
            'account.updated': cls._account_updated,
            'checkout.session.completed': cls._checkout_completed,
        }.get(event_type)

        if handler is None:
            logger.info(f"[STRIPE] Unhandled event type: {event_type}")
            return 'ignored'

        handler(obj)
        return 'processed'

    @staticmethod
    def _find_order(payment_intent_id: str = '', metadata: Optional[dict] = None):
        from logistics.models import Order

        if payment_intent_id:
            order = Order.objects.filter(payment_intent_id=payment_intent_id).first()
            if order:
                return order
        order_id = (metadata or {}).get('order_id')
        if order_id:
            return Order.objects.filter(pk=order_id).first()
        return None

    @classmethod
    def _payment_succeeded(cls, intent: dict):
        order = cls._find_order(intent.get('id', ''), intent.get('metadata'))
        if order is None:
            logger.warning(f"[STRIPE] No order for PaymentIntent {intent.get('id')}")
            return
        cls._mark_paid(order, intent.get('id', ''))

    @classmethod
    def _checkout_completed(cls, session: dict):
        order = cls._find_order(session.get('payment_intent') or '', session.get('metadata'))
        if order is None:
            logger.warning(f"[STRIPE] No order for checkout session {session.get('id')}")
            return
        cls._mark_paid(order, session.get('payment_intent') or '')

    @staticmethod
    @transaction.atomic
    def _mark_paid(order, payment_intent_id: str):
        from logistics.models import Order, OrderStatus, PaymentStatus
        from logistics.services.orders import OrderService

        order = Order.objects.select_for_update().get(pk=order.pk)
        if order.payment_status == PaymentStatus.PAID:
            return

        order.payment_status = PaymentStatus.PAID
        if payment_intent_id:
            order.payment_intent_id = payment_intent_id
        order.save(update_fields=['payment_status', 'payment_intent_id', 'updated_at'])
        logger.info(f"[STRIPE] Order {order.order_number} paid")

        if order.status == OrderStatus.CANCELLED:
            logger.warning(f"[STRIPE] Payment arrived after {order.order_number} was cancelled, refunding")
            order_id = order.pk
            transaction.on_commit(lambda: OrderService._schedule_refund(order_id))
        elif order.status == OrderStatus.PENDING:
            OrderService.transition(order, OrderStatus.CONFIRMED, note='Payment received')

    @classmethod
    def _payment_failed(cls, intent: dict):
        from logistics.models import PaymentStatus
        from notifications.models import NotificationType
        from notifications.services import NotificationService

        order = cls._find_order(intent.get('id', ''), intent.get('metadata'))
        if order is None:
            return
        order.payment_status = PaymentStatus.FAILED
        order.save(update_fields=['payment_status', 'updated_at'])

        error = (intent.get('last_payment_error') or {}).get('message', 'Payment failed')
        logger.warning(f"[STRIPE] Payment failed for {order.order_number}: {error}")
        if order.customer_id:
            NotificationService.notify(
                order.customer,
                'Payment failed',
                f"We couldn't charge your card for order {order.order_number}: {error}",
                notification_type=NotificationType.ERROR,
                related_entity_type='order',
                related_entity_id=order.pk,
            )

    @classmethod
    def _charge_refunded(cls, charge: dict):
        from logistics.models import PaymentStatus

        order = cls._find_order(charge.get('payment_intent') or '', charge.get('metadata'))
        if order is None:
            return
        refunded = charge.get('amount_refunded', 0)
        captured = charge.get('amount', 0)
        order.payment_status = (
            PaymentStatus.REFUNDED if captured and refunded >= captured
            else PaymentStatus.PARTIALLY_REFUNDED
        )
        order.save(update_fields=['payment_status', 'updated_at'])
        logger.info(f"[STRIPE] Order {order.order_number} {order.payment_status}")

    @staticmethod
    def _account_updated(account: dict):
        from core.models import User

        user = User.objects.filter(stripe_account_id=account.get('id', '')).first()
        if user is None:
            return
        complete = bool(account.get('charges_enabled'))
        if user.stripe_onboarding_complete != complete:
            user.stripe_onboarding_complete = complete
            user.save(update_fields=['stripe_onboarding_complete'])
            logger.info(f"[STRIPE] Connect onboarding for {user.email}: {complete}")
