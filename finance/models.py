"""
FINANCE App - Wallet, Ledger & Withdrawal Management for PartsRunner

Handles: Transactions, Wallet Operations, Payment Settings, Withdrawals
"""

import uuid
import logging
from decimal import Decimal
from django.db import models, transaction
from django.conf import settings
from django.utils import timezone

logger = logging.getLogger(__name__)


class TransactionType(models.TextChoices):
    """Transaction type enumeration."""
    PAYOUT = 'payout', 'Order payout'
    REFUND = 'refund', 'Refund'
    ADJUSTMENT = 'adjustment', 'Adjustment'
    WITHDRAWAL = 'withdrawal', 'Withdrawal'
    CHARGE = 'charge', 'Charge'


class TransactionStatus(models.TextChoices):
    """Transaction status enumeration."""
    PENDING = 'pending', 'Pending'
    COMPLETED = 'completed', 'Completed'
    FAILED = 'failed', 'Failed'
    REVERSED = 'reversed', 'Reversed'


class RecipientRole(models.TextChoices):
    """Whose share of an order the transaction carries."""
    MERCHANT = 'merchant', 'Merchant'
    DRIVER = 'driver', 'Driver'
    HOUSE = 'house', 'Platform'
    CUSTOMER = 'customer', 'Customer'


class Transaction(models.Model):
    """
    Financial transaction record.

    All wallet movements must create a Transaction for audit trail.
    Amount can be positive (credit) or negative (debit).
    House (platform) transactions have no user and no wallet balance.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='transactions',
        verbose_name="User"
    )
    recipient_role = models.CharField(
        max_length=10,
        choices=RecipientRole.choices,
        verbose_name="Recipient"
    )

    transaction_type = models.CharField(
        max_length=20,
        choices=TransactionType.choices,
        verbose_name="Type"
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2, verbose_name="Amount (USD)")
    balance_before = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    balance_after = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    status = models.CharField(
        max_length=20,
        choices=TransactionStatus.choices,
        default=TransactionStatus.COMPLETED,
        verbose_name="Status"
    )

    order = models.ForeignKey(
        'logistics.Order',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='transactions',
        verbose_name="Related order"
    )

    description = models.CharField(max_length=255, blank=True)
    # Stripe transfer / refund id
    external_reference = models.CharField(max_length=100, blank=True)
    transfer_error = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Transaction"
        verbose_name_plural = "Transactions"
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'created_at']),
            models.Index(fields=['transaction_type', 'status']),
            models.Index(fields=['recipient_role', 'created_at']),
        ]

    def __str__(self):
        sign = '+' if self.amount >= 0 else ''
        who = self.user.email if self.user_id else 'HOUSE'
        return f"{who} | {sign}{self.amount} USD | {self.transaction_type}"


class WalletService:
    """
    Service class for wallet operations.

    All operations use transaction.atomic() and lock the user row.
    """

    @staticmethod
    @transaction.atomic
    def credit(user, amount: Decimal, transaction_type: str, recipient_role: str,
               order=None, description: str = "") -> Transaction:
        """
        Credit a user's wallet (add money).

        Raises:
            ValueError: If amount is not positive
        """
        if amount <= 0:
            raise ValueError("Credit amount must be positive")

        user = user.__class__.objects.select_for_update().get(pk=user.pk)

        balance_before = user.wallet_balance
        user.wallet_balance += amount
        user.save(update_fields=['wallet_balance'])

        return Transaction.objects.create(
            user=user,
            recipient_role=recipient_role,
            transaction_type=transaction_type,
            amount=amount,
            balance_before=balance_before,
            balance_after=user.wallet_balance,
            order=order,
            description=description,
            status=TransactionStatus.COMPLETED
        )

    @staticmethod
    @transaction.atomic
    def debit(user, amount: Decimal, transaction_type: str, recipient_role: str,
              order=None, description: str = "",
              allow_negative: bool = False) -> Transaction:
        """
        Debit a user's wallet (remove money).

        Raises:
            ValueError: If insufficient funds and allow_negative is False
        """
        if amount <= 0:
            raise ValueError("Debit amount must be positive")

        user = user.__class__.objects.select_for_update().get(pk=user.pk)

        if not allow_negative and user.wallet_balance < amount:
            raise ValueError(f"Insufficient balance: ${user.wallet_balance}")

        balance_before = user.wallet_balance
        user.wallet_balance -= amount
        user.save(update_fields=['wallet_balance'])

        return Transaction.objects.create(
            user=user,
            recipient_role=recipient_role,
            transaction_type=transaction_type,
            amount=-amount,  # Stored as negative
            balance_before=balance_before,
            balance_after=user.wallet_balance,
            order=order,
            description=description,
            status=TransactionStatus.COMPLETED
        )

    @staticmethod
    def record_house(amount: Decimal, transaction_type: str, order=None,
                     description: str = "") -> Transaction:
        """Platform share. No wallet, ledger entry only."""
        return Transaction.objects.create(
            user=None,
            recipient_role=RecipientRole.HOUSE,
            transaction_type=transaction_type,
            amount=amount,
            order=order,
            description=description,
            status=TransactionStatus.COMPLETED
        )


# ===========================================
# PAYMENT SETTINGS
# ===========================================

PAYMENT_SETTING_DEFAULTS = {
    'driver_payout_percentage': lambda: settings.DEFAULT_DRIVER_PAYOUT_PERCENTAGE,
    'service_fee_tax_rate': lambda: Decimal('0.00'),
    'service_fee_rate': lambda: settings.SERVICE_FEE_RATE,
    'minimum_payout_amount': lambda: settings.MINIMUM_PAYOUT_AMOUNT,
}


class PaymentSetting(models.Model):
    """
    Admin-editable payment knob (key/value).

    Missing keys fall back to the values in settings.py.
    """

    key = models.CharField(
        max_length=50,
        unique=True,
        choices=[(k, k.replace('_', ' ').capitalize()) for k in PAYMENT_SETTING_DEFAULTS]
    )
    value = models.DecimalField(max_digits=8, decimal_places=4)
    description = models.CharField(max_length=255, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Payment setting"
        verbose_name_plural = "Payment settings"
        ordering = ['key']

    def __str__(self):
        return f"{self.key} = {self.value}"

    @classmethod
    def load(cls) -> dict:
        """All payment settings with defaults applied."""
        values = {key: default() for key, default in PAYMENT_SETTING_DEFAULTS.items()}
        for setting in cls.objects.all():
            values[setting.key] = setting.value
        return values


# ===========================================
# WITHDRAWAL MANAGEMENT
# ===========================================

class WithdrawalStatus(models.TextChoices):
    """Withdrawal request status."""
    PENDING = 'pending', 'Pending'
    PROCESSING = 'processing', 'Processing'
    COMPLETED = 'completed', 'Completed'
    FAILED = 'failed', 'Failed'
    REJECTED = 'rejected', 'Rejected'


class PayoutMethod(models.TextChoices):
    """Where withdrawn money goes."""
    STRIPE = 'stripe', 'Stripe (bank account)'
    CASH_APP = 'cash_app', 'Cash App'
    VENMO = 'venmo', 'Venmo'
    BANK = 'bank', 'Manual bank transfer'


class WithdrawalRequest(models.Model):
    """
    Driver or merchant request to cash out their wallet.

    The amount is reserved (debited) when the request is created and
    re-credited if the request is rejected or fails.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='withdrawal_requests',
        verbose_name="Requested by"
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2, verbose_name="Amount (USD)")
    method = models.CharField(max_length=20, choices=PayoutMethod.choices)
    # Cash App $cashtag / Venmo @handle / bank memo
    destination = models.CharField(max_length=100, blank=True)

    status = models.CharField(
        max_length=20,
        choices=WithdrawalStatus.choices,
        default=WithdrawalStatus.PENDING,
        verbose_name="Status"
    )
    external_reference = models.CharField(max_length=100, blank=True)

    processed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='processed_withdrawals'
    )
    rejection_reason = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    transaction = models.OneToOneField(
        Transaction,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='withdrawal_request'
    )

    class Meta:
        verbose_name = "Withdrawal request"
        verbose_name_plural = "Withdrawal requests"
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'status']),
            models.Index(fields=['status', 'created_at']),
        ]

    def __str__(self):
        return f"Withdrawal ${self.amount} - {self.user.email} - {self.status}"

    @property
    def recipient_role(self) -> str:
        from core.models import UserRole
        return RecipientRole.DRIVER if self.user.role == UserRole.DRIVER else RecipientRole.MERCHANT


class WithdrawalService:
    """
    Service for handling wallet withdrawals.

    Flow: create (reserve funds) -> approve -> completed,
    or reject / fail (funds returned).
    """

    MAXIMUM_WITHDRAWAL = Decimal('10000.00')

    @classmethod
    @transaction.atomic
    def create_request(cls, user, amount: Decimal, method: str,
                       destination: str = '') -> WithdrawalRequest:
        """
        Create a withdrawal request and reserve the amount.

        Raises:
            ValueError: If validation fails
        """
        from core.models import UserRole

        if user.role not in (UserRole.DRIVER, UserRole.MERCHANT):
            raise ValueError("Only drivers and merchants can withdraw funds")

        minimum = PaymentSetting.load()['minimum_payout_amount']
        if amount < minimum:
            raise ValueError(f"Minimum withdrawal is ${minimum}")
        if amount > cls.MAXIMUM_WITHDRAWAL:
            raise ValueError(f"Maximum withdrawal is ${cls.MAXIMUM_WITHDRAWAL}")

        if method == PayoutMethod.STRIPE and not user.can_receive_transfers:
            raise ValueError("Connect a Stripe account before withdrawing to Stripe")
        if method in (PayoutMethod.CASH_APP, PayoutMethod.VENMO) and not destination:
            raise ValueError("A Cash App or Venmo handle is required")

        # Serializes concurrent requests from the same user
        user.__class__.objects.select_for_update().get(pk=user.pk)

        pending = WithdrawalRequest.objects.filter(
            user=user,
            status__in=[WithdrawalStatus.PENDING, WithdrawalStatus.PROCESSING]
        ).exists()
        if pending:
            raise ValueError("You already have a withdrawal in progress")

        withdrawal = WithdrawalRequest(user=user, amount=amount, method=method, destination=destination)
        tx = WalletService.debit(
            user=user,
            amount=amount,
            transaction_type=TransactionType.WITHDRAWAL,
            recipient_role=withdrawal.recipient_role,
            description=f"Withdrawal to {withdrawal.get_method_display()}"
        )
        withdrawal.transaction = tx
        withdrawal.save()

        logger.info(f"[WITHDRAWAL] {user.email} requested ${amount} via {method}")
        return withdrawal

    @classmethod
    @transaction.atomic
    def approve_request(cls, withdrawal: WithdrawalRequest, admin_user) -> WithdrawalRequest:
        """
        Approve a pending request.

        Stripe withdrawals are transferred immediately and completed;
        other methods move to PROCESSING until paid out manually.
        """
        from finance.stripe_service import StripeService

        cls._lock(withdrawal)
        if withdrawal.status != WithdrawalStatus.PENDING:
            raise ValueError(f"Request is not pending (status: {withdrawal.status})")

        withdrawal.processed_by = admin_user
        withdrawal.processed_at = timezone.now()

        if withdrawal.method == PayoutMethod.STRIPE:
            result = StripeService.create_transfer(
                amount=withdrawal.amount,
                destination=withdrawal.user.stripe_account_id,
                description=f"Wallet withdrawal {str(withdrawal.id)[:8]}",
                metadata={'withdrawal_id': str(withdrawal.id)},
            )
            if not result['success']:
                withdrawal.save(update_fields=['processed_by', 'processed_at'])
                cls.fail_request(withdrawal, result.get('error', 'Stripe transfer failed'))
                return withdrawal

            withdrawal.status = WithdrawalStatus.COMPLETED
            withdrawal.external_reference = result['transfer_id']
            withdrawal.save()
            cls._notify(withdrawal, success=True)
            return withdrawal

        withdrawal.status = WithdrawalStatus.PROCESSING
        withdrawal.save()
        return withdrawal

    @classmethod
    @transaction.atomic
    def complete_request(cls, withdrawal: WithdrawalRequest, external_reference: str = ''):
        """Mark a manual payout as sent."""
        cls._lock(withdrawal)
        if withdrawal.status != WithdrawalStatus.PROCESSING:
            raise ValueError(f"Request is not processing (status: {withdrawal.status})")

        withdrawal.status = WithdrawalStatus.COMPLETED
        withdrawal.external_reference = external_reference
        withdrawal.save()
        cls._notify(withdrawal, success=True)

    @classmethod
    @transaction.atomic
    def fail_request(cls, withdrawal: WithdrawalRequest, reason: str):
        """Mark as failed and return the reserved funds."""
        cls._lock(withdrawal)
        if withdrawal.status not in [WithdrawalStatus.PENDING, WithdrawalStatus.PROCESSING]:
            raise ValueError(f"Cannot fail this request (status: {withdrawal.status})")

        cls._release_funds(withdrawal, f"Withdrawal failed: {reason[:80]}")
        withdrawal.status = WithdrawalStatus.FAILED
        withdrawal.rejection_reason = reason
        withdrawal.save()
        cls._notify(withdrawal, success=False, reason=reason)

    @classmethod
    @transaction.atomic
    def reject_request(cls, withdrawal: WithdrawalRequest, admin_user, reason: str):
        """Reject a pending request and return the reserved funds."""
        cls._lock(withdrawal)
        if withdrawal.status != WithdrawalStatus.PENDING:
            raise ValueError("Only pending requests can be rejected")

        cls._release_funds(withdrawal, f"Withdrawal rejected: {reason[:80]}")
        withdrawal.status = WithdrawalStatus.REJECTED
        withdrawal.processed_by = admin_user
        withdrawal.processed_at = timezone.now()
        withdrawal.rejection_reason = reason
        withdrawal.save()
        cls._notify(withdrawal, success=False, reason=reason)

    @staticmethod
    def _lock(withdrawal: WithdrawalRequest):
        """Row-lock the request and reload its current state onto the instance."""
        WithdrawalRequest.objects.select_for_update().get(pk=withdrawal.pk)
        withdrawal.refresh_from_db()

    @staticmethod
    def _release_funds(withdrawal: WithdrawalRequest, description: str):
        if withdrawal.transaction_id:
            WalletService.credit(
                user=withdrawal.user,
                amount=withdrawal.amount,
                transaction_type=TransactionType.REFUND,
                recipient_role=withdrawal.recipient_role,
                description=description
            )

    @staticmethod
    def _notify(withdrawal: WithdrawalRequest, success: bool, reason: str = None):
        from notifications.models import NotificationType
        from notifications.services import NotificationService

        try:
            if success:
                NotificationService.notify(
                    withdrawal.user,
                    'Withdrawal sent',
                    f"${withdrawal.amount} is on its way to your {withdrawal.get_method_display()}.",
                    notification_type=NotificationType.SUCCESS,
                    related_entity_type='withdrawal',
                    related_entity_id=withdrawal.pk,
                )
            else:
                NotificationService.notify(
                    withdrawal.user,
                    'Withdrawal not completed',
                    f"Your ${withdrawal.amount} withdrawal was not completed: "
                    f"{reason or 'unspecified'}. The funds are back in your wallet.",
                    notification_type=NotificationType.ERROR,
                    related_entity_type='withdrawal',
                    related_entity_id=withdrawal.pk,
                )
        except Exception as e:
            logger.warning(f"[WITHDRAWAL] Notification failed for {withdrawal.pk}: {e}")
