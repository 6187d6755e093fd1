import uuid
from decimal import Decimal
from django.conf import settings
from django.db import models


class DisputeStatus(models.TextChoices):
    OPEN = 'open', 'Open'
    INVESTIGATING = 'investigating', 'Investigating'
    RESOLVED = 'resolved', 'Resolved'
    REJECTED = 'rejected', 'Rejected'


CLOSED_DISPUTE_STATUSES = (DisputeStatus.RESOLVED, DisputeStatus.REJECTED)


class DisputeReason(models.TextChoices):
    MISSING_ITEM = 'missing_item', 'Missing item'
    WRONG_ITEM = 'wrong_item', 'Wrong item'
    DAMAGED = 'damaged', 'Damaged item'
    LATE = 'late', 'Late delivery'
    NOT_DELIVERED = 'not_delivered', 'Not delivered'
    OVERCHARGE = 'overcharge', 'Overcharged'
    OTHER = 'other', 'Other'


class Dispute(models.Model):
    """
    Dispute opened by a party to an order.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(
        'logistics.Order',
        on_delete=models.CASCADE,
        related_name='disputes'
    )
    creator = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='created_disputes'
    )

    reason = models.CharField(max_length=20, choices=DisputeReason.choices)
    description = models.TextField()
    status = models.CharField(
        max_length=20,
        choices=DisputeStatus.choices,
        default=DisputeStatus.OPEN,
        db_index=True
    )

    # Evidence
    evidence = models.FileField(upload_to='disputes/evidence/', null=True, blank=True)

    # Resolution
    resolution_note = models.TextField(blank=True)
    resolved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='resolved_disputes'
    )
    resolved_at = models.DateTimeField(null=True, blank=True)
    refund_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Dispute"
        verbose_name_plural = "Disputes"
        ordering = ['-created_at']

    def __str__(self):
        return f"Dispute {str(self.id)[:8]} - {self.get_reason_display()}"

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_DISPUTE_STATUSES


class RefundStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    COMPLETED = 'completed', 'Completed'
    FAILED = 'failed', 'Failed'


class RefundMethod(models.TextChoices):
    STRIPE = 'stripe', 'Card (Stripe)'
    WALLET = 'wallet', 'Wallet credit'


class Refund(models.Model):
    """
    Money returned to the customer of an order, by card or wallet credit.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(
        'logistics.Order',
        on_delete=models.PROTECT,
        related_name='refunds'
    )
    dispute = models.OneToOneField(
        Dispute,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='refund'
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='refunds'
    )

    amount = models.DecimalField(max_digits=10, decimal_places=2)
    method = models.CharField(max_length=10, choices=RefundMethod.choices)
    status = models.CharField(
        max_length=20,
        choices=RefundStatus.choices,
        default=RefundStatus.PENDING
    )
    external_reference = models.CharField(max_length=100, blank=True)
    transaction = models.OneToOneField(
        'finance.Transaction',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='refund_record'
    )

    reason = models.TextField(blank=True)
    requested_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = "Refund"
        verbose_name_plural = "Refunds"
        ordering = ['-created_at']

    def __str__(self):
        return f"Refund ${self.amount} - {self.order.order_number}"


class ContactStatus(models.TextChoices):
    NEW = 'new', 'New'
    RESPONDED = 'responded', 'Responded'


class ContactMessage(models.Model):
    """Public contact form submission."""
    name = models.CharField(max_length=150)
    email = models.EmailField()
    subject = models.CharField(max_length=200)
    message = models.TextField()
    status = models.CharField(
        max_length=20,
        choices=ContactStatus.choices,
        default=ContactStatus.NEW,
        db_index=True
    )
    response = models.TextField(blank=True)
    responded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )
    responded_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.subject} ({self.email})"
