"""
Django Admin configuration for FINANCE app.
"""

from django.contrib import admin, messages

from .models import (
    PaymentSetting, Transaction, WithdrawalRequest, WithdrawalService, WithdrawalStatus
)


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    """Admin for Transaction with audit trail."""

    list_display = (
        'short_id',
        'recipient',
        'recipient_role',
        'transaction_type',
        'formatted_amount',
        'balance_after',
        'status',
        'order_link',
        'created_at'
    )
    list_filter = ('transaction_type', 'recipient_role', 'status', 'created_at')
    search_fields = (
        'id',
        'user__email',
        'order__order_number',
        'external_reference',
        'description'
    )
    ordering = ('-created_at',)
    date_hierarchy = 'created_at'

    readonly_fields = (
        'id',
        'user',
        'recipient_role',
        'transaction_type',
        'amount',
        'balance_before',
        'balance_after',
        'order',
        'external_reference',
        'transfer_error',
        'created_at'
    )

    fieldsets = (
        ('Transaction', {
            'fields': ('id', 'user', 'recipient_role', 'transaction_type', 'status')
        }),
        ('Amounts', {
            'fields': ('amount', 'balance_before', 'balance_after')
        }),
        ('Details', {
            'fields': ('description', 'order', 'external_reference', 'transfer_error')
        }),
        ('History', {
            'fields': ('created_at',)
        }),
    )

    def short_id(self, obj):
        return str(obj.id)[:8]
    short_id.short_description = "ID"

    def recipient(self, obj):
        return obj.user.email if obj.user_id else 'HOUSE'
    recipient.short_description = "Recipient"

    def formatted_amount(self, obj):
        sign = '+' if obj.amount >= 0 else ''
        return f"{sign}${obj.amount}"
    formatted_amount.short_description = "Amount"

    def order_link(self, obj):
        return obj.order.order_number if obj.order_id else "-"
    order_link.short_description = "Order"

    def has_add_permission(self, request):
        # Ledger rows only come from WalletService
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(WithdrawalRequest)
class WithdrawalRequestAdmin(admin.ModelAdmin):
    list_display = ('user', 'amount', 'method', 'destination', 'status', 'created_at', 'processed_at')
    list_filter = ('status', 'method', 'created_at')
    search_fields = ('user__email', 'destination', 'external_reference')
    readonly_fields = ('user', 'amount', 'method', 'destination', 'transaction',
                       'processed_by', 'processed_at', 'created_at')
    actions = ['approve_selected']

    @admin.action(description="Approve selected pending withdrawals")
    def approve_selected(self, request, queryset):
        approved = 0
        for withdrawal in queryset.filter(status=WithdrawalStatus.PENDING):
            try:
                WithdrawalService.approve_request(withdrawal, request.user)
                approved += 1
            except ValueError as e:
                self.message_user(request, f"{withdrawal}: {e}", level=messages.ERROR)
        self.message_user(request, f"{approved} withdrawal(s) approved.")


@admin.register(PaymentSetting)
class PaymentSettingAdmin(admin.ModelAdmin):
    list_display = ('key', 'value', 'description', 'updated_at')
