"""
Django Admin configuration for SUPPORT app.
"""

from django.contrib import admin

from .models import ContactMessage, Dispute, Refund


@admin.register(Dispute)
class DisputeAdmin(admin.ModelAdmin):
    list_display = ('short_id', 'order', 'creator', 'reason', 'status', 'refund_amount', 'created_at')
    list_filter = ('status', 'reason', 'created_at')
    search_fields = ('id', 'order__order_number', 'creator__email', 'description')
    readonly_fields = ('id', 'order', 'creator', 'resolved_by', 'resolved_at', 'refund_amount',
                       'created_at', 'updated_at')
    date_hierarchy = 'created_at'

    @admin.display(description='ID')
    def short_id(self, obj):
        return str(obj.id)[:8]


@admin.register(Refund)
class RefundAdmin(admin.ModelAdmin):
    list_display = ('order', 'amount', 'method', 'status', 'user', 'created_at', 'completed_at')
    list_filter = ('method', 'status', 'created_at')
    search_fields = ('order__order_number', 'user__email', 'external_reference')
    readonly_fields = [f.name for f in Refund._meta.fields]

    def has_add_permission(self, request):
        return False


@admin.register(ContactMessage)
class ContactMessageAdmin(admin.ModelAdmin):
    list_display = ('subject', 'email', 'status', 'created_at', 'responded_at')
    list_filter = ('status',)
    search_fields = ('email', 'name', 'subject', 'message')
    readonly_fields = ('name', 'email', 'subject', 'message', 'responded_by', 'responded_at', 'created_at')
