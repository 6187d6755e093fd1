"""
Django Admin configuration for LOGISTICS app.
"""

from django.contrib import admin

from .models import Order, OrderItem, OrderStatus, OrderStatusHistory, PricingRule


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ('product', 'product_name', 'sku', 'unit_price', 'quantity')
    can_delete = False


class OrderStatusHistoryInline(admin.TabularInline):
    model = OrderStatusHistory
    extra = 0
    readonly_fields = ('status', 'note', 'changed_by', 'created_at')
    can_delete = False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """Admin for Order with full details."""

    list_display = (
        'order_number',
        'status',
        'store',
        'customer_display',
        'driver_display',
        'payment_method',
        'payment_status',
        'total',
        'created_at'
    )
    list_filter = ('status', 'payment_status', 'payout_status', 'source', 'service_level', 'created_at')
    search_fields = (
        'order_number',
        'external_order_id',
        'customer__email',
        'customer_email',
        'driver__email',
        'store__name'
    )
    ordering = ('-created_at',)
    date_hierarchy = 'created_at'
    raw_id_fields = ('customer', 'driver', 'store')
    inlines = [OrderItemInline, OrderStatusHistoryInline]

    readonly_fields = (
        'id',
        'order_number',
        'delivery_code',
        'distance_miles',
        'subtotal',
        'tax',
        'delivery_fee',
        'service_fee',
        'service_fee_tax',
        'total',
        'payment_intent_id',
        'created_at',
        'confirmed_at',
        'ready_at',
        'assigned_at',
        'picked_up_at',
        'delivered_at',
        'cancelled_at'
    )

    fieldsets = (
        ('Identification', {
            'fields': ('id', 'order_number', 'status', 'source', 'external_order_id', 'service_level')
        }),
        ('Parties', {
            'fields': ('customer', 'customer_name', 'customer_email', 'customer_phone', 'store', 'driver')
        }),
        ('Payment', {
            'fields': ('payment_method', 'payment_status', 'payment_intent_id', 'payout_status')
        }),
        ('Delivery', {
            'fields': (
                'delivery_address', 'delivery_unit', 'delivery_city', 'delivery_state',
                'delivery_zip_code', 'delivery_latitude', 'delivery_longitude',
                'delivery_instructions', 'distance_miles'
            )
        }),
        ('Pricing', {
            'fields': ('subtotal', 'tax', 'delivery_fee', 'service_fee', 'service_fee_tax', 'total')
        }),
        ('Security', {
            'fields': ('delivery_code',),
            'classes': ('collapse',)
        }),
        ('History', {
            'fields': (
                'created_at', 'confirmed_at', 'ready_at', 'assigned_at',
                'picked_up_at', 'delivered_at', 'cancelled_at', 'cancellation_reason'
            ),
            'classes': ('collapse',)
        }),
    )

    def customer_display(self, obj):
        return obj.contact_name or "-"
    customer_display.short_description = "Customer"

    def driver_display(self, obj):
        if obj.driver:
            return obj.driver.full_name or obj.driver.email
        return "-"
    driver_display.short_description = "Driver"

    actions = ['cancel_orders', 'export_orders_csv']

    @admin.action(description="Export to CSV")
    def export_orders_csv(self, request, queryset):
        import csv
        from django.http import HttpResponse

        response = HttpResponse(content_type='text/csv')
        response['Content-Disposition'] = 'attachment; filename="partsrunner_orders.csv"'

        writer = csv.writer(response)
        writer.writerow([
            'Order', 'Status', 'Store', 'Customer', 'Driver', 'Payment',
            'Subtotal', 'Delivery fee', 'Service fee', 'Total', 'Miles',
            'Created', 'Delivered'
        ])

        for o in queryset.select_related('store', 'customer', 'driver'):
            writer.writerow([
                o.order_number,
                o.get_status_display(),
                o.store.name,
                o.contact_name,
                o.driver.email if o.driver else '-',
                o.get_payment_method_display(),
                o.subtotal,
                o.delivery_fee,
                o.service_fee,
                o.total,
                o.distance_miles,
                o.created_at.strftime('%Y-%m-%d %H:%M') if o.created_at else '',
                o.delivered_at.strftime('%Y-%m-%d %H:%M') if o.delivered_at else '',
            ])
        return response

    @admin.action(description="Cancel selected orders")
    def cancel_orders(self, request, queryset):
        from .services.orders import OrderService

        cancelled = 0
        for order in queryset.exclude(status__in=[OrderStatus.DELIVERED, OrderStatus.CANCELLED]):
            try:
                OrderService.cancel(order, actor=request.user, reason='Cancelled by admin')
                cancelled += 1
            except (ValueError, PermissionError) as e:
                self.message_user(request, f"{order.order_number}: {e}", level='warning')
        self.message_user(request, f"{cancelled} order(s) cancelled.")


@admin.register(PricingRule)
class PricingRuleAdmin(admin.ModelAdmin):
    list_display = ('name', 'factor', 'operator', 'threshold', 'adjustment_type', 'adjustment', 'priority', 'is_active')
    list_filter = ('factor', 'is_active')
    list_editable = ('priority', 'is_active')
    ordering = ('priority',)
