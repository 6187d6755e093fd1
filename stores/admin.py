"""
Django Admin configuration for STORES app.
"""

from django.contrib import admin

from .models import Store, Product, Review


class ProductInline(admin.TabularInline):
    model = Product
    extra = 0
    fields = ('name', 'sku', 'price', 'stock_quantity', 'is_active')
    show_change_link = True


@admin.register(Store)
class StoreAdmin(admin.ModelAdmin):
    list_display = ('name', 'merchant', 'store_type', 'city', 'state', 'average_rating', 'is_active')
    list_filter = ('store_type', 'state', 'is_active')
    search_fields = ('name', 'city', 'merchant__email')
    prepopulated_fields = {'slug': ('name',)}
    raw_id_fields = ('merchant',)
    inlines = [ProductInline]
    actions = ['activate_stores', 'deactivate_stores']

    @admin.action(description="Activate selected stores")
    def activate_stores(self, request, queryset):
        updated = queryset.update(is_active=True)
        self.message_user(request, f"{updated} store(s) activated.")

    @admin.action(description="Deactivate selected stores")
    def deactivate_stores(self, request, queryset):
        updated = queryset.update(is_active=False)
        self.message_user(request, f"{updated} store(s) deactivated.")


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ('name', 'store', 'sku', 'price', 'stock_quantity', 'is_active', 'is_featured')
    list_filter = ('is_active', 'is_featured', 'category', 'store__store_type')
    search_fields = ('name', 'sku', 'part_number', 'brand')
    raw_id_fields = ('store',)


@admin.register(Review)
class ReviewAdmin(admin.ModelAdmin):
    list_display = ('store', 'customer', 'store_rating', 'driver_rating', 'created_at')
    list_filter = ('store_rating',)
    raw_id_fields = ('order', 'customer', 'store', 'driver')
