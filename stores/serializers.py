"""
Stores App Serializers
"""

from rest_framework import serializers

from .models import Store, Product, CartItem, Favorite, Review


class StoreSerializer(serializers.ModelSerializer):
    merchant_name = serializers.CharField(source='merchant.full_name', read_only=True)
    has_location = serializers.ReadOnlyField()

    class Meta:
        model = Store
        fields = [
            'id', 'merchant', 'merchant_name', 'name', 'slug', 'description', 'store_type',
            'address', 'city', 'state', 'zip_code', 'latitude', 'longitude', 'has_location',
            'phone', 'email', 'hours', 'minimum_order', 'is_active',
            'average_rating', 'review_count', 'created_at'
        ]
        read_only_fields = ['id', 'merchant', 'slug', 'average_rating', 'review_count', 'created_at']

    def validate_state(self, value):
        value = value.upper()
        if len(value) != 2 or not value.isalpha():
            raise serializers.ValidationError('Use the two-letter state code.')
        return value

    def validate(self, attrs):
        lat = attrs.get('latitude', getattr(self.instance, 'latitude', None))
        lng = attrs.get('longitude', getattr(self.instance, 'longitude', None))
        if (lat is None) != (lng is None):
            raise serializers.ValidationError('Latitude and longitude must be set together.')
        if lat is not None and not (-90 <= lat <= 90 and -180 <= lng <= 180):
            raise serializers.ValidationError('Coordinates out of range.')
        return attrs


class ProductSerializer(serializers.ModelSerializer):
    store_name = serializers.CharField(source='store.name', read_only=True)
    in_stock = serializers.ReadOnlyField()
    is_on_sale = serializers.ReadOnlyField()

    class Meta:
        model = Product
        fields = [
            'id', 'store', 'store_name', 'name', 'description', 'price', 'compare_at_price',
            'category', 'brand', 'sku', 'part_number', 'image_url',
            'stock_quantity', 'in_stock', 'is_on_sale', 'is_active', 'is_featured',
            'created_at', 'updated_at'
        ]
        read_only_fields = ['id', 'created_at', 'updated_at']

    def validate_store(self, store):
        user = self.context['request'].user
        if not user.is_platform_admin and store.merchant_id != user.pk:
            raise serializers.ValidationError('You can only add products to your own stores.')
        return store

    def validate(self, attrs):
        store = attrs.get('store', getattr(self.instance, 'store', None))
        sku = attrs.get('sku', getattr(self.instance, 'sku', ''))
        if store and sku:
            duplicates = Product.objects.filter(store=store, sku=sku)
            if self.instance:
                duplicates = duplicates.exclude(pk=self.instance.pk)
            if duplicates.exists():
                raise serializers.ValidationError({'sku': 'This SKU is already used in this store.'})
        return attrs


class StockAdjustmentSerializer(serializers.Serializer):
    delta = serializers.IntegerField()


class CartItemSerializer(serializers.ModelSerializer):
    product = ProductSerializer(read_only=True)
    line_total = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = CartItem
        fields = ['id', 'product', 'quantity', 'line_total', 'added_at']


class CartLineSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=0, default=1)


class FavoriteSerializer(serializers.ModelSerializer):
    product = ProductSerializer(read_only=True)

    class Meta:
        model = Favorite
        fields = ['id', 'product', 'created_at']


class ReviewSerializer(serializers.ModelSerializer):
    customer_name = serializers.CharField(source='customer.full_name', read_only=True)

    class Meta:
        model = Review
        fields = [
            'id', 'order', 'store', 'customer_name', 'store_rating',
            'driver_rating', 'comment', 'created_at'
        ]
        read_only_fields = ['id', 'store', 'customer_name', 'created_at']


class ReviewCreateSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    store_rating = serializers.IntegerField(min_value=1, max_value=5)
    driver_rating = serializers.IntegerField(min_value=1, max_value=5, required=False, allow_null=True)
    comment = serializers.CharField(required=False, allow_blank=True, default='')
