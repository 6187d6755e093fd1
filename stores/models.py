"""
STORES App - Storefronts & Catalog for PartsRunner

Handles: Stores, Products, Cart, Wishlist, Reviews
"""

import uuid
from decimal import Decimal
from django.conf import settings
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models
from django.db.models import Avg, Count, Q
from django.utils.text import slugify


class StoreType(models.TextChoices):
    """What the store sells."""
    AUTO = 'auto', 'Auto Parts'
    HARDWARE = 'hardware', 'Hardware'


class Store(models.Model):
    """
    A merchant's physical store that products are picked up from.

    latitude/longitude are the pickup point used for delivery pricing
    and driver dispatch.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    merchant = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='stores',
        verbose_name="Merchant"
    )

    name = models.CharField(max_length=150, verbose_name="Store name")
    slug = models.SlugField(max_length=170, unique=True, blank=True)
    description = models.TextField(blank=True)
    store_type = models.CharField(
        max_length=20,
        choices=StoreType.choices,
        default=StoreType.AUTO,
        verbose_name="Store type"
    )

    # Address
    address = models.CharField(max_length=255)
    city = models.CharField(max_length=100, db_index=True)
    state = models.CharField(max_length=2, help_text="Two-letter state code")
    zip_code = models.CharField(max_length=10)
    latitude = models.FloatField(null=True, blank=True)
    longitude = models.FloatField(null=True, blank=True)

    # Contact
    phone = models.CharField(max_length=20, blank=True)
    email = models.EmailField(blank=True)

    # {"mon": {"open": "08:00", "close": "18:00"}, ...}
    hours = models.JSONField(default=dict, blank=True)
    minimum_order = models.DecimalField(
        max_digits=8,
        decimal_places=2,
        default=Decimal('0.00'),
        verbose_name="Minimum order (USD)"
    )
    is_active = models.BooleanField(default=True)

    # Denormalized review stats
    average_rating = models.DecimalField(max_digits=3, decimal_places=2, default=Decimal('0.00'))
    review_count = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Store"
        verbose_name_plural = "Stores"
        ordering = ['name']
        indexes = [
            models.Index(fields=['city', 'store_type']),
        ]

    def __str__(self):
        return f"{self.name} ({self.city}, {self.state})"

    def save(self, *args, **kwargs):
        """Auto-generate a unique slug from the store name."""
        if not self.slug:
            base_slug = slugify(self.name) or 'store'
            slug = base_slug
            counter = 1
            while Store.objects.filter(slug=slug).exclude(pk=self.pk).exists():
                slug = f"{base_slug}-{counter}"
                counter += 1
            self.slug = slug
        super().save(*args, **kwargs)

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def full_address(self) -> str:
        return f"{self.address}, {self.city}, {self.state} {self.zip_code}"

    def refresh_rating(self):
        stats = self.reviews.aggregate(avg=Avg('store_rating'), count=Count('id'))
        self.average_rating = round(Decimal(stats['avg'] or 0), 2)
        self.review_count = stats['count'] or 0
        self.save(update_fields=['average_rating', 'review_count', 'updated_at'])


class Product(models.Model):
    """
    A catalog item sold by a store.

    stock_quantity is decremented when an order is placed and
    restored when it is cancelled (see InventoryService).
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    store = models.ForeignKey(
        Store,
        on_delete=models.CASCADE,
        related_name='products'
    )

    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))],
        verbose_name="Price (USD)"
    )
    compare_at_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        verbose_name="Compare-at price"
    )

    category = models.CharField(max_length=100, blank=True, db_index=True)
    brand = models.CharField(max_length=100, blank=True, db_index=True)
    sku = models.CharField(max_length=64, blank=True)
    part_number = models.CharField(max_length=64, blank=True, db_index=True)
    image_url = models.URLField(blank=True)

    stock_quantity = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)
    is_featured = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Product"
        verbose_name_plural = "Products"
        ordering = ['name']
        constraints = [
            models.UniqueConstraint(
                fields=['store', 'sku'],
                condition=~Q(sku=''),
                name='unique_sku_per_store'
            ),
        ]

    def __str__(self):
        return f"{self.name} - {self.store.name}"

    @property
    def in_stock(self) -> bool:
        return self.stock_quantity > 0

    @property
    def is_on_sale(self) -> bool:
        return self.compare_at_price is not None and self.compare_at_price > self.price

    @property
    def is_purchasable(self) -> bool:
        return self.is_active and self.store.is_active and self.in_stock


class CartItem(models.Model):
    """One line of a customer's cart."""

    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='cart_items'
    )
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='+')
    quantity = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    added_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Cart item"
        verbose_name_plural = "Cart items"
        unique_together = ['customer', 'product']
        ordering = ['added_at']

    def __str__(self):
        return f"{self.quantity} x {self.product.name}"

    @property
    def line_total(self) -> Decimal:
        return self.product.price * self.quantity


class Favorite(models.Model):
    """Wishlist entry."""

    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='favorites'
    )
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='favorited_by')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Favorite"
        verbose_name_plural = "Favorites"
        unique_together = ['customer', 'product']
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.customer} <3 {self.product.name}"


class Review(models.Model):
    """
    Customer feedback on a delivered order.

    One review per order. store_rating feeds the store average,
    driver_rating (optional) feeds the driver's rating.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.OneToOneField(
        'logistics.Order',
        on_delete=models.CASCADE,
        related_name='review'
    )
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='reviews_written'
    )
    store = models.ForeignKey(Store, on_delete=models.CASCADE, related_name='reviews')
    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='reviews_received'
    )

    store_rating = models.PositiveSmallIntegerField(
        validators=[MinValueValidator(1), MaxValueValidator(5)],
        verbose_name="Store rating (1-5)"
    )
    driver_rating = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=[MinValueValidator(1), MaxValueValidator(5)],
        verbose_name="Driver rating (1-5)"
    )
    comment = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Review"
        verbose_name_plural = "Reviews"
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.store.name}: {self.store_rating}/5"

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)
        self.store.refresh_rating()
        if self.driver_id and self.driver_rating:
            self._update_driver_rating()

    def _update_driver_rating(self):
        """Update the driver's average rating."""
        stats = Review.objects.filter(
            driver=self.driver, driver_rating__isnull=False
        ).aggregate(avg=Avg('driver_rating'), count=Count('id'))

        self.driver.average_rating = round(Decimal(stats['avg'] or 5), 2)
        self.driver.total_ratings_count = stats['count'] or 0
        self.driver.save(update_fields=['average_rating', 'total_ratings_count'])
