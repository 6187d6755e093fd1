"""
STORES App - Cart, Inventory & Review services
"""

import logging
from collections import OrderedDict
from decimal import Decimal
from typing import Dict, Iterable, List, Tuple

from django.conf import settings
from django.db import transaction
from django.db.models import F

from .models import CartItem, Favorite, Product, Review

logger = logging.getLogger(__name__)


class CartService:
    """
    Customer cart operations.

    Lines are unique per (customer, product); adding an existing product
    merges quantities.
    """

    @staticmethod
    def add(customer, product: Product, quantity: int = 1) -> CartItem:
        if quantity < 1:
            raise ValueError("Quantity must be at least 1")
        if not product.is_active or not product.store.is_active:
            raise ValueError(f"{product.name} is not available")

        item, created = CartItem.objects.get_or_create(
            customer=customer,
            product=product,
            defaults={'quantity': 0}
        )
        new_quantity = item.quantity + quantity
        if new_quantity > product.stock_quantity:
            if created:
                item.delete()
            raise ValueError(
                f"Only {product.stock_quantity} of {product.name} in stock"
            )

        item.quantity = new_quantity
        item.save(update_fields=['quantity'])
        return item

    @staticmethod
    def update_quantity(customer, product: Product, quantity: int):
        """Set the quantity of a line. 0 removes it."""
        if quantity < 0:
            raise ValueError("Quantity cannot be negative")
        if quantity == 0:
            CartItem.objects.filter(customer=customer, product=product).delete()
            return None
        if quantity > product.stock_quantity:
            raise ValueError(f"Only {product.stock_quantity} of {product.name} in stock")

        item, _ = CartItem.objects.update_or_create(
            customer=customer,
            product=product,
            defaults={'quantity': quantity}
        )
        return item

    @staticmethod
    def remove(customer, product: Product) -> bool:
        deleted, _ = CartItem.objects.filter(customer=customer, product=product).delete()
        return deleted > 0

    @staticmethod
    def clear(customer, store=None) -> int:
        items = CartItem.objects.filter(customer=customer)
        if store is not None:
            items = items.filter(product__store=store)
        deleted, _ = items.delete()
        return deleted

    @staticmethod
    def items(customer):
        return CartItem.objects.filter(customer=customer).select_related('product__store')

    @classmethod
    def summary(cls, customer) -> dict:
        """
        Cart grouped by store.

        Each store group becomes one order at checkout.
        """
        groups: Dict = OrderedDict()
        subtotal = Decimal('0.00')
        item_count = 0

        for item in cls.items(customer):
            store = item.product.store
            group = groups.setdefault(store.pk, {
                'store_id': str(store.pk),
                'store_name': store.name,
                'minimum_order': store.minimum_order,
                'items': [],
                'subtotal': Decimal('0.00'),
            })
            line_total = item.line_total
            group['items'].append({
                'product_id': str(item.product.pk),
                'name': item.product.name,
                'unit_price': item.product.price,
                'quantity': item.quantity,
                'line_total': line_total,
                'in_stock': item.product.stock_quantity >= item.quantity,
            })
            group['subtotal'] += line_total
            subtotal += line_total
            item_count += item.quantity

        return {
            'stores': list(groups.values()),
            'item_count': item_count,
            'subtotal': subtotal,
        }


class FavoriteService:
    """Wishlist toggling."""

    @staticmethod
    def toggle(customer, product: Product) -> bool:
        """Returns True if the product is now a favorite."""
        favorite = Favorite.objects.filter(customer=customer, product=product).first()
        if favorite:
            favorite.delete()
            return False
        Favorite.objects.create(customer=customer, product=product)
        return True


class InventoryService:
    """
    Stock bookkeeping.

    reserve() runs under row locks so two checkouts cannot oversell
    the last unit.
    """

    @staticmethod
    @transaction.atomic
    def reserve(lines: Iterable[Tuple[Product, int]]) -> None:
        """Decrement stock for every (product, quantity) or none of them."""
        lines = list(lines)
        ids = [product.pk for product, _ in lines]
        locked = {
            p.pk: p for p in Product.objects.select_for_update().filter(pk__in=ids)
        }

        for product, quantity in lines:
            current = locked.get(product.pk)
            if current is None or not current.is_active:
                raise ValueError(f"{product.name} is no longer available")
            if current.stock_quantity < quantity:
                raise ValueError(
                    f"Insufficient stock for {current.name}: "
                    f"{current.stock_quantity} available, {quantity} requested"
                )

        for product, quantity in lines:
            Product.objects.filter(pk=product.pk).update(
                stock_quantity=F('stock_quantity') - quantity
            )

        logger.info(f"[INVENTORY] Reserved {len(lines)} line(s)")

    @staticmethod
    @transaction.atomic
    def release(lines: Iterable[Tuple[Product, int]]) -> None:
        """Return stock after a cancellation."""
        count = 0
        for product, quantity in lines:
            if product is None:
                continue
            Product.objects.filter(pk=product.pk).update(
                stock_quantity=F('stock_quantity') + quantity
            )
            count += 1
        logger.info(f"[INVENTORY] Released {count} line(s)")

    @staticmethod
    @transaction.atomic
    def adjust(product: Product, delta: int) -> Product:
        """Manual correction by the merchant. Stock never goes below zero."""
        locked = Product.objects.select_for_update().get(pk=product.pk)
        new_quantity = locked.stock_quantity + delta
        if new_quantity < 0:
            raise ValueError(
                f"Cannot remove {abs(delta)} units: only {locked.stock_quantity} in stock"
            )
        locked.stock_quantity = new_quantity
        locked.save(update_fields=['stock_quantity', 'updated_at'])
        return locked

    @staticmethod
    def low_stock(store) -> List[Product]:
        threshold = settings.LOW_STOCK_THRESHOLD
        return list(
            store.products.filter(is_active=True, stock_quantity__lte=threshold)
            .order_by('stock_quantity', 'name')
        )


class ReviewService:
    """Order reviews."""

    @staticmethod
    def create_review(customer, order, store_rating: int, driver_rating=None, comment: str = '') -> Review:
        from logistics.models import OrderStatus

        if order.customer_id != customer.pk:
            raise PermissionError("You can only review your own orders")
        if order.status != OrderStatus.DELIVERED:
            raise ValueError("Only delivered orders can be reviewed")
        if Review.objects.filter(order=order).exists():
            raise ValueError("This order has already been reviewed")
        if driver_rating is not None and not order.driver_id:
            raise ValueError("This order had no driver to rate")

        return Review.objects.create(
            order=order,
            customer=customer,
            store=order.store,
            driver=order.driver if driver_rating is not None else None,
            store_rating=store_rating,
            driver_rating=driver_rating,
            comment=comment,
        )
