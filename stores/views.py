"""
Stores App Views - Catalog, Cart, Wishlist & Reviews API
"""

import logging
from django.shortcuts import get_object_or_404
from rest_framework import viewsets, mixins, status, permissions
from rest_framework.decorators import action
from rest_framework.response import Response

from core.permissions import IsMerchantOrAdmin
from .models import Store, Product, Favorite, Review
from .serializers import (
    StoreSerializer, ProductSerializer, StockAdjustmentSerializer,
    CartItemSerializer, CartLineSerializer, FavoriteSerializer,
    ReviewSerializer, ReviewCreateSerializer
)
from .services import CartService, FavoriteService, InventoryService, ReviewService

logger = logging.getLogger(__name__)

READ_ACTIONS = ('list', 'retrieve', 'products', 'reviews')


class StoreViewSet(viewsets.ModelViewSet):
    """
    Storefronts.

    - List/Retrieve: public, active stores only
    - Create/Update/Delete: the owning merchant, or an admin
    """

    serializer_class = StoreSerializer
    filterset_fields = ['city', 'state', 'store_type']
    search_fields = ['name', 'description', 'city']
    ordering_fields = ['name', 'average_rating', 'created_at']

    def get_permissions(self):
        if self.action in READ_ACTIONS:
            return [permissions.AllowAny()]
        return [IsMerchantOrAdmin()]

    def get_queryset(self):
        user = self.request.user
        if self.action in READ_ACTIONS:
            return Store.objects.filter(is_active=True).select_related('merchant')
        if user.is_platform_admin:
            return Store.objects.all()
        return Store.objects.filter(merchant=user)

    def perform_create(self, serializer):
        store = serializer.save(merchant=self.request.user)
        logger.info(f"[STORES] Store created: {store.name} by {self.request.user.email}")

    @action(detail=False, methods=['get'])
    def mine(self, request):
        """The caller's own stores, including inactive ones."""
        stores = self.get_queryset()
        return Response(self.get_serializer(stores, many=True).data)

    @action(detail=True, methods=['get'])
    def products(self, request, pk=None):
        store = self.get_object()
        products = store.products.filter(is_active=True)
        page = self.paginate_queryset(products)
        serializer = ProductSerializer(page, many=True, context={'request': request})
        return self.get_paginated_response(serializer.data)

    @action(detail=True, methods=['get'])
    def reviews(self, request, pk=None):
        store = self.get_object()
        page = self.paginate_queryset(store.reviews.select_related('customer'))
        return self.get_paginated_response(ReviewSerializer(page, many=True).data)

    @action(detail=True, methods=['get'])
    def low_stock(self, request, pk=None):
        """Active products at or below the low-stock threshold."""
        store = self.get_object()
        products = InventoryService.low_stock(store)
        return Response(ProductSerializer(products, many=True, context={'request': request}).data)


class ProductViewSet(viewsets.ModelViewSet):
    """
    Product catalog.

    Public browsing only sees active products of active stores.
    Merchants manage products of their own stores.
    """

    serializer_class = ProductSerializer
    filterset_fields = ['store', 'category', 'brand', 'is_featured', 'store__store_type', 'store__city']
    search_fields = ['name', 'description', 'brand', 'sku', 'part_number']
    ordering_fields = ['price', 'name', 'created_at']

    def get_permissions(self):
        if self.action in ('list', 'retrieve'):
            return [permissions.AllowAny()]
        return [IsMerchantOrAdmin()]

    def get_queryset(self):
        user = self.request.user
        if self.action in ('list', 'retrieve'):
            return Product.objects.filter(
                is_active=True, store__is_active=True
            ).select_related('store')
        if user.is_platform_admin:
            return Product.objects.select_related('store')
        return Product.objects.filter(store__merchant=user).select_related('store')

    @action(detail=True, methods=['post'])
    def adjust_stock(self, request, pk=None):
        """Add or remove units: {"delta": -3}."""
        product = self.get_object()
        serializer = StockAdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            product = InventoryService.adjust(product, serializer.validated_data['delta'])
        except ValueError as e:
            return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)
        return Response(self.get_serializer(product).data)


class CartViewSet(viewsets.ViewSet):
    """The caller's shopping cart."""

    permission_classes = [permissions.IsAuthenticated]

    def _product(self, product_id):
        return get_object_or_404(Product.objects.select_related('store'), pk=product_id)

    def list(self, request):
        return Response(CartService.summary(request.user))

    @action(detail=False, methods=['post'])
    def add(self, request):
        serializer = CartLineSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        product = self._product(serializer.validated_data['product_id'])
        try:
            item = CartService.add(request.user, product, serializer.validated_data['quantity'])
        except ValueError as e:
            return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)
        return Response(CartItemSerializer(item).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=['post'])
    def update_item(self, request):
        serializer = CartLineSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        product = self._product(serializer.validated_data['product_id'])
        try:
            CartService.update_quantity(request.user, product, serializer.validated_data['quantity'])
        except ValueError as e:
            return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)
        return Response(CartService.summary(request.user))

    @action(detail=False, methods=['post'])
    def remove(self, request):
        product = self._product(request.data.get('product_id'))
        CartService.remove(request.user, product)
        return Response(CartService.summary(request.user))

    @action(detail=False, methods=['post'])
    def clear(self, request):
        CartService.clear(request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)


class FavoriteViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    """Wishlist."""

    serializer_class = FavoriteSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        return Favorite.objects.filter(customer=self.request.user).select_related('product__store')

    @action(detail=False, methods=['post'])
    def toggle(self, request):
        product = get_object_or_404(Product, pk=request.data.get('product_id'))
        is_favorite = FavoriteService.toggle(request.user, product)
        return Response({'product_id': str(product.pk), 'is_favorite': is_favorite})


class ReviewViewSet(mixins.ListModelMixin, mixins.CreateModelMixin, viewsets.GenericViewSet):
    """
    Order reviews.

    - List: public, filter by store
    - Create: the customer of a delivered order
    """

    serializer_class = ReviewSerializer
    filterset_fields = ['store']

    def get_permissions(self):
        if self.action == 'list':
            return [permissions.AllowAny()]
        return [permissions.IsAuthenticated()]

    def get_queryset(self):
        return Review.objects.select_related('customer', 'store')

    def create(self, request, *args, **kwargs):
        from logistics.models import Order

        serializer = ReviewCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        order = get_object_or_404(Order, pk=data['order_id'])

        try:
            review = ReviewService.create_review(
                request.user,
                order,
                store_rating=data['store_rating'],
                driver_rating=data.get('driver_rating'),
                comment=data.get('comment', ''),
            )
        except PermissionError as e:
            return Response({'error': str(e)}, status=status.HTTP_403_FORBIDDEN)
        except ValueError as e:
            return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(ReviewSerializer(review).data, status=status.HTTP_201_CREATED)
