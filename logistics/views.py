"""
Logistics App Views - Orders, Quotes, Dispatch & Pricing Rules API
"""

import logging

from django.shortcuts import get_object_or_404
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from core.models import User, UserRole
from core.permissions import IsCustomer, IsDriver, IsPlatformAdmin
from stores.models import Store
from .models import ACTIVE_DRIVER_STATUSES, Order, PricingRule
from .serializers import (
    AvailableOrderSerializer, CheckoutSerializer, DriverAssignSerializer,
    OrderCancelSerializer, OrderListSerializer, OrderSerializer,
    OrderStatusHistorySerializer, OrderStatusUpdateSerializer,
    PricingRuleSerializer, QuoteRequestSerializer, QuoteResponseSerializer
)
from .services import dispatch
from .services.orders import OrderService
from .services.pricing import pricing_engine

logger = logging.getLogger(__name__)


def _error(e: Exception) -> Response:
    code = status.HTTP_403_FORBIDDEN if isinstance(e, PermissionError) else status.HTTP_400_BAD_REQUEST
    return Response({'error': str(e)}, status=code)


class OrderViewSet(viewsets.ReadOnlyModelViewSet):
    """
    ViewSet for Order management.

    Customers see their orders, merchants their stores' orders,
    drivers the orders assigned to them, admins everything.
    """

    queryset = Order.objects.select_related('store', 'customer', 'driver')
    permission_classes = [permissions.IsAuthenticated]
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ['status', 'store', 'payment_status', 'source']
    lookup_value_regex = '[0-9a-fA-F]{8}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{12}'

    def get_serializer_class(self):
        if self.action == 'list':
            return OrderListSerializer
        return OrderSerializer

    def get_queryset(self):
        user = self.request.user
        qs = self.queryset

        if user.is_platform_admin:
            return qs
        if user.role == UserRole.MERCHANT:
            return qs.filter(store__merchant=user)
        if user.role == UserRole.DRIVER:
            return qs.filter(driver=user)
        return qs.filter(customer=user)

    # ==========================================
    # CUSTOMER
    # ==========================================

    @action(detail=False, methods=['post'])
    def quote(self, request):
        """Price a delivery before checkout."""
        serializer = QuoteRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        store = get_object_or_404(Store, pk=data['store_id'], is_active=True)
        destination = None
        if data.get('delivery_latitude') is not None:
            destination = (data['delivery_latitude'], data['delivery_longitude'])

        quote = pricing_engine.quote(
            data['subtotal'],
            store=store,
            destination=destination,
            service_level=data['service_level'],
        )
        return Response(QuoteResponseSerializer(quote.as_dict()).data)

    @action(detail=False, methods=['post'], permission_classes=[IsCustomer])
    def checkout(self, request):
        """Turn the cart into one order per store."""
        serializer = CheckoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            orders = OrderService.checkout(
                request.user,
                delivery=serializer.delivery(),
                payment_method=serializer.validated_data['payment_method'],
                service_level=serializer.validated_data['service_level'],
            )
        except ValueError as e:
            return _error(e)

        return Response(
            OrderSerializer(orders, many=True, context={'request': request}).data,
            status=status.HTTP_201_CREATED
        )

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        """Cancel an order (customer before preparation, merchant or admin)."""
        order = self.get_object()
        serializer = OrderCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            order = OrderService.cancel(order, actor=request.user, reason=serializer.validated_data['reason'])
        except (ValueError, PermissionError) as e:
            return _error(e)

        return Response(OrderSerializer(order, context={'request': request}).data)

    @action(detail=True, methods=['get'])
    def tracking(self, request, pk=None):
        """Live status, driver location and ETA."""
        return Response(OrderService.tracking(self.get_object()))

    @action(detail=True, methods=['get'])
    def history(self, request, pk=None):
        """Status timeline."""
        order = self.get_object()
        entries = order.status_history.select_related('changed_by')
        return Response(OrderStatusHistorySerializer(entries, many=True).data)

    # ==========================================
    # MERCHANT / DRIVER
    # ==========================================

    @action(detail=True, methods=['post'])
    def update_status(self, request, pk=None):
        """Move the order along its lifecycle."""
        order = self.get_object()
        serializer = OrderStatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            order = OrderService.transition(
                order,
                data['status'],
                actor=request.user,
                note=data.get('note', ''),
                delivery_code=data.get('delivery_code'),
            )
        except (ValueError, PermissionError) as e:
            return _error(e)

        return Response(OrderSerializer(order, context={'request': request}).data)

    @action(detail=False, methods=['get'], permission_classes=[IsDriver])
    def available(self, request):
        """Unassigned orders near the driver."""
        radius = request.query_params.get('radius')
        try:
            radius = float(radius) if radius else None
        except ValueError:
            return Response({'error': 'radius must be a number'}, status=status.HTTP_400_BAD_REQUEST)

        orders = dispatch.available_orders(request.user, radius_miles=radius)
        return Response(AvailableOrderSerializer(orders, many=True).data)

    @action(detail=False, methods=['get'], permission_classes=[IsDriver])
    def active(self, request):
        """The delivery the driver is working on, if any."""
        order = self.get_queryset().filter(status__in=ACTIVE_DRIVER_STATUSES).first()
        if order is None:
            return Response({'order': None})
        return Response({'order': OrderSerializer(order, context={'request': request}).data})

    @action(detail=True, methods=['post'], permission_classes=[IsDriver])
    def accept(self, request, pk=None):
        """Claim an unassigned order."""
        try:
            order = dispatch.accept_order(pk, request.user)
        except (ValueError, PermissionError) as e:
            return _error(e)

        return Response({
            'success': True,
            'message': 'Order accepted',
            'order': OrderSerializer(order, context={'request': request}).data
        })

    @action(detail=True, methods=['post'], permission_classes=[IsDriver])
    def release(self, request, pk=None):
        """Hand a claimed order back to the pool before pickup."""
        try:
            order = dispatch.release_order(pk, request.user)
        except (ValueError, PermissionError) as e:
            return _error(e)

        return Response({'success': True, 'order_id': str(order.pk)})

    # ==========================================
    # ADMIN
    # ==========================================

    @action(detail=True, methods=['post'], permission_classes=[IsPlatformAdmin])
    def assign_driver(self, request, pk=None):
        """Assign a driver to the order (Admin only)."""
        serializer = DriverAssignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        driver = User.objects.filter(
            pk=serializer.validated_data['driver_id'],
            role=UserRole.DRIVER,
            is_active=True
        ).first()
        if driver is None:
            return Response({'error': 'Driver not found'}, status=status.HTTP_404_NOT_FOUND)

        try:
            order = dispatch.assign_driver(pk, driver, request.user)
        except (ValueError, PermissionError) as e:
            return _error(e)

        return Response(OrderSerializer(order, context={'request': request}).data)


class PricingRuleViewSet(viewsets.ModelViewSet):
    """
    ViewSet for delivery fee rules (Admin only).
    """

    queryset = PricingRule.objects.all()
    serializer_class = PricingRuleSerializer
    permission_classes = [IsPlatformAdmin]
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ['factor', 'is_active']

    def perform_create(self, serializer):
        rule = serializer.save()
        logger.info(f"[PRICING] Rule created by {self.request.user.email}: {rule}")

    def perform_destroy(self, instance):
        logger.info(f"[PRICING] Rule deleted by {self.request.user.email}: {instance}")
        instance.delete()
