"""
Partners App Views - Merchant Integration API & Key Management
"""

import logging

from django.shortcuts import get_object_or_404
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from core.permissions import IsMerchant
from logistics.models import Order
from logistics.serializers import QuoteRequestSerializer, QuoteResponseSerializer
from logistics.services.orders import OrderService
from logistics.services.pricing import pricing_engine
from stores.models import Store
from .models import MerchantAPIKey, WebhookEndpoint
from .permissions import HasMerchantAPIKey
from .serializers import (
    ExternalCancelSerializer, ExternalOrderCreateSerializer, ExternalOrderSerializer,
    MerchantAPIKeySerializer, WebhookEndpointSerializer
)
from .services import DuplicateExternalOrder, ExternalOrderService, WebhookService

logger = logging.getLogger(__name__)


def _error(exc, code=status.HTTP_400_BAD_REQUEST):
    return Response({'error': str(exc)}, status=code)


# ===========================================
# EXTERNAL ORDERS (API KEY)
# ===========================================

class ExternalOrderViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    """
    Orders pushed by merchant systems.

    Authentication: `Authorization: Api-Key <key>`.
    Every lookup is scoped to the key's merchant.
    """

    serializer_class = ExternalOrderSerializer
    permission_classes = [HasMerchantAPIKey]
    filterset_fields = ['status', 'store', 'external_order_id']
    ordering_fields = ['created_at', 'total']

    def get_queryset(self):
        merchant = getattr(self.request, 'merchant', None)
        return Order.objects.filter(store__merchant=merchant).select_related('store', 'driver')

    def create(self, request):
        serializer = ExternalOrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        store = get_object_or_404(Store, pk=data['storeId'])
        try:
            order = ExternalOrderService.create_order(request.merchant, store, data)
        except PermissionError as e:
            return _error(e, status.HTTP_403_FORBIDDEN)
        except DuplicateExternalOrder as e:
            return _error(e, status.HTTP_409_CONFLICT)
        except ValueError as e:
            return _error(e)

        return Response({
            'success': True,
            'orderId': str(order.pk),
            'orderNumber': order.order_number,
            'externalOrderId': order.external_order_id,
            'order': ExternalOrderSerializer(order).data,
        }, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        order = self.get_object()
        serializer = ExternalCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            order = OrderService.cancel(
                order, actor=request.merchant, reason=serializer.validated_data['reason']
            )
        except PermissionError as e:
            return _error(e, status.HTTP_403_FORBIDDEN)
        except ValueError as e:
            return _error(e)
        return Response(ExternalOrderSerializer(order).data)

    @action(detail=True, methods=['get'])
    def tracking(self, request, pk=None):
        return Response(OrderService.tracking(self.get_object()))

    @action(detail=False, methods=['post'])
    def quote(self, request):
        """Delivery price for one of the merchant's stores. No service fee on API orders."""
        serializer = QuoteRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        store = get_object_or_404(Store, pk=data['store_id'], is_active=True)
        if store.merchant_id != request.merchant.pk:
            return _error("You can only quote for your own stores", status.HTTP_403_FORBIDDEN)

        destination = None
        if data.get('delivery_latitude') is not None:
            destination = (data['delivery_latitude'], data['delivery_longitude'])

        quote = pricing_engine.quote(
            data['subtotal'],
            store=store,
            destination=destination,
            service_level=data['service_level'],
            include_service_fee=False,
        )
        return Response(QuoteResponseSerializer(quote.as_dict()).data)


# ===========================================
# KEY & WEBHOOK MANAGEMENT (MERCHANT LOGIN)
# ===========================================

class MerchantAPIKeyViewSet(mixins.CreateModelMixin, mixins.ListModelMixin,
                            mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    """
    Merchant's own API keys. The raw key is returned once, on creation.
    """

    serializer_class = MerchantAPIKeySerializer
    permission_classes = [IsMerchant]
    # Key ids are "<prefix>.<hash>"
    lookup_value_regex = '[^/]+'

    def get_queryset(self):
        return MerchantAPIKey.objects.filter(merchant=self.request.user).order_by('-created')

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        api_key, raw_key = MerchantAPIKey.objects.create_key(
            name=serializer.validated_data['name'],
            expiry_date=serializer.validated_data.get('expiry_date'),
            merchant=request.user,
        )
        logger.info(f"[API] Key '{api_key.name}' created for {request.user.email}")

        data = MerchantAPIKeySerializer(api_key).data
        data['key'] = raw_key
        return Response(data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def revoke(self, request, pk=None):
        api_key = self.get_object()
        if api_key.revoked:
            return _error("This key is already revoked")
        api_key.revoked = True
        api_key.save(update_fields=['revoked'])
        logger.info(f"[API] Key '{api_key.name}' revoked by {request.user.email}")
        return Response(MerchantAPIKeySerializer(api_key).data)


class WebhookEndpointViewSet(viewsets.ModelViewSet):
    """
    Merchant's webhook endpoints.
    """

    serializer_class = WebhookEndpointSerializer
    permission_classes = [IsMerchant]

    def get_queryset(self):
        return WebhookEndpoint.objects.filter(merchant=self.request.user)

    def perform_create(self, serializer):
        serializer.save(merchant=self.request.user)

    def perform_update(self, serializer):
        # Re-enabling an endpoint clears its failure streak
        if serializer.validated_data.get('is_active'):
            serializer.save(failure_count=0)
        else:
            serializer.save()

    @action(detail=True, methods=['post'])
    def test(self, request, pk=None):
        """Send a signed test event right now."""
        endpoint = self.get_object()
        success, message = WebhookService.test_webhook(endpoint)
        return Response(
            {'success': success, 'message': message, 'status_code': endpoint.last_status_code},
            status=status.HTTP_200_OK if success else status.HTTP_502_BAD_GATEWAY
        )

    @action(detail=True, methods=['post'], url_path='regenerate-secret')
    def regenerate_secret(self, request, pk=None):
        endpoint = self.get_object()
        endpoint.regenerate_secret()
        return Response(WebhookEndpointSerializer(endpoint).data)
