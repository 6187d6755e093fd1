"""
Partners App URLs - Merchant Integration API (mounted at /api/v1/external/)
"""
from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import ExternalOrderViewSet, MerchantAPIKeyViewSet, WebhookEndpointViewSet

router = DefaultRouter()
router.register(r'orders', ExternalOrderViewSet, basename='external-order')
router.register(r'keys', MerchantAPIKeyViewSet, basename='api-key')
router.register(r'webhooks', WebhookEndpointViewSet, basename='webhook')

urlpatterns = [
    path('', include(router.urls)),
]
