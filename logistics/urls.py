"""
Logistics App URLs
"""

from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import OrderViewSet, PricingRuleViewSet

router = DefaultRouter()
router.register(r'orders', OrderViewSet, basename='order')
router.register(r'pricing-rules', PricingRuleViewSet, basename='pricing-rule')

urlpatterns = [
    # Router URLs
    path('', include(router.urls)),
]
