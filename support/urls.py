"""
Support App URLs
"""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import ContactMessageViewSet, DisputeViewSet, RefundViewSet

router = DefaultRouter()
router.register(r'disputes', DisputeViewSet, basename='dispute')
router.register(r'refunds', RefundViewSet, basename='refund')
router.register(r'contact', ContactMessageViewSet, basename='contact')

urlpatterns = [
    path('', include(router.urls)),
]
