"""
Drivers App URLs
"""

from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import (
    DriverApplicationViewSet, DriverDocumentViewSet, DriverEarningsView,
    DriverHeartbeatView, DriverLocationView, DriverProfileAdminViewSet,
    DriverProfileView, DriverStatusView
)

router = DefaultRouter()
router.register(r'driver-applications', DriverApplicationViewSet, basename='driver-application')
router.register(r'driver/documents', DriverDocumentViewSet, basename='driver-document')
router.register(r'drivers', DriverProfileAdminViewSet, basename='driver-profile')

urlpatterns = [
    # Driver app endpoints
    path('driver/profile/', DriverProfileView.as_view(), name='driver-profile'),
    path('driver/status/', DriverStatusView.as_view(), name='driver-status'),
    path('driver/location/', DriverLocationView.as_view(), name='driver-location'),
    path('driver/heartbeat/', DriverHeartbeatView.as_view(), name='driver-heartbeat'),
    path('driver/earnings/', DriverEarningsView.as_view(), name='driver-earnings'),

    # Router URLs
    path('', include(router.urls)),
]
