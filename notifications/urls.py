"""
Notifications App URLs
"""

from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import NotificationViewSet, SendEmailView

router = DefaultRouter()
router.register(r'notifications', NotificationViewSet, basename='notification')

urlpatterns = [
    path('notifications/email/', SendEmailView.as_view(), name='send-email'),
    path('', include(router.urls)),
]
