"""
LOGISTICS App - WebSocket Routing Configuration

Maps WebSocket URLs to consumers for real-time tracking.
"""

from django.urls import re_path
from . import consumers


websocket_urlpatterns = [
    # Track a specific order in real-time
    # ws://localhost:8000/ws/orders/<uuid>/
    re_path(
        r'ws/orders/(?P<order_id>[0-9a-f-]+)/$',
        consumers.OrderTrackingConsumer.as_asgi()
    ),

    # Driver app - receive offers and send location updates
    # ws://localhost:8000/ws/driver/
    re_path(
        r'ws/driver/$',
        consumers.DriverConsumer.as_asgi()
    ),

    # Merchant store dashboard
    # ws://localhost:8000/ws/stores/<uuid>/
    re_path(
        r'ws/stores/(?P<store_id>[0-9a-f-]+)/$',
        consumers.StoreConsumer.as_asgi()
    ),

    # Admin dispatch monitor
    # ws://localhost:8000/ws/dispatch/
    re_path(
        r'ws/dispatch/$',
        consumers.DispatchConsumer.as_asgi()
    ),
]
