"""
PartsRunner Main URL Configuration
"""

from django.contrib import admin
from django.urls import path, include
from django.conf import settings
from django.conf.urls.static import static
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from core import health


# ===========================================
# ADMIN SITE CUSTOMIZATION
# ===========================================
admin.site.site_header = "PartsRunner Control Tower"
admin.site.site_title = "PartsRunner Admin"
admin.site.index_title = "Marketplace Operations"


@api_view(['GET'])
@permission_classes([AllowAny])
def api_root(request):
    """API Root endpoint with available routes."""
    return Response({
        'name': 'PartsRunner API',
        'version': '1.0.0',
        'endpoints': {
            'auth': {
                'register': '/api/auth/register/',
                'token': '/api/auth/token/',
                'refresh': '/api/auth/token/refresh/',
            },
            'users': '/api/users/',
            'stores': '/api/stores/',
            'products': '/api/products/',
            'cart': '/api/cart/',
            'favorites': '/api/favorites/',
            'reviews': '/api/reviews/',
            'orders': '/api/orders/',
            'quote': '/api/orders/quote/',
            'checkout': '/api/orders/checkout/',
            'driver': {
                'applications': '/api/driver-applications/',
                'profile': '/api/driver/profile/',
                'status': '/api/driver/status/',
                'location': '/api/driver/location/',
                'earnings': '/api/driver/earnings/',
                'documents': '/api/driver/documents/',
            },
            'wallet': {
                'balance': '/api/wallet/balance/',
                'history': '/api/wallet/history/',
                'withdrawals': '/api/withdrawals/',
            },
            'payouts': '/api/payouts/',
            'payments': '/api/payments/',
            'notifications': '/api/notifications/',
            'support': '/api/disputes/',
            'reports': '/api/reports/',
            'external': '/api/v1/external/',
            'docs': '/api/docs/',
        }
    })


urlpatterns = [
    # Admin
    path('admin/', admin.site.urls),

    # Health checks (load balancer / k8s probes)
    path('health/', health.health_check, name='health'),
    path('health/ready/', health.readiness_check, name='health-ready'),
    path('health/detailed/', health.detailed_health, name='health-detailed'),

    # API Root
    path('api/', api_root, name='api-root'),

    # API Documentation
    path('api/schema/', SpectacularAPIView.as_view(), name='schema'),
    path('api/docs/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),

    # App URLs
    path('api/', include('core.urls')),
    path('api/', include('stores.urls')),
    path('api/', include('logistics.urls')),
    path('api/', include('drivers.urls')),
    path('api/', include('finance.urls')),
    path('api/', include('notifications.urls')),
    path('api/', include('support.urls')),
    path('api/', include('reports.urls')),

    # Merchant integration API (API key auth)
    path('api/v1/external/', include('partners.urls')),
]

# Serve media files in development
if settings.DEBUG:
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)
