"""
PartsRunner Monitoring & Health Check Endpoints
===============================================

Provides:
1. /health/ - Basic liveness check (for load balancers/Docker)
2. /health/ready/ - Readiness check (DB, cache)
3. /health/detailed/ - Marketplace counters (staff only)
"""

import time
import logging
from django.http import JsonResponse
from django.db import connection
from django.core.cache import cache
from django.views.decorators.http import require_GET
from django.views.decorators.csrf import csrf_exempt
from django.utils import timezone

logger = logging.getLogger('partsrunner.monitoring')


@csrf_exempt
@require_GET
def health_check(request):
    """
    Basic liveness probe.
    Returns 200 if the Django process is alive.
    """
    return JsonResponse({
        'status': 'ok',
        'service': 'partsrunner',
        'timestamp': timezone.now().isoformat(),
    })


@csrf_exempt
@require_GET
def readiness_check(request):
    """
    Readiness probe - checks all critical dependencies.
    Returns 503 if any dependency is down.
    """
    checks = {}
    all_healthy = True

    # 1. Database Check
    try:
        start = time.time()
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        checks['database'] = {
            'status': 'healthy',
            'response_time_ms': round((time.time() - start) * 1000, 2),
            'vendor': connection.vendor,
        }
    except Exception as e:
        checks['database'] = {'status': 'unhealthy', 'error': str(e)}
        all_healthy = False
        logger.error(f"Health check - Database unhealthy: {e}")

    # 2. Cache Check
    try:
        start = time.time()
        cache_key = '_healthcheck_ping'
        cache.set(cache_key, 'pong', 10)
        if cache.get(cache_key) != 'pong':
            raise RuntimeError("Cache read/write mismatch")
        checks['cache'] = {
            'status': 'healthy',
            'response_time_ms': round((time.time() - start) * 1000, 2),
        }
    except Exception as e:
        checks['cache'] = {'status': 'unhealthy', 'error': str(e)}
        all_healthy = False
        logger.error(f"Health check - Cache unhealthy: {e}")

    return JsonResponse({
        'status': 'healthy' if all_healthy else 'unhealthy',
        'service': 'partsrunner',
        'timestamp': timezone.now().isoformat(),
        'checks': checks,
    }, status=200 if all_healthy else 503)


@csrf_exempt
@require_GET
def detailed_health(request):
    """
    Detailed marketplace counters (staff only).
    """
    if not request.user.is_authenticated or not request.user.is_staff:
        return JsonResponse({
            'error': 'Unauthorized',
            'message': 'Staff access required for detailed diagnostics',
        }, status=403)

    from core.models import User, UserRole
    from drivers.models import DriverProfile
    from logistics.models import Order, OrderStatus
    from finance.models import Transaction

    today = timezone.localdate()
    stats = {
        'users': {
            'total': User.objects.count(),
            'customers': User.objects.filter(role=UserRole.CUSTOMER).count(),
            'merchants': User.objects.filter(role=UserRole.MERCHANT).count(),
            'drivers': User.objects.filter(role=UserRole.DRIVER).count(),
            'drivers_online': DriverProfile.objects.filter(is_online=True).count(),
        },
        'orders': {
            'total': Order.objects.count(),
            'pending': Order.objects.filter(status=OrderStatus.PENDING).count(),
            'in_transit': Order.objects.filter(status=OrderStatus.IN_TRANSIT).count(),
            'delivered_today': Order.objects.filter(
                status=OrderStatus.DELIVERED,
                delivered_at__date=today
            ).count(),
        },
        'transactions': {
            'total': Transaction.objects.count(),
            'today': Transaction.objects.filter(created_at__date=today).count(),
        },
    }

    return JsonResponse({
        'status': 'ok',
        'service': 'partsrunner',
        'timestamp': timezone.now().isoformat(),
        'stats': stats,
    })
