"""
PartsRunner Security Middleware
===============================

Provides:
1. Rate limiting per client (IP, or API key prefix for merchant integrations)
2. Security headers
3. Request audit logging (money/account writes, errors, slow requests)
"""

import logging
import time

from django.conf import settings
from django.core.cache import cache
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

logger = logging.getLogger('partsrunner.security')


def client_ip(request) -> str:
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR', '')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR', '0.0.0.0')


class RateLimitMiddleware(MiddlewareMixin):
    """
    Fixed-window rate limiting backed by the Django cache.

    Each rule is (path prefix, scope, max requests, window seconds); the
    first matching prefix wins. Anything else under /api/ falls into the
    default scope.
    """

    RULES = (
        ('/api/auth/token/refresh/', 'refresh', 20, 60),
        ('/api/auth/token/', 'login', 10, 60),
        ('/api/auth/register/', 'register', 10, 60),
        ('/api/payments/webhook/', 'stripe', 300, 60),
        ('/api/payments/', 'payments', 20, 60),
        ('/api/withdrawals/', 'withdrawals', 20, 60),
        ('/api/contact/', 'contact', 5, 300),
        ('/api/v1/external/', 'integration', 120, 60),
    )
    DEFAULT_RULE = ('api', 100, 60)

    def _rule(self, path):
        for prefix, scope, limit, window in self.RULES:
            if path.startswith(prefix):
                return scope, limit, window
        if path.startswith('/api/'):
            return self.DEFAULT_RULE
        return None

    @staticmethod
    def _identity(request, scope: str) -> str:
        # Merchant integrations are limited per key, not per NAT'd office IP
        if scope == 'integration':
            header = request.META.get('HTTP_AUTHORIZATION', '')
            if header.startswith('Api-Key '):
                return 'key:' + header[len('Api-Key '):].split('.', 1)[0]
        return 'ip:' + client_ip(request)

    def process_request(self, request):
        if not getattr(settings, 'RATE_LIMIT_ENABLED', True):
            return None

        rule = self._rule(request.path)
        if rule is None:
            return None

        scope, limit, window = rule
        identity = self._identity(request, scope)
        bucket = int(time.time()) // window
        cache_key = f"rl:{scope}:{identity}:{bucket}"

        if cache.add(cache_key, 1, window):
            count = 1
        else:
            try:
                count = cache.incr(cache_key)
            except ValueError:
                cache.set(cache_key, 1, window)
                count = 1

        if count > limit:
            logger.warning(f"[RATELIMIT] {scope} exceeded by {identity} on {request.path} ({count}/{limit})")
            retry_after = window - int(time.time()) % window
            return JsonResponse({
                'error': 'rate_limit_exceeded',
                'message': 'Too many requests. Please try again later.',
                'retry_after': retry_after,
            }, status=429, headers={
                'Retry-After': str(retry_after),
                'X-RateLimit-Limit': str(limit),
                'X-RateLimit-Remaining': '0',
            })

        request.rate_limit = (limit, max(0, limit - count))
        return None

    def process_response(self, request, response):
        if hasattr(request, 'rate_limit'):
            limit, remaining = request.rate_limit
            response['X-RateLimit-Limit'] = str(limit)
            response['X-RateLimit-Remaining'] = str(remaining)
        return response


class SecurityHeadersMiddleware(MiddlewareMixin):
    """Hardening headers for API and admin responses."""

    HEADERS = {
        'X-Content-Type-Options': 'nosniff',
        'Referrer-Policy': 'strict-origin-when-cross-origin',
        'Cross-Origin-Opener-Policy': 'same-origin',
        # Driver app: location for tracking, camera for document uploads
        'Permissions-Policy': 'geolocation=(self), camera=(self), microphone=(), payment=(self)',
    }

    def process_response(self, request, response):
        for header, value in self.HEADERS.items():
            response[header] = value

        # Admin popups load in iframes
        if not request.path.startswith('/admin/'):
            response['X-Frame-Options'] = 'DENY'

        if request.path.startswith('/api/') and 'Cache-Control' not in response:
            response['Cache-Control'] = 'no-store'

        if not settings.DEBUG:
            response['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'

        return response


class RequestAuditMiddleware(MiddlewareMixin):
    """
    Audit trail on the partsrunner.security logger.

    Logged:
    - writes to money and account endpoints
    - every auth request
    - 4xx on the API, all 5xx
    - requests slower than SLOW_REQUEST_MS
    """

    SENSITIVE_PREFIXES = (
        '/api/auth/',
        '/api/users/',
        '/api/wallet/',
        '/api/payouts/',
        '/api/payments/',
        '/api/withdrawals/',
        '/api/refunds/',
        '/api/v1/external/keys/',
        '/admin/',
    )
    WRITE_METHODS = ('POST', 'PUT', 'PATCH', 'DELETE')

    def process_request(self, request):
        request.audit_started = time.monotonic()

    def _reason(self, request, response, elapsed_ms: float):
        path = request.path
        if response.status_code >= 500:
            return 'error'
        if response.status_code >= 400 and path.startswith('/api/'):
            return 'rejected'
        if path.startswith('/api/auth/'):
            return 'auth'
        if request.method in self.WRITE_METHODS and path.startswith(self.SENSITIVE_PREFIXES):
            return 'write'
        if elapsed_ms >= getattr(settings, 'SLOW_REQUEST_MS', 2000):
            return 'slow'
        return None

    def process_response(self, request, response):
        started = getattr(request, 'audit_started', None)
        elapsed_ms = (time.monotonic() - started) * 1000 if started else 0.0

        reason = self._reason(request, response, elapsed_ms)
        if reason is None:
            return response

        user = getattr(request, 'user', None)
        actor = user.email if user is not None and user.is_authenticated else 'anonymous'
        line = (
            f"[AUDIT] {reason} {request.method} {request.path} -> {response.status_code} "
            f"{elapsed_ms:.0f}ms user={actor} ip={client_ip(request)}"
        )

        if reason == 'error':
            logger.error(line)
        elif reason in ('rejected', 'slow'):
            logger.warning(line)
        else:
            logger.info(line)
        return response
