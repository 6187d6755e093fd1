"""
Django settings for PartsRunner.
On-demand delivery marketplace for auto parts and hardware.

Configuration for:
- PostgreSQL (orders, catalog, ledger)
- Redis/Celery (background tasks)
- Channels (live order tracking)
- JWT Authentication (API)
"""

from pathlib import Path
from decimal import Decimal
from decouple import config, Csv
from datetime import timedelta

# ===========================================
# BASE CONFIGURATION
# ===========================================
BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = config('SECRET_KEY', default='dev-secret-key-change-in-production')
DEBUG = config('DEBUG', default=True, cast=bool)
ALLOWED_HOSTS = config('ALLOWED_HOSTS', default='localhost,127.0.0.1,0.0.0.0', cast=Csv())

# ===========================================
# APPLICATION DEFINITION
# ===========================================
INSTALLED_APPS = [
    # Django Core
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',

    # Daphne MUST be before staticfiles
    'daphne',  # ASGI server for WebSocket support
    'channels',  # Django Channels for real-time

    'django.contrib.staticfiles',

    # Third Party
    'rest_framework',
    'rest_framework_simplejwt',
    'corsheaders',
    'django_filters',

    # PartsRunner Apps
    'core.apps.CoreConfig',
    'stores.apps.StoresConfig',
    'logistics.apps.LogisticsConfig',
    'drivers.apps.DriversConfig',
    'finance.apps.FinanceConfig',
    'notifications.apps.NotificationsConfig',
    'support.apps.SupportConfig',
    'partners.apps.PartnersConfig',
    'reports.apps.ReportsConfig',

    # API Documentation & Keys
    'drf_spectacular',
    'rest_framework_api_key',
]


MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'corsheaders.middleware.CorsMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',

    # PartsRunner security layer
    'core.middleware.RateLimitMiddleware',
    'core.middleware.SecurityHeadersMiddleware',
    'core.middleware.RequestAuditMiddleware',
]

ROOT_URLCONF = 'partsrunner_core.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [BASE_DIR / 'templates'],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'partsrunner_core.wsgi.application'

# ===========================================
# DATABASE - PostgreSQL
# ===========================================
DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.postgresql',
        'NAME': config('DB_NAME', default='partsrunner_db'),
        'USER': config('DB_USER', default='partsrunner_user'),
        'PASSWORD': config('DB_PASSWORD', default='partsrunner_secret'),
        'HOST': config('DB_HOST', default='db'),
        'PORT': config('DB_PORT', default='5432'),
    }
}

# ===========================================
# CUSTOM USER MODEL
# ===========================================
AUTH_USER_MODEL = 'core.User'

# ===========================================
# PASSWORD VALIDATION
# ===========================================
AUTH_PASSWORD_VALIDATORS = [
    {'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator'},
    {'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator'},
    {'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator'},
    {'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator'},
]

# ===========================================
# INTERNATIONALIZATION (United States)
# ===========================================
LANGUAGE_CODE = 'en-us'
TIME_ZONE = config('TIME_ZONE', default='America/Chicago')
USE_I18N = True
USE_TZ = True

# ===========================================
# STATIC & MEDIA FILES
# ===========================================
STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'
MEDIA_URL = 'media/'
MEDIA_ROOT = BASE_DIR / 'media'

# ===========================================
# DEFAULT PRIMARY KEY
# ===========================================
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# ===========================================
# DJANGO CHANNELS (WebSocket Real-time)
# ===========================================
ASGI_APPLICATION = 'partsrunner_core.asgi.application'

CHANNEL_LAYERS = {
    'default': {
        'BACKEND': 'channels_redis.core.RedisChannelLayer',
        'CONFIG': {
            'hosts': [config('REDIS_URL', default='redis://redis:6379/1')],
            'capacity': 1500,
            'expiry': 10,
        },
    },
}

# ===========================================
# DJANGO REST FRAMEWORK
# ===========================================
REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'rest_framework_simplejwt.authentication.JWTAuthentication',
        'rest_framework.authentication.SessionAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticated',
    ],
    'DEFAULT_FILTER_BACKENDS': [
        'django_filters.rest_framework.DjangoFilterBackend',
        'rest_framework.filters.SearchFilter',
        'rest_framework.filters.OrderingFilter',
    ],
    'DEFAULT_PAGINATION_CLASS': 'rest_framework.pagination.PageNumberPagination',
    'PAGE_SIZE': 20,
    'DEFAULT_SCHEMA_CLASS': 'drf_spectacular.openapi.AutoSchema',
}

# ===========================================
# API DOCUMENTATION (drf-spectacular)
# ===========================================
SPECTACULAR_SETTINGS = {
    'TITLE': 'PartsRunner API',
    'DESCRIPTION': 'On-demand auto parts and hardware delivery',
    'VERSION': '1.0.0',
    'SERVE_INCLUDE_SCHEMA': False,
}

# ===========================================
# JWT CONFIGURATION
# ===========================================
SIMPLE_JWT = {
    'ACCESS_TOKEN_LIFETIME': timedelta(hours=12),
    'REFRESH_TOKEN_LIFETIME': timedelta(days=7),
    'ROTATE_REFRESH_TOKENS': True,
    'AUTH_HEADER_TYPES': ('Bearer',),
}

# ===========================================
# CORS (Cross-Origin Resource Sharing)
# ===========================================
CORS_ALLOWED_ORIGINS = config(
    'CORS_ALLOWED_ORIGINS',
    default='http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000',
    cast=Csv()
)
CORS_ALLOW_CREDENTIALS = True

# ===========================================
# SECURITY MIDDLEWARE
# ===========================================
RATE_LIMIT_ENABLED = config('RATE_LIMIT_ENABLED', default=True, cast=bool)
SLOW_REQUEST_MS = config('SLOW_REQUEST_MS', default=2000, cast=int)

# ===========================================
# REDIS & CELERY CONFIGURATION
# ===========================================
REDIS_URL = config('REDIS_URL', default='redis://redis:6379/0')

# Cache
CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.redis.RedisCache',
        'LOCATION': REDIS_URL,
    }
}

# Celery
CELERY_BROKER_URL = config('CELERY_BROKER_URL', default='redis://redis:6379/0')
CELERY_RESULT_BACKEND = config('CELERY_RESULT_BACKEND', default='redis://redis:6379/0')
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_TIMEZONE = TIME_ZONE

# Celery Beat Schedule (Periodic Tasks)
from celery.schedules import crontab  # noqa: E402

CELERY_BEAT_SCHEDULE = {
    # Flip drivers offline after DRIVER_AUTO_OFFLINE_MINUTES of silence
    'auto-offline-inactive-drivers': {
        'task': 'drivers.tasks.auto_offline_inactive_drivers',
        'schedule': crontab(minute='*/5'),
    },
    # Catch delivered orders whose payout task never ran
    'process-pending-payouts': {
        'task': 'finance.tasks.process_pending_payouts',
        'schedule': crontab(minute=15),
    },
    # Cancel unpaid orders that were abandoned at checkout
    'expire-stale-orders': {
        'task': 'logistics.tasks.expire_stale_orders',
        'schedule': crontab(minute=30),
    },
}

# ===========================================
# EMAIL
# ===========================================
EMAIL_BACKEND = config('EMAIL_BACKEND', default='django.core.mail.backends.smtp.EmailBackend')
EMAIL_HOST = config('EMAIL_HOST', default='smtp.gmail.com')
EMAIL_PORT = config('EMAIL_PORT', default=587, cast=int)
EMAIL_HOST_USER = config('EMAIL_HOST_USER', default='')
EMAIL_HOST_PASSWORD = config('EMAIL_HOST_PASSWORD', default='')
EMAIL_USE_TLS = config('EMAIL_USE_TLS', default=True, cast=bool)
DEFAULT_FROM_EMAIL = config('DEFAULT_FROM_EMAIL', default='MyPartsRunner <no-reply@mypartsrunner.com>')
SITE_URL = config('SITE_URL', default='http://localhost:5173')

# ===========================================
# EXTERNAL SERVICES
# ===========================================

# OSRM Routing Service (empty = haversine fallback)
OSRM_BASE_URL = config('OSRM_BASE_URL', default='')

# -------------------------------------------
# STRIPE (Payments + Connect payouts)
# -------------------------------------------
STRIPE_API_BASE = config('STRIPE_API_BASE', default='https://api.stripe.com/v1')
STRIPE_SECRET_KEY = config('STRIPE_SECRET_KEY', default='')
STRIPE_PUBLISHABLE_KEY = config('STRIPE_PUBLISHABLE_KEY', default='')
STRIPE_WEBHOOK_SECRET = config('STRIPE_WEBHOOK_SECRET', default='')
STRIPE_CURRENCY = config('STRIPE_CURRENCY', default='usd')
STRIPE_TRANSFERS_ENABLED = config('STRIPE_TRANSFERS_ENABLED', default=False, cast=bool)
STRIPE_CONNECT_REFRESH_URL = config('STRIPE_CONNECT_REFRESH_URL', default=f'{SITE_URL}/stripe/refresh')
STRIPE_CONNECT_RETURN_URL = config('STRIPE_CONNECT_RETURN_URL', default=f'{SITE_URL}/stripe/return')

# ===========================================
# BUSINESS RULES - CHECKOUT & PRICING
# ===========================================
SALES_TAX_RATE = config('SALES_TAX_RATE', default='0.0825', cast=Decimal)
BASE_DELIVERY_FEE = config('BASE_DELIVERY_FEE', default='5.99', cast=Decimal)        # USD
DELIVERY_FEE_PER_MILE = config('DELIVERY_FEE_PER_MILE', default='0.75', cast=Decimal)  # USD/mile
FREE_DELIVERY_MILES = config('FREE_DELIVERY_MILES', default='3', cast=Decimal)
SERVICE_FEE_RATE = config('SERVICE_FEE_RATE', default='0.00', cast=Decimal)
PENDING_ORDER_TTL_HOURS = config('PENDING_ORDER_TTL_HOURS', default=24, cast=int)

# ===========================================
# BUSINESS RULES - PAYOUTS
# ===========================================
DEFAULT_DRIVER_PAYOUT_PERCENTAGE = config('DEFAULT_DRIVER_PAYOUT_PERCENTAGE', default='0.80', cast=Decimal)
MINIMUM_PAYOUT_AMOUNT = config('MINIMUM_PAYOUT_AMOUNT', default='5.00', cast=Decimal)

# ===========================================
# BUSINESS RULES - DISPATCH & DRIVERS
# ===========================================
DRIVER_SEARCH_RADIUS_MILES = config('DRIVER_SEARCH_RADIUS_MILES', default=10, cast=float)
DRIVER_AUTO_OFFLINE_MINUTES = config('DRIVER_AUTO_OFFLINE_MINUTES', default=30, cast=int)
DRIVER_LOCATION_STALE_MINUTES = config('DRIVER_LOCATION_STALE_MINUTES', default=10, cast=int)
DRIVER_MINIMUM_AGE = config('DRIVER_MINIMUM_AGE', default=21, cast=int)
AVERAGE_DRIVER_SPEED_MPH = config('AVERAGE_DRIVER_SPEED_MPH', default=25, cast=float)
ORDER_PREP_MINUTES = config('ORDER_PREP_MINUTES', default=15, cast=int)

# ===========================================
# BUSINESS RULES - INVENTORY
# ===========================================
LOW_STOCK_THRESHOLD = config('LOW_STOCK_THRESHOLD', default=5, cast=int)

# ===========================================
# LOGGING CONFIGURATION
# ===========================================
LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{levelname} {asctime} {module} {process:d} {thread:d} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'INFO',
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': config('DJANGO_LOG_LEVEL', default='INFO'),
            'propagate': False,
        },
        'celery': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'partsrunner.security': {
            'handlers': ['console'],
            'level': config('SECURITY_LOG_LEVEL', default='INFO'),
            'propagate': False,
        },
    },
}
