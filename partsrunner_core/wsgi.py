"""
WSGI config for PartsRunner (HTTP only, no WebSockets).
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'partsrunner_core.settings')

application = get_wsgi_application()
