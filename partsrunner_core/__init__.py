"""
PartsRunner project package.

Loads the Celery app on Django startup so shared_task picks it up.
"""

from .celery import app as celery_app

__all__ = ('celery_app',)
