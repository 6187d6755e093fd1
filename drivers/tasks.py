"""
DRIVERS App - Celery Tasks
"""

from celery import shared_task
import logging

logger = logging.getLogger(__name__)


@shared_task(name='drivers.tasks.auto_offline_inactive_drivers')
def auto_offline_inactive_drivers(minutes: int = None) -> int:
    """
    Set drivers offline after DRIVER_AUTO_OFFLINE_MINUTES without
    a heartbeat or location update.

    Runs every 5 minutes.
    """
    from .services import DriverStatusService
    return DriverStatusService.auto_offline_inactive(minutes)
