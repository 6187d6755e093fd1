"""
NOTIFICATIONS App - Celery Tasks

Email sending runs off the request cycle and retries on SMTP errors.
"""

import logging
from smtplib import SMTPException

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    autoretry_for=(SMTPException, ConnectionError),
    retry_backoff=True
)
def send_driver_application_email(self, application_id: int, email_type: str,
                                  status: str = None, admin_notes: str = ''):
    """
    Send one of the driver application emails.

    Args:
        application_id: DriverApplication pk
        email_type: application_received | status_update | approved | rejected
        status: Status shown in status_update emails (defaults to current)
        admin_notes: Reviewer notes included in the email
    """
    from drivers.models import DriverApplication
    from .email_service import EmailService

    try:
        application = DriverApplication.objects.get(pk=application_id)
    except DriverApplication.DoesNotExist:
        logger.warning(f"[EMAIL] Application {application_id} not found, skipping {email_type}")
        return 0

    return EmailService.send_application_email(
        application, email_type, status=status, admin_notes=admin_notes
    )


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    autoretry_for=(SMTPException, ConnectionError),
    retry_backoff=True
)
def send_order_email(self, order_id: str, email_type: str):
    """
    Send an order email to the customer.

    email_type: confirmation | status
    """
    from logistics.models import Order
    from .email_service import EmailService

    try:
        order = Order.objects.select_related('customer', 'store').get(pk=order_id)
    except Order.DoesNotExist:
        logger.warning(f"[EMAIL] Order {order_id} not found, skipping {email_type}")
        return 0

    if not order.contact_email:
        return 0

    if email_type == 'confirmation':
        return EmailService.send_order_confirmation(order)
    return EmailService.send_order_status_update(order)
