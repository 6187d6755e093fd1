"""
SUPPORT App - Celery Tasks
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
def send_contact_response(self, contact_id: int):
    """Email the support team's answer to a contact form message."""
    from notifications.email_service import BRAND, EmailService
    from .models import ContactMessage

    contact = ContactMessage.objects.filter(pk=contact_id).first()
    if contact is None:
        logger.warning(f"[EMAIL] Contact message {contact_id} not found")
        return 0

    return EmailService.send(
        contact.email,
        f"Re: {contact.subject} - {BRAND}",
        'contact_response',
        {'contact': contact},
    )
