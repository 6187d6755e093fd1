"""
NOTIFICATIONS App - Transactional email

HTML emails are rendered from templates/notifications/email/ and sent
through Django's mail backend (SMTP in production, locmem in tests).
"""

import logging
from typing import Optional

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string
from django.utils.html import strip_tags

logger = logging.getLogger(__name__)

BRAND = 'MyPartsRunner'


class ApplicationEmailType:
    """Emails sent during the driver application review."""
    APPLICATION_RECEIVED = 'application_received'
    STATUS_UPDATE = 'status_update'
    APPROVED = 'approved'
    REJECTED = 'rejected'

    ALL = (APPLICATION_RECEIVED, STATUS_UPDATE, APPROVED, REJECTED)


APPLICATION_TEMPLATES = {
    ApplicationEmailType.APPLICATION_RECEIVED: 'application_received',
    ApplicationEmailType.STATUS_UPDATE: 'application_status_update',
    ApplicationEmailType.APPROVED: 'application_approved',
    ApplicationEmailType.REJECTED: 'application_rejected',
}

STATUS_COLORS = {
    'pending': '#2563eb',
    'under_review': '#f59e0b',
    'approved': '#059669',
    'rejected': '#dc2626',
    'on_hold': '#6b7280',
}


class EmailService:
    """Render and send branded HTML emails."""

    @staticmethod
    def send(to: str, subject: str, template: str, context: dict) -> int:
        """
        Render `template` with `context` and send it to `to`.

        Returns the number of messages sent. SMTP errors propagate so the
        calling Celery task can retry.
        """
        context = {'brand': BRAND, 'site_url': settings.SITE_URL, **context}
        html_body = render_to_string(f'notifications/email/{template}.html', context)

        message = EmailMultiAlternatives(
            subject=subject,
            body=strip_tags(html_body),
            from_email=settings.DEFAULT_FROM_EMAIL,
            to=[to],
        )
        message.attach_alternative(html_body, 'text/html')
        sent = message.send()

        logger.info(f"[EMAIL] '{subject}' -> {to}")
        return sent

    # ===========================================
    # DRIVER APPLICATION EMAILS
    # ===========================================

    @staticmethod
    def application_subject(email_type: str, status: Optional[str] = None) -> str:
        if email_type == ApplicationEmailType.APPLICATION_RECEIVED:
            return f'Driver Application Received - {BRAND}'
        if email_type == ApplicationEmailType.STATUS_UPDATE:
            if not status:
                raise ValueError('status is required for status_update emails')
            return f'Driver Application {status.upper()} - {BRAND}'
        if email_type == ApplicationEmailType.APPROVED:
            return f'Driver Application Approved - {BRAND}'
        if email_type == ApplicationEmailType.REJECTED:
            return f'Driver Application Update - {BRAND}'
        raise ValueError(f'Invalid email type: {email_type}')

    @classmethod
    def send_application_email(
        cls,
        application,
        email_type: str,
        status: Optional[str] = None,
        admin_notes: str = ''
    ) -> int:
        status = status or application.status
        subject = cls.application_subject(email_type, status)
        return cls.send(
            to=application.email,
            subject=subject,
            template=APPLICATION_TEMPLATES[email_type],
            context={
                'application': application,
                'status': status,
                'status_text': status.replace('_', ' ').upper(),
                'status_color': STATUS_COLORS.get(status, '#2563eb'),
                'admin_notes': admin_notes,
            },
        )

    # ===========================================
    # ORDER EMAILS
    # ===========================================

    @classmethod
    def send_order_confirmation(cls, order) -> int:
        return cls.send(
            to=order.contact_email,
            subject=f'Order {order.order_number} Confirmed - {BRAND}',
            template='order_confirmation',
            context={'order': order, 'items': list(order.items.all())},
        )

    @classmethod
    def send_order_status_update(cls, order) -> int:
        return cls.send(
            to=order.contact_email,
            subject=f'Order {order.order_number}: {order.get_status_display()} - {BRAND}',
            template='order_status',
            context={'order': order},
        )
