"""
PARTNERS App - Celery Tasks
"""

import logging

from celery import shared_task
from requests import RequestException

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    name='partners.tasks.deliver_webhook',
    max_retries=5,
    default_retry_delay=30,
    autoretry_for=(RequestException,),
    retry_backoff=True
)
def deliver_webhook(self, endpoint_id: int, event: str, payload: dict) -> bool:
    """POST a signed event to a merchant endpoint. Network errors retry with backoff."""
    from .models import WebhookEndpoint
    from .services import WebhookService

    endpoint = WebhookEndpoint.objects.filter(pk=endpoint_id, is_active=True).first()
    if endpoint is None:
        logger.info(f"[WEBHOOK] Endpoint {endpoint_id} gone or disabled, dropping {event}")
        return False

    return WebhookService.send(endpoint, event, payload)
