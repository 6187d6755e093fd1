"""
NOTIFICATIONS App - In-app notification service
"""

import logging
from typing import Iterable

from .models import Notification, NotificationType

logger = logging.getLogger(__name__)


class NotificationService:
    """Create and manage in-app notifications."""

    @staticmethod
    def notify(
        user,
        title: str,
        message: str,
        notification_type: str = NotificationType.INFO,
        related_entity_type: str = '',
        related_entity_id: str = ''
    ) -> Notification:
        notification = Notification.objects.create(
            user=user,
            title=title,
            message=message,
            notification_type=notification_type,
            related_entity_type=related_entity_type,
            related_entity_id=str(related_entity_id) if related_entity_id else '',
        )
        logger.debug(f"[NOTIFY] {user} <- {title}")
        return notification

    @classmethod
    def notify_many(cls, users: Iterable, title: str, message: str, **kwargs) -> int:
        count = 0
        for user in users:
            cls.notify(user, title, message, **kwargs)
            count += 1
        return count

    @staticmethod
    def mark_read(user, notification_ids) -> int:
        return Notification.objects.filter(
            user=user, pk__in=notification_ids, is_read=False
        ).update(is_read=True)

    @staticmethod
    def mark_all_read(user) -> int:
        return Notification.objects.filter(user=user, is_read=False).update(is_read=True)

    @staticmethod
    def unread_count(user) -> int:
        return Notification.objects.filter(user=user, is_read=False).count()
