"""
NOTIFICATIONS App - In-app notification feed
"""

from django.conf import settings
from django.db import models


class NotificationType(models.TextChoices):
    """Severity shown by the client."""
    INFO = 'info', 'Info'
    SUCCESS = 'success', 'Success'
    WARNING = 'warning', 'Warning'
    ERROR = 'error', 'Error'


class Notification(models.Model):
    """
    A message in a user's notification feed.

    related_entity_type/related_entity_id point at the object the
    notification is about (order, driver_application, dispute...).
    """

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='notifications'
    )
    title = models.CharField(max_length=200)
    message = models.TextField()
    notification_type = models.CharField(
        max_length=10,
        choices=NotificationType.choices,
        default=NotificationType.INFO
    )

    related_entity_type = models.CharField(max_length=50, blank=True)
    related_entity_id = models.CharField(max_length=64, blank=True)

    is_read = models.BooleanField(default=False, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Notification"
        verbose_name_plural = "Notifications"
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'is_read']),
        ]

    def __str__(self):
        return f"{self.title} -> {self.user}"
