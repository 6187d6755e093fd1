"""
Notifications App Serializers
"""

from rest_framework import serializers

from drivers.models import ApplicationStatus
from .email_service import ApplicationEmailType
from .models import Notification


class NotificationSerializer(serializers.ModelSerializer):

    class Meta:
        model = Notification
        fields = [
            'id', 'title', 'message', 'notification_type',
            'related_entity_type', 'related_entity_id', 'is_read', 'created_at'
        ]
        read_only_fields = fields


class MarkReadSerializer(serializers.Serializer):
    ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=False)


class SendEmailSerializer(serializers.Serializer):
    """Body of the admin email trigger."""

    type = serializers.ChoiceField(choices=ApplicationEmailType.ALL)
    application_id = serializers.IntegerField()
    status = serializers.ChoiceField(choices=ApplicationStatus.choices, required=False)
    admin_notes = serializers.CharField(required=False, allow_blank=True, default='')

    def validate(self, attrs):
        if attrs['type'] == ApplicationEmailType.STATUS_UPDATE and not attrs.get('status'):
            raise serializers.ValidationError({'status': 'Required for status_update emails.'})
        return attrs
