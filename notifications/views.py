"""
Notifications App Views
"""

import logging
from rest_framework import viewsets, mixins, status, permissions
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from core.permissions import IsPlatformAdmin
from drivers.models import DriverApplication
from .email_service import EmailService
from .models import Notification
from .serializers import NotificationSerializer, MarkReadSerializer, SendEmailSerializer
from .services import NotificationService

logger = logging.getLogger(__name__)


class NotificationViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    """The caller's notification feed."""

    serializer_class = NotificationSerializer
    permission_classes = [permissions.IsAuthenticated]
    filterset_fields = ['is_read', 'notification_type']

    def get_queryset(self):
        return Notification.objects.filter(user=self.request.user)

    @action(detail=False, methods=['get'])
    def unread_count(self, request):
        return Response({'unread': NotificationService.unread_count(request.user)})

    @action(detail=False, methods=['post'])
    def mark_read(self, request):
        serializer = MarkReadSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        updated = NotificationService.mark_read(request.user, serializer.validated_data['ids'])
        return Response({'updated': updated})

    @action(detail=False, methods=['post'])
    def mark_all_read(self, request):
        return Response({'updated': NotificationService.mark_all_read(request.user)})


class SendEmailView(APIView):
    """
    Admin trigger to (re)send a driver application email.

    POST {type, application_id, status?, admin_notes?}
    """

    permission_classes = [IsPlatformAdmin]

    def post(self, request):
        serializer = SendEmailSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            application = DriverApplication.objects.get(pk=data['application_id'])
        except DriverApplication.DoesNotExist:
            return Response({'error': 'Application not found'}, status=status.HTTP_404_NOT_FOUND)

        try:
            EmailService.send_application_email(
                application,
                data['type'],
                status=data.get('status'),
                admin_notes=data.get('admin_notes', '')
            )
        except Exception as e:
            logger.error(f"[EMAIL] Sending {data['type']} for application {application.pk} failed: {e}")
            return Response(
                {'error': f'Failed to send email: {e}'},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR
            )

        return Response({
            'message': 'Email sent successfully',
            'type': data['type'],
            'to': application.email,
        })
