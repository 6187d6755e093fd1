"""
Drivers App Views - Applications, Profile, Status, Location & Earnings API
"""

import logging

from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.parsers import FormParser, MultiPartParser
from rest_framework.response import Response
from rest_framework.views import APIView

from core.permissions import IsDriver, IsPlatformAdmin
from .models import DriverApplication, DriverDocument, DriverProfile
from .serializers import (
    ApplicationStatusUpdateSerializer, DriverApplicationListSerializer,
    DriverApplicationSerializer, DriverDocumentSerializer, DriverProfileSerializer,
    DriverStatusSerializer, EarningsSummarySerializer, LocationUpdateSerializer
)
from .services import (
    DriverApplicationService, DriverDocumentService, DriverEarningsService,
    DriverStatusService
)

logger = logging.getLogger(__name__)


class DriverApplicationViewSet(mixins.CreateModelMixin,
                               mixins.ListModelMixin,
                               mixins.RetrieveModelMixin,
                               viewsets.GenericViewSet):
    """
    Driver applications.
    Applicants see their own, admins review everyone's.
    """

    queryset = DriverApplication.objects.select_related('applicant', 'reviewed_by')
    permission_classes = [permissions.IsAuthenticated]
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ['status', 'vehicle_type', 'state']

    def get_permissions(self):
        if self.action in ('update_status', 'stats'):
            return [IsPlatformAdmin()]
        return super().get_permissions()

    def get_serializer_class(self):
        if self.action == 'list' and self.request.user.is_platform_admin:
            return DriverApplicationListSerializer
        return DriverApplicationSerializer

    def get_queryset(self):
        user = self.request.user
        if user.is_platform_admin:
            return self.queryset
        return self.queryset.filter(applicant=user)

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            application = DriverApplicationService.submit(request.user, serializer.validated_data)
        except ValueError as e:
            return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(
            DriverApplicationSerializer(application).data,
            status=status.HTTP_201_CREATED
        )

    @action(detail=True, methods=['post'])
    def update_status(self, request, pk=None):
        """Approve, reject, hold or start reviewing (Admin only)."""
        application = self.get_object()
        serializer = ApplicationStatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            application = DriverApplicationService.update_status(
                application,
                serializer.validated_data['status'],
                admin=request.user,
                notes=serializer.validated_data['admin_notes'],
            )
        except PermissionError as e:
            return Response({'error': str(e)}, status=status.HTTP_403_FORBIDDEN)
        except ValueError as e:
            return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(DriverApplicationSerializer(application).data)

    @action(detail=False, methods=['get'])
    def stats(self, request):
        """Application counts per status (Admin only)."""
        return Response(DriverApplicationService.stats())


class DriverProfileView(APIView):
    """
    GET/PATCH /api/driver/profile/
    """

    permission_classes = [IsDriver]

    def get_profile(self, request):
        return DriverStatusService.get_profile(request.user)

    def get(self, request):
        try:
            profile = self.get_profile(request)
        except PermissionError as e:
            return Response({'error': str(e)}, status=status.HTTP_404_NOT_FOUND)
        return Response(DriverProfileSerializer(profile).data)

    def patch(self, request):
        try:
            profile = self.get_profile(request)
        except PermissionError as e:
            return Response({'error': str(e)}, status=status.HTTP_404_NOT_FOUND)

        serializer = DriverProfileSerializer(profile, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(serializer.data)


class DriverStatusView(APIView):
    """
    GET  /api/driver/status/  current state
    POST /api/driver/status/  {"is_online": true, "latitude": .., "longitude": ..}
    """

    permission_classes = [IsDriver]

    def get(self, request):
        try:
            profile = DriverStatusService.get_profile(request.user)
        except PermissionError as e:
            return Response({'error': str(e)}, status=status.HTTP_404_NOT_FOUND)

        order = DriverStatusService.active_order(request.user)
        return Response({
            'is_online': profile.is_online,
            'is_available': profile.is_available,
            'active_order_id': str(order.pk) if order else None,
            'last_location_at': profile.last_location_at,
        })

    def post(self, request):
        serializer = DriverStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            if data['is_online']:
                profile = DriverStatusService.go_online(
                    request.user, data.get('latitude'), data.get('longitude')
                )
            else:
                profile = DriverStatusService.go_offline(request.user)
        except PermissionError as e:
            return Response({'error': str(e)}, status=status.HTTP_403_FORBIDDEN)
        except ValueError as e:
            return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)

        return Response({
            'success': True,
            'is_online': profile.is_online,
            'is_available': profile.is_available,
        })


class DriverLocationView(APIView):
    """
    POST /api/driver/location/ {"latitude": .., "longitude": ..}
    """

    permission_classes = [IsDriver]

    def post(self, request):
        serializer = LocationUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            profile = DriverStatusService.update_location(
                request.user,
                serializer.validated_data['latitude'],
                serializer.validated_data['longitude'],
            )
        except PermissionError as e:
            return Response({'error': str(e)}, status=status.HTTP_403_FORBIDDEN)
        except ValueError as e:
            return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)

        return Response({
            'success': True,
            'latitude': profile.current_latitude,
            'longitude': profile.current_longitude,
            'timestamp': profile.last_location_at,
        })


class DriverHeartbeatView(APIView):
    """POST /api/driver/heartbeat/ keeps the driver online."""

    permission_classes = [IsDriver]

    def post(self, request):
        try:
            profile = DriverStatusService.heartbeat(request.user)
        except PermissionError as e:
            return Response({'error': str(e)}, status=status.HTTP_403_FORBIDDEN)
        return Response({'success': True, 'last_active_at': profile.last_active_at})


class DriverEarningsView(APIView):
    """GET /api/driver/earnings/"""

    permission_classes = [IsDriver]

    def get(self, request):
        summary = DriverEarningsService.summary(request.user)
        return Response(EarningsSummarySerializer(summary).data)


class DriverDocumentViewSet(mixins.CreateModelMixin,
                            mixins.ListModelMixin,
                            mixins.RetrieveModelMixin,
                            viewsets.GenericViewSet):
    """
    Driver documents (license, insurance, registration, background check).
    """

    queryset = DriverDocument.objects.select_related('driver')
    serializer_class = DriverDocumentSerializer
    permission_classes = [permissions.IsAuthenticated]
    parser_classes = [MultiPartParser, FormParser]
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ['document_type', 'is_verified', 'driver']

    def get_permissions(self):
        if self.action == 'verify':
            return [IsPlatformAdmin()]
        return super().get_permissions()

    def get_queryset(self):
        user = self.request.user
        if user.is_platform_admin:
            return self.queryset
        return self.queryset.filter(driver=user)

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            document = DriverDocumentService.upload(
                request.user,
                serializer.validated_data['document_type'],
                serializer.validated_data['file'],
            )
        except PermissionError as e:
            return Response({'error': str(e)}, status=status.HTTP_403_FORBIDDEN)

        return Response(self.get_serializer(document).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def verify(self, request, pk=None):
        """Mark a document verified (Admin only)."""
        document = DriverDocumentService.verify(self.get_object(), request.user)
        return Response(self.get_serializer(document).data)


class DriverProfileAdminViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Fleet overview for admins: who is online and where.
    """

    queryset = DriverProfile.objects.select_related('user')
    serializer_class = DriverProfileSerializer
    permission_classes = [IsPlatformAdmin]
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ['is_online', 'is_available', 'vehicle_type']
