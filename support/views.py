"""
Support App Views - Disputes, Refunds & Contact API
"""

import logging

from django.db.models import Q
from django.shortcuts import get_object_or_404
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.response import Response

from core.permissions import IsPlatformAdmin
from logistics.models import Order
from .models import ContactMessage, Dispute, Refund
from .serializers import (
    ContactMessageSerializer, ContactResponseSerializer, DisputeCreateSerializer,
    DisputeRejectSerializer, DisputeResolveSerializer, DisputeSerializer,
    RefundCreateSerializer, RefundSerializer
)
from .services import RefundService, SupportService

logger = logging.getLogger(__name__)


def _error(exc, code=status.HTTP_400_BAD_REQUEST):
    return Response({'error': str(exc)}, status=code)


class DisputeViewSet(mixins.CreateModelMixin, viewsets.ReadOnlyModelViewSet):
    """
    Disputes on orders.
    Parties see the disputes on their orders, admins see all and decide them.
    """

    queryset = Dispute.objects.select_related('order', 'creator', 'resolved_by')
    serializer_class = DisputeSerializer
    permission_classes = [permissions.IsAuthenticated]
    parser_classes = [JSONParser, MultiPartParser, FormParser]
    filterset_fields = ['status', 'reason', 'order']
    ordering_fields = ['created_at', 'status']

    def get_permissions(self):
        if self.action in ('investigate', 'resolve', 'reject'):
            return [IsPlatformAdmin()]
        return super().get_permissions()

    def get_queryset(self):
        user = self.request.user
        if user.is_platform_admin:
            return self.queryset
        return self.queryset.filter(
            Q(creator=user) | Q(order__customer=user) | Q(order__driver=user)
            | Q(order__store__merchant=user)
        ).distinct()

    def create(self, request, *args, **kwargs):
        serializer = DisputeCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order = get_object_or_404(Order.objects.select_related('store'), pk=data['order_id'])
        try:
            dispute = SupportService.create_dispute(
                order=order,
                creator=request.user,
                reason=data['reason'],
                description=data['description'],
                evidence=data.get('evidence'),
            )
        except PermissionError as e:
            return _error(e, status.HTTP_403_FORBIDDEN)
        except ValueError as e:
            return _error(e)

        return Response(DisputeSerializer(dispute).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def investigate(self, request, pk=None):
        dispute = self.get_object()
        try:
            dispute = SupportService.start_investigation(dispute, request.user)
        except ValueError as e:
            return _error(e)
        return Response(DisputeSerializer(dispute).data)

    @action(detail=True, methods=['post'])
    def resolve(self, request, pk=None):
        """Resolve a dispute, refunding the customer when refund_amount is set."""
        dispute = self.get_object()
        serializer = DisputeResolveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            dispute = SupportService.resolve_dispute(
                dispute,
                request.user,
                serializer.validated_data['resolution_note'],
                refund_amount=serializer.validated_data['refund_amount'],
            )
        except ValueError as e:
            return _error(e)
        return Response(DisputeSerializer(dispute).data)

    @action(detail=True, methods=['post'])
    def reject(self, request, pk=None):
        dispute = self.get_object()
        serializer = DisputeRejectSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            dispute = SupportService.reject_dispute(
                dispute, request.user, serializer.validated_data['reason']
            )
        except ValueError as e:
            return _error(e)
        return Response(DisputeSerializer(dispute).data)


class RefundViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Refund history. Customers see their own refunds, admins issue manual ones.
    """

    queryset = Refund.objects.select_related('order', 'user')
    serializer_class = RefundSerializer
    permission_classes = [permissions.IsAuthenticated]
    filterset_fields = ['status', 'method', 'order']

    def get_permissions(self):
        if self.action == 'issue':
            return [IsPlatformAdmin()]
        return super().get_permissions()

    def get_queryset(self):
        user = self.request.user
        if user.is_platform_admin:
            return self.queryset
        return self.queryset.filter(user=user)

    @action(detail=False, methods=['post'])
    def issue(self, request):
        serializer = RefundCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order = get_object_or_404(Order, pk=data['order_id'])
        try:
            refund = RefundService.issue_refund(
                order, data['amount'], reason=data['reason'], requested_by=request.user
            )
        except ValueError as e:
            return _error(e)

        logger.info(f"[REFUND] Manual refund on {order.order_number} by {request.user.email}")
        return Response(RefundSerializer(refund).data, status=status.HTTP_201_CREATED)


class ContactMessageViewSet(mixins.CreateModelMixin, viewsets.ReadOnlyModelViewSet):
    """
    Public contact form. Anyone may submit, admins read and answer.
    """

    queryset = ContactMessage.objects.select_related('responded_by')
    serializer_class = ContactMessageSerializer
    filterset_fields = ['status']
    search_fields = ['email', 'subject', 'name']

    def get_permissions(self):
        if self.action == 'create':
            return [permissions.AllowAny()]
        return [IsPlatformAdmin()]

    def perform_create(self, serializer):
        data = serializer.validated_data
        serializer.instance = SupportService.submit_contact(
            data['name'], data['email'], data['subject'], data['message']
        )

    @action(detail=True, methods=['post'])
    def respond(self, request, pk=None):
        contact = self.get_object()
        serializer = ContactResponseSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            contact = SupportService.respond_contact(
                contact, request.user, serializer.validated_data['response']
            )
        except ValueError as e:
            return _error(e)
        return Response(ContactMessageSerializer(contact).data)
