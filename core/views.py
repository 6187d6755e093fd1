"""
Core App Views - User Management API
"""

import logging
from rest_framework import viewsets, mixins, status, permissions, generics
from rest_framework.decorators import action
from rest_framework.response import Response
from django.contrib.auth import get_user_model

from .serializers import UserSerializer, UserCreateSerializer, RoleChangeSerializer
from .models import UserRole
from .permissions import IsPlatformAdmin, IsOwner

User = get_user_model()
logger = logging.getLogger(__name__)


class RegisterView(generics.CreateAPIView):
    """Public sign-up endpoint (customers, driver applicants, merchants)."""

    serializer_class = UserCreateSerializer
    permission_classes = [permissions.AllowAny]
    authentication_classes = []


class UserViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.UpdateModelMixin,
    viewsets.GenericViewSet
):
    """
    ViewSet for User model.

    - List: Admin only
    - Retrieve/Update: Self, or admin
    - Role changes: Owner only
    """

    serializer_class = UserSerializer
    filterset_fields = ['role', 'is_active']
    search_fields = ['email', 'full_name', 'phone_number']

    def get_permissions(self):
        if self.action == 'list':
            return [IsPlatformAdmin()]
        return [permissions.IsAuthenticated()]

    def get_queryset(self):
        user = self.request.user
        if user.is_platform_admin:
            return User.objects.all()
        return User.objects.filter(pk=user.pk)

    @action(detail=False, methods=['get', 'patch'])
    def me(self, request):
        """Get or update the current user profile."""
        if request.method == 'PATCH':
            serializer = self.get_serializer(request.user, data=request.data, partial=True)
            serializer.is_valid(raise_exception=True)
            serializer.save()
            return Response(serializer.data)
        return Response(self.get_serializer(request.user).data)

    @action(detail=True, methods=['post'], permission_classes=[IsOwner])
    def change_role(self, request, pk=None):
        """Promote or demote a user (Owner only)."""
        target = self.get_object()
        if target.role == UserRole.OWNER:
            return Response(
                {'error': "The owner's role cannot be changed."},
                status=status.HTTP_400_BAD_REQUEST
            )

        serializer = RoleChangeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        new_role = serializer.validated_data['role']

        old_role = target.role
        target.role = new_role
        target.is_staff = new_role == UserRole.ADMIN
        target.save(update_fields=['role', 'is_staff'])

        logger.info(f"[USERS] {request.user.email} changed role of {target.email}: {old_role} -> {new_role}")
        return Response(UserSerializer(target).data)

    @action(detail=True, methods=['post'], permission_classes=[IsPlatformAdmin])
    def deactivate(self, request, pk=None):
        """Suspend an account (Admin only)."""
        target = self.get_object()
        if target.role == UserRole.OWNER or target.pk == request.user.pk:
            return Response(
                {'error': 'This account cannot be deactivated.'},
                status=status.HTTP_400_BAD_REQUEST
            )
        if target.role == UserRole.ADMIN and not request.user.is_owner:
            return Response(
                {'error': 'Only the owner can deactivate an administrator.'},
                status=status.HTTP_403_FORBIDDEN
            )
        target.is_active = False
        target.save(update_fields=['is_active'])
        logger.info(f"[USERS] {target.email} deactivated by {request.user.email}")
        return Response({'message': f'{target.email} deactivated.'})

    @action(detail=True, methods=['post'], permission_classes=[IsPlatformAdmin])
    def activate(self, request, pk=None):
        """Re-enable a suspended account (Admin only)."""
        target = self.get_object()
        target.is_active = True
        target.save(update_fields=['is_active'])
        return Response({'message': f'{target.email} activated.'})
