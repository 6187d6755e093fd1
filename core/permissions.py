"""
Role-based DRF permissions shared by every app.
"""

from rest_framework import permissions

from .models import UserRole


class IsPlatformAdmin(permissions.BasePermission):
    """Admins and the owner."""

    def has_permission(self, request, view):
        return request.user.is_authenticated and request.user.is_platform_admin


class IsOwner(permissions.BasePermission):
    """Platform owner only."""

    def has_permission(self, request, view):
        return request.user.is_authenticated and request.user.role == UserRole.OWNER


class IsDriver(permissions.BasePermission):
    """Approved drivers only."""

    def has_permission(self, request, view):
        return request.user.is_authenticated and request.user.role == UserRole.DRIVER


class IsMerchant(permissions.BasePermission):
    """Merchant users only."""

    def has_permission(self, request, view):
        return request.user.is_authenticated and request.user.role == UserRole.MERCHANT


class IsMerchantOrAdmin(permissions.BasePermission):
    """Merchants manage their own catalog, admins manage everything."""

    def has_permission(self, request, view):
        return request.user.is_authenticated and (
            request.user.role == UserRole.MERCHANT or request.user.is_platform_admin
        )


class IsCustomer(permissions.BasePermission):
    """Customer users only."""

    def has_permission(self, request, view):
        return request.user.is_authenticated and request.user.role == UserRole.CUSTOMER


class IsPayoutRecipient(permissions.BasePermission):
    """Drivers and merchants hold wallets that can be withdrawn."""

    def has_permission(self, request, view):
        return request.user.is_authenticated and request.user.role in (
            UserRole.DRIVER, UserRole.MERCHANT
        )
