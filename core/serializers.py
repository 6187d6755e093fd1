"""
Core App Serializers - User Management
"""

from rest_framework import serializers
from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password

from .models import UserRole, SELF_SERVICE_ROLES

User = get_user_model()


class UserSerializer(serializers.ModelSerializer):
    """Serializer for User model (read operations and self-update)."""

    class Meta:
        model = User
        fields = [
            'id', 'email', 'phone_number', 'full_name', 'role',
            'wallet_balance', 'average_rating', 'total_ratings_count',
            'stripe_onboarding_complete', 'is_active', 'date_joined'
        ]
        read_only_fields = [
            'id', 'email', 'role', 'wallet_balance', 'average_rating',
            'total_ratings_count', 'stripe_onboarding_complete',
            'is_active', 'date_joined'
        ]


class UserCreateSerializer(serializers.ModelSerializer):
    """
    Serializer for user registration.

    Drivers sign up as customers and are promoted once their
    application is approved.
    """

    password = serializers.CharField(
        write_only=True,
        required=True,
        validators=[validate_password]
    )
    role = serializers.ChoiceField(
        choices=[(r.value, r.label) for r in SELF_SERVICE_ROLES],
        default=UserRole.CUSTOMER
    )

    class Meta:
        model = User
        fields = ['id', 'email', 'password', 'full_name', 'phone_number', 'role']
        read_only_fields = ['id']

    def validate_role(self, value):
        if value == UserRole.DRIVER:
            return UserRole.CUSTOMER
        return value

    def validate_email(self, value):
        if User.objects.filter(email__iexact=value).exists():
            raise serializers.ValidationError('An account with this email already exists.')
        return value.lower()

    def create(self, validated_data):
        return User.objects.create_user(
            email=validated_data['email'],
            password=validated_data['password'],
            full_name=validated_data.get('full_name', ''),
            phone_number=validated_data.get('phone_number', ''),
            role=validated_data.get('role', UserRole.CUSTOMER)
        )


class RoleChangeSerializer(serializers.Serializer):
    """Owner-only role assignment."""

    role = serializers.ChoiceField(choices=[
        (r.value, r.label) for r in UserRole if r != UserRole.OWNER
    ])
