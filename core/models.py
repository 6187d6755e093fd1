"""
CORE App - Custom User Model for PartsRunner

Handles: Users (Customers, Drivers, Merchants, Admins, Owner)
"""

import uuid
from django.contrib.auth.models import AbstractBaseUser, BaseUserManager, PermissionsMixin
from django.db import models
from django.core.validators import RegexValidator
from decimal import Decimal


class UserRole(models.TextChoices):
    """User role enumeration."""
    CUSTOMER = 'CUSTOMER', 'Customer'
    DRIVER = 'DRIVER', 'Driver'
    MERCHANT = 'MERCHANT', 'Merchant'
    ADMIN = 'ADMIN', 'Administrator'
    OWNER = 'OWNER', 'Owner'


# Roles a user may pick when signing up; drivers are stored as customers
# until their application is approved
SELF_SERVICE_ROLES = (UserRole.CUSTOMER, UserRole.DRIVER, UserRole.MERCHANT)

PLATFORM_ADMIN_ROLES = (UserRole.ADMIN, UserRole.OWNER)


class UserManager(BaseUserManager):
    """Custom user manager for email-based authentication."""

    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError('Email address is required')

        email = self.normalize_email(email).lower()
        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('role', UserRole.OWNER)

        if extra_fields.get('is_staff') is not True:
            raise ValueError('Superuser must have is_staff=True.')
        if extra_fields.get('is_superuser') is not True:
            raise ValueError('Superuser must have is_superuser=True.')

        return self.create_user(email, password, **extra_fields)


class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom User model using email as primary identifier.

    Key Business Logic:
    - role drives every permission check in the API
    - wallet_balance accumulates payouts for drivers and merchants
    - stripe_account_id links the user to a Stripe Connect Express account
    """

    # US phone number, optional country code
    phone_regex = RegexValidator(
        regex=r'^\+?1?[0-9]{10}$',
        message="Format: +1XXXXXXXXXX or 10 digits"
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(unique=True, verbose_name="Email")
    phone_number = models.CharField(
        max_length=15,
        blank=True,
        validators=[phone_regex],
        verbose_name="Phone"
    )

    # Profile
    full_name = models.CharField(max_length=150, blank=True, verbose_name="Full name")
    role = models.CharField(
        max_length=20,
        choices=UserRole.choices,
        default=UserRole.CUSTOMER,
        db_index=True,
        verbose_name="Role"
    )

    # Wallet (payouts land here before withdrawal)
    wallet_balance = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        verbose_name="Wallet balance (USD)"
    )

    # Stripe Connect
    stripe_account_id = models.CharField(
        max_length=64,
        blank=True,
        verbose_name="Stripe Connect account"
    )
    stripe_onboarding_complete = models.BooleanField(
        default=False,
        verbose_name="Stripe onboarding complete"
    )

    # Ratings received (drivers)
    average_rating = models.DecimalField(
        max_digits=3,
        decimal_places=2,
        default=Decimal('5.00'),
        verbose_name="Average rating"
    )
    total_ratings_count = models.PositiveIntegerField(default=0, verbose_name="Ratings received")

    # Django Auth Fields
    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)
    date_joined = models.DateTimeField(auto_now_add=True)

    objects = UserManager()

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = []

    class Meta:
        verbose_name = "User"
        verbose_name_plural = "Users"
        ordering = ['-date_joined']

    def __str__(self):
        return f"{self.full_name or self.email} ({self.role})"

    @property
    def is_customer(self) -> bool:
        return self.role == UserRole.CUSTOMER

    @property
    def is_driver(self) -> bool:
        return self.role == UserRole.DRIVER

    @property
    def is_merchant(self) -> bool:
        return self.role == UserRole.MERCHANT

    @property
    def is_owner(self) -> bool:
        return self.role == UserRole.OWNER

    @property
    def is_platform_admin(self) -> bool:
        """Admins and the owner share the back-office permissions."""
        return self.role in PLATFORM_ADMIN_ROLES

    @property
    def can_receive_transfers(self) -> bool:
        return bool(self.stripe_account_id) and self.stripe_onboarding_complete
