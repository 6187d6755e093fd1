"""
DRIVERS App - Driver onboarding and live status for PartsRunner

Handles: Driver applications, Documents, Driver profiles (online/location)
"""

import uuid
from datetime import timedelta
from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone


class ApplicationStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    UNDER_REVIEW = 'under_review', 'Under review'
    APPROVED = 'approved', 'Approved'
    REJECTED = 'rejected', 'Rejected'
    ON_HOLD = 'on_hold', 'On hold'


# Approved and rejected are final
APPLICATION_TRANSITIONS = {
    ApplicationStatus.PENDING: {
        ApplicationStatus.UNDER_REVIEW, ApplicationStatus.APPROVED,
        ApplicationStatus.REJECTED, ApplicationStatus.ON_HOLD,
    },
    ApplicationStatus.UNDER_REVIEW: {
        ApplicationStatus.APPROVED, ApplicationStatus.REJECTED, ApplicationStatus.ON_HOLD,
    },
    ApplicationStatus.ON_HOLD: {
        ApplicationStatus.UNDER_REVIEW, ApplicationStatus.APPROVED, ApplicationStatus.REJECTED,
    },
    ApplicationStatus.APPROVED: set(),
    ApplicationStatus.REJECTED: set(),
}

OPEN_APPLICATION_STATUSES = (
    ApplicationStatus.PENDING,
    ApplicationStatus.UNDER_REVIEW,
    ApplicationStatus.ON_HOLD,
)


class VehicleType(models.TextChoices):
    CAR = 'car', 'Car'
    SUV = 'suv', 'SUV'
    TRUCK = 'truck', 'Pickup truck'
    VAN = 'van', 'Van'


class PayoutMethod(models.TextChoices):
    STRIPE = 'stripe', 'Stripe (direct deposit)'
    CASH_APP = 'cash_app', 'Cash App'
    VENMO = 'venmo', 'Venmo'
    BANK = 'bank', 'Bank transfer'


class DriverApplication(models.Model):
    """
    A customer's request to become a driver.

    On approval the applicant's role becomes DRIVER and a DriverProfile
    is created from the vehicle and payout details.
    """

    applicant = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='driver_applications'
    )

    # Personal
    first_name = models.CharField(max_length=75)
    last_name = models.CharField(max_length=75)
    email = models.EmailField()
    phone = models.CharField(max_length=20)
    date_of_birth = models.DateField()
    address = models.CharField(max_length=255)
    city = models.CharField(max_length=100)
    state = models.CharField(max_length=2)
    zip_code = models.CharField(max_length=10)

    # License
    license_number = models.CharField(max_length=50)
    license_state = models.CharField(max_length=2)
    license_expiry = models.DateField()
    has_commercial_license = models.BooleanField(default=False)

    # Vehicle
    vehicle_type = models.CharField(max_length=10, choices=VehicleType.choices)
    vehicle_make = models.CharField(max_length=50)
    vehicle_model = models.CharField(max_length=50)
    vehicle_year = models.PositiveIntegerField()
    license_plate = models.CharField(max_length=15)
    vehicle_color = models.CharField(max_length=30, blank=True)

    # Insurance
    insurance_company = models.CharField(max_length=100)
    insurance_policy_number = models.CharField(max_length=50)
    insurance_expiry = models.DateField()
    has_commercial_insurance = models.BooleanField(default=False)

    # Experience & availability
    years_experience = models.PositiveSmallIntegerField(default=0)
    preferred_areas = models.CharField(max_length=255, blank=True)
    availability = models.JSONField(default=dict, blank=True, help_text="day -> list of shifts")
    max_distance_miles = models.PositiveSmallIntegerField(default=15)

    # Payout
    payout_method = models.CharField(max_length=10, choices=PayoutMethod.choices, default=PayoutMethod.STRIPE)
    cash_app_handle = models.CharField(max_length=50, blank=True)
    venmo_handle = models.CharField(max_length=50, blank=True)

    # Background
    has_criminal_record = models.BooleanField(default=False)
    criminal_record_details = models.TextField(blank=True)

    # Emergency contact
    emergency_contact_name = models.CharField(max_length=150)
    emergency_contact_phone = models.CharField(max_length=20)
    emergency_contact_relationship = models.CharField(max_length=50)

    # Review
    status = models.CharField(
        max_length=20,
        choices=ApplicationStatus.choices,
        default=ApplicationStatus.PENDING,
        db_index=True
    )
    admin_notes = models.TextField(blank=True)
    reviewed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='reviewed_applications'
    )
    reviewed_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Driver application"
        verbose_name_plural = "Driver applications"
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.full_name} - {self.get_status_display()}"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_APPLICATION_STATUSES

    def can_transition_to(self, new_status: str) -> bool:
        return new_status in APPLICATION_TRANSITIONS.get(self.status, set())


class DocumentType(models.TextChoices):
    LICENSE_FRONT = 'license_front', "Driver's license (front)"
    LICENSE_BACK = 'license_back', "Driver's license (back)"
    INSURANCE = 'insurance', 'Proof of insurance'
    REGISTRATION = 'registration', 'Vehicle registration'
    BACKGROUND_CHECK = 'background_check', 'Background check'


def document_upload_path(instance, filename):
    return f"driver_documents/{instance.driver_id}/{instance.document_type}/{filename}"


class DriverDocument(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='driver_documents'
    )
    document_type = models.CharField(max_length=20, choices=DocumentType.choices)
    file = models.FileField(upload_to=document_upload_path)
    is_verified = models.BooleanField(default=False)
    verified_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )
    verified_at = models.DateTimeField(null=True, blank=True)
    uploaded_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-uploaded_at']

    def __str__(self):
        return f"{self.driver.email} - {self.get_document_type_display()}"


class DriverProfile(models.Model):
    """
    Live state of an approved driver.

    is_online: the driver is on shift
    is_available: on shift and not carrying an order
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='driver_profile'
    )
    application = models.OneToOneField(
        DriverApplication,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='profile'
    )

    # Vehicle snapshot
    vehicle_type = models.CharField(max_length=10, choices=VehicleType.choices, default=VehicleType.CAR)
    vehicle_make = models.CharField(max_length=50, blank=True)
    vehicle_model = models.CharField(max_length=50, blank=True)
    vehicle_year = models.PositiveIntegerField(null=True, blank=True)
    vehicle_color = models.CharField(max_length=30, blank=True)
    license_plate = models.CharField(max_length=15, blank=True)

    # Status
    is_online = models.BooleanField(default=False, db_index=True)
    is_available = models.BooleanField(default=False)
    current_latitude = models.FloatField(null=True, blank=True)
    current_longitude = models.FloatField(null=True, blank=True)
    last_location_at = models.DateTimeField(null=True, blank=True)
    last_active_at = models.DateTimeField(null=True, blank=True)
    went_online_at = models.DateTimeField(null=True, blank=True)

    # Stats
    total_deliveries = models.PositiveIntegerField(default=0)
    total_earnings = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    # Verification
    license_verified = models.BooleanField(default=False)
    insurance_verified = models.BooleanField(default=False)
    background_check_verified = models.BooleanField(default=False)

    # Payout
    payout_method = models.CharField(max_length=10, choices=PayoutMethod.choices, default=PayoutMethod.STRIPE)
    cash_app_handle = models.CharField(max_length=50, blank=True)
    venmo_handle = models.CharField(max_length=50, blank=True)

    max_distance_miles = models.PositiveSmallIntegerField(
        default=15,
        validators=[MinValueValidator(1), MaxValueValidator(100)]
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Driver profile"
        verbose_name_plural = "Driver profiles"

    def __str__(self):
        state = 'online' if self.is_online else 'offline'
        return f"{self.user.email} ({state})"

    @property
    def has_location(self) -> bool:
        return self.current_latitude is not None and self.current_longitude is not None

    @property
    def location_is_fresh(self) -> bool:
        if not self.last_location_at:
            return False
        stale_after = timedelta(minutes=settings.DRIVER_LOCATION_STALE_MINUTES)
        return timezone.now() - self.last_location_at <= stale_after

    @property
    def vehicle_description(self) -> str:
        parts = [str(self.vehicle_year or ''), self.vehicle_make, self.vehicle_model]
        return ' '.join(p for p in parts if p).strip()
