"""
DRIVERS App - Services

Applications, online status and location, documents and earnings.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Count, Sum
from django.utils import timezone

from core.models import User, UserRole
from .models import (
    ApplicationStatus, DocumentType, DriverApplication, DriverDocument,
    DriverProfile, OPEN_APPLICATION_STATUSES, PayoutMethod
)

logger = logging.getLogger(__name__)


MINIMUM_VEHICLE_YEAR = 1990

# Email sent for each review decision
DECISION_EMAILS = {
    ApplicationStatus.APPROVED: 'approved',
    ApplicationStatus.REJECTED: 'rejected',
}

# Fields copied onto the DriverProfile at approval
PROFILE_FIELDS = (
    'vehicle_type', 'vehicle_make', 'vehicle_model', 'vehicle_year', 'vehicle_color',
    'license_plate', 'payout_method', 'cash_app_handle', 'venmo_handle', 'max_distance_miles',
)


def _age_on(birth_date: date, today: date) -> int:
    return today.year - birth_date.year - ((today.month, today.day) < (birth_date.month, birth_date.day))


class DriverApplicationService:
    """
    Driver onboarding.

    Applicants stay customers until an admin approves them.
    """

    @staticmethod
    def validate(data: dict, today: Optional[date] = None) -> None:
        """
        Business checks on an application.

        Raises:
            ValueError: With the first failing rule
        """
        today = today or timezone.localdate()

        if _age_on(data['date_of_birth'], today) < settings.DRIVER_MINIMUM_AGE:
            raise ValueError(f"Drivers must be at least {settings.DRIVER_MINIMUM_AGE} years old")

        if data['license_expiry'] <= today:
            raise ValueError("Your driver's license has expired")

        if data['insurance_expiry'] <= today:
            raise ValueError("Your insurance has expired")

        year = data['vehicle_year']
        if year < MINIMUM_VEHICLE_YEAR or year > today.year + 1:
            raise ValueError(f"Vehicle year must be between {MINIMUM_VEHICLE_YEAR} and {today.year + 1}")

        if data.get('has_criminal_record') and not (data.get('criminal_record_details') or '').strip():
            raise ValueError("Please describe your criminal record")

        method = data.get('payout_method', PayoutMethod.STRIPE)
        if method == PayoutMethod.CASH_APP and not data.get('cash_app_handle'):
            raise ValueError("A Cash App handle is required for Cash App payouts")
        if method == PayoutMethod.VENMO and not data.get('venmo_handle'):
            raise ValueError("A Venmo handle is required for Venmo payouts")

    @classmethod
    @transaction.atomic
    def submit(cls, applicant: User, data: dict, today: Optional[date] = None) -> DriverApplication:
        """
        Create an application.

        Raises:
            ValueError: Rule violation or an application already open
        """
        if applicant.role == UserRole.DRIVER:
            raise ValueError("You are already a driver")

        # Lock the user row so two submissions cannot both pass the open check
        User.objects.select_for_update().filter(pk=applicant.pk).first()
        if DriverApplication.objects.filter(applicant=applicant, status__in=OPEN_APPLICATION_STATUSES).exists():
            raise ValueError("You already have an application in progress")

        cls.validate(data, today=today)

        application = DriverApplication.objects.create(applicant=applicant, **data)
        logger.info(f"[DRIVERS] Application #{application.pk} submitted by {applicant.email}")

        application_id = application.pk
        transaction.on_commit(lambda: cls._send_email(application_id, 'application_received'))
        return application

    @classmethod
    @transaction.atomic
    def update_status(cls, application: DriverApplication, new_status: str,
                      admin: User, notes: str) -> DriverApplication:
        """
        Review decision.

        Approval turns the applicant into a driver with a DriverProfile.

        Raises:
            PermissionError: Reviewer is not an admin
            ValueError: Missing notes or illegal move
        """
        if not admin.is_platform_admin:
            raise PermissionError("Only admins can review applications")
        if not (notes or '').strip():
            raise ValueError("Admin notes are required")

        application = DriverApplication.objects.select_for_update().get(pk=application.pk)
        previous = application.status
        if not application.can_transition_to(new_status):
            raise ValueError(f"Cannot move application from {previous} to {new_status}")

        application.status = new_status
        application.admin_notes = notes
        application.reviewed_by = admin
        application.reviewed_at = timezone.now()
        application.save()

        if new_status == ApplicationStatus.APPROVED:
            cls._activate_driver(application)

        logger.info(
            f"[DRIVERS] Application #{application.pk}: {previous} -> {new_status} by {admin.email}"
        )

        email_type = DECISION_EMAILS.get(new_status, 'status_update')
        application_id = application.pk
        transaction.on_commit(
            lambda: cls._send_email(application_id, email_type, status=new_status, admin_notes=notes)
        )
        transaction.on_commit(lambda: cls._notify_applicant(application_id))
        return application

    @staticmethod
    def _activate_driver(application: DriverApplication) -> DriverProfile:
        user = application.applicant
        user.role = UserRole.DRIVER
        if not user.full_name:
            user.full_name = application.full_name
        if not user.phone_number:
            user.phone_number = application.phone
        user.save(update_fields=['role', 'full_name', 'phone_number'])

        profile, _ = DriverProfile.objects.update_or_create(
            user=user,
            defaults={
                'application': application,
                **{f: getattr(application, f) for f in PROFILE_FIELDS},
            }
        )
        return profile

    @staticmethod
    def _send_email(application_id, email_type: str, status: str = None, admin_notes: str = ''):
        try:
            from notifications.tasks import send_driver_application_email
            send_driver_application_email.delay(
                application_id, email_type, status=status, admin_notes=admin_notes
            )
        except Exception as e:
            logger.warning(f"[DRIVERS] Could not queue {email_type} email: {e}")

    @staticmethod
    def _notify_applicant(application_id):
        from notifications.models import NotificationType
        from notifications.services import NotificationService

        application = DriverApplication.objects.select_related('applicant').get(pk=application_id)
        approved = application.status == ApplicationStatus.APPROVED
        NotificationService.notify(
            application.applicant,
            'Driver application update',
            f"Your application is now {application.get_status_display().lower()}",
            notification_type=NotificationType.SUCCESS if approved else NotificationType.INFO,
            related_entity_type='driver_application',
            related_entity_id=application.pk,
        )

    @staticmethod
    def stats() -> Dict[str, int]:
        """Application counts per status."""
        counts = {s: 0 for s in ApplicationStatus.values}
        for row in DriverApplication.objects.values('status').annotate(n=Count('id')):
            counts[row['status']] = row['n']
        counts['total'] = sum(counts.values())
        return counts


class DriverStatusService:
    """
    Online/offline state and location of approved drivers.
    """

    @staticmethod
    def get_profile(driver: User) -> DriverProfile:
        """
        Raises:
            PermissionError: Not an approved driver
        """
        if driver.role != UserRole.DRIVER:
            raise PermissionError("Only approved drivers can do this")
        profile = DriverProfile.objects.filter(user=driver).first()
        if profile is None:
            raise PermissionError("Driver profile not found")
        return profile

    @staticmethod
    def active_order(driver: User):
        from logistics.models import ACTIVE_DRIVER_STATUSES, Order
        return Order.objects.filter(driver=driver, status__in=ACTIVE_DRIVER_STATUSES).first()

    @classmethod
    def go_online(cls, driver: User, latitude: Optional[float] = None,
                  longitude: Optional[float] = None) -> DriverProfile:
        if not driver.is_active:
            raise ValueError("Your account is deactivated")
        profile = cls.get_profile(driver)

        now = timezone.now()
        profile.is_online = True
        profile.is_available = cls.active_order(driver) is None
        profile.went_online_at = now
        profile.last_active_at = now
        if latitude is not None and longitude is not None:
            profile.current_latitude = latitude
            profile.current_longitude = longitude
            profile.last_location_at = now
        profile.save()

        logger.info(f"[DRIVERS] {driver.email} is online")
        return profile

    @classmethod
    def go_offline(cls, driver: User) -> DriverProfile:
        from logistics.models import OrderStatus

        profile = cls.get_profile(driver)
        order = cls.active_order(driver)
        if order is not None and order.status in (OrderStatus.PICKED_UP, OrderStatus.IN_TRANSIT):
            raise ValueError("Finish your current delivery before going offline")

        profile.is_online = False
        profile.is_available = False
        profile.save(update_fields=['is_online', 'is_available', 'updated_at'])

        logger.info(f"[DRIVERS] {driver.email} is offline")
        return profile

    @classmethod
    def update_location(cls, driver: User, latitude: float, longitude: float) -> DriverProfile:
        """
        Store the driver's position and push it to whoever tracks
        their active order.
        """
        from logistics import events
        from logistics.models import OrderStatus
        from logistics.services.pricing import ROAD_FACTOR, PricingEngine

        if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
            raise ValueError("Invalid coordinates")

        profile = cls.get_profile(driver)
        now = timezone.now()
        profile.current_latitude = latitude
        profile.current_longitude = longitude
        profile.last_location_at = now
        profile.last_active_at = now
        profile.save(update_fields=[
            'current_latitude', 'current_longitude', 'last_location_at', 'last_active_at', 'updated_at'
        ])

        order = cls.active_order(driver)
        events.broadcast_driver_location(
            driver.pk, latitude, longitude, active_order_id=str(order.pk) if order else None
        )

        en_route = order is not None and order.status in (OrderStatus.PICKED_UP, OrderStatus.IN_TRANSIT)
        if en_route and order.has_delivery_location:
            miles = PricingEngine.get_haversine_distance(
                (latitude, longitude), (order.delivery_latitude, order.delivery_longitude)
            ) * ROAD_FACTOR
            eta = int(miles / settings.AVERAGE_DRIVER_SPEED_MPH * 60)
            events.broadcast_order_eta(order.pk, eta, round(miles, 2))

        return profile

    @classmethod
    def heartbeat(cls, driver: User) -> DriverProfile:
        profile = cls.get_profile(driver)
        profile.last_active_at = timezone.now()
        profile.save(update_fields=['last_active_at', 'updated_at'])
        return profile

    @staticmethod
    def auto_offline_inactive(minutes: Optional[int] = None) -> int:
        """Flip online drivers silent for `minutes` to offline."""
        from django.db.models import Q

        minutes = minutes or settings.DRIVER_AUTO_OFFLINE_MINUTES
        cutoff = timezone.now() - timedelta(minutes=minutes)

        updated = DriverProfile.objects.filter(is_online=True).filter(
            Q(last_active_at__lt=cutoff) | Q(last_active_at__isnull=True)
        ).update(is_online=False, is_available=False)

        if updated:
            logger.info(f"[DRIVERS] {updated} inactive driver(s) set offline")
        return updated


class DriverDocumentService:
    """Document upload and admin verification."""

    # Document types that back each verification flag
    VERIFICATION_FLAGS = {
        DocumentType.LICENSE_FRONT: 'license_verified',
        DocumentType.LICENSE_BACK: 'license_verified',
        DocumentType.INSURANCE: 'insurance_verified',
        DocumentType.BACKGROUND_CHECK: 'background_check_verified',
    }

    @staticmethod
    def upload(driver: User, document_type: str, file) -> DriverDocument:
        if driver.role not in (UserRole.DRIVER, UserRole.CUSTOMER):
            raise PermissionError("Only drivers and applicants can upload documents")
        document = DriverDocument.objects.create(driver=driver, document_type=document_type, file=file)
        logger.info(f"[DRIVERS] {driver.email} uploaded {document_type}")
        return document

    @classmethod
    @transaction.atomic
    def verify(cls, document: DriverDocument, admin: User) -> DriverDocument:
        if not admin.is_platform_admin:
            raise PermissionError("Only admins can verify documents")

        document.is_verified = True
        document.verified_by = admin
        document.verified_at = timezone.now()
        document.save(update_fields=['is_verified', 'verified_by', 'verified_at'])

        flag = cls.VERIFICATION_FLAGS.get(document.document_type)
        if flag:
            DriverProfile.objects.filter(user_id=document.driver_id).update(**{flag: True})
        return document


class DriverEarningsService:
    """
    Earnings summary for the driver dashboard.
    """

    @staticmethod
    def _payouts(driver: User, since=None) -> Decimal:
        from finance.models import Transaction, TransactionType

        qs = Transaction.objects.filter(
            user=driver, transaction_type=TransactionType.PAYOUT, amount__gt=0
        )
        if since is not None:
            qs = qs.filter(created_at__gte=since)
        return qs.aggregate(total=Sum('amount'))['total'] or Decimal('0.00')

    @classmethod
    def summary(cls, driver: User) -> Dict[str, Any]:
        from logistics.models import Order, OrderStatus

        now = timezone.localtime()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        start_of_week = start_of_day - timedelta(days=start_of_day.weekday())
        start_of_month = start_of_day.replace(day=1)

        delivered = Order.objects.filter(driver=driver, status=OrderStatus.DELIVERED)

        return {
            'today': cls._payouts(driver, start_of_day),
            'week': cls._payouts(driver, start_of_week),
            'month': cls._payouts(driver, start_of_month),
            'total': cls._payouts(driver),
            'deliveries_today': delivered.filter(delivered_at__gte=start_of_day).count(),
            'deliveries_total': delivered.count(),
            'average_rating': driver.average_rating,
            'total_ratings': driver.total_ratings_count,
            'wallet_balance': driver.wallet_balance,
        }
