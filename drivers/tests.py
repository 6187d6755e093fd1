"""
PartsRunner Drivers Tests
=========================

Tests for:
1. Driver applications (validation, review, approval)
2. Driver status (online/offline, location, auto-offline)
3. Documents and earnings
4. Driver API endpoints
"""

from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import patch

from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from core.models import User, UserRole
from drivers.models import (
    ApplicationStatus, DocumentType, DriverApplication, DriverProfile, PayoutMethod
)
from drivers.services import (
    DriverApplicationService, DriverDocumentService, DriverEarningsService,
    DriverStatusService
)
from finance.models import RecipientRole, Transaction, TransactionType


TODAY = date(2026, 6, 15)


def application_data(today=TODAY, **overrides):
    data = {
        'first_name': 'Jordan',
        'last_name': 'Reyes',
        'email': 'jordan@partsrunner.test',
        'phone': '2145550100',
        'date_of_birth': date(today.year - 30, 1, 1),
        'address': '12 Pine St',
        'city': 'Dallas',
        'state': 'TX',
        'zip_code': '75201',
        'license_number': 'TX1234567',
        'license_state': 'TX',
        'license_expiry': today + timedelta(days=365),
        'vehicle_type': 'truck',
        'vehicle_make': 'Ford',
        'vehicle_model': 'F-150',
        'vehicle_year': 2019,
        'license_plate': 'ABC1234',
        'insurance_company': 'Lone Star Mutual',
        'insurance_policy_number': 'LSM-889',
        'insurance_expiry': today + timedelta(days=180),
        'emergency_contact_name': 'Sam Reyes',
        'emergency_contact_phone': '2145550101',
        'emergency_contact_relationship': 'Sibling',
    }
    data.update(overrides)
    return data


class TestDriverApplicationService(TestCase):
    """Tests for application submission and review."""

    def setUp(self):
        self.applicant = User.objects.create_user(email='applicant@partsrunner.test', password='testpass123')
        self.admin = User.objects.create_user(
            email='admin@partsrunner.test', password='testpass123', role=UserRole.ADMIN,
        )

    def submit(self, **overrides):
        return DriverApplicationService.submit(self.applicant, application_data(**overrides), today=TODAY)

    # ==========================================
    # Submission rules
    # ==========================================

    def test_submit_creates_pending_application(self):
        with patch('notifications.tasks.send_driver_application_email.delay') as mock_email:
            with self.captureOnCommitCallbacks(execute=True):
                application = self.submit()

        self.assertEqual(application.status, ApplicationStatus.PENDING)
        mock_email.assert_called_once_with(
            application.pk, 'application_received', status=None, admin_notes=''
        )

    def test_applicant_must_be_21(self):
        with self.assertRaisesMessage(ValueError, '21'):
            self.submit(date_of_birth=date(TODAY.year - 20, 1, 1))

    def test_turns_21_today_is_accepted(self):
        application = self.submit(date_of_birth=date(TODAY.year - 21, TODAY.month, TODAY.day))
        self.assertIsNotNone(application.pk)

    def test_expired_license_rejected(self):
        with self.assertRaisesMessage(ValueError, 'license'):
            self.submit(license_expiry=TODAY - timedelta(days=1))

    def test_expired_insurance_rejected(self):
        with self.assertRaisesMessage(ValueError, 'insurance'):
            self.submit(insurance_expiry=TODAY)

    def test_vehicle_year_bounds(self):
        with self.assertRaises(ValueError):
            self.submit(vehicle_year=1989)
        with self.assertRaises(ValueError):
            self.submit(vehicle_year=TODAY.year + 2)
        self.assertIsNotNone(self.submit(vehicle_year=TODAY.year + 1).pk)

    def test_criminal_details_required_when_flagged(self):
        with self.assertRaises(ValueError):
            self.submit(has_criminal_record=True, criminal_record_details='  ')

    def test_payout_handle_required(self):
        with self.assertRaisesMessage(ValueError, 'Cash App'):
            self.submit(payout_method=PayoutMethod.CASH_APP)
        with self.assertRaisesMessage(ValueError, 'Venmo'):
            self.submit(payout_method=PayoutMethod.VENMO)

    def test_one_open_application_per_user(self):
        self.submit()
        with self.assertRaisesMessage(ValueError, 'in progress'):
            self.submit()

    def test_can_reapply_after_rejection(self):
        application = self.submit()
        DriverApplicationService.update_status(
            application, ApplicationStatus.REJECTED, self.admin, 'Incomplete insurance'
        )
        self.assertIsNotNone(self.submit().pk)

    # ==========================================
    # Review
    # ==========================================

    def test_approval_creates_driver(self):
        application = self.submit()

        with patch('notifications.tasks.send_driver_application_email.delay') as mock_email:
            with self.captureOnCommitCallbacks(execute=True):
                DriverApplicationService.update_status(
                    application, ApplicationStatus.APPROVED, self.admin, 'Looks good'
                )

        self.applicant.refresh_from_db()
        self.assertEqual(self.applicant.role, UserRole.DRIVER)
        profile = DriverProfile.objects.get(user=self.applicant)
        self.assertEqual(profile.vehicle_make, 'Ford')
        self.assertEqual(profile.application_id, application.pk)
        self.assertFalse(profile.is_online)
        mock_email.assert_called_once_with(
            application.pk, 'approved', status='approved', admin_notes='Looks good'
        )

    def test_non_final_status_sends_status_update(self):
        application = self.submit()
        with patch('notifications.tasks.send_driver_application_email.delay') as mock_email:
            with self.captureOnCommitCallbacks(execute=True):
                DriverApplicationService.update_status(
                    application, ApplicationStatus.UNDER_REVIEW, self.admin, 'Checking references'
                )
        self.assertEqual(mock_email.call_args[0][1], 'status_update')

    def test_notes_required(self):
        application = self.submit()
        with self.assertRaises(ValueError):
            DriverApplicationService.update_status(application, ApplicationStatus.APPROVED, self.admin, '')

    def test_final_status_cannot_change(self):
        application = self.submit()
        application = DriverApplicationService.update_status(
            application, ApplicationStatus.REJECTED, self.admin, 'No'
        )
        with self.assertRaises(ValueError):
            DriverApplicationService.update_status(
                application, ApplicationStatus.APPROVED, self.admin, 'Changed my mind'
            )

    def test_only_admins_review(self):
        application = self.submit()
        with self.assertRaises(PermissionError):
            DriverApplicationService.update_status(
                application, ApplicationStatus.APPROVED, self.applicant, 'Self-approved'
            )

    def test_stats(self):
        self.submit()
        stats = DriverApplicationService.stats()
        self.assertEqual(stats['pending'], 1)
        self.assertEqual(stats['approved'], 0)
        self.assertEqual(stats['total'], 1)


class TestDriverStatusService(TestCase):
    """Tests for online status and location."""

    def setUp(self):
        self.driver = User.objects.create_user(
            email='driver@partsrunner.test', password='testpass123', role=UserRole.DRIVER,
        )
        self.profile = DriverProfile.objects.create(user=self.driver)
        self.customer = User.objects.create_user(email='customer@partsrunner.test', password='x')

    def test_go_online(self):
        profile = DriverStatusService.go_online(self.driver, 32.78, -96.80)
        self.assertTrue(profile.is_online)
        self.assertTrue(profile.is_available)
        self.assertEqual(profile.current_latitude, 32.78)
        self.assertIsNotNone(profile.went_online_at)

    def test_customer_cannot_go_online(self):
        with self.assertRaises(PermissionError):
            DriverStatusService.go_online(self.customer)

    def test_go_offline(self):
        DriverStatusService.go_online(self.driver)
        profile = DriverStatusService.go_offline(self.driver)
        self.assertFalse(profile.is_online)
        self.assertFalse(profile.is_available)

    @patch('logistics.events.broadcast_driver_location')
    def test_update_location_broadcasts(self, mock_broadcast):
        profile = DriverStatusService.update_location(self.driver, 32.8, -96.7)

        self.assertEqual(profile.current_longitude, -96.7)
        self.assertTrue(profile.location_is_fresh)
        mock_broadcast.assert_called_once_with(self.driver.pk, 32.8, -96.7, active_order_id=None)

    def test_invalid_coordinates_rejected(self):
        with self.assertRaises(ValueError):
            DriverStatusService.update_location(self.driver, 120.0, -96.7)

    @override_settings(DRIVER_AUTO_OFFLINE_MINUTES=30)
    def test_auto_offline_inactive(self):
        DriverStatusService.go_online(self.driver)
        DriverProfile.objects.filter(pk=self.profile.pk).update(
            last_active_at=timezone.now() - timedelta(minutes=45)
        )

        self.assertEqual(DriverStatusService.auto_offline_inactive(), 1)

        self.profile.refresh_from_db()
        self.assertFalse(self.profile.is_online)

    def test_heartbeat_keeps_driver_online(self):
        DriverStatusService.go_online(self.driver)
        DriverProfile.objects.filter(pk=self.profile.pk).update(
            last_active_at=timezone.now() - timedelta(minutes=45)
        )
        DriverStatusService.heartbeat(self.driver)

        self.assertEqual(DriverStatusService.auto_offline_inactive(minutes=30), 0)


class TestDocumentsAndEarnings(TestCase):

    def setUp(self):
        self.driver = User.objects.create_user(
            email='driver@partsrunner.test', password='testpass123', role=UserRole.DRIVER,
        )
        self.profile = DriverProfile.objects.create(user=self.driver)
        self.admin = User.objects.create_user(
            email='admin@partsrunner.test', password='testpass123', role=UserRole.ADMIN,
        )

    def test_verify_insurance_sets_flag(self):
        document = DriverDocumentService.upload(
            self.driver, DocumentType.INSURANCE,
            SimpleUploadedFile('insurance.pdf', b'%PDF-1.4', content_type='application/pdf')
        )
        DriverDocumentService.verify(document, self.admin)

        document.refresh_from_db()
        self.profile.refresh_from_db()
        self.assertTrue(document.is_verified)
        self.assertEqual(document.verified_by, self.admin)
        self.assertTrue(self.profile.insurance_verified)
        self.assertFalse(self.profile.license_verified)

    def test_earnings_summary(self):
        Transaction.objects.create(
            user=self.driver, recipient_role=RecipientRole.DRIVER,
            transaction_type=TransactionType.PAYOUT, amount=Decimal('6.40'),
        )
        old = Transaction.objects.create(
            user=self.driver, recipient_role=RecipientRole.DRIVER,
            transaction_type=TransactionType.PAYOUT, amount=Decimal('10.00'),
        )
        Transaction.objects.filter(pk=old.pk).update(created_at=timezone.now() - timedelta(days=400))

        summary = DriverEarningsService.summary(self.driver)

        self.assertEqual(summary['today'], Decimal('6.40'))
        self.assertEqual(summary['total'], Decimal('16.40'))
        self.assertEqual(summary['deliveries_total'], 0)


class TestDriverAPI(TestCase):
    """Tests for the driver endpoints."""

    def setUp(self):
        self.client = APIClient()
        self.customer = User.objects.create_user(email='customer@partsrunner.test', password='x')
        self.driver = User.objects.create_user(
            email='driver@partsrunner.test', password='x', role=UserRole.DRIVER,
        )
        DriverProfile.objects.create(user=self.driver)
        self.admin = User.objects.create_user(
            email='admin@partsrunner.test', password='x', role=UserRole.ADMIN,
        )

    def test_submit_application(self):
        today = timezone.localdate()
        payload = {
            k: (v.isoformat() if isinstance(v, date) else v)
            for k, v in application_data(today=today).items()
        }
        self.client.force_authenticate(user=self.customer)

        response = self.client.post('/api/driver-applications/', payload, format='json')

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['status'], 'pending')
        self.assertEqual(DriverApplication.objects.get().applicant, self.customer)

    def test_applicant_sees_only_own_applications(self):
        other = User.objects.create_user(email='other@partsrunner.test', password='x')
        DriverApplicationService.submit(other, application_data(), today=TODAY)

        self.client.force_authenticate(user=self.customer)
        response = self.client.get('/api/driver-applications/')
        self.assertEqual(response.data['count'], 0)

    def test_admin_reviews_application(self):
        application = DriverApplicationService.submit(self.customer, application_data(), today=TODAY)
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(
            f'/api/driver-applications/{application.pk}/update_status/',
            {'status': 'approved', 'admin_notes': 'Verified documents'},
            format='json'
        )

        self.assertEqual(response.status_code, 200)
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.role, UserRole.DRIVER)

    def test_non_admin_cannot_review(self):
        application = DriverApplicationService.submit(self.customer, application_data(), today=TODAY)
        self.client.force_authenticate(user=self.customer)

        response = self.client.post(
            f'/api/driver-applications/{application.pk}/update_status/',
            {'status': 'approved', 'admin_notes': 'Me'},
            format='json'
        )
        self.assertEqual(response.status_code, 403)

    def test_driver_toggles_status(self):
        self.client.force_authenticate(user=self.driver)

        response = self.client.post(
            '/api/driver/status/', {'is_online': True, 'latitude': 32.7, 'longitude': -96.8}, format='json'
        )
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data['is_online'])

        response = self.client.get('/api/driver/status/')
        self.assertTrue(response.data['is_available'])
        self.assertIsNone(response.data['active_order_id'])

    def test_customer_cannot_use_driver_status(self):
        self.client.force_authenticate(user=self.customer)
        response = self.client.post('/api/driver/status/', {'is_online': True}, format='json')
        self.assertEqual(response.status_code, 403)

    def test_earnings_endpoint(self):
        self.client.force_authenticate(user=self.driver)
        response = self.client.get('/api/driver/earnings/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['today'], '0.00')
