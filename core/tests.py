"""
PartsRunner Core Tests
======================

Tests for:
1. Custom User Model (creation, roles)
2. Registration and profile API
3. Owner/admin account management
4. Security Middleware and health checks
"""

import uuid
from decimal import Decimal
from django.db import IntegrityError
from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from core.models import User, UserRole


class TestUserModel(TestCase):
    """Tests for the custom User model."""

    def setUp(self):
        """Create test users for each role."""
        self.owner = User.objects.create_user(
            email='owner@partsrunner.test', password='testpass123',
            role=UserRole.OWNER, full_name='Owner Test',
        )
        self.admin = User.objects.create_user(
            email='admin@partsrunner.test', password='testpass123',
            role=UserRole.ADMIN, full_name='Admin Test',
        )
        self.driver = User.objects.create_user(
            email='driver@partsrunner.test', password='testpass123',
            role=UserRole.DRIVER, full_name='Driver Test',
        )
        self.merchant = User.objects.create_user(
            email='merchant@partsrunner.test', password='testpass123',
            role=UserRole.MERCHANT, full_name='Merchant Test',
        )
        self.customer = User.objects.create_user(
            email='Customer@PartsRunner.test', password='testpass123',
            full_name='Customer Test',
        )

    # ==========================================
    # User Creation Tests
    # ==========================================

    def test_user_creation_with_email(self):
        """User should be created with email as identifier."""
        self.assertEqual(self.driver.email, 'driver@partsrunner.test')
        self.assertTrue(self.driver.check_password('testpass123'))

    def test_email_is_normalized_to_lowercase(self):
        """Emails are stored lowercase so login is case-insensitive."""
        self.assertEqual(self.customer.email, 'customer@partsrunner.test')

    def test_user_uuid_primary_key(self):
        """User should have UUID as primary key."""
        self.assertIsInstance(self.driver.id, uuid.UUID)

    def test_default_role_is_customer(self):
        """Users without an explicit role are customers."""
        self.assertEqual(self.customer.role, UserRole.CUSTOMER)
        self.assertTrue(self.customer.is_customer)

    def test_role_properties(self):
        """Role helpers reflect the role field."""
        self.assertTrue(self.driver.is_driver)
        self.assertTrue(self.merchant.is_merchant)
        self.assertTrue(self.owner.is_owner)
        self.assertFalse(self.admin.is_owner)

    def test_platform_admin_covers_admin_and_owner(self):
        """Admins and the owner share back-office access."""
        self.assertTrue(self.admin.is_platform_admin)
        self.assertTrue(self.owner.is_platform_admin)
        self.assertFalse(self.merchant.is_platform_admin)

    def test_superuser_is_owner(self):
        """createsuperuser creates the platform owner."""
        superuser = User.objects.create_superuser(
            email='root@partsrunner.test', password='superpass123',
        )
        self.assertTrue(superuser.is_staff)
        self.assertTrue(superuser.is_superuser)
        self.assertEqual(superuser.role, UserRole.OWNER)

    def test_duplicate_email_rejected(self):
        """Should not allow duplicate emails."""
        with self.assertRaises(IntegrityError):
            User.objects.create_user(email='driver@partsrunner.test', password='x')

    def test_initial_wallet_balance_is_zero(self):
        """New user should have 0 wallet balance."""
        self.assertEqual(self.driver.wallet_balance, Decimal('0.00'))

    def test_can_receive_transfers_requires_completed_onboarding(self):
        """A Connect account id alone is not enough for transfers."""
        self.merchant.stripe_account_id = 'acct_123'
        self.assertFalse(self.merchant.can_receive_transfers)
        self.merchant.stripe_onboarding_complete = True
        self.assertTrue(self.merchant.can_receive_transfers)


class TestUserAPI(TestCase):
    """Tests for registration, profile and role management."""

    def setUp(self):
        self.api = APIClient()
        self.owner = User.objects.create_user(
            email='owner@partsrunner.test', password='testpass123', role=UserRole.OWNER,
        )
        self.admin = User.objects.create_user(
            email='admin@partsrunner.test', password='testpass123', role=UserRole.ADMIN,
        )
        self.customer = User.objects.create_user(
            email='customer@partsrunner.test', password='testpass123',
        )

    # ==========================================
    # Registration
    # ==========================================

    def test_register_customer(self):
        """Public registration creates a customer by default."""
        response = self.api.post('/api/auth/register/', {
            'email': 'new@partsrunner.test',
            'password': 'S3cure-pass-2024',
            'full_name': 'New Customer',
        }, format='json')
        self.assertEqual(response.status_code, 201)
        user = User.objects.get(email='new@partsrunner.test')
        self.assertEqual(user.role, UserRole.CUSTOMER)

    def test_register_merchant(self):
        """Merchants may sign up directly."""
        response = self.api.post('/api/auth/register/', {
            'email': 'shop@partsrunner.test',
            'password': 'S3cure-pass-2024',
            'role': UserRole.MERCHANT,
        }, format='json')
        self.assertEqual(response.status_code, 201)
        self.assertEqual(User.objects.get(email='shop@partsrunner.test').role, UserRole.MERCHANT)

    def test_register_driver_applicant_as_customer(self):
        """Driver sign-ups start as customers until their application is approved."""
        response = self.api.post('/api/auth/register/', {
            'email': 'Wheels@partsrunner.test',
            'password': 'S3cure-pass-2024',
            'role': UserRole.DRIVER,
        }, format='json')
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['role'], UserRole.CUSTOMER)
        self.assertEqual(User.objects.get(email='wheels@partsrunner.test').role, UserRole.CUSTOMER)

    def test_register_cannot_self_assign_admin(self):
        """Admin role is never self-service."""
        response = self.api.post('/api/auth/register/', {
            'email': 'sneaky@partsrunner.test',
            'password': 'S3cure-pass-2024',
            'role': UserRole.ADMIN,
        }, format='json')
        self.assertEqual(response.status_code, 400)
        self.assertFalse(User.objects.filter(email='sneaky@partsrunner.test').exists())

    def test_register_duplicate_email_rejected(self):
        """Registration rejects an email already in use."""
        response = self.api.post('/api/auth/register/', {
            'email': 'CUSTOMER@partsrunner.test',
            'password': 'S3cure-pass-2024',
        }, format='json')
        self.assertEqual(response.status_code, 400)

    def test_token_obtain_with_email(self):
        """JWT login uses email and password."""
        response = self.api.post('/api/auth/token/', {
            'email': 'customer@partsrunner.test',
            'password': 'testpass123',
        }, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertIn('access', response.json())

    # ==========================================
    # Profile
    # ==========================================

    def test_me_returns_own_profile(self):
        self.api.force_authenticate(self.customer)
        response = self.api.get('/api/users/me/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['email'], 'customer@partsrunner.test')

    def test_me_patch_cannot_change_role(self):
        """Role is read-only on the profile endpoint."""
        self.api.force_authenticate(self.customer)
        response = self.api.patch('/api/users/me/', {
            'full_name': 'Renamed', 'role': UserRole.OWNER,
        }, format='json')
        self.assertEqual(response.status_code, 200)
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.full_name, 'Renamed')
        self.assertEqual(self.customer.role, UserRole.CUSTOMER)

    def test_user_list_admin_only(self):
        self.api.force_authenticate(self.customer)
        self.assertEqual(self.api.get('/api/users/').status_code, 403)
        self.api.force_authenticate(self.admin)
        self.assertEqual(self.api.get('/api/users/').status_code, 200)

    # ==========================================
    # Role management
    # ==========================================

    def test_owner_promotes_admin(self):
        self.api.force_authenticate(self.owner)
        response = self.api.post(
            f'/api/users/{self.customer.pk}/change_role/', {'role': UserRole.ADMIN}, format='json'
        )
        self.assertEqual(response.status_code, 200)
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.role, UserRole.ADMIN)
        self.assertTrue(self.customer.is_staff)

    def test_admin_cannot_change_roles(self):
        self.api.force_authenticate(self.admin)
        response = self.api.post(
            f'/api/users/{self.customer.pk}/change_role/', {'role': UserRole.ADMIN}, format='json'
        )
        self.assertEqual(response.status_code, 403)

    def test_owner_role_is_immutable(self):
        self.api.force_authenticate(self.owner)
        response = self.api.post(
            f'/api/users/{self.owner.pk}/change_role/', {'role': UserRole.ADMIN}, format='json'
        )
        self.assertEqual(response.status_code, 400)

    def test_admin_deactivates_customer(self):
        self.api.force_authenticate(self.admin)
        response = self.api.post(f'/api/users/{self.customer.pk}/deactivate/')
        self.assertEqual(response.status_code, 200)
        self.customer.refresh_from_db()
        self.assertFalse(self.customer.is_active)

    def test_admin_cannot_deactivate_admin(self):
        other_admin = User.objects.create_user(
            email='admin2@partsrunner.test', password='x', role=UserRole.ADMIN,
        )
        self.api.force_authenticate(self.admin)
        response = self.api.post(f'/api/users/{other_admin.pk}/deactivate/')
        self.assertEqual(response.status_code, 403)


class TestSecurityMiddleware(TestCase):
    """Tests for security middleware behavior."""

    def test_health_endpoint_accessible(self):
        """Health check should be accessible without auth."""
        response = self.client.get('/health/')
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['status'], 'ok')
        self.assertEqual(data['service'], 'partsrunner')

    def test_readiness_endpoint_accessible(self):
        """Readiness check should be accessible without auth."""
        response = self.client.get('/health/ready/')
        self.assertIn(response.status_code, [200, 503])
        self.assertIn('checks', response.json())

    def test_detailed_health_requires_auth(self):
        """Detailed health should require staff authentication."""
        response = self.client.get('/health/detailed/')
        self.assertEqual(response.status_code, 403)

    def test_detailed_health_for_staff(self):
        staff = User.objects.create_user(
            email='staff@partsrunner.test', password='x', role=UserRole.ADMIN, is_staff=True,
        )
        self.client.force_login(staff)
        response = self.client.get('/health/detailed/')
        self.assertEqual(response.status_code, 200)
        self.assertIn('orders', response.json()['stats'])

    def test_security_headers_present(self):
        """Response should contain security headers."""
        response = self.client.get('/health/')
        self.assertEqual(response['X-Content-Type-Options'], 'nosniff')
        self.assertEqual(response['X-Frame-Options'], 'DENY')
        self.assertIn('Referrer-Policy', response)

    @override_settings(RATE_LIMIT_ENABLED=True)
    def test_login_rate_limited(self):
        """Login is limited to 10 attempts per minute per IP."""
        from django.core.cache import cache
        cache.clear()
        for _ in range(10):
            self.client.post('/api/auth/token/', {'email': 'x@y.z', 'password': 'bad'})
        response = self.client.post('/api/auth/token/', {'email': 'x@y.z', 'password': 'bad'})
        self.assertEqual(response.status_code, 429)
        self.assertEqual(response.json()['error'], 'rate_limit_exceeded')
