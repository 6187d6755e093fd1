"""
PartsRunner Notifications Tests
===============================

Tests for:
1. In-app notification feed (create, unread count, mark read)
2. Transactional email rendering and sending
3. Email Celery tasks
4. Notification API
"""

from django.core import mail
from django.test import TestCase
from rest_framework.test import APIClient

from core.models import User, UserRole
from drivers.models import ApplicationStatus, DriverApplication
from drivers.tests import application_data
from logistics.tests import OrderFixtures
from notifications.email_service import ApplicationEmailType, EmailService
from notifications.models import Notification, NotificationType
from notifications.services import NotificationService
from notifications.tasks import send_driver_application_email, send_order_email


class TestNotificationService(TestCase):

    def setUp(self):
        self.user = User.objects.create_user(email='pat@partsrunner.test', password='testpass123')

    def test_notify(self):
        notification = NotificationService.notify(
            self.user, 'Order delivered', 'Your parts have arrived',
            notification_type=NotificationType.SUCCESS,
            related_entity_type='order', related_entity_id=42,
        )
        self.assertEqual(notification.related_entity_id, '42')
        self.assertFalse(notification.is_read)
        self.assertEqual(NotificationService.unread_count(self.user), 1)

    def test_notify_many(self):
        other = User.objects.create_user(email='lee@partsrunner.test', password='testpass123')
        self.assertEqual(NotificationService.notify_many([self.user, other], 'Hi', 'Hello'), 2)

    def test_mark_read_only_touches_own(self):
        mine = NotificationService.notify(self.user, 'A', 'a')
        other = User.objects.create_user(email='lee@partsrunner.test', password='testpass123')
        theirs = NotificationService.notify(other, 'B', 'b')

        updated = NotificationService.mark_read(self.user, [mine.pk, theirs.pk])

        self.assertEqual(updated, 1)
        theirs.refresh_from_db()
        self.assertFalse(theirs.is_read)

    def test_mark_all_read(self):
        NotificationService.notify(self.user, 'A', 'a')
        NotificationService.notify(self.user, 'B', 'b')
        self.assertEqual(NotificationService.mark_all_read(self.user), 2)
        self.assertEqual(NotificationService.unread_count(self.user), 0)


class TestApplicationEmails(TestCase):

    def setUp(self):
        self.applicant = User.objects.create_user(email='jordan@partsrunner.test', password='testpass123')
        self.application = DriverApplication.objects.create(applicant=self.applicant, **application_data())
        mail.outbox = []

    def test_subjects(self):
        self.assertEqual(
            EmailService.application_subject(ApplicationEmailType.APPROVED),
            'Driver Application Approved - MyPartsRunner'
        )
        self.assertEqual(
            EmailService.application_subject(ApplicationEmailType.STATUS_UPDATE, 'under_review'),
            'Driver Application UNDER_REVIEW - MyPartsRunner'
        )

    def test_status_update_needs_status(self):
        with self.assertRaises(ValueError):
            EmailService.application_subject(ApplicationEmailType.STATUS_UPDATE)

    def test_unknown_type(self):
        with self.assertRaises(ValueError):
            EmailService.application_subject('welcome')

    def test_send_application_email(self):
        sent = EmailService.send_application_email(
            self.application, ApplicationEmailType.STATUS_UPDATE,
            status=ApplicationStatus.UNDER_REVIEW, admin_notes='Checking your insurance'
        )

        self.assertEqual(sent, 1)
        message = mail.outbox[0]
        self.assertEqual(message.to, ['jordan@partsrunner.test'])
        html = message.alternatives[0][0]
        self.assertIn('UNDER REVIEW', html)
        self.assertIn('Checking your insurance', html)

    def test_task_skips_missing_application(self):
        self.assertEqual(send_driver_application_email(999999, ApplicationEmailType.APPROVED), 0)
        self.assertEqual(len(mail.outbox), 0)

    def test_task_sends(self):
        send_driver_application_email(self.application.pk, ApplicationEmailType.APPLICATION_RECEIVED)
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn('Received', mail.outbox[0].subject)


class TestOrderEmails(OrderFixtures, TestCase):

    def setUp(self):
        super().setUp()
        self.order = self.make_order(quantity=2)
        mail.outbox = []

    def test_confirmation_email(self):
        send_order_email(str(self.order.pk), 'confirmation')

        self.assertEqual(len(mail.outbox), 1)
        message = mail.outbox[0]
        self.assertEqual(message.to, [self.customer.email])
        self.assertIn(self.order.order_number, message.subject)
        self.assertIn(self.order.delivery_code, message.alternatives[0][0])

    def test_status_email(self):
        send_order_email(str(self.order.pk), 'status')
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn(self.order.get_status_display(), mail.outbox[0].subject)

    def test_missing_order(self):
        self.assertEqual(send_order_email('00000000-0000-0000-0000-000000000000', 'status'), 0)
        self.assertEqual(len(mail.outbox), 0)


class TestNotificationAPI(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(email='pat@partsrunner.test', password='testpass123')
        self.admin = User.objects.create_user(
            email='admin@partsrunner.test', password='testpass123', role=UserRole.ADMIN,
        )
        self.first = NotificationService.notify(self.user, 'A', 'a')
        NotificationService.notify(self.user, 'B', 'b')
        NotificationService.notify(self.admin, 'C', 'c')

    def test_feed_is_scoped(self):
        self.client.force_authenticate(user=self.user)
        response = self.client.get('/api/notifications/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['count'], 2)

    def test_unread_count_and_mark_read(self):
        self.client.force_authenticate(user=self.user)
        response = self.client.post('/api/notifications/mark_read/', {'ids': [self.first.pk]}, format='json')
        self.assertEqual(response.data['updated'], 1)

        response = self.client.get('/api/notifications/unread_count/')
        self.assertEqual(response.data['unread'], 1)

        response = self.client.post('/api/notifications/mark_all_read/')
        self.assertEqual(response.data['updated'], 1)
        self.assertFalse(Notification.objects.filter(user=self.user, is_read=False).exists())

    def test_send_email_admin_only(self):
        applicant = User.objects.create_user(email='jordan@partsrunner.test', password='testpass123')
        application = DriverApplication.objects.create(applicant=applicant, **application_data())
        mail.outbox = []
        body = {'type': ApplicationEmailType.APPROVED, 'application_id': application.pk}

        self.client.force_authenticate(user=self.user)
        self.assertEqual(self.client.post('/api/notifications/email/', body, format='json').status_code, 403)

        self.client.force_authenticate(user=self.admin)
        response = self.client.post('/api/notifications/email/', body, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['to'], 'jordan@partsrunner.test')
        self.assertEqual(len(mail.outbox), 1)

    def test_status_update_requires_status(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.post('/api/notifications/email/', {
            'type': ApplicationEmailType.STATUS_UPDATE, 'application_id': 1,
        }, format='json')
        self.assertEqual(response.status_code, 400)
