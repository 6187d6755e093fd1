"""
Stripe Service for PartsRunner

Card payments, Connect payouts and refunds over the Stripe REST API.
API Reference: https://stripe.com/docs/api
"""

import hmac
import time
import hashlib
import logging
import requests
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from django.conf import settings

logger = logging.getLogger(__name__)


def to_cents(amount: Decimal) -> int:
    """USD Decimal -> integer cents."""
    return int((Decimal(amount) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


class StripeService:
    """
    Stripe API integration.

    Requests are form-encoded and authenticated with the secret key.
    Every call returns a dict with a `success` flag instead of raising.
    """

    TIMEOUT = 20
    SIGNATURE_TOLERANCE = 300  # seconds

    @classmethod
    def _post(cls, path: str, data: dict, idempotency_key: Optional[str] = None) -> dict:
        secret_key = settings.STRIPE_SECRET_KEY
        if not secret_key:
            logger.error("[STRIPE] Missing STRIPE_SECRET_KEY")
            return {'success': False, 'error': 'Stripe is not configured'}

        headers = {}
        if idempotency_key:
            headers['Idempotency-Key'] = idempotency_key

        try:
            response = requests.post(
                f"{settings.STRIPE_API_BASE}{path}",
                data=data,
                headers=headers,
                auth=(secret_key, ''),
                timeout=cls.TIMEOUT
            )
        except requests.RequestException as e:
            logger.error(f"[STRIPE] {path} request failed: {e}")
            return {'success': False, 'error': str(e)}

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.status_code >= 400:
            message = payload.get('error', {}).get('message') or f"HTTP {response.status_code}"
            logger.error(f"[STRIPE] {path} failed: {message}")
            return {'success': False, 'error': message, 'status_code': response.status_code}

        return {'success': True, 'data': payload}

    @staticmethod
    def _metadata(metadata: Optional[dict]) -> dict:
        return {f'metadata[{key}]': str(value) for key, value in (metadata or {}).items()}

    # ==========================================
    # PAYMENTS
    # ==========================================

    @classmethod
    def create_payment_intent(cls, order) -> dict:
        """
        Create a PaymentIntent for an order total.

        Returns:
            Dict with success, payment_intent_id and client_secret
        """
        data = {
            'amount': to_cents(order.total),
            'currency': settings.STRIPE_CURRENCY,
            'automatic_payment_methods[enabled]': 'true',
            'transfer_group': f'order_{order.pk}',
            'description': f'PartsRunner order {order.order_number}',
        }
        if order.contact_email:
            data['receipt_email'] = order.contact_email
        data.update(cls._metadata({
            'order_id': order.pk,
            'order_number': order.order_number,
        }))

        result = cls._post('/payment_intents', data, idempotency_key=f'pi-{order.pk}')
        if not result['success']:
            return result

        intent = result['data']
        logger.info(f"[STRIPE] PaymentIntent {intent.get('id')} created for {order.order_number}")
        return {
            'success': True,
            'payment_intent_id': intent.get('id'),
            'client_secret': intent.get('client_secret'),
            'amount': intent.get('amount'),
        }

    @classmethod
    def cancel_payment_intent(cls, payment_intent_id: str) -> dict:
        result = cls._post(f'/payment_intents/{payment_intent_id}/cancel', {})
        if not result['success']:
            return result
        logger.info(f"[STRIPE] PaymentIntent {payment_intent_id} cancelled")
        return {'success': True, 'status': result['data'].get('status')}

    @classmethod
    def create_refund(cls, payment_intent_id: str, amount: Decimal, reason: str = '') -> dict:
        data = {
            'payment_intent': payment_intent_id,
            'amount': to_cents(amount),
        }
        if reason:
            data.update(cls._metadata({'reason': reason[:200]}))

        result = cls._post('/refunds', data)
        if not result['success']:
            return result

        refund = result['data']
        logger.info(f"[STRIPE] Refund {refund.get('id')} for {payment_intent_id}: ${amount}")
        return {'success': True, 'refund_id': refund.get('id'), 'status': refund.get('status')}

    # ==========================================
    # CONNECT
    # ==========================================

    @classmethod
    def create_transfer(cls, amount: Decimal, destination: str, description: str = '',
                        transfer_group: str = '', metadata: Optional[dict] = None) -> dict:
        """Move funds to a connected account."""
        if not destination:
            return {'success': False, 'error': 'Recipient has no Stripe account'}

        data = {
            'amount': to_cents(amount),
            'currency': settings.STRIPE_CURRENCY,
            'destination': destination,
        }
        if description:
            data['description'] = description
        if transfer_group:
            data['transfer_group'] = transfer_group
        data.update(cls._metadata(metadata))

        result = cls._post('/transfers', data)
        if not result['success']:
            return result

        transfer = result['data']
        logger.info(f"[STRIPE] Transfer {transfer.get('id')} of ${amount} to {destination}")
        return {'success': True, 'transfer_id': transfer.get('id')}

    @classmethod
    def create_connect_account(cls, user) -> dict:
        """Create an Express account for a driver or merchant."""
        data = {
            'type': 'express',
            'country': 'US',
            'email': user.email,
            'capabilities[transfers][requested]': 'true',
        }
        data.update(cls._metadata({'user_id': user.pk, 'role': user.role}))

        result = cls._post('/accounts', data)
        if not result['success']:
            return result
        return {'success': True, 'account_id': result['data'].get('id')}

    @classmethod
    def create_account_link(cls, account_id: str) -> dict:
        """One-time onboarding URL for an Express account."""
        result = cls._post('/account_links', {
            'account': account_id,
            'refresh_url': settings.STRIPE_CONNECT_REFRESH_URL,
            'return_url': settings.STRIPE_CONNECT_RETURN_URL,
            'type': 'account_onboarding',
        })
        if not result['success']:
            return result
        return {'success': True, 'url': result['data'].get('url')}

    # ==========================================
    # WEBHOOKS
    # ==========================================

    @classmethod
    def verify_webhook_signature(cls, payload: bytes, signature_header: str,
                                 secret: Optional[str] = None, now: Optional[float] = None) -> bool:
        """
        Check a Stripe-Signature header (t=<ts>,v1=<hmac>).

        The signed string is "<ts>.<raw body>", HMAC-SHA256 with the
        endpoint secret. Timestamps older than 5 minutes are refused.
        """
        secret = secret or settings.STRIPE_WEBHOOK_SECRET
        if not secret or not signature_header:
            return False

        timestamp = None
        signatures = []
        for part in signature_header.split(','):
            key, _, value = part.strip().partition('=')
            if key == 't':
                timestamp = value
            elif key == 'v1':
                signatures.append(value)

        if not timestamp or not signatures:
            return False

        try:
            ts = int(timestamp)
        except ValueError:
            return False

        now = time.time() if now is None else now
        if abs(now - ts) > cls.SIGNATURE_TOLERANCE:
            logger.warning("[STRIPE] Webhook timestamp outside tolerance")
            return False

        signed = f"{timestamp}.".encode() + payload
        expected = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
        return any(hmac.compare_digest(expected, sig) for sig in signatures)
