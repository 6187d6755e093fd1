"""
LOGISTICS App - WebSocket Consumers for Real-time Tracking

Provides real-time updates for:
- Order tracking (customers, merchants)
- Driver app (offers, assignments, location pings)
- Store dashboards (new orders)
- Dispatch monitoring (admins)

Clients authenticate either with the session cookie or by sending
{"type": "authenticate", "token": "<JWT access token>"} first.
"""

import logging
from typing import Any, Dict, Optional
from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer

from logistics.events import DISPATCH_GROUP

logger = logging.getLogger(__name__)


class TokenAuthConsumer(AsyncJsonWebsocketConsumer):
    """Shared authentication handshake."""

    user = None

    async def connect(self):
        await self.accept()
        scope_user = self.scope.get('user')
        if scope_user is not None and scope_user.is_authenticated:
            await self.on_authenticated(scope_user)
        else:
            await self.send_json({'type': 'authentication_required'})

    async def receive_json(self, content):
        message_type = content.get('type')

        if message_type == 'ping':
            await self.send_json({'type': 'pong'})
            return

        if message_type == 'authenticate':
            user = await self.user_from_token(content.get('token', ''))
            if user is None:
                await self.send_json({'type': 'error', 'message': 'Invalid token'})
                await self.close(code=4001)
                return
            await self.on_authenticated(user)
            return

        if self.user is None:
            await self.send_json({'type': 'error', 'message': 'Not authenticated'})
            return

        await self.handle_message(message_type, content)

    async def on_authenticated(self, user):
        raise NotImplementedError

    async def handle_message(self, message_type: str, content: dict):
        pass

    async def join(self, group: str):
        await self.channel_layer.group_add(group, self.channel_name)
        self.groups_joined = getattr(self, 'groups_joined', []) + [group]

    async def disconnect(self, close_code):
        for group in getattr(self, 'groups_joined', []):
            await self.channel_layer.group_discard(group, self.channel_name)

    @database_sync_to_async
    def user_from_token(self, token: str):
        from rest_framework_simplejwt.exceptions import TokenError
        from rest_framework_simplejwt.tokens import AccessToken
        from core.models import User

        try:
            access = AccessToken(token)
        except TokenError:
            return None
        return User.objects.filter(pk=access['user_id'], is_active=True).first()


class OrderTrackingConsumer(TokenAuthConsumer):
    """
    Track one order.

    Clients connect to: ws://host/ws/orders/<order_id>/

    Events received:
    - status_update, location_update, eta_update
    """

    async def connect(self):
        self.order_id = self.scope['url_route']['kwargs']['order_id']
        await super().connect()

    async def on_authenticated(self, user):
        state = await self.get_order_state(user)
        if state is None:
            await self.close(code=4004)
            return

        self.user = user
        await self.join(f'order_{self.order_id}')
        await self.send_json({'type': 'connection_established', **state})
        logger.info(f"[WS] {user.email} tracking order {str(self.order_id)[:8]}")

    async def order_status_update(self, event):
        await self.send_json({
            'type': 'status_update',
            'status': event['status'],
            'timestamp': event['timestamp'],
            'message': event.get('message', ''),
        })

    async def driver_location_update(self, event):
        await self.send_json({
            'type': 'location_update',
            'latitude': event['latitude'],
            'longitude': event['longitude'],
            'timestamp': event['timestamp'],
        })

    async def order_eta_update(self, event):
        await self.send_json({
            'type': 'eta_update',
            'eta_minutes': event['eta_minutes'],
            'distance_miles': event['distance_miles'],
        })

    @database_sync_to_async
    def get_order_state(self, user) -> Optional[Dict[str, Any]]:
        """Tracking snapshot, or None if the order is missing or not the user's."""
        from django.core.exceptions import ValidationError
        from logistics.models import Order
        from logistics.services.orders import OrderService

        try:
            order = Order.objects.select_related('store', 'driver').get(pk=self.order_id)
        except (Order.DoesNotExist, ValidationError):
            return None

        is_party = user.is_platform_admin or user.pk in (
            order.customer_id, order.driver_id, order.store.merchant_id
        )
        if not is_party:
            return None

        tracking = OrderService.tracking(order)
        return {
            'order_id': tracking['order_id'],
            'status': tracking['status'],
            'eta_minutes': tracking['eta_minutes'],
            'driver_location': (tracking['driver'] or {}).get('location') and {
                'latitude': tracking['driver']['location']['latitude'],
                'longitude': tracking['driver']['location']['longitude'],
            },
        }


class DriverConsumer(TokenAuthConsumer):
    """
    Driver app channel.

    Clients connect to: ws://host/ws/driver/

    Events sent by driver:
    - location_update: {"latitude", "longitude"}
    - accept_order: {"order_id"}

    Events received by driver:
    - order_offer, order_assigned, order_cancelled, order_status_change
    """

    async def on_authenticated(self, user):
        from core.models import UserRole

        if user.role != UserRole.DRIVER:
            await self.send_json({'type': 'error', 'message': 'Driver account required'})
            await self.close(code=4003)
            return

        self.user = user
        await self.join(f'driver_{user.pk}')
        await self.send_json({
            'type': 'authenticated',
            'driver_id': str(user.pk),
            'name': user.full_name,
        })
        logger.info(f"[WS] Driver {user.email} connected")

    async def handle_message(self, message_type: str, content: dict):
        if message_type == 'location_update':
            latitude = content.get('latitude')
            longitude = content.get('longitude')
            if latitude is None or longitude is None:
                await self.send_json({'type': 'error', 'message': 'latitude and longitude required'})
                return
            result = await self.update_location(float(latitude), float(longitude))
            await self.send_json({'type': 'location_confirmed', **result})

        elif message_type == 'accept_order':
            order_id = content.get('order_id')
            result = await self.accept_order(order_id)
            await self.send_json({
                'type': 'order_acceptance_result',
                'order_id': order_id,
                **result,
            })

    async def order_offer(self, event):
        await self.send_json({
            'type': 'new_order',
            'order': event['order'],
            'distance_miles': event['distance_miles'],
        })

    async def order_assigned(self, event):
        await self.send_json({
            'type': 'order_assigned',
            'order_id': event['order_id'],
            'details': event['details'],
        })

    async def order_cancelled(self, event):
        await self.send_json({
            'type': 'order_cancelled',
            'order_id': event['order_id'],
            'reason': event.get('reason', ''),
        })

    async def order_status_change(self, event):
        await self.send_json({
            'type': 'order_update',
            'order_id': event['order_id'],
            'new_status': event['new_status'],
        })

    @database_sync_to_async
    def update_location(self, latitude: float, longitude: float) -> Dict[str, Any]:
        from drivers.services import DriverStatusService

        try:
            DriverStatusService.update_location(self.user, latitude, longitude)
        except ValueError as e:
            return {'success': False, 'message': str(e)}
        return {'success': True, 'latitude': latitude, 'longitude': longitude}

    @database_sync_to_async
    def accept_order(self, order_id: str) -> Dict[str, Any]:
        from logistics.services.dispatch import accept_order

        try:
            accept_order(order_id, self.user)
            return {'success': True, 'message': 'Order accepted'}
        except (ValueError, PermissionError) as e:
            return {'success': False, 'message': str(e)}


class StoreConsumer(TokenAuthConsumer):
    """
    Merchant store dashboard.

    Clients connect to: ws://host/ws/stores/<store_id>/
    """

    async def connect(self):
        self.store_id = self.scope['url_route']['kwargs']['store_id']
        await super().connect()

    async def on_authenticated(self, user):
        allowed = await self.can_watch(user)
        if not allowed:
            await self.close(code=4003)
            return
        self.user = user
        await self.join(f'store_{self.store_id}')
        await self.send_json({'type': 'connection_established', 'store_id': self.store_id})

    async def new_order(self, event):
        await self.send_json({'type': 'new_order', 'order': event['order']})

    async def order_status_change(self, event):
        await self.send_json({
            'type': 'order_update',
            'order_id': event['order_id'],
            'order_number': event['order_number'],
            'new_status': event['new_status'],
        })

    @database_sync_to_async
    def can_watch(self, user) -> bool:
        from django.core.exceptions import ValidationError
        from stores.models import Store

        if user.is_platform_admin:
            return True
        try:
            return Store.objects.filter(pk=self.store_id, merchant=user).exists()
        except ValidationError:
            return False


class DispatchConsumer(TokenAuthConsumer):
    """
    Admin dispatch monitor.

    Clients connect to: ws://host/ws/dispatch/
    """

    async def on_authenticated(self, user):
        if not user.is_platform_admin:
            await self.close(code=4003)
            return
        self.user = user
        await self.join(DISPATCH_GROUP)
        status = await self.get_pool_status()
        await self.send_json({'type': 'connection_established', **status})

    async def handle_message(self, message_type: str, content: dict):
        if message_type == 'refresh':
            status = await self.get_pool_status()
            await self.send_json({'type': 'pool_status', **status})

    async def order_status_change(self, event):
        await self.send_json({
            'type': 'order_update',
            'order_id': event['order_id'],
            'order_number': event['order_number'],
            'new_status': event['new_status'],
        })

    async def driver_location_update(self, event):
        await self.send_json({
            'type': 'driver_moved',
            'driver_id': event['driver_id'],
            'latitude': event['latitude'],
            'longitude': event['longitude'],
        })

    @database_sync_to_async
    def get_pool_status(self) -> Dict[str, Any]:
        from drivers.models import DriverProfile
        from logistics.models import CLAIMABLE_STATUSES, Order

        return {
            'online_drivers': DriverProfile.objects.filter(is_online=True).count(),
            'available_drivers': DriverProfile.objects.filter(is_online=True, is_available=True).count(),
            'unassigned_orders': Order.objects.filter(
                status__in=CLAIMABLE_STATUSES, driver__isnull=True
            ).count(),
        }
