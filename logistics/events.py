"""
LOGISTICS App - Real-time Event Broadcasting

Utility functions to broadcast events via Django Channels.
Used by signals and services to push real-time updates.

Groups:
- order_<id>      customers / merchants tracking one order
- driver_<id>     one driver's app
- store_<id>      a merchant's store dashboard
- dispatch_pool   admins watching all orders
"""

import logging
from typing import Optional
from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.utils import timezone

logger = logging.getLogger(__name__)

DISPATCH_GROUP = 'dispatch_pool'


def _send_group_event(group_name: str, event: dict) -> bool:
    """Send event to a channel group."""
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return False

    try:
        async_to_sync(channel_layer.group_send)(group_name, event)
        return True
    except Exception as e:
        logger.error(f"[EVENTS] Failed to send to group {group_name}: {e}")
        return False


# ============================================
# ORDER EVENTS
# ============================================

def broadcast_order_status(order, message: str = ""):
    """
    Broadcast an order status change.

    Notifies:
    - Clients tracking the order
    - The store dashboard
    - The assigned driver (if any)
    - Dispatch monitors
    """
    timestamp = timezone.now().isoformat()
    order_id = str(order.pk)

    _send_group_event(
        f'order_{order_id}',
        {
            'type': 'order_status_update',
            'status': order.status,
            'timestamp': timestamp,
            'message': message,
        }
    )

    change = {
        'type': 'order_status_change',
        'order_id': order_id,
        'order_number': order.order_number,
        'new_status': order.status,
        'timestamp': timestamp,
    }
    _send_group_event(f'store_{order.store_id}', change)
    _send_group_event(DISPATCH_GROUP, change)
    if order.driver_id:
        _send_group_event(f'driver_{order.driver_id}', change)

    logger.debug(f"[EVENTS] Broadcasted status change: {order_id[:8]} -> {order.status}")


def broadcast_new_order(order):
    """A new order landed at a store."""
    _send_group_event(
        f'store_{order.store_id}',
        {
            'type': 'new_order',
            'order': order_summary(order),
        }
    )
    _send_group_event(
        DISPATCH_GROUP,
        {
            'type': 'order_status_change',
            'order_id': str(order.pk),
            'order_number': order.order_number,
            'new_status': order.status,
            'timestamp': timezone.now().isoformat(),
        }
    )
    logger.info(f"[EVENTS] Broadcasted new order {order.order_number}")


def broadcast_driver_location(driver_id, latitude: float, longitude: float,
                              active_order_id: Optional[str] = None):
    """
    Broadcast driver location update to whoever tracks their active order.
    """
    location_event = {
        'type': 'driver_location_update',
        'driver_id': str(driver_id),
        'latitude': latitude,
        'longitude': longitude,
        'timestamp': timezone.now().isoformat(),
    }

    if active_order_id:
        _send_group_event(f'order_{active_order_id}', location_event)

    _send_group_event(DISPATCH_GROUP, location_event)


def broadcast_order_eta(order_id, eta_minutes: int, distance_miles: float):
    _send_group_event(
        f'order_{order_id}',
        {
            'type': 'order_eta_update',
            'eta_minutes': eta_minutes,
            'distance_miles': distance_miles,
        }
    )


# ============================================
# DRIVER EVENTS
# ============================================

def broadcast_order_offer(driver_id, order, distance_miles: float):
    """Offer a claimable order to one driver."""
    _send_group_event(
        f'driver_{driver_id}',
        {
            'type': 'order_offer',
            'order': order_summary(order),
            'distance_miles': round(distance_miles, 1),
        }
    )


def broadcast_order_assigned(driver_id, order):
    _send_group_event(
        f'driver_{driver_id}',
        {
            'type': 'order_assigned',
            'order_id': str(order.pk),
            'details': order_summary(order),
        }
    )
    logger.info(f"[EVENTS] Notified driver {str(driver_id)[:8]} of assignment")


def broadcast_order_cancelled(driver_id, order, reason: str = ""):
    _send_group_event(
        f'driver_{driver_id}',
        {
            'type': 'order_cancelled',
            'order_id': str(order.pk),
            'reason': reason,
        }
    )


def order_summary(order) -> dict:
    """Minimal order payload for offers and dashboards."""
    return {
        'id': str(order.pk),
        'order_number': order.order_number,
        'status': order.status,
        'store': {
            'id': str(order.store_id),
            'name': order.store.name,
            'address': order.store.full_address,
            'latitude': order.store.latitude,
            'longitude': order.store.longitude,
        },
        'delivery_city': order.delivery_city,
        'delivery_zip_code': order.delivery_zip_code,
        'service_level': order.service_level,
        'delivery_fee': str(order.delivery_fee),
        'distance_miles': order.distance_miles,
        'item_count': sum(item.quantity for item in order.items.all()),
    }
