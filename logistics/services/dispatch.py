"""
LOGISTICS App - Dispatch Service for PartsRunner

Handles driver search, order offers and order claims.
"""

import logging
import math
from datetime import timedelta
from typing import List, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from core.models import User, UserRole
from logistics.models import ACTIVE_DRIVER_STATUSES, CLAIMABLE_STATUSES, Order, OrderStatus
from logistics.services.pricing import PricingEngine

logger = logging.getLogger(__name__)


# ============================================
# DISPATCH CONFIGURATION
# ============================================

MAX_DRIVERS_TO_NOTIFY = 10
MILES_PER_DEGREE_LAT = 69.0


def find_nearby_drivers(
    latitude: float,
    longitude: float,
    radius_miles: Optional[float] = None,
    max_results: int = MAX_DRIVERS_TO_NOTIFY
) -> List:
    """
    Find available drivers within a radius of a point.

    Filters:
    - Role = DRIVER, account active
    - online and available
    - location reported within DRIVER_LOCATION_STALE_MINUTES
    - within radius (bounding box, then haversine)

    Returns:
        List of DriverProfile instances sorted by distance, each with
        a `distance_miles` attribute
    """
    from drivers.models import DriverProfile

    radius_miles = radius_miles or settings.DRIVER_SEARCH_RADIUS_MILES
    fresh_since = timezone.now() - timedelta(minutes=settings.DRIVER_LOCATION_STALE_MINUTES)

    lat_delta = radius_miles / MILES_PER_DEGREE_LAT
    lng_delta = radius_miles / max(
        MILES_PER_DEGREE_LAT * math.cos(math.radians(latitude)), 0.01
    )

    candidates = DriverProfile.objects.select_related('user').filter(
        user__role=UserRole.DRIVER,
        user__is_active=True,
        is_online=True,
        is_available=True,
        last_location_at__gte=fresh_since,
        current_latitude__range=(latitude - lat_delta, latitude + lat_delta),
        current_longitude__range=(longitude - lng_delta, longitude + lng_delta),
    )

    nearby = []
    for profile in candidates:
        distance = PricingEngine.get_haversine_distance(
            (latitude, longitude),
            (profile.current_latitude, profile.current_longitude)
        )
        if distance <= radius_miles:
            profile.distance_miles = distance
            nearby.append(profile)
            logger.debug(
                f"[DISPATCH] Driver {profile.user.email} available | Distance: {distance:.2f}mi"
            )

    nearby.sort(key=lambda p: p.distance_miles)
    return nearby[:max_results]


def dispatch_order(order_id) -> int:
    """
    Offer a claimable order to nearby drivers.

    Returns:
        Number of drivers notified

    Raises:
        ValueError: If order not found
    """
    from logistics import events
    from notifications.services import NotificationService

    try:
        order = Order.objects.select_related('store').get(pk=order_id)
    except Order.DoesNotExist:
        logger.error(f"[DISPATCH] Order {order_id} not found")
        raise ValueError(f"Order {order_id} not found")

    if order.status not in CLAIMABLE_STATUSES or order.driver_id:
        logger.warning(
            f"[DISPATCH] Order {order.order_number} is not claimable (status: {order.status})"
        )
        return 0

    if not order.store.has_location:
        logger.error(f"[DISPATCH] Store {order.store_id} has no pickup location")
        return 0

    drivers = find_nearby_drivers(order.store.latitude, order.store.longitude)

    if not drivers:
        logger.warning(f"[DISPATCH] No drivers available near {order.store.name} for {order.order_number}")
        return 0

    notified_count = 0
    for profile in drivers:
        if profile.distance_miles > profile.max_distance_miles:
            continue
        events.broadcast_order_offer(profile.user_id, order, profile.distance_miles)
        NotificationService.notify(
            profile.user,
            'New delivery available',
            f"{order.store.name} - ${order.delivery_fee} delivery, "
            f"{profile.distance_miles:.1f} mi to pickup",
            related_entity_type='order',
            related_entity_id=order.pk,
        )
        notified_count += 1

    logger.info(f"[DISPATCH] Order {order.order_number} dispatched to {notified_count} drivers")
    return notified_count


def _check_driver(driver: User):
    if driver.role != UserRole.DRIVER:
        raise PermissionError("Only drivers can accept orders")
    if not driver.is_active:
        raise ValueError("Your account is deactivated")


@transaction.atomic
def accept_order(order_id, driver: User) -> Order:
    """
    Claim an order as a driver (race condition safe).

    Uses SELECT FOR UPDATE so two drivers cannot claim the same order.

    Raises:
        ValueError: If the order is gone, taken, or the driver is busy
    """
    from drivers.models import DriverProfile

    _check_driver(driver)

    profile = DriverProfile.objects.select_for_update().filter(user=driver).first()
    if profile is None or not profile.is_online:
        raise ValueError("Go online before accepting orders")

    busy = Order.objects.filter(driver=driver, status__in=ACTIVE_DRIVER_STATUSES).exclude(pk=order_id)
    if busy.exists():
        raise ValueError("Finish your current delivery first")

    try:
        order = Order.objects.select_for_update().get(pk=order_id)
    except Order.DoesNotExist:
        raise ValueError(f"Order {order_id} not found")

    if order.driver_id and order.driver_id != driver.pk:
        raise ValueError("This order was already taken by another driver")
    if order.status not in CLAIMABLE_STATUSES:
        raise ValueError(f"Order cannot be claimed (status: {order.status})")

    order.driver = driver
    order.assigned_at = timezone.now()
    order.save(update_fields=['driver', 'assigned_at', 'updated_at'])

    profile.is_available = False
    profile.save(update_fields=['is_available', 'updated_at'])

    logger.info(f"[DISPATCH] Order {order.order_number} accepted by driver {driver.email}")
    return order


@transaction.atomic
def release_order(order_id, driver: User) -> Order:
    """Give a claimed order back to the pool before pickup."""
    from drivers.models import DriverProfile

    try:
        order = Order.objects.select_for_update().get(pk=order_id)
    except Order.DoesNotExist:
        raise ValueError(f"Order {order_id} not found")

    if order.driver_id != driver.pk:
        raise PermissionError("This order is not assigned to you")
    if order.status not in CLAIMABLE_STATUSES:
        raise ValueError("Orders can only be released before pickup")

    order.driver = None
    order.assigned_at = None
    order.save(update_fields=['driver', 'assigned_at', 'updated_at'])

    DriverProfile.objects.filter(user=driver, is_online=True).update(is_available=True)

    logger.info(f"[DISPATCH] Order {order.order_number} released by {driver.email}")
    transaction.on_commit(lambda: _redispatch(order.pk))
    return order


def _redispatch(order_id):
    from logistics.tasks import dispatch_order_task
    dispatch_order_task.delay(str(order_id))


@transaction.atomic
def assign_driver(order_id, driver: User, admin_user: User) -> Order:
    """
    Admin assignment of a driver.

    A pending order is confirmed at the same time.
    """
    from drivers.models import DriverProfile
    from logistics.services.orders import OrderService

    if not admin_user.is_platform_admin:
        raise PermissionError("Only admins can assign drivers")
    _check_driver(driver)

    try:
        order = Order.objects.select_for_update().get(pk=order_id)
    except Order.DoesNotExist:
        raise ValueError(f"Order {order_id} not found")

    if order.status not in (OrderStatus.PENDING,) + CLAIMABLE_STATUSES:
        raise ValueError(f"Cannot assign a driver to a {order.status} order")

    previous_driver_id = order.driver_id
    order.driver = driver
    order.assigned_at = timezone.now()
    order.save(update_fields=['driver', 'assigned_at', 'updated_at'])

    DriverProfile.objects.filter(user=driver).update(is_available=False)
    if previous_driver_id and previous_driver_id != driver.pk:
        DriverProfile.objects.filter(user_id=previous_driver_id, is_online=True).update(is_available=True)

    if order.status == OrderStatus.PENDING:
        order = OrderService.transition(
            order, OrderStatus.CONFIRMED, actor=admin_user, note=f"Driver {driver.email} assigned"
        )

    logger.info(f"[DISPATCH] Order {order.order_number} assigned to {driver.email} by {admin_user.email}")
    return order


def available_orders(driver: User, radius_miles: Optional[float] = None) -> List[Order]:
    """Unclaimed orders near the driver's last location."""
    from drivers.models import DriverProfile

    profile = DriverProfile.objects.filter(user=driver).first()
    if profile is None or not profile.has_location:
        return []

    radius_miles = radius_miles or min(profile.max_distance_miles, settings.DRIVER_SEARCH_RADIUS_MILES)
    origin = (profile.current_latitude, profile.current_longitude)

    orders = []
    for order in Order.objects.select_related('store').prefetch_related('items').filter(
        status__in=CLAIMABLE_STATUSES,
        driver__isnull=True,
        store__latitude__isnull=False,
        store__longitude__isnull=False,
    ).order_by('created_at'):
        distance = PricingEngine.get_haversine_distance(
            origin, (order.store.latitude, order.store.longitude)
        )
        if distance <= radius_miles:
            order.pickup_distance_miles = round(distance, 2)
            orders.append(order)

    orders.sort(key=lambda o: o.pickup_distance_miles)
    return orders
