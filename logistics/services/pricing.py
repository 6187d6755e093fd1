"""
Pricing Engine for PartsRunner

Calculates order totals and delivery fees from distance (OSRM routing),
service level and admin-defined pricing rules.
"""

import math
import logging
import requests
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple
from django.conf import settings
from django.utils import timezone

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')

# Multiplier on the distance-based delivery fee
SERVICE_LEVEL_MULTIPLIERS = {
    'standard': Decimal('1.0'),
    'express': Decimal('1.5'),
    'same_day': Decimal('2.0'),
}

ROAD_FACTOR = 1.3
METERS_PER_MILE = 1609.344


def money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class Quote:
    subtotal: Decimal
    tax: Decimal
    delivery_fee: Decimal
    service_fee: Decimal
    service_fee_tax: Decimal
    total: Decimal
    distance_miles: float
    service_level: str
    estimated_minutes: int
    applied_rules: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            'subtotal': str(self.subtotal),
            'tax': str(self.tax),
            'delivery_fee': str(self.delivery_fee),
            'service_fee': str(self.service_fee),
            'service_fee_tax': str(self.service_fee_tax),
            'total': str(self.total),
            'distance_miles': self.distance_miles,
            'service_level': self.service_level,
            'estimated_minutes': self.estimated_minutes,
            'applied_rules': self.applied_rules,
        }


class PricingEngine:
    """
    Price calculation engine based on road distance.

    Delivery fee = Max(Base, Base + PerMile * (Miles - FreeMiles)) * LevelMultiplier,
    then adjusted by active PricingRule rows, never below Base.
    Total = Subtotal + Tax + DeliveryFee + ServiceFee + ServiceFeeTax
    """

    # Settings are read on access so override_settings applies

    @property
    def base_fee(self) -> Decimal:
        return Decimal(str(settings.BASE_DELIVERY_FEE))

    @property
    def per_mile(self) -> Decimal:
        return Decimal(str(settings.DELIVERY_FEE_PER_MILE))

    @property
    def free_miles(self) -> Decimal:
        return Decimal(str(settings.FREE_DELIVERY_MILES))

    @property
    def tax_rate(self) -> Decimal:
        return Decimal(str(settings.SALES_TAX_RATE))

    @property
    def osrm_base_url(self) -> str:
        return settings.OSRM_BASE_URL

    # ==========================================
    # DISTANCE
    # ==========================================

    def get_route_distance(self, origin: Tuple[float, float],
                           destination: Tuple[float, float]) -> Optional[float]:
        """
        Get driving distance in miles from OSRM.

        Args:
            origin: (lat, lng) of the store
            destination: (lat, lng) of the drop-off

        Returns:
            Distance in miles or None if OSRM fails
        """
        if not self.osrm_base_url:
            return None

        try:
            # OSRM expects lng,lat format
            url = (
                f"{self.osrm_base_url}/route/v1/driving/"
                f"{origin[1]},{origin[0]};{destination[1]},{destination[0]}"
                f"?overview=false"
            )

            response = requests.get(url, timeout=5)
            response.raise_for_status()

            data = response.json()
            if data.get('code') == 'Ok' and data.get('routes'):
                # OSRM returns distance in meters
                return data['routes'][0]['distance'] / METERS_PER_MILE

            logger.warning(f"[PRICING] OSRM returned unexpected response: {data}")
            return None

        except requests.RequestException as e:
            logger.error(f"[PRICING] OSRM request failed: {e}")
            return None

    @staticmethod
    def get_haversine_distance(origin: Tuple[float, float],
                               destination: Tuple[float, float]) -> float:
        """Straight-line distance in miles."""
        R = 3959  # Earth radius in miles

        lat1, lon1 = math.radians(origin[0]), math.radians(origin[1])
        lat2, lon2 = math.radians(destination[0]), math.radians(destination[1])

        dlat = lat2 - lat1
        dlon = lon2 - lon1

        a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
        c = 2 * math.asin(math.sqrt(a))

        return R * c

    def distance_miles(self, origin: Optional[Tuple[float, float]],
                       destination: Optional[Tuple[float, float]]) -> float:
        """
        Road distance, OSRM first then haversine * 1.3.

        Unknown coordinates price as 0 miles (base fee).
        """
        if not origin or not destination or None in origin or None in destination:
            return 0.0

        distance = self.get_route_distance(origin, destination)
        if distance is None:
            distance = self.get_haversine_distance(origin, destination) * ROAD_FACTOR
        return round(distance, 2)

    # ==========================================
    # FEES
    # ==========================================

    def base_delivery_fee(self, miles: float, service_level: str = 'standard') -> Decimal:
        extra_miles = max(Decimal('0'), Decimal(str(miles)) - self.free_miles)
        fee = max(self.base_fee, self.base_fee + self.per_mile * extra_miles)
        multiplier = SERVICE_LEVEL_MULTIPLIERS.get(service_level)
        if multiplier is None:
            raise ValueError(f"Unknown service level: {service_level}")
        return money(fee * multiplier)

    def apply_rules(self, fee: Decimal, factors: dict, rules=None) -> Tuple[Decimal, List[str]]:
        """
        Adjust a fee with every matching active rule, in priority order.

        `factors` maps factor name -> value or a zero-arg callable, so
        costly counts are only computed when a rule needs them.
        """
        from logistics.models import AdjustmentType, PricingRule

        if rules is None:
            rules = PricingRule.objects.filter(is_active=True)

        applied = []
        resolved = {}
        adjusted = fee
        for rule in rules:
            if rule.factor not in factors:
                continue
            if rule.factor not in resolved:
                value = factors[rule.factor]
                resolved[rule.factor] = value() if callable(value) else value
            if not rule.matches(resolved[rule.factor]):
                continue

            if rule.adjustment_type == AdjustmentType.PERCENT:
                adjusted += fee * rule.adjustment / Decimal('100')
            else:
                adjusted += rule.adjustment
            applied.append(rule.name)

        return max(self.base_fee, money(adjusted)), applied

    def estimate_minutes(self, miles: float, service_level: str = 'standard') -> int:
        prep = settings.ORDER_PREP_MINUTES
        if service_level == 'express':
            prep = prep / 2
        travel = (miles / settings.AVERAGE_DRIVER_SPEED_MPH) * 60 if miles else 0
        return int(math.ceil(prep + travel))

    def quote(self, subtotal: Decimal, store=None,
              destination: Optional[Tuple[float, float]] = None,
              service_level: str = 'standard', now=None,
              include_service_fee: bool = True) -> Quote:
        """
        Price an order.

        Args:
            subtotal: Sum of item lines
            store: Pickup Store (origin coordinates)
            destination: (lat, lng) of the drop-off
            service_level: standard | express | same_day
            include_service_fee: False for merchant API orders
        """
        from finance.models import PaymentSetting

        subtotal = money(subtotal)
        origin = (store.latitude, store.longitude) if store is not None and store.has_location else None
        miles = self.distance_miles(origin, destination)

        fee = self.base_delivery_fee(miles, service_level)
        now = now or timezone.now()
        fee, applied = self.apply_rules(fee, {
            'distance_miles': miles,
            'hour_of_day': timezone.localtime(now).hour,
            'pending_orders': self._pending_orders,
            'online_drivers': lambda: self._online_drivers(origin),
        })

        payment_settings = PaymentSetting.load()
        tax = money(subtotal * self.tax_rate)
        if include_service_fee:
            service_fee = money(subtotal * Decimal(payment_settings['service_fee_rate']))
            service_fee_tax = money(service_fee * Decimal(payment_settings['service_fee_tax_rate']))
        else:
            service_fee = service_fee_tax = Decimal('0.00')

        total = subtotal + tax + fee + service_fee + service_fee_tax

        return Quote(
            subtotal=subtotal,
            tax=tax,
            delivery_fee=fee,
            service_fee=service_fee,
            service_fee_tax=service_fee_tax,
            total=total,
            distance_miles=miles,
            service_level=service_level,
            estimated_minutes=self.estimate_minutes(miles, service_level),
            applied_rules=applied,
        )

    @staticmethod
    def _pending_orders() -> int:
        from logistics.models import Order, CLAIMABLE_STATUSES
        return Order.objects.filter(status__in=CLAIMABLE_STATUSES, driver__isnull=True).count()

    @staticmethod
    def _online_drivers(origin) -> int:
        from logistics.services.dispatch import find_nearby_drivers
        if not origin:
            return 0
        return len(find_nearby_drivers(origin[0], origin[1]))


# Singleton instance
pricing_engine = PricingEngine()
