"""Task price calculation.

Price = base + distance fee + urgency fee, plus a percentage service fee.
Distance is billed in half-mile units rounded *up*. A free task, or a request
with a missing/invalid coordinate, always prices to zero; so does any error
during the calculation, so a bad input can never break the caller's flow.
"""

import enum
import logging
import math
from dataclasses import dataclass, asdict
from decimal import Decimal, ROUND_HALF_UP

from errand_geo.constants import (
    BASE_PRICE,
    DISTANCE_RATE_PER_HALF_MILE,
    SERVICE_FEE_RATE,
    URGENCY_FEES,
    KM_TO_MILES,
)
from errand_geo.models.location import validate_location
from errand_geo.services.map_services import MapServicesProvider

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')


class Urgency(str, enum.Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'

    @classmethod
    def parse(cls, value):
        """Case-insensitive lookup; raises ValueError for unknown tiers."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f'Unknown urgency level: {value!r}')


@dataclass(frozen=True)
class PriceBreakdown:
    base_price: float = 0.0
    distance_fee: float = 0.0
    urgency_fee: float = 0.0
    service_fee: float = 0.0
    total: float = 0.0
    distance_miles: float = 0.0
    distance_rate_per_half_mile: float = 0.0
    service_fee_percent: float = 0.0

    @classmethod
    def zero(cls):
        return cls()

    @property
    def is_zero(self):
        return self == PriceBreakdown.zero()

    def to_dict(self):
        return asdict(self)


def _money(value: Decimal) -> float:
    """Round to the cent (half-up) and clamp at zero."""
    return float(max(Decimal('0'), value).quantize(CENT, rounding=ROUND_HALF_UP))


def billing_units(distance_miles: float) -> int:
    """Number of half-mile units billed: 0 mi -> 0, (0, 0.5] -> 1, (0.5, 1.0] -> 2."""
    return max(0, math.ceil(max(0.0, distance_miles) * 2))


class PricingEngine:
    """Deterministic price breakdown for a task relative to the requester."""

    def __init__(self, map_services=None, base_price=BASE_PRICE,
                 distance_rate=DISTANCE_RATE_PER_HALF_MILE,
                 service_fee_rate=SERVICE_FEE_RATE, urgency_fees=None):
        self.map_services = map_services or MapServicesProvider()
        self.base_price = Decimal(str(base_price))
        self.distance_rate = Decimal(str(distance_rate))
        self.service_fee_rate = Decimal(str(service_fee_rate))
        self.urgency_fees = dict(urgency_fees or URGENCY_FEES)

    @classmethod
    def from_config(cls, config, map_services=None):
        return cls(
            map_services=map_services,
            base_price=config.get('PRICING_BASE_PRICE', BASE_PRICE),
            distance_rate=config.get('PRICING_DISTANCE_RATE', DISTANCE_RATE_PER_HALF_MILE),
            service_fee_rate=config.get('PRICING_SERVICE_FEE_RATE', SERVICE_FEE_RATE),
        )

    def price_task(self, task_location, requester_location, urgency, is_free=False) -> PriceBreakdown:
        try:
            if is_free or not validate_location(task_location) or not validate_location(requester_location):
                return PriceBreakdown.zero()

            distance_km = self.map_services.distance_km(task_location, requester_location)
            distance_miles = max(0.0, distance_km * KM_TO_MILES)
            if not math.isfinite(distance_miles):
                raise ValueError(f'Distance is not finite: {distance_miles}')

            distance_fee = billing_units(distance_miles) * self.distance_rate
            urgency_fee = Decimal(str(self.urgency_fees[Urgency.parse(urgency).value]))

            subtotal = self.base_price + distance_fee + urgency_fee
            service_fee = subtotal * self.service_fee_rate
            total = subtotal + service_fee

            return PriceBreakdown(
                base_price=_money(self.base_price),
                distance_fee=_money(distance_fee),
                urgency_fee=_money(urgency_fee),
                service_fee=_money(service_fee),
                total=_money(total),
                distance_miles=round(distance_miles, 2),
                distance_rate_per_half_mile=float(self.distance_rate),
                service_fee_percent=float(self.service_fee_rate * 100),
            )
        except Exception as e:
            logger.error(f'Error calculating price: {e}', exc_info=True)
            return PriceBreakdown.zero()


_default_engine = PricingEngine()


def price_task(task_location, requester_location, urgency, is_free=False) -> PriceBreakdown:
    """Price a task with the default constants and plain haversine distance."""
    return _default_engine.price_task(task_location, requester_location, urgency, is_free)
