"""Shared constants for the application."""

from errand_geo.constants.campus import (
    CAMPUS_BOUNDS,
    CAMPUS_BOUNDS_MARGIN_DEG,
    CAMPUS_CENTER,
)
from errand_geo.constants.pricing import (
    BASE_PRICE,
    DISTANCE_RATE_PER_HALF_MILE,
    SERVICE_FEE_RATE,
    URGENCY_FEES,
    KM_TO_MILES,
    MAX_BUNDLE_SIZE,
    MAX_LEG_DISTANCE_KM,
    MAX_BUNDLES,
    DEFAULT_TASK_MINUTES,
)

__all__ = [
    'CAMPUS_BOUNDS',
    'CAMPUS_BOUNDS_MARGIN_DEG',
    'CAMPUS_CENTER',
    'BASE_PRICE',
    'DISTANCE_RATE_PER_HALF_MILE',
    'SERVICE_FEE_RATE',
    'URGENCY_FEES',
    'KM_TO_MILES',
    'MAX_BUNDLE_SIZE',
    'MAX_LEG_DISTANCE_KM',
    'MAX_BUNDLES',
    'DEFAULT_TASK_MINUTES',
]
