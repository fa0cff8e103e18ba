"""Pricing and bundling constants.

Fees are flat dollar amounts (not multipliers). Keep in sync with the
price breakdown shown on the task creation form.
"""

from decimal import Decimal

BASE_PRICE = Decimal('1.50')
DISTANCE_RATE_PER_HALF_MILE = Decimal('0.50')
SERVICE_FEE_RATE = Decimal('0.151')  # 15.1%

URGENCY_FEES = {
    'low': Decimal('1.00'),
    'medium': Decimal('3.00'),
    'high': Decimal('5.00'),
}

KM_TO_MILES = 0.621371

# Bundling
MAX_BUNDLE_SIZE = 3
MAX_LEG_DISTANCE_KM = 2.0
MAX_BUNDLES = 3
DEFAULT_TASK_MINUTES = 30
