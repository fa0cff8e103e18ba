"""Greedy task bundling.

Each valid task seeds a bundle; the remaining tasks are scanned in their
input order and chained on while the bundle has room and the next task is
within the leg limit of the *last* task added. Bundles are returned in seed
order and only the first few are kept - this is not an optimizer.
"""

import logging
import re
from decimal import Decimal

from errand_geo.constants import (
    MAX_BUNDLE_SIZE,
    MAX_LEG_DISTANCE_KM,
    MAX_BUNDLES,
    DEFAULT_TASK_MINUTES,
)
from errand_geo.models.bundle import TaskBundle
from errand_geo.models.location import validate_location
from errand_geo.services.map_services import MapServicesProvider

logger = logging.getLogger(__name__)

_INTEGER_RE = re.compile(r'(\d+)')


def parse_leading_integer(text):
    """First run of digits in a free-text duration ('15-20 minutes' -> 15)."""
    if not text:
        return None
    match = _INTEGER_RE.search(str(text))
    return int(match.group(1)) if match else None


def task_minutes(task, default=DEFAULT_TASK_MINUTES) -> int:
    if task.estimated_minutes is not None:
        return int(task.estimated_minutes)
    parsed = parse_leading_integer(task.estimated_time_text)
    return parsed if parsed is not None else default


class BundlingEngine:

    def __init__(self, map_services=None, max_bundle_size=MAX_BUNDLE_SIZE,
                 max_leg_distance_km=MAX_LEG_DISTANCE_KM, max_bundles=MAX_BUNDLES,
                 default_task_minutes=DEFAULT_TASK_MINUTES):
        self.map_services = map_services or MapServicesProvider()
        self.max_bundle_size = max_bundle_size
        self.max_leg_distance_km = max_leg_distance_km
        self.max_bundles = max_bundles
        self.default_task_minutes = default_task_minutes

    @classmethod
    def from_config(cls, config, map_services=None):
        return cls(
            map_services=map_services,
            max_bundle_size=config.get('BUNDLE_MAX_SIZE', MAX_BUNDLE_SIZE),
            max_leg_distance_km=config.get('BUNDLE_MAX_LEG_KM', MAX_LEG_DISTANCE_KM),
            max_bundles=config.get('BUNDLE_MAX_RESULTS', MAX_BUNDLES),
        )

    def bundle_tasks(self, candidates, requester_location) -> list[TaskBundle]:
        if not validate_location(requester_location):
            logger.debug('No requester location, skipping bundling')
            return []

        valid = [task for task in candidates if validate_location(task.location)]
        if len(valid) < 2:
            return []

        bundles = []
        for i, seed in enumerate(valid):
            chain = [seed]
            last_location = seed.location

            for j, task in enumerate(valid):
                if i == j or len(chain) >= self.max_bundle_size:
                    continue
                if self.map_services.distance_km(last_location, task.location) <= self.max_leg_distance_km:
                    chain.append(task)
                    last_location = task.location

            if len(chain) > 1:
                bundles.append(self._summarize(chain))

        logger.debug(f'Generated {len(bundles)} bundles from {len(valid)} tasks')
        return bundles[:self.max_bundles]

    def _summarize(self, chain) -> TaskBundle:
        earnings = sum((Decimal(str(task.price or 0)) for task in chain), Decimal('0'))
        legs = sum(
            self.map_services.distance_km(chain[k].location, chain[k + 1].location)
            for k in range(len(chain) - 1)
        )
        return TaskBundle(
            tasks=list(chain),
            total_earnings=float(earnings.quantize(Decimal('0.01'))),
            total_time_minutes=sum(task_minutes(task, self.default_task_minutes) for task in chain),
            total_distance_km=legs,
        )


_default_engine = BundlingEngine()


def bundle_tasks(candidates, requester_location) -> list[TaskBundle]:
    """Bundle with the default limits and plain haversine distance."""
    return _default_engine.bundle_tasks(candidates, requester_location)
