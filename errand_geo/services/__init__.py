"""Geo engine services, built once per app and kept in ``app.extensions``."""

import atexit
import logging

from flask import current_app, has_app_context
from sqlalchemy import event

from errand_geo.models import TaskRequest
from errand_geo.services.bundling import BundlingEngine
from errand_geo.services.location_store import build_location_store
from errand_geo.services.map_services import build_map_services
from errand_geo.services.pricing import PricingEngine
from errand_geo.services.task_directory import SqlTaskDirectory
from errand_geo.services.tracking import TrackingConfig, TrackingManager

logger = logging.getLogger(__name__)

EXTENSION_KEY = 'errand_geo'


def init_geo_services(app, map_services=None, store=None, task_directory=None):
    """Wire the engines for ``app``. Tests pass fakes for the collaborators."""
    map_services = map_services or build_map_services(app.config)
    store = store or build_location_store(app.config)

    tracking = TrackingManager(
        store=store,
        task_directory=task_directory or SqlTaskDirectory(),
        map_services=map_services,
        config=TrackingConfig.from_config(app.config),
    )
    app.extensions[EXTENSION_KEY] = {
        'map_services': map_services,
        'pricing': PricingEngine.from_config(app.config, map_services),
        'bundling': BundlingEngine.from_config(app.config, map_services),
        'tracking': tracking,
    }
    if not app.config.get('TESTING'):
        atexit.register(tracking.shutdown)
    logger.info('Geo services initialized')
    return app.extensions[EXTENSION_KEY]


def _service(name):
    return current_app.extensions[EXTENSION_KEY][name]


def get_map_services():
    return _service('map_services')


def get_pricing_engine() -> PricingEngine:
    return _service('pricing')


def get_bundling_engine() -> BundlingEngine:
    return _service('bundling')


def get_tracking_manager() -> TrackingManager:
    return _service('tracking')


@event.listens_for(TaskRequest, 'after_update')
def _end_tracking_for_closed_task(mapper, connection, target):
    """Stop live sharing as soon as a task is completed or cancelled."""
    if not target.is_terminal or not has_app_context():
        return
    services = current_app.extensions.get(EXTENSION_KEY)
    if services:
        services['tracking'].end_for_task(target.id, reason=f'task {target.status}')
