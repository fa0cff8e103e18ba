"""Price quote routes.

Quotes never fail on bad geography: a missing, invalid or ungeocodable
location simply prices to zero. Only an unknown urgency tier or a malformed
is_free flag is rejected, since those are client bugs rather than missing
data.
"""

from flask import Blueprint, request, jsonify
import logging

from errand_geo import db
from errand_geo.errors import GeoEngineError
from errand_geo.models import TaskRequest, parse_optional_location, Location
from errand_geo.services import get_map_services, get_pricing_engine
from errand_geo.services.pricing import Urgency

logger = logging.getLogger(__name__)

pricing_bp = Blueprint('pricing', __name__)

TRUE_STRINGS = ('true', '1')
FALSE_STRINGS = ('false', '0')


def _parse_flag(value, name):
    """JSON boolean, or 'true'/'1'/'false'/'0'. Anything else is a ValueError."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
    raise ValueError(f'{name} must be true or false, got {value!r}')


def _resolve_task_location(data):
    """Explicit coordinates win; otherwise forward-geocode the address."""
    location = parse_optional_location(data.get('task_location'))
    if location is not None:
        return location

    address = data.get('task_address')
    if not address:
        return None
    try:
        return get_map_services().geocoder.forward(address)
    except GeoEngineError as e:
        logger.warning(f'Could not geocode task address {address!r}: {e}')
        return None


@pricing_bp.route('/quote', methods=['POST'])
def quote():
    """Price breakdown for a task that is being created.

    Body:
        task_location: {lat, lng} (or task_address: str)
        requester_location: {lat, lng}
        urgency: 'low' | 'medium' | 'high' (default 'low')
        is_free: bool (default false)
    """
    try:
        data = request.get_json(silent=True) or {}

        try:
            urgency = Urgency.parse(data.get('urgency') or Urgency.LOW.value)
            is_free = _parse_flag(data.get('is_free'), 'is_free')
        except ValueError as e:
            return jsonify({'error': str(e)}), 400

        task_location = _resolve_task_location(data)
        requester_location = parse_optional_location(data.get('requester_location'))

        breakdown = get_pricing_engine().price_task(
            task_location,
            requester_location,
            urgency,
            is_free=is_free,
        )
        return jsonify({
            'price': breakdown.to_dict(),
            'task_location': task_location.to_dict() if task_location else None,
        }), 200
    except Exception as e:
        logger.error(f'Error building price quote: {e}', exc_info=True)
        return jsonify({'error': str(e)}), 500


@pricing_bp.route('/tasks/<int:task_id>', methods=['GET'])
def task_price(task_id):
    """Price of a stored task as seen from the caller's position (?lat=&lng=)."""
    try:
        task = db.session.get(TaskRequest, task_id)
        if not task:
            return jsonify({'error': 'Task not found'}), 404

        lat = request.args.get('lat', type=float)
        lng = request.args.get('lng', type=float)
        requester_location = None
        if lat is not None and lng is not None:
            requester_location = parse_optional_location(Location(lat=lat, lng=lng))

        breakdown = get_pricing_engine().price_task(
            task.coordinates,
            requester_location,
            task.urgency,
            is_free=task.is_free,
        )
        return jsonify({
            'task_id': task.id,
            'task': task.to_dict(),
            'price': breakdown.to_dict(),
        }), 200
    except Exception as e:
        logger.error(f'Error pricing task {task_id}: {e}', exc_info=True)
        return jsonify({'error': str(e)}), 500
