"""Task bundle suggestions for performers looking for a multi-task run."""

from flask import Blueprint, request, jsonify, current_app
import logging

from errand_geo.models import TaskRequest, Location, validate_location
from errand_geo.services import get_bundling_engine
from errand_geo.services.distance import get_bounding_box, haversine_km

logger = logging.getLogger(__name__)

bundles_bp = Blueprint('bundles', __name__)

DEFAULT_RADIUS_KM = 5.0
MAX_RADIUS_KM = 50.0


def _open_tasks_within_radius(latitude, longitude, radius_km):
    """Open tasks around a point: bounding box pre-filter, then exact Haversine.

    Ordered by creation time so bundles come out in a stable seed order.
    """
    min_lat, max_lat, min_lng, max_lng = get_bounding_box(latitude, longitude, radius_km)
    query = TaskRequest.query.filter(
        TaskRequest.status == 'open',
        TaskRequest.latitude.isnot(None),
        TaskRequest.longitude.isnot(None),
        TaskRequest.latitude >= min_lat,
        TaskRequest.latitude <= max_lat,
        TaskRequest.longitude >= min_lng,
        TaskRequest.longitude <= max_lng
    ).order_by(TaskRequest.created_at.asc(), TaskRequest.id.asc())

    return [
        task for task in query.all()
        if haversine_km(latitude, longitude, task.latitude, task.longitude) <= radius_km
    ]


@bundles_bp.route('', methods=['GET'])
def get_bundles():
    """
    Suggest bundles of nearby open tasks.

    Query params:
        - lat, lng: requester position (required)
        - radius: search radius in km (default from BUNDLE_SEARCH_RADIUS_KM)
    """
    try:
        lat = request.args.get('lat', type=float)
        lng = request.args.get('lng', type=float)
        if lat is None or lng is None:
            return jsonify({'error': 'lat and lng are required'}), 400

        requester = Location(lat=lat, lng=lng)
        if not validate_location(requester):
            return jsonify({'error': 'lat/lng out of range'}), 400

        radius = request.args.get(
            'radius', current_app.config.get('BUNDLE_SEARCH_RADIUS_KM', DEFAULT_RADIUS_KM), type=float
        )
        radius = min(max(radius, 0.1), MAX_RADIUS_KM)

        tasks = _open_tasks_within_radius(lat, lng, radius)
        bundles = get_bundling_engine().bundle_tasks([task.to_summary() for task in tasks], requester)

        return jsonify({
            'bundles': [bundle.to_dict() for bundle in bundles],
            'candidates': len(tasks),
            'radius': radius,
        }), 200
    except Exception as e:
        logger.error(f'Error building task bundles: {e}', exc_info=True)
        return jsonify({'error': str(e)}), 500
