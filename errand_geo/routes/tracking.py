"""Live location sharing routes.

The performer's client drives the session: it starts sharing, posts each
position (or positioning error) as it arrives, and stops when done. The
task creator reads the published state here or subscribes over Socket.IO.
"""

from flask import Blueprint, request, jsonify
import logging

from errand_geo.errors import (
    InvalidLocation,
    TaskClosed,
    TrackingAccessDenied,
    TrackingNotFound,
)
from errand_geo.models import parse_location, parse_optional_location
from errand_geo.services import get_tracking_manager
from errand_geo.utils import token_required

logger = logging.getLogger(__name__)

tracking_bp = Blueprint('tracking', __name__)

# How long /start waits for the first fix when the client sent one along
START_WAIT_SECONDS = 2.0


def _tracking_error_response(e):
    if isinstance(e, TrackingNotFound):
        return jsonify({'error': str(e)}), 404
    if isinstance(e, TrackingAccessDenied):
        return jsonify({'error': str(e)}), 403
    if isinstance(e, TaskClosed):
        return jsonify({'error': str(e)}), 409
    return jsonify({'error': str(e)}), 400


def _client_ip():
    """Performer's address as seen by the first proxy, else the socket peer."""
    forwarded = request.headers.get('X-Forwarded-For', '')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.remote_addr


@tracking_bp.route('/<int:task_id>/start', methods=['POST'])
@token_required
def start_tracking(current_user_id, task_id):
    """Start sharing the performer's location for a task.

    Body (all optional):
        position: {lat, lng, accuracy?, speed?, heading?}  first fix from the device
        destination: {lat, lng}  overrides the task's own coordinates
    """
    try:
        data = request.get_json(silent=True) or {}
        position = parse_optional_location(data.get('position'))
        destination = parse_optional_location(data.get('destination'))

        manager = get_tracking_manager()
        session = manager.start_tracking(
            task_id,
            current_user_id,
            destination=destination,
            initial_position=position,
            client_ip=_client_ip(),
        )
        if position is not None:
            session.wait_until_started(START_WAIT_SECONDS)

        return jsonify({
            'message': 'Location sharing started',
            'tracking': session.snapshot(),
        }), 201 if session.started.is_set() else 202
    except (TrackingNotFound, TrackingAccessDenied, TaskClosed) as e:
        return _tracking_error_response(e)
    except Exception as e:
        logger.error(f'Error starting tracking for task {task_id}: {e}', exc_info=True)
        return jsonify({'error': str(e)}), 500


@tracking_bp.route('/<int:task_id>/position', methods=['POST'])
@token_required
def push_position(current_user_id, task_id):
    """Performer's device reports a new position."""
    try:
        data = request.get_json(silent=True) or {}
        try:
            location = parse_location(data.get('position', data))
        except InvalidLocation as e:
            return jsonify({'error': str(e)}), 400

        get_tracking_manager().push_position(task_id, current_user_id, location)
        return jsonify({'accepted': True}), 200
    except (TrackingNotFound, TrackingAccessDenied, TaskClosed) as e:
        return _tracking_error_response(e)
    except Exception as e:
        logger.error(f'Error ingesting position for task {task_id}: {e}', exc_info=True)
        return jsonify({'error': str(e)}), 500


@tracking_bp.route('/<int:task_id>/error', methods=['POST'])
@token_required
def report_error(current_user_id, task_id):
    """Performer's device reports a positioning error.

    Body: {kind: 'permission_denied' | 'position_unavailable' | 'timeout', message?}
    """
    try:
        data = request.get_json(silent=True) or {}
        if not data.get('kind'):
            return jsonify({'error': 'kind is required'}), 400

        get_tracking_manager().report_position_error(
            task_id, current_user_id, data['kind'], data.get('message')
        )
        return jsonify({'message': 'Error recorded'}), 200
    except (TrackingNotFound, TrackingAccessDenied, TaskClosed) as e:
        return _tracking_error_response(e)
    except Exception as e:
        logger.error(f'Error recording position error for task {task_id}: {e}', exc_info=True)
        return jsonify({'error': str(e)}), 500


@tracking_bp.route('/<int:task_id>/stop', methods=['POST'])
@token_required
def stop_tracking(current_user_id, task_id):
    """Stop sharing and clear the published state."""
    try:
        stopped = get_tracking_manager().stop_for_user(task_id, current_user_id)
        return jsonify({
            'message': 'Location sharing stopped' if stopped else 'Location sharing was not active',
            'stopped': stopped,
        }), 200
    except (TrackingNotFound, TrackingAccessDenied) as e:
        return _tracking_error_response(e)
    except Exception as e:
        logger.error(f'Error stopping tracking for task {task_id}: {e}', exc_info=True)
        return jsonify({'error': str(e)}), 500


@tracking_bp.route('/<int:task_id>', methods=['GET'])
@token_required
def get_tracking(current_user_id, task_id):
    """Current tracking view for the task creator or performer."""
    try:
        view = get_tracking_manager().read_tracking(task_id, current_user_id)
        return jsonify({'tracking': view}), 200
    except (TrackingNotFound, TrackingAccessDenied) as e:
        return _tracking_error_response(e)
    except Exception as e:
        logger.error(f'Error reading tracking for task {task_id}: {e}', exc_info=True)
        return jsonify({'error': str(e)}), 500
