"""WebSocket events for real-time tracking updates."""

from flask_socketio import emit
from flask import request
import jwt
import logging
import threading

from errand_geo.errors import TrackingAccessDenied, TrackingNotFound
from errand_geo.services import get_tracking_manager
from errand_geo.utils import decode_user_id

logger = logging.getLogger(__name__)

# sid -> user_id for authenticated connections
connected_users = {}
# sid -> {task_id: unsubscribe}
tracking_subscriptions = {}
_subscriptions_lock = threading.Lock()


def get_user_from_token(token):
    """Extract user ID from JWT token."""
    try:
        return decode_user_id(token)
    except (jwt.InvalidTokenError, ValueError, TypeError) as e:
        logger.warning(f"Token decode error: {e}")
        return None


def _drop_subscription(sid, task_id):
    with _subscriptions_lock:
        unsubscribe = tracking_subscriptions.get(sid, {}).pop(task_id, None)
    if unsubscribe:
        unsubscribe()
    return unsubscribe is not None


def register_socket_events(socketio):
    """Register all Socket.IO event handlers."""

    @socketio.on('connect')
    def handle_connect(auth):
        """Handle client connection."""
        token = None
        if auth and isinstance(auth, dict):
            token = auth.get('token')
        elif request.args.get('token'):
            token = request.args.get('token')

        if not token:
            logger.warning('Socket connection without token')
            return False

        user_id = get_user_from_token(token)
        if not user_id:
            logger.warning('Socket connection with invalid token')
            return False

        connected_users[request.sid] = user_id
        logger.info(f"User {user_id} connected (sid {request.sid})")
        emit('connected', {'user_id': user_id})

    @socketio.on('disconnect')
    def handle_disconnect(*args):
        """Handle client disconnection and release its tracking subscriptions."""
        sid = request.sid
        user_id = connected_users.pop(sid, None)
        with _subscriptions_lock:
            subscriptions = tracking_subscriptions.pop(sid, {})
        for unsubscribe in subscriptions.values():
            unsubscribe()
        logger.info(f"User {user_id} disconnected, released {len(subscriptions)} tracking subscription(s)")

    @socketio.on('subscribe_tracking')
    def handle_subscribe_tracking(data):
        """Start receiving tracking_update events for a task.

        The current state is sent immediately, then every change after it.
        """
        sid = request.sid
        user_id = connected_users.get(sid)
        if not user_id:
            emit('error', {'message': 'Not authenticated'})
            return

        task_id = (data or {}).get('task_id')
        if task_id is None:
            emit('error', {'message': 'task_id is required'})
            return
        try:
            task_id = int(task_id)
        except (TypeError, ValueError):
            emit('error', {'message': 'task_id must be an integer'})
            return

        # Re-subscribing replaces the previous subscription
        _drop_subscription(sid, task_id)

        def deliver(view):
            socketio.emit('tracking_update', view, to=sid)

        try:
            unsubscribe = get_tracking_manager().subscribe_tracking(task_id, user_id, deliver)
        except (TrackingNotFound, TrackingAccessDenied) as e:
            emit('error', {'message': str(e), 'task_id': task_id})
            return
        except Exception as e:
            logger.error(f"Error subscribing to tracking for task {task_id}: {e}", exc_info=True)
            emit('error', {'message': 'Failed to subscribe'})
            return

        with _subscriptions_lock:
            tracking_subscriptions.setdefault(sid, {})[task_id] = unsubscribe
        logger.info(f"User {user_id} subscribed to tracking for task {task_id}")

    @socketio.on('unsubscribe_tracking')
    def handle_unsubscribe_tracking(data):
        """Stop receiving tracking updates for a task."""
        try:
            task_id = int((data or {}).get('task_id'))
        except (TypeError, ValueError):
            emit('error', {'message': 'task_id is required'})
            return

        if _drop_subscription(request.sid, task_id):
            logger.info(f"User {connected_users.get(request.sid)} unsubscribed from task {task_id}")
        emit('unsubscribed', {'task_id': task_id})
