"""Shared authentication utilities.

Tokens are issued by the marketplace's auth service; this service only
verifies them. The signing secret is JWT_SECRET_KEY from app config.
"""

from functools import wraps
from flask import request, jsonify, current_app
import jwt
import logging

logger = logging.getLogger(__name__)

ALGORITHM = 'HS256'


def _bearer_token(auth_header):
    if not auth_header:
        return None
    # Support both "Bearer <token>" and raw token formats
    return auth_header.split(' ')[1] if ' ' in auth_header else auth_header


def decode_user_id(token):
    """Return the user_id claim of a valid token. Raises jwt.InvalidTokenError."""
    token = _bearer_token(token)
    if not token:
        raise jwt.InvalidTokenError('Token is missing')
    payload = jwt.decode(token, current_app.config['JWT_SECRET_KEY'], algorithms=[ALGORITHM])
    user_id = payload.get('user_id')
    if user_id is None:
        raise jwt.InvalidTokenError('Token has no user_id')
    return int(user_id)


def token_required(f):
    """
    Decorator to require valid JWT token.

    Extracts user_id from JWT token and passes it as the first argument
    to the decorated function.

    Usage:
        @bp.route('/protected')
        @token_required
        def protected_route(current_user_id):
            return jsonify({'user_id': current_user_id})
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        auth_header = request.headers.get('Authorization')

        if not auth_header:
            return jsonify({'error': 'Token is missing'}), 401

        try:
            current_user_id = decode_user_id(auth_header)
        except jwt.ExpiredSignatureError:
            return jsonify({'error': 'Token has expired'}), 401
        except (jwt.InvalidTokenError, ValueError, TypeError) as e:
            logger.debug(f"Rejected token: {e}")
            return jsonify({'error': 'Token is invalid'}), 401

        return f(current_user_id, *args, **kwargs)
    return decorated
