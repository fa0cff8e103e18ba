"""
Gevent-patched application entrypoint (gunicorn -k gevent patched_app:wsgi_app).

gevent.monkey.patch_all() must run before anything imports socket/ssl/threading:
tracking sessions, route workers and the Redis subscriber all use threads,
which become greenlets once patched.
"""

# Monkey-patch FIRST, before ANY other imports
from gevent import monkey
monkey.patch_all()

import logging
import os

from errand_geo import create_app, socketio

logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

application = create_app(os.getenv('FLASK_ENV', 'production'))

# For compatibility, also expose as 'app'
app = application

# Socket.IO polling/websocket requests need the SocketIO WSGI middleware under gunicorn + gevent
wsgi_app = socketio.WSGIApp(socketio, application)
