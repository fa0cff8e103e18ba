from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_socketio import SocketIO
import logging
import os
from dotenv import load_dotenv

load_dotenv()

db = SQLAlchemy()
socketio = SocketIO(cors_allowed_origins='*')

logger = logging.getLogger(__name__)


def _env_float(name, default):
    return float(os.getenv(name, default))


def create_app(config_name='development', config_overrides=None):
    app = Flask(__name__)

    # Config
    app.config['SQLALCHEMY_DATABASE_URI'] = os.getenv(
        'DATABASE_URL',
        'sqlite:///errands.db'  # SQLite for local development
    )
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret')
    app.config['REDIS_URL'] = os.getenv('REDIS_URL')

    # Map platform (geocoding + directions). Empty key disables both.
    app.config['GOOGLE_MAPS_API_KEY'] = os.getenv('GOOGLE_MAPS_API_KEY', '')
    app.config['CAMPUS_ADDRESS_SUFFIX'] = os.getenv(
        'CAMPUS_ADDRESS_SUFFIX', 'University of Florida, Gainesville, FL'
    )
    app.config['NETWORK_LOCATOR_URL'] = os.getenv('NETWORK_LOCATOR_URL', 'https://ipapi.co/{ip}/json/')
    app.config['TRACKING_TRAVEL_MODE'] = os.getenv('TRACKING_TRAVEL_MODE', 'driving')

    # Pricing / bundling overrides
    app.config['PRICING_BASE_PRICE'] = os.getenv('PRICING_BASE_PRICE', '1.50')
    app.config['PRICING_DISTANCE_RATE'] = os.getenv('PRICING_DISTANCE_RATE', '0.50')
    app.config['PRICING_SERVICE_FEE_RATE'] = os.getenv('PRICING_SERVICE_FEE_RATE', '0.151')
    app.config['BUNDLE_MAX_SIZE'] = int(os.getenv('BUNDLE_MAX_SIZE', 3))
    app.config['BUNDLE_MAX_LEG_KM'] = _env_float('BUNDLE_MAX_LEG_KM', 2.0)
    app.config['BUNDLE_MAX_RESULTS'] = int(os.getenv('BUNDLE_MAX_RESULTS', 3))
    app.config['BUNDLE_SEARCH_RADIUS_KM'] = _env_float('BUNDLE_SEARCH_RADIUS_KM', 5.0)

    # Live tracking
    app.config['TRACKING_HIGH_ACCURACY_TIMEOUT'] = _env_float('TRACKING_HIGH_ACCURACY_TIMEOUT', 10)
    app.config['TRACKING_LOW_ACCURACY_TIMEOUT'] = _env_float('TRACKING_LOW_ACCURACY_TIMEOUT', 20)
    app.config['TRACKING_STALE_AFTER'] = _env_float('TRACKING_STALE_AFTER', 60)
    app.config['TRACKING_WATCHDOG_INTERVAL'] = _env_float('TRACKING_WATCHDOG_INTERVAL', 15)
    app.config['TRACKING_HISTORY_LIMIT'] = int(os.getenv('TRACKING_HISTORY_LIMIT', 100))
    app.config['TRACKING_STATE_TTL'] = int(os.getenv('TRACKING_STATE_TTL', 6 * 3600))

    if config_name == 'testing':
        app.config['TESTING'] = True
        app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///:memory:'
        app.config['REDIS_URL'] = None
        app.config['GOOGLE_MAPS_API_KEY'] = ''
        app.config['NETWORK_LOCATOR_URL'] = None

    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    CORS(app)
    socketio.init_app(app)

    # Create tables with error handling
    with app.app_context():
        from errand_geo import models  # noqa: F401 - register tables
        try:
            db.create_all()
        except Exception as e:
            logger.warning(f'Could not create database tables: {e}')

    from errand_geo.services import init_geo_services
    init_geo_services(app)

    # Register routes
    from errand_geo.routes import register_routes
    register_routes(app)

    from errand_geo.socket_events import register_socket_events
    register_socket_events(socketio)

    # Health check
    @app.route('/health', methods=['GET'])
    def health():
        return {'status': 'ok'}, 200

    return app
