"""
Pytest configuration and fixtures for testing the geo engine.
"""

import os
import sys
import time
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from faker import Faker

# Add the parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from errand_geo import create_app, db
from errand_geo.errors import GeoEngineError, PositionUnavailable, RoutingFailure
from errand_geo.models import Location, TaskRequest
from errand_geo.services import init_geo_services
from errand_geo.services.location_store import MemoryLocationStore
from errand_geo.services.map_services import (
    GeocodingService,
    MapServicesProvider,
    NetworkLocator,
    PushPositionSource,
    RouteEstimate,
    RoutingService,
)
from errand_geo.services.task_directory import TaskDirectory, TaskParticipants

fake = Faker()

TEST_SECRET = 'test-secret-key-for-testing-0123456789abcdef'

# Near the middle of campus
CAMPUS_LAT = 29.6465
CAMPUS_LNG = -82.3533


# ============ Fake collaborators ============

class FakeRouter(RoutingService):
    """Returns queued results in order (an Exception entry is raised)."""

    def __init__(self, results=None, default=None, gate=None):
        self.results = list(results or [])
        self.default = default or RouteEstimate(distance_meters=850, duration_seconds=300)
        self.gate = gate
        self.calls = []

    def route(self, origin, destination):
        self.calls.append((origin, destination))
        if self.gate is not None:
            self.gate.wait(timeout=5)
        result = self.results.pop(0) if self.results else self.default
        if isinstance(result, Exception):
            raise result
        return result


class FailingRouter(RoutingService):

    def route(self, origin, destination):
        raise RoutingFailure('no route')


class FakeGeocoder(GeocodingService):

    def __init__(self, addresses=None, reverse_address='Reitz Union, Gainesville, FL'):
        self.addresses = addresses or {}
        self.reverse_address = reverse_address
        self.reverse_calls = 0

    def forward(self, address):
        if address not in self.addresses:
            raise GeoEngineError(f'No result for {address}')
        lat, lng = self.addresses[address]
        return Location(lat=lat, lng=lng, address=address)

    def reverse(self, location):
        self.reverse_calls += 1
        return self.reverse_address


class FakeNetworkLocator(NetworkLocator):

    def __init__(self, location=None):
        self.location = location
        self.calls = []

    def locate(self, client_ip):
        self.calls.append(client_ip)
        return self.location


class ScriptedPositionSource(PushPositionSource):
    """Push source whose one-shot fixes follow a script of results/exceptions."""

    def __init__(self, script=None):
        super().__init__()
        self.script = list(script or [])
        self.requests = []

    def get_current_position(self, high_accuracy=True, timeout=10.0):
        self.requests.append(high_accuracy)
        result = self.script.pop(0) if self.script else PositionUnavailable('script exhausted')
        if isinstance(result, Exception):
            raise result
        return result


class FakeTaskDirectory(TaskDirectory):

    def __init__(self):
        self.tasks = {}

    def add(self, task_id, creator_id, performer_id, destination=None, terminal=False):
        self.tasks[task_id] = TaskParticipants(
            task_id=task_id,
            creator_id=creator_id,
            performer_id=performer_id,
            destination=destination,
            terminal=terminal,
        )
        return self.tasks[task_id]

    def participants(self, task_id):
        return self.tasks.get(task_id)


# ============ Helpers ============

def make_location(lat=CAMPUS_LAT, lng=CAMPUS_LNG, **kwargs):
    return Location(lat=lat, lng=lng, **kwargs)


def random_campus_location():
    """Random point inside the campus bounds."""
    return Location(
        lat=float(fake.pyfloat(min_value=29.625, max_value=29.665, right_digits=5)),
        lng=float(fake.pyfloat(min_value=-82.385, max_value=-82.315, right_digits=5)),
    )


def make_token(user_id, secret=TEST_SECRET, expires_in=timedelta(hours=1)):
    payload = {'user_id': user_id, 'exp': datetime.now(timezone.utc) + expires_in}
    return jwt.encode(payload, secret, algorithm='HS256')


def auth_header(user_id):
    return {'Authorization': f'Bearer {make_token(user_id)}'}


def wait_for(predicate, timeout=2.0):
    """Poll until predicate() is truthy or the timeout passes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return bool(predicate())


# ============ App fixtures ============

@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    os.environ['FLASK_ENV'] = 'testing'
    os.environ['JWT_SECRET_KEY'] = TEST_SECRET

    app = create_app('testing', config_overrides={
        'JWT_SECRET_KEY': TEST_SECRET,
        'TRACKING_HIGH_ACCURACY_TIMEOUT': 0.2,
        'TRACKING_LOW_ACCURACY_TIMEOUT': 0.2,
        'TRACKING_WATCHDOG_INTERVAL': 0,
    })

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client for each test function."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create a fresh database session for each test."""
    with app.app_context():
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        yield db.session
        db.session.rollback()


@pytest.fixture
def router():
    return FakeRouter()


@pytest.fixture
def geocoder():
    return FakeGeocoder(addresses={'Library West': (29.6513, -82.3429)})


@pytest.fixture
def geo(app, router, geocoder):
    """Fresh engines for each test, wired to fake map collaborators."""
    map_services = MapServicesProvider(geocoder=geocoder, router=router)
    services = init_geo_services(app, map_services=map_services, store=MemoryLocationStore())
    yield services
    services['tracking'].shutdown()


def _create_task(**overrides):
    data = {
        'title': fake.sentence(nb_words=4),
        'category': 'delivery',
        'budget': round(fake.pyfloat(min_value=5, max_value=40, right_digits=2), 2),
        'is_free': False,
        'urgency': 'low',
        'estimated_time': f'{fake.random_int(min=10, max=45)} minutes',
        'location': 'Library West',
        'latitude': CAMPUS_LAT,
        'longitude': CAMPUS_LNG,
        'creator_id': fake.random_int(min=1, max=500),
        'status': 'open',
    }
    data.update(overrides)
    task = TaskRequest(**data)
    db.session.add(task)
    db.session.commit()
    return task


@pytest.fixture
def task_factory(app, db_session):
    """Create TaskRequest rows; returns their ids and key fields."""
    def factory(**overrides):
        task = _create_task(**overrides)
        return {
            'id': task.id,
            'creator_id': task.creator_id,
            'assigned_to_id': task.assigned_to_id,
            'latitude': task.latitude,
            'longitude': task.longitude,
        }
    return factory


@pytest.fixture
def assigned_task(task_factory):
    """A task with a creator and an assigned performer."""
    return task_factory(creator_id=101, assigned_to_id=202, status='assigned')
