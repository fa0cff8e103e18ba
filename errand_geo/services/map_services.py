"""External map collaborators: positioning, geocoding, routing, IP location.

The engines never talk to a process-global map client. Everything they need
arrives through a MapServicesProvider built once by the app factory (or by a
test with fakes).
"""

from __future__ import annotations

import ipaddress
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Callable

import requests

from errand_geo.errors import (
    GeoEngineError,
    PositionErrorKind,
    PositionUnavailable,
    RoutingFailure,
)
from errand_geo.models.location import Location, validate_location
from errand_geo.services.distance import distance_km

logger = logging.getLogger(__name__)

GEOCODE_URL = 'https://maps.googleapis.com/maps/api/geocode/json'
DIRECTIONS_URL = 'https://maps.googleapis.com/maps/api/directions/json'

GEOCODE_ACCURACY_METERS = 20  # geocoding is typically accurate to ~20 m
NETWORK_ACCURACY_METERS = 5000  # IP geolocation is typically accurate to ~5 km
HIGH_ACCURACY_MAX_METERS = 100


@dataclass
class RouteEstimate:
    """Route between a performer and the task destination."""

    distance_meters: float
    duration_seconds: float
    path_points: list[Location] = field(default_factory=list)
    estimated_arrival: datetime | None = None
    computed_at: datetime | None = None

    def with_arrival(self, now: datetime | None = None) -> 'RouteEstimate':
        now = now or datetime.now(timezone.utc)
        return replace(
            self,
            computed_at=now,
            estimated_arrival=now + timedelta(seconds=self.duration_seconds),
        )

    def to_dict(self):
        return {
            'distance_meters': self.distance_meters,
            'duration_seconds': self.duration_seconds,
            'path_points': [[p.lat, p.lng] for p in self.path_points],
            'estimated_arrival': self.estimated_arrival.isoformat() if self.estimated_arrival else None,
            'computed_at': self.computed_at.isoformat() if self.computed_at else None,
        }


# ============ Collaborator contracts ============

class PositioningSource(ABC):
    """Push-based source of device positions."""

    @abstractmethod
    def start_watching(self, on_update: Callable, on_error: Callable) -> Callable[[], None]:
        """Begin delivering fixes; returns a cancel function."""

    @abstractmethod
    def get_current_position(self, high_accuracy: bool = True, timeout: float = 10.0) -> Location:
        """Return a single fix or raise PositionUnavailable / PermissionDenied."""


class GeocodingService(ABC):

    @abstractmethod
    def forward(self, address: str) -> Location:
        """Resolve an address to coordinates. Raises GeoEngineError on failure."""

    @abstractmethod
    def reverse(self, location: Location) -> str | None:
        """Resolve coordinates to a formatted address."""


class RoutingService(ABC):

    @abstractmethod
    def route(self, origin: Location, destination: Location) -> RouteEstimate:
        """Return distance/duration/path or raise RoutingFailure."""


class NetworkLocator(ABC):

    @abstractmethod
    def locate(self, client_ip: str) -> Location | None:
        """Coarse location of the given client address, or None."""


# ============ Disabled collaborators ============

class NullGeocodingService(GeocodingService):
    """Used when no map API key is configured."""

    def forward(self, address):
        raise GeoEngineError('Geocoding is not configured')

    def reverse(self, location):
        return None


class NullRoutingService(RoutingService):

    def route(self, origin, destination):
        raise RoutingFailure('Routing is not configured')


# ============ HTTP adapters ============

class GoogleGeocodingService(GeocodingService):
    """Google Geocoding API over plain HTTP."""

    def __init__(self, api_key, address_suffix=None, timeout=10, session=None):
        self.api_key = api_key
        self.address_suffix = address_suffix
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get(self, params):
        params = {**params, 'key': self.api_key}
        response = self.session.get(GEOCODE_URL, params=params, timeout=self.timeout)
        response.raise_for_status()
        data = response.json()
        if data.get('status') != 'OK' or not data.get('results'):
            raise GeoEngineError(f"Geocoding returned {data.get('status', 'no status')}")
        return data['results'][0]

    def forward(self, address):
        if not address or not address.strip():
            raise GeoEngineError('Address is empty')

        # Scope the lookup to campus to improve accuracy
        full_address = address.strip()
        if self.address_suffix and self.address_suffix.lower() not in full_address.lower():
            full_address = f'{full_address}, {self.address_suffix}'

        try:
            result = self._get({'address': full_address})
        except requests.RequestException as e:
            raise GeoEngineError(f'Geocoding request failed: {e}') from e

        point = result['geometry']['location']
        location = Location(
            lat=float(point['lat']),
            lng=float(point['lng']),
            address=result.get('formatted_address'),
            accuracy_meters=GEOCODE_ACCURACY_METERS,
        ).stamped()
        if not validate_location(location):
            raise GeoEngineError('Geocoding returned invalid coordinates')
        return location

    def reverse(self, location):
        try:
            result = self._get({'latlng': f'{location.lat},{location.lng}'})
        except (requests.RequestException, GeoEngineError) as e:
            logger.warning(f'Reverse geocoding failed: {e}')
            return None
        return result.get('formatted_address')


def decode_polyline(encoded: str) -> list[Location]:
    """Decode a Google encoded polyline into points."""
    points = []
    index = lat = lng = 0
    while index < len(encoded):
        deltas = []
        for _ in range(2):
            shift = result = 0
            while True:
                byte = ord(encoded[index]) - 63
                index += 1
                result |= (byte & 0x1f) << shift
                shift += 5
                if byte < 0x20:
                    break
            deltas.append(~(result >> 1) if result & 1 else result >> 1)
        lat += deltas[0]
        lng += deltas[1]
        points.append(Location(lat=lat / 1e5, lng=lng / 1e5))
    return points


class GoogleRoutingService(RoutingService):
    """Google Directions API over plain HTTP."""

    def __init__(self, api_key, travel_mode='driving', timeout=10, session=None):
        self.api_key = api_key
        self.travel_mode = travel_mode
        self.timeout = timeout
        self.session = session or requests.Session()

    def route(self, origin, destination):
        params = {
            'origin': f'{origin.lat},{origin.lng}',
            'destination': f'{destination.lat},{destination.lng}',
            'mode': self.travel_mode,
            'key': self.api_key,
        }
        try:
            response = self.session.get(DIRECTIONS_URL, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise RoutingFailure(f'Directions request failed: {e}') from e

        if data.get('status') != 'OK' or not data.get('routes'):
            raise RoutingFailure(f"Directions returned {data.get('status', 'no status')}")

        route = data['routes'][0]
        legs = route.get('legs') or []
        if not legs:
            raise RoutingFailure('Directions returned a route without legs')

        leg = legs[0]
        distance = (leg.get('distance') or {}).get('value')
        duration = (leg.get('duration') or {}).get('value')
        if distance is None or duration is None:
            raise RoutingFailure('Directions leg is missing distance or duration')

        polyline = (route.get('overview_polyline') or {}).get('points', '')
        return RouteEstimate(
            distance_meters=float(distance),
            duration_seconds=float(duration),
            path_points=decode_polyline(polyline) if polyline else [],
        )


class IpNetworkLocator(NetworkLocator):
    """Approximate location of the performer's device from its public IP.

    ``url`` is a template with an ``{ip}`` placeholder. Private, loopback and
    malformed addresses are never looked up.
    """

    def __init__(self, url='https://ipapi.co/{ip}/json/', timeout=5, session=None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def locate(self, client_ip):
        try:
            address = ipaddress.ip_address((client_ip or '').strip())
        except ValueError:
            logger.warning(f'Not a client IP address: {client_ip!r}')
            return None
        if not address.is_global:
            logger.info(f'Skipping IP geolocation for non-public address {address}')
            return None

        try:
            response = self.session.get(self.url.format(ip=address), timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f'IP geolocation failed: {e}')
            return None

        if not data.get('latitude') or not data.get('longitude'):
            return None

        location = Location(
            lat=float(data['latitude']),
            lng=float(data['longitude']),
            address=f"{data.get('city')}, {data.get('region')}, {data.get('country_name')}",
            accuracy_meters=NETWORK_ACCURACY_METERS,
        ).stamped()
        return location if validate_location(location) else None


# ============ Push-fed positioning ============

class PushPositionSource(PositioningSource):
    """Positioning source fed by the performer's client.

    The performer's device posts fixes (and errors) over HTTP; this object
    fans them out to whoever is watching and serves one-shot fix requests.
    """

    def __init__(self, high_accuracy_max_meters=HIGH_ACCURACY_MAX_METERS):
        self.high_accuracy_max_meters = high_accuracy_max_meters
        self._cond = threading.Condition()
        self._watchers = {}
        self._next_watch_id = 0
        self._latest = None
        self._served = None
        self._error = None
        self._error_seq = 0

    def push(self, location: Location):
        with self._cond:
            self._latest = location
            self._cond.notify_all()
            watchers = list(self._watchers.values())
        for on_update, _ in watchers:
            on_update(location)

    def report_error(self, kind: PositionErrorKind, message=None):
        with self._cond:
            self._error = kind
            self._error_seq += 1
            self._cond.notify_all()
            watchers = list(self._watchers.values())
        for _, on_error in watchers:
            on_error(kind, message)

    def _acceptable(self, location, high_accuracy):
        if location is None:
            return False
        if not high_accuracy or location.accuracy_meters is None:
            return True
        return location.accuracy_meters <= self.high_accuracy_max_meters

    def get_current_position(self, high_accuracy=True, timeout=10.0):
        with self._cond:
            seen_errors = self._error_seq
            ok = self._cond.wait_for(
                lambda: self._acceptable(self._latest, high_accuracy) or self._error_seq != seen_errors,
                timeout=timeout,
            )
            if ok and self._acceptable(self._latest, high_accuracy):
                self._served = self._latest
                return self._latest
            if ok:
                raise self._error.to_exception()
        raise PositionUnavailable(f'No {"high" if high_accuracy else "low"} accuracy fix within {timeout}s')

    def start_watching(self, on_update, on_error):
        """Register a watcher. A fix pushed after the last one-shot request is
        replayed to it first, so nothing sent during startup is lost.
        """
        with self._cond:
            watch_id = self._next_watch_id
            self._next_watch_id += 1
            self._watchers[watch_id] = (on_update, on_error)
            pending = self._latest if self._latest is not self._served else None
            # Replayed under the lock so it lands before any later push
            if pending is not None:
                on_update(pending)

        def cancel():
            with self._cond:
                self._watchers.pop(watch_id, None)

        return cancel

    @property
    def watcher_count(self):
        with self._cond:
            return len(self._watchers)


# ============ Provider ============

@dataclass
class MapServicesProvider:
    """Injected bundle of map collaborators."""

    geocoder: GeocodingService = field(default_factory=NullGeocodingService)
    router: RoutingService = field(default_factory=NullRoutingService)
    network_locator: NetworkLocator | None = None
    distance: Callable = distance_km

    def distance_km(self, a, b) -> float:
        return self.distance(a, b)


def build_map_services(config) -> MapServicesProvider:
    """Build the provider from app config. Missing API key disables lookups."""
    api_key = config.get('GOOGLE_MAPS_API_KEY')
    locator_url = config.get('NETWORK_LOCATOR_URL')
    network_locator = IpNetworkLocator(url=locator_url) if locator_url else None

    if not api_key:
        logger.warning('GOOGLE_MAPS_API_KEY not set - geocoding and routing disabled')
        return MapServicesProvider(network_locator=network_locator)

    return MapServicesProvider(
        geocoder=GoogleGeocodingService(api_key, address_suffix=config.get('CAMPUS_ADDRESS_SUFFIX')),
        router=GoogleRoutingService(api_key, travel_mode=config.get('TRACKING_TRAVEL_MODE', 'driving')),
        network_locator=network_locator,
    )
