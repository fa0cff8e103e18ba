"""Coordinate value types shared by pricing, bundling and tracking."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, replace

from errand_geo.errors import InvalidLocation


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _optional_float(value):
    if value is None or value == '':
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


@dataclass(frozen=True)
class Location:
    """A latitude/longitude pair in decimal degrees plus optional fix metadata."""

    lat: float
    lng: float
    address: str | None = None
    accuracy_meters: float | None = None
    captured_at_millis: int | None = None
    speed: float | None = None
    heading: float | None = None

    def with_address(self, address: str | None) -> 'Location':
        return replace(self, address=address)

    def stamped(self, now_millis: int | None = None) -> 'Location':
        """Return a copy carrying a capture time (kept if already set)."""
        if self.captured_at_millis is not None:
            return self
        return replace(self, captured_at_millis=now_millis or int(time.time() * 1000))

    def to_dict(self):
        data = {'lat': self.lat, 'lng': self.lng}
        if self.address is not None:
            data['address'] = self.address
        if self.accuracy_meters is not None:
            data['accuracy_meters'] = self.accuracy_meters
        if self.captured_at_millis is not None:
            data['captured_at_millis'] = self.captured_at_millis
        if self.speed is not None:
            data['speed'] = self.speed
        if self.heading is not None:
            data['heading'] = self.heading
        return data


@dataclass(frozen=True)
class LocationHistoryPoint:
    """One retained point of a performer's trail."""

    lat: float
    lng: float
    captured_at_millis: int
    speed: float | None = None
    heading: float | None = None
    address: str | None = None

    @classmethod
    def from_location(cls, location: Location) -> 'LocationHistoryPoint':
        stamped = location.stamped()
        return cls(
            lat=stamped.lat,
            lng=stamped.lng,
            captured_at_millis=stamped.captured_at_millis,
            speed=stamped.speed,
            heading=stamped.heading,
            address=stamped.address,
        )

    def to_dict(self):
        return {
            'lat': self.lat,
            'lng': self.lng,
            'captured_at_millis': self.captured_at_millis,
            'speed': self.speed,
            'heading': self.heading,
            'address': self.address,
        }


def validate_location(location) -> bool:
    """True iff lat is in [-90, 90], lng in [-180, 180] and both are finite."""
    if location is None:
        return False
    lat = getattr(location, 'lat', None)
    lng = getattr(location, 'lng', None)
    if not _is_number(lat) or not _is_number(lng):
        return False
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return False
    return -90 <= lat <= 90 and -180 <= lng <= 180


def parse_location(data) -> Location:
    """Build a Location from a JSON object.

    Accepts ``lat``/``lng`` or ``latitude``/``longitude`` keys. Raises
    InvalidLocation when the payload is missing, non-numeric or out of range.
    """
    if isinstance(data, Location):
        location = data
    else:
        if not isinstance(data, dict):
            raise InvalidLocation('Location must be an object with lat and lng')

        lat = data.get('lat', data.get('latitude'))
        lng = data.get('lng', data.get('longitude'))
        if lat is None or lng is None or isinstance(lat, bool) or isinstance(lng, bool):
            raise InvalidLocation('Location requires numeric lat and lng')
        try:
            lat = float(lat)
            lng = float(lng)
        except (TypeError, ValueError):
            raise InvalidLocation('Location requires numeric lat and lng')

        captured = _optional_float(data.get('captured_at_millis', data.get('timestamp')))
        captured = int(captured) if captured is not None else None

        location = Location(
            lat=lat,
            lng=lng,
            address=data.get('address') or None,
            accuracy_meters=_optional_float(data.get('accuracy_meters', data.get('accuracy'))),
            captured_at_millis=captured,
            speed=_optional_float(data.get('speed')),
            heading=_optional_float(data.get('heading')),
        )

    if not validate_location(location):
        raise InvalidLocation(f'Coordinates out of range: lat={location.lat}, lng={location.lng}')
    return location


def parse_optional_location(data):
    """Like parse_location, but returns None instead of raising."""
    if data is None:
        return None
    try:
        return parse_location(data)
    except InvalidLocation:
        return None
