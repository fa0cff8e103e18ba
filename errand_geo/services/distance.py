"""Great-circle distance helpers shared by pricing, bundling and tracking."""

from math import inf, radians, sin, cos, sqrt, atan2

from errand_geo.constants import CAMPUS_BOUNDS, CAMPUS_BOUNDS_MARGIN_DEG
from errand_geo.models.location import validate_location

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1, lon1, lat2, lon2):
    """Calculate distance in km between two coordinates using Haversine formula."""
    lat1, lon1, lat2, lon2 = map(radians, [lat1, lon1, lat2, lon2])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = sin(dlat/2)**2 + cos(lat1) * cos(lat2) * sin(dlon/2)**2
    c = 2 * atan2(sqrt(a), sqrt(1-a))
    return EARTH_RADIUS_KM * c


def distance_km(a, b) -> float:
    """Distance between two Locations, or ``inf`` when either is absent or invalid.

    ``inf`` means "not comparable": callers filter it out with ordinary
    threshold checks instead of handling an exception.
    """
    if not validate_location(a) or not validate_location(b):
        return inf
    return haversine_km(a.lat, a.lng, b.lat, b.lng)


def total_distance_km(points) -> float:
    """Sum of consecutive leg distances along ``points``."""
    if len(points) < 2:
        return 0.0
    return sum(distance_km(points[i], points[i + 1]) for i in range(len(points) - 1))


def get_bounding_box(lat, lng, radius_km):
    """
    Calculate a bounding box for SQL filtering.
    Returns (min_lat, max_lat, min_lng, max_lng).
    """
    lat_delta = radius_km / 111.0  # ~111 km per degree latitude
    lng_delta = radius_km / (111.0 * max(cos(radians(lat)), 1e-6))

    return (
        lat - lat_delta,
        lat + lat_delta,
        lng - lng_delta,
        lng + lng_delta,
    )


def is_within_campus(location, bounds=None, margin=CAMPUS_BOUNDS_MARGIN_DEG) -> bool:
    """True when the location falls inside the campus bounds (plus margin)."""
    if not validate_location(location):
        return False
    bounds = bounds or CAMPUS_BOUNDS
    return (
        bounds['south'] - margin <= location.lat <= bounds['north'] + margin
        and bounds['west'] - margin <= location.lng <= bounds['east'] + margin
    )
