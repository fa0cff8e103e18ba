"""Error kinds raised inside the geo engine.

None of these are meant to escape to the task lifecycle: engines catch them
and fall back to a zero/default value or to the last known good state.
"""

import enum


class GeoEngineError(Exception):
    """Base class for every engine error."""


class InvalidLocation(GeoEngineError):
    """Coordinate fails the lat/lng range or finiteness check."""


class PositionUnavailable(GeoEngineError):
    """Positioning source could not produce a fix (includes timeouts)."""


class PermissionDenied(PositionUnavailable):
    """Performer refused location access on their device."""


class RoutingFailure(GeoEngineError):
    """Routing collaborator failed or returned no usable leg."""


class StaleData(GeoEngineError):
    """No position update arrived within the expected window."""


class TrackingAccessDenied(GeoEngineError):
    """Caller is not allowed to write or read this task's tracking state."""


class TrackingNotFound(GeoEngineError):
    """No task (or no live session) exists for the given task id."""


class TaskClosed(GeoEngineError):
    """Task reached a terminal status; location sharing is over."""


class PositionErrorKind(str, enum.Enum):
    PERMISSION_DENIED = 'permission_denied'
    POSITION_UNAVAILABLE = 'position_unavailable'
    TIMEOUT = 'timeout'

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.POSITION_UNAVAILABLE

    def to_exception(self, message=None):
        if self is PositionErrorKind.PERMISSION_DENIED:
            return PermissionDenied(message or 'Location access was denied')
        if self is PositionErrorKind.TIMEOUT:
            return PositionUnavailable(message or 'Location request timed out')
        return PositionUnavailable(message or 'Location information is unavailable')
