"""Value types and database models for the geo engine."""

from .location import (
    Location,
    LocationHistoryPoint,
    validate_location,
    parse_location,
    parse_optional_location,
)
from .bundle import TaskSummary, TaskBundle
from .task_request import TaskRequest, TERMINAL_STATUSES

__all__ = [
    'Location',
    'LocationHistoryPoint',
    'validate_location',
    'parse_location',
    'parse_optional_location',
    'TaskSummary',
    'TaskBundle',
    'TaskRequest',
    'TERMINAL_STATUSES',
]
