"""Shared utilities for the geo engine service.

This package contains reusable utilities that are shared across
multiple route files to reduce code duplication.
"""

from errand_geo.utils.auth import (
    token_required,
    decode_user_id,
)
from errand_geo.utils.formatting import (
    format_distance,
    format_duration,
    format_last_update,
    format_arrival,
)

__all__ = [
    'token_required',
    'decode_user_id',
    'format_distance',
    'format_duration',
    'format_last_update',
    'format_arrival',
]
