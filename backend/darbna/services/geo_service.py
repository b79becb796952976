"""Spherical geometry helpers for alert locations."""

import math
from typing import Any

from darbna.core.errors import ValidationError

# Mean earth radius, the value used by 2dsphere geo queries
EARTH_RADIUS_M = 6378100.0


def haversine_m(lng1: float, lat1: float, lng2: float, lat2: float) -> float:
    """Great-circle distance between two (lng, lat) points in meters."""
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lng2 - lng1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(dlon / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def validate_point(longitude: Any, latitude: Any) -> tuple[float, float]:
    """Return ``(longitude, latitude)`` or raise ValidationError.

    Rejects missing values, NaN/inf and coordinates outside
    longitude [-180, 180] / latitude [-90, 90].
    """
    if longitude is None or latitude is None:
        raise ValidationError("Location (latitude and longitude) is required")
    try:
        lng = float(longitude)
        lat = float(latitude)
    except (TypeError, ValueError):
        raise ValidationError("Latitude and longitude must be numbers") from None
    if not (math.isfinite(lng) and math.isfinite(lat)):
        raise ValidationError("Latitude and longitude must be finite numbers")
    if not -180.0 <= lng <= 180.0:
        raise ValidationError("Longitude must be between -180 and 180")
    if not -90.0 <= lat <= 90.0:
        raise ValidationError("Latitude must be between -90 and 90")
    return lng, lat
