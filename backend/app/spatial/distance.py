"""
distance.py — Great-circle distance for geofence evaluation.

Provides:
    - Haversine distance between two (lat, lon) points, in **metres**
    - Coordinate value type with range validation
    - Bounding-box pre-filter for "who is near this point" scans

Coordinates are in **decimal degrees**. Wire format (GeoJSON) orders
them as [longitude, latitude]; function arguments order them as
(lat, lon) to match the usual haversine notation.

Mathematical Foundation — Haversine Formula
============================================
Given two points P₁(φ₁, λ₁) and P₂(φ₂, λ₂):

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · asin(√a)
    d = R · c

    R = 6 371 000 m (spherical-earth approximation)

Floating-point overshoot can push ``a`` a hair above 1.0 for antipodal
points (or below 0.0 for identical ones), which would make ``asin``
raise. ``a`` is therefore clamped to [0, 1] before the square root.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Tuple


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EARTH_RADIUS_M: float = 6_371_000.0


# ---------------------------------------------------------------------------
# Core data structures
# ---------------------------------------------------------------------------

def is_valid_coordinate(longitude: float, latitude: float) -> bool:
    """True when both values are finite numbers inside their ranges."""
    try:
        lon = float(longitude)
        lat = float(latitude)
    except (TypeError, ValueError):
        return False
    if math.isnan(lon) or math.isnan(lat):
        return False
    return -180.0 <= lon <= 180.0 and -90.0 <= lat <= 90.0


@dataclass(frozen=True)
class Coordinate:
    """
    A geographic point in decimal degrees.

    Construction does not validate: reports arrive from devices and the
    evaluator must be able to receive (and fail open on) garbage. Check
    ``is_valid`` at the boundary.
    """
    longitude: float
    latitude: float

    @property
    def is_valid(self) -> bool:
        return is_valid_coordinate(self.longitude, self.latitude)

    def to_list(self) -> List[float]:
        """GeoJSON order: [longitude, latitude]."""
        return [self.longitude, self.latitude]


# ---------------------------------------------------------------------------
# Haversine implementation
# ---------------------------------------------------------------------------

def distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two points, in metres.

    Examples
    --------
    >>> distance(0.0, 0.0, 0.0, 0.0)
    0.0
    >>> round(distance(0.0, 0.0, 0.0, 180.0))
    20015087
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2.0) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    )
    a = min(1.0, max(0.0, a))

    c = 2.0 * math.asin(math.sqrt(a))
    return EARTH_RADIUS_M * c


def haversine(point1: Coordinate, point2: Coordinate) -> float:
    """``distance`` over two Coordinates, in metres."""
    return distance(
        point1.latitude, point1.longitude,
        point2.latitude, point2.longitude,
    )


# ---------------------------------------------------------------------------
# Bounding-box pre-filter (fast rejection before Haversine)
# ---------------------------------------------------------------------------

def bounding_box(
    lat: float, lon: float, radius_m: float,
) -> Tuple[float, float, float, float]:
    """
    Lat/lon box that fully contains the circle (centre, radius_m).

    Returns (min_lat, max_lat, min_lon, max_lon) in degrees. Longitudes
    are wrapped into [-180, 180], so a box crossing the antimeridian
    comes back with min_lon > max_lon:

        lon 179.99, ±0.02°  →  min_lon 179.97, max_lon -179.99

    A circle that reaches a pole touches every meridian, so the box
    then spans the full longitude range.
    """
    angular = radius_m / EARTH_RADIUS_M  # radians

    min_lat = max(lat - math.degrees(angular), -90.0)
    max_lat = min(lat + math.degrees(angular), 90.0)

    cos_lat = math.cos(math.radians(lat))
    if min_lat <= -90.0 or max_lat >= 90.0 or cos_lat <= 1e-10:
        return (min_lat, max_lat, -180.0, 180.0)

    delta_lon = math.degrees(angular / cos_lat)
    if delta_lon >= 180.0:
        return (min_lat, max_lat, -180.0, 180.0)

    min_lon = lon - delta_lon
    max_lon = lon + delta_lon
    if min_lon < -180.0:
        min_lon += 360.0
    if max_lon > 180.0:
        max_lon -= 360.0

    return (min_lat, max_lat, min_lon, max_lon)


def inside_bounding_box(
    lat: float, lon: float,
    box: Tuple[float, float, float, float],
) -> bool:
    """Quick rectangular check; handles boxes wrapped across ±180°."""
    min_lat, max_lat, min_lon, max_lon = box
    if not min_lat <= lat <= max_lat:
        return False
    if min_lon <= max_lon:
        return min_lon <= lon <= max_lon
    return lon >= min_lon or lon <= max_lon


def format_distance(metres: float) -> str:
    """
    Format a distance for display.

    >>> format_distance(450.4)
    '450 m'
    >>> format_distance(3726.6)
    '3.73 km'
    """
    if metres < 1000.0:
        return f"{int(round(metres))} m"
    return f"{metres / 1000.0:.2f} km"
