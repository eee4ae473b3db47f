"""
Geospatial helpers.

Distances between the user and a business are small (a few miles), so a spherical
earth model is plenty; no GIS dependency is needed.
"""

from __future__ import annotations

from math import asin, cos, radians, sin, sqrt

from couponradar.domain.models import Coordinate

EARTH_RADIUS_MILES = 3959.0


def haversine(a: Coordinate, b: Coordinate, *, radius: float = EARTH_RADIUS_MILES) -> float:
    """Compute great-circle distance between two points, in the unit of `radius`."""
    lat1 = radians(a.latitude)
    lon1 = radians(a.longitude)
    lat2 = radians(b.latitude)
    lon2 = radians(b.longitude)

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    h = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    # Rounding can push h a hair above 1 for antipodal points.
    return 2 * radius * asin(sqrt(min(1.0, h)))


def distance_miles(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance in miles (Earth radius 3959 mi)."""
    return haversine(a, b, radius=EARTH_RADIUS_MILES)
