"""
Business proximity lookups.

`nearby()` is the reference flat scan: fine for a coupon book with a handful of
merchants. `GridIndex` buckets businesses into lat/lon cells so a large catalog is
not scanned in full on every location sample. Both return the same pairs for the
same input; callers must not depend on ordering.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Protocol

from couponradar.config.settings import Settings
from couponradar.core.geo import EARTH_RADIUS_MILES, distance_miles
from couponradar.domain.models import BusinessLocation, Coordinate

NearbyResult = list[tuple[BusinessLocation, float]]

# Great-circle length of one degree of latitude.
_MILES_PER_DEGREE = 2 * math.pi * EARTH_RADIUS_MILES / 360.0


def nearby(
    location: Coordinate, businesses: list[BusinessLocation], max_radius_miles: float
) -> NearbyResult:
    """Return `(business, distance)` for every business within `max_radius_miles` (inclusive)."""
    r = float(max_radius_miles)
    if r <= 0:
        return []
    out: NearbyResult = []
    for business in businesses:
        d = distance_miles(location, business.coordinates)
        if d <= r:
            out.append((business, d))
    return out


class ProximityIndex(Protocol):
    def nearby(self, location: Coordinate, max_radius_miles: float) -> NearbyResult: ...


class ScanIndex:
    def __init__(self, businesses: list[BusinessLocation]):
        self._businesses = list(businesses)

    def nearby(self, location: Coordinate, max_radius_miles: float) -> NearbyResult:
        return nearby(location, self._businesses, max_radius_miles)


@dataclass(frozen=True)
class _Entry:
    business: BusinessLocation
    lat: float
    lon: float


class GridIndex:
    """Lat/lon grid bucket index.

    Candidate cells come from the exact spherical bounding box of the query circle,
    so no business within the radius is ever missed; the haversine test then trims
    the corners.
    """

    def __init__(self, businesses: list[BusinessLocation], *, cell_size_miles: float = 1.0):
        if float(cell_size_miles) <= 0:
            raise ValueError("cell_size_miles must be > 0")
        self._cell_deg = float(cell_size_miles) / _MILES_PER_DEGREE
        self._lon_cells = max(1, int(math.ceil(360.0 / self._cell_deg)))
        self._lat_cells = max(1, int(math.ceil(180.0 / self._cell_deg)))
        self._cells: dict[tuple[int, int], list[_Entry]] = {}
        for b in businesses:
            e = _Entry(business=b, lat=b.coordinates.latitude, lon=b.coordinates.longitude)
            self._cells.setdefault(self._cell_key(e.lat, e.lon), []).append(e)

    def _lat_idx(self, lat: float) -> int:
        return min(self._lat_cells - 1, max(0, int(math.floor((lat + 90.0) / self._cell_deg))))

    def _lon_idx(self, lon: float) -> int:
        return min(self._lon_cells - 1, max(0, int(math.floor((lon + 180.0) / self._cell_deg))))

    def _cell_key(self, lat: float, lon: float) -> tuple[int, int]:
        return self._lat_idx(lat), self._lon_idx(lon)

    def _lon_indices(self, lat_min: float, lat_max: float, lon: float, r: float) -> set[int]:
        angular = r / EARTH_RADIUS_MILES
        if lat_min <= -90.0 or lat_max >= 90.0 or angular >= math.pi / 2:
            return set(range(self._lon_cells))
        widest = max(abs(lat_min), abs(lat_max))
        ratio = math.sin(angular) / math.cos(math.radians(widest))
        if ratio >= 1.0:
            return set(range(self._lon_cells))
        dlon = math.degrees(math.asin(ratio))
        lo, hi = lon - dlon, lon + dlon
        if hi - lo >= 360.0:
            return set(range(self._lon_cells))

        # Split at the antimeridian so each segment lies inside [-180, 180].
        segments = [(lo, hi)]
        if lo < -180.0:
            segments = [(lo + 360.0, 180.0), (-180.0, hi)]
        elif hi > 180.0:
            segments = [(lo, 180.0), (-180.0, hi - 360.0)]

        out: set[int] = set()
        for a, b in segments:
            out.update(range(self._lon_idx(a), self._lon_idx(b) + 1))
        return out

    def nearby(self, location: Coordinate, max_radius_miles: float) -> NearbyResult:
        r = float(max_radius_miles)
        if r <= 0:
            return []
        dlat = math.degrees(r / EARTH_RADIUS_MILES)
        lat_min = location.latitude - dlat
        lat_max = location.latitude + dlat
        lat_range = range(self._lat_idx(max(-90.0, lat_min)), self._lat_idx(min(90.0, lat_max)) + 1)
        lon_indices = self._lon_indices(lat_min, lat_max, location.longitude, r)

        out: NearbyResult = []
        for li in lat_range:
            for lo in lon_indices:
                cell = self._cells.get((li, lo))
                if not cell:
                    continue
                for e in cell:
                    d = distance_miles(location, e.business.coordinates)
                    if d <= r:
                        out.append((e.business, d))
        return out


def build_index(businesses: list[BusinessLocation], settings: Settings) -> ProximityIndex:
    """Pick the index implementation configured under `proximity.index`."""
    if settings.proximity.index == "grid":
        return GridIndex(businesses, cell_size_miles=settings.proximity.grid_cell_size_miles)
    return ScanIndex(businesses)
