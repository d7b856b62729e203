"""
Geo utilities shared by every scoring component.

Planar centroid and great-circle distance math. All functions are pure;
degenerate input produces NaN rather than raising, so callers that need a
usable number must check is_valid_point() first.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from zone_engine.models import Point

EARTH_RADIUS_M = 6_371_000
EARTH_RADIUS_KM = 6_371


def is_valid_point(point: Optional[Point]) -> bool:
    """True for a point with finite, in-range coordinates."""
    if point is None or not point.is_finite:
        return False
    return -90.0 <= point.lat <= 90.0 and -180.0 <= point.lon <= 180.0


def _open_ring(polygon: Sequence[Point]) -> Sequence[Point]:
    # GeoJSON-style rings repeat the first vertex at the end
    if len(polygon) > 1 and polygon[0] == polygon[-1]:
        return polygon[:-1]
    return polygon


def centroid(polygon: Sequence[Point]) -> Point:
    """
    Arithmetic mean of the polygon vertices.

    Good enough for city-block-sized zones; not a spherical centroid.
    An empty polygon yields Point(nan, nan).
    """
    ring = _open_ring(polygon)
    if not ring:
        return Point(math.nan, math.nan)
    lat = sum(p.lat for p in ring) / len(ring)
    lon = sum(p.lon for p in ring) / len(ring)
    return Point(lat, lon)


def haversine(a: Point, b: Point, radius: float) -> float:
    """Great-circle distance between two points on a sphere of the given radius."""
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    dphi = math.radians(b.lat - a.lat)
    dlambda = math.radians(b.lon - a.lon)

    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * radius * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def haversine_meters(a: Point, b: Point) -> float:
    return haversine(a, b, EARTH_RADIUS_M)


def haversine_km(a: Point, b: Point) -> float:
    return haversine(a, b, EARTH_RADIUS_KM)


def haversine_many(origin: Point, points: Sequence[Point], radius: float = EARTH_RADIUS_M) -> np.ndarray:
    """Vectorised haversine from one origin to many points."""
    if not points:
        return np.empty(0, dtype=float)

    lats = np.radians(np.array([p.lat for p in points], dtype=float))
    lons = np.radians(np.array([p.lon for p in points], dtype=float))
    phi1 = math.radians(origin.lat)
    lam1 = math.radians(origin.lon)

    dphi = lats - phi1
    dlambda = lons - lam1
    h = np.sin(dphi / 2) ** 2 + math.cos(phi1) * np.cos(lats) * np.sin(dlambda / 2) ** 2
    return 2 * radius * np.arctan2(np.sqrt(h), np.sqrt(1 - h))


def nearest_point(origin: Point, points: Sequence[Point]) -> Optional[Tuple[int, float]]:
    """
    Index and distance (meters) of the point closest to origin.

    Returns None when points is empty or every distance is NaN.
    """
    distances = haversine_many(origin, points)
    if distances.size == 0 or np.all(np.isnan(distances)):
        return None
    idx = int(np.nanargmin(distances))
    return idx, float(distances[idx])


def initial_bearing(a: Point, b: Point) -> float:
    """Initial compass bearing from a to b, in degrees [0, 360)."""
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    dlambda = math.radians(b.lon - a.lon)

    x = math.sin(dlambda) * math.cos(phi2)
    y = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dlambda)
    return (math.degrees(math.atan2(x, y)) + 360.0) % 360.0


def path_length_meters(points: Sequence[Point]) -> float:
    """Sum of consecutive haversine legs."""
    return sum(haversine_meters(a, b) for a, b in zip(points, points[1:]))


def polyline_midpoint(points: Sequence[Point]) -> Optional[Point]:
    """The middle vertex of a polyline (not the arc-length midpoint)."""
    if not points:
        return None
    return points[len(points) // 2]


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned lat/lon box."""
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    @classmethod
    def from_points(cls, points: Sequence[Point]) -> "BoundingBox":
        ring = list(points)
        if not ring:
            raise ValueError("Cannot build a bounding box from no points")
        lats = [p.lat for p in ring]
        lons = [p.lon for p in ring]
        return cls(min(lats), max(lats), min(lons), max(lons))

    def contains(self, point: Point, tolerance: float = 1e-9) -> bool:
        return (
            self.min_lat - tolerance <= point.lat <= self.max_lat + tolerance
            and self.min_lon - tolerance <= point.lon <= self.max_lon + tolerance
        )

    @property
    def center(self) -> Point:
        return Point((self.min_lat + self.max_lat) / 2, (self.min_lon + self.max_lon) / 2)

    def corners(self) -> List[Point]:
        return [
            Point(self.min_lat, self.min_lon),
            Point(self.min_lat, self.max_lon),
            Point(self.max_lat, self.max_lon),
            Point(self.max_lat, self.min_lon),
        ]
