"""Tests for geo utilities."""

import math
import random

import numpy as np
import pytest

from zone_engine.geo import (
    EARTH_RADIUS_KM,
    EARTH_RADIUS_M,
    BoundingBox,
    centroid,
    haversine,
    haversine_km,
    haversine_many,
    haversine_meters,
    initial_bearing,
    is_valid_point,
    nearest_point,
    path_length_meters,
    polyline_midpoint,
)
from zone_engine.models import Point


SQUARE = [Point(0.0, 0.0), Point(0.0, 1.0), Point(1.0, 1.0), Point(1.0, 0.0)]


class TestCentroid:
    """Tests for the vertex-mean centroid."""

    def test_square(self):
        c = centroid(SQUARE)
        assert c.lat == pytest.approx(0.5)
        assert c.lon == pytest.approx(0.5)

    def test_closed_ring_counts_first_vertex_once(self):
        closed = SQUARE + [SQUARE[0]]
        assert centroid(closed) == centroid(SQUARE)

    def test_empty_polygon_is_nan(self):
        c = centroid([])
        assert math.isnan(c.lat) and math.isnan(c.lon)

    def test_single_point(self):
        assert centroid([Point(13.75, 100.5)]) == Point(13.75, 100.5)

    def test_centroid_within_bounding_box(self):
        rng = random.Random(42)
        for _ in range(200):
            n = rng.randint(1, 12)
            poly = [Point(rng.uniform(-60, 60), rng.uniform(-170, 170)) for _ in range(n)]
            bbox = BoundingBox.from_points(poly)
            assert bbox.contains(centroid(poly))


class TestHaversine:
    """Distance math."""

    def test_zero_distance(self):
        p = Point(13.7563, 100.5018)
        assert haversine_meters(p, p) == 0.0

    def test_one_degree_latitude(self):
        d = haversine_meters(Point(0, 0), Point(1, 0))
        assert d == pytest.approx(111_195, rel=1e-3)

    def test_meters_and_km_share_formula(self):
        a, b = Point(13.7563, 100.5018), Point(13.7285, 100.5340)
        assert haversine_meters(a, b) / 1000 == pytest.approx(haversine_km(a, b), rel=1e-12)
        assert haversine_meters(a, b) == haversine(a, b, EARTH_RADIUS_M)
        assert haversine_km(a, b) == haversine(a, b, EARTH_RADIUS_KM)

    def test_symmetric(self):
        a, b = Point(35.6938, 139.7034), Point(35.6580, 139.7016)
        assert haversine_meters(a, b) == pytest.approx(haversine_meters(b, a))

    def test_nan_input_gives_nan(self):
        assert math.isnan(haversine_meters(Point(math.nan, 0), Point(0, 0)))

    def test_vectorised_matches_scalar(self):
        origin = Point(13.75, 100.50)
        points = [Point(13.76, 100.51), Point(13.70, 100.45), Point(13.75, 100.50)]
        many = haversine_many(origin, points)
        assert isinstance(many, np.ndarray)
        for p, d in zip(points, many):
            assert d == pytest.approx(haversine_meters(origin, p), rel=1e-9, abs=1e-6)

    def test_vectorised_empty(self):
        assert haversine_many(Point(0, 0), []).size == 0


class TestHelpers:

    def test_nearest_point(self):
        origin = Point(0, 0)
        idx, dist = nearest_point(origin, [Point(1, 1), Point(0.001, 0), Point(-2, 0)])
        assert idx == 1
        assert dist == pytest.approx(111.2, rel=1e-2)

    def test_nearest_point_empty(self):
        assert nearest_point(Point(0, 0), []) is None

    def test_bearing_north_and_east(self):
        assert initial_bearing(Point(0, 0), Point(1, 0)) == pytest.approx(0.0)
        assert initial_bearing(Point(0, 0), Point(0, 1)) == pytest.approx(90.0)
        assert 0 <= initial_bearing(Point(0, 0), Point(-1, -1)) < 360

    def test_path_length(self):
        pts = [Point(0, 0), Point(0, 1), Point(0, 2)]
        assert path_length_meters(pts) == pytest.approx(2 * haversine_meters(pts[0], pts[1]))
        assert path_length_meters(pts[:1]) == 0

    def test_polyline_midpoint(self):
        pts = [Point(0, 0), Point(0, 1), Point(0, 2), Point(0, 3)]
        assert polyline_midpoint(pts) == Point(0, 2)
        assert polyline_midpoint([]) is None

    def test_is_valid_point(self):
        assert is_valid_point(Point(13.75, 100.5))
        assert not is_valid_point(Point(math.nan, 0))
        assert not is_valid_point(Point(91, 0))
        assert not is_valid_point(None)

    def test_bounding_box_from_no_points(self):
        with pytest.raises(ValueError):
            BoundingBox.from_points([])
