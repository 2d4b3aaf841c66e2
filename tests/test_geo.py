import math

import pytest

from utils.geo import (
    MAX_MERCATOR_LAT,
    Bounds,
    GeoPoint,
    bounds_geometry,
    clamp_lat,
    haversine_m,
    lat_to_tile_y,
    lng_to_tile_x,
    normalize_lng,
    pad_bounds,
    tile_x_to_lng,
    tile_y_to_lat,
)


class TestHaversine:
    def test_thousandth_degree_of_longitude_at_equator(self):
        d = haversine_m(GeoPoint(0, 0), GeoPoint(0, 0.001))
        assert d == pytest.approx(111.19, abs=0.01)

    def test_same_point_is_zero(self):
        p = GeoPoint(48.85, 2.35)
        assert haversine_m(p, p) == 0

    def test_antipodes_do_not_raise(self):
        d = haversine_m(GeoPoint(0, 0), GeoPoint(0, 180))
        assert d == pytest.approx(math.pi * 6_371_000)


class TestNormalizeLng:
    @pytest.mark.parametrize("lng,expected", [
        (0, 0), (180, 180), (-180, -180), (190, -170), (-190, 170), (540, 180), (-540, -180), (359, -1),
    ])
    def test_wraps_into_range(self, lng, expected):
        assert normalize_lng(lng) == pytest.approx(expected)


def test_clamp_lat():
    assert clamp_lat(90) == MAX_MERCATOR_LAT
    assert clamp_lat(-90) == -MAX_MERCATOR_LAT
    assert clamp_lat(45.5) == 45.5


class TestTiles:
    def test_lng_to_tile_x(self):
        assert lng_to_tile_x(-180, 1) == 0
        assert lng_to_tile_x(0, 1) == 1
        assert lng_to_tile_x(179.999999, 1) == 1

    def test_x_is_clamped_at_the_east_edge(self):
        assert lng_to_tile_x(180, 3) == 7

    def test_lat_to_tile_y(self):
        assert lat_to_tile_y(0, 1) == 1
        assert lat_to_tile_y(45, 1) == 0
        assert lat_to_tile_y(MAX_MERCATOR_LAT, 4) == 0
        assert lat_to_tile_y(-MAX_MERCATOR_LAT, 4) == 15

    def test_inverse_edges(self):
        assert tile_x_to_lng(0, 5) == -180
        assert tile_x_to_lng(32, 5) == 180
        assert tile_y_to_lat(0, 5) == pytest.approx(MAX_MERCATOR_LAT, abs=1e-6)
        assert tile_y_to_lat(16, 5) == pytest.approx(0, abs=1e-9)

    def test_tile_of_a_point_contains_it(self):
        lat, lng, z = 51.5074, -0.1278, 12
        x, y = lng_to_tile_x(lng, z), lat_to_tile_y(lat, z)
        assert tile_x_to_lng(x, z) <= lng < tile_x_to_lng(x + 1, z)
        assert tile_y_to_lat(y + 1, z) < lat <= tile_y_to_lat(y, z)


class TestBounds:
    def test_center_of_antimeridian_viewport(self):
        b = Bounds(north=10, south=-10, west=170, east=-170)
        assert b.crosses_antimeridian
        assert b.center() == GeoPoint(0, 180)

    def test_pad_bounds_is_finite_near_the_pole(self):
        padded = pad_bounds(Bounds(north=89.995, south=89.5, west=10, east=11), 1000)
        assert padded.north == 90
        assert 11 < padded.east < 11.1

    def test_pad_bounds_can_wrap(self):
        padded = pad_bounds(Bounds(north=1, south=-1, west=170, east=179.99), 5000)
        assert padded.crosses_antimeridian

    def test_wrapping_geometry_covers_both_sides(self):
        geom = bounds_geometry(Bounds(north=1, south=-1, west=179, east=-179))
        assert geom.area == pytest.approx(4.0)
