import math

import pytest

from app.services import geo

KL = (101.6953, 3.1493)
JB = (103.7414, 1.4927)


def test_haversine_kl_to_jb_is_about_290km():
    d = geo.haversine_distance(KL, JB)
    assert 280_000 < d < 300_000


def test_initial_bearing_cardinal_directions():
    assert geo.initial_bearing((0, 0), (0, 1)) == pytest.approx(0.0, abs=1e-6)
    assert geo.initial_bearing((0, 0), (1, 0)) == pytest.approx(90.0, abs=1e-6)
    assert geo.initial_bearing((0, 1), (0, 0)) == pytest.approx(180.0, abs=1e-6)
    assert geo.initial_bearing((1, 0), (0, 0)) == pytest.approx(270.0, abs=1e-6)


def test_is_valid_coordinate():
    assert geo.is_valid_coordinate(KL)
    assert not geo.is_valid_coordinate((103.7, 200))
    assert not geo.is_valid_coordinate((181, 0))
    assert not geo.is_valid_coordinate((math.nan, 0))
    assert not geo.is_valid_coordinate(None)
    assert not geo.is_valid_coordinate((1,))


def test_point_along_clamps_to_ends():
    coords = [KL, JB]
    length = geo.polyline_length(coords)

    start, _ = geo.point_along(coords, -5)
    end, _ = geo.point_along(coords, length * 2)
    assert start == pytest.approx(KL)
    assert end == pytest.approx(JB)


def test_point_along_stays_on_polyline():
    coords = [KL, (102.7, 2.3), JB]
    length = geo.polyline_length(coords)
    for frac in (0.1, 0.33, 0.5, 0.9):
        p, bearing = geo.point_along(coords, length * frac)
        assert geo.distance_to_polyline(p, coords) < 200
        assert 0 <= bearing < 360


def test_point_along_uses_containing_segment_bearing():
    coords = [(0, 0), (0, 1), (1, 1)]
    first_leg = geo.haversine_distance(coords[0], coords[1])
    _, b1 = geo.point_along(coords, first_leg / 2)
    _, b2 = geo.point_along(coords, first_leg + 1000)
    assert b1 == pytest.approx(0.0, abs=1e-6)
    assert b2 == pytest.approx(90.0, abs=0.1)


def test_zero_length_segments_are_skipped():
    coords = [(0, 0), (0, 0), (0, 1)]
    assert geo.first_segment_bearing(coords) == pytest.approx(0.0, abs=1e-6)
    p, _ = geo.point_along(coords, 1000)
    assert p[1] > 0


def test_short_polyline_raises():
    with pytest.raises(ValueError):
        geo.polyline_length([KL])
    with pytest.raises(ValueError):
        geo.point_along([KL], 10)


def test_non_finite_distance_raises():
    with pytest.raises(ValueError):
        geo.point_along([KL, JB], math.inf)
