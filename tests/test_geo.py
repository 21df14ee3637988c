import math
import pytest

from listing_alerts.geo import (
    bearing_deg,
    haversine_m,
    is_valid_coordinate,
    is_within_radius,
)


def test_zero_distance():
    assert haversine_m(51.5, -0.12, 51.5, -0.12) == 0


def test_one_degree_of_latitude():
    # 6371 km * pi / 180
    assert haversine_m(0, 0, 1, 0) == pytest.approx(111195, abs=1)


def test_distance_is_symmetric():
    a = haversine_m(51.5074, -0.1278, 48.8566, 2.3522)
    b = haversine_m(48.8566, 2.3522, 51.5074, -0.1278)
    assert a == pytest.approx(b)
    # London to Paris
    assert a == pytest.approx(343_500, rel=0.01)


def test_bearing_cardinal_directions():
    assert bearing_deg(0, 0, 1, 0) == pytest.approx(0)
    assert bearing_deg(0, 0, 0, 1) == pytest.approx(90)
    assert bearing_deg(1, 0, 0, 0) == pytest.approx(180)
    assert bearing_deg(0, 1, 0, 0) == pytest.approx(270)


def test_bearing_is_normalized():
    for lat2, lng2 in [(10, -10), (-10, -10), (-10, 10), (10, 10)]:
        bearing = bearing_deg(0, 0, lat2, lng2)
        assert 0 <= bearing < 360


def test_within_radius_includes_boundary():
    distance = haversine_m(0, 0, 0.01, 0)
    assert is_within_radius(0.01, 0, 0, 0, distance)
    assert not is_within_radius(0.01, 0, 0, 0, distance - 1)


@pytest.mark.parametrize("lat,lng,valid", [
    (0, 0, True),
    (90, 180, True),
    (-90, -180, True),
    (90.1, 0, False),
    (0, -180.5, False),
    (math.nan, 0, False),
    (None, 0, False),
])
def test_coordinate_validation(lat, lng, valid):
    assert is_valid_coordinate(lat, lng) is valid
