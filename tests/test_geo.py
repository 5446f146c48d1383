import pytest

from tourguide.geo import (
    bearing_between,
    bearing_to_compass,
    destination_point,
    format_distance,
    haversine_distance,
    interpolate,
    nearest_point,
    polyline_length,
    retry_with_backoff,
)

from fakes import ORIGIN, offset


def test_haversine_one_degree_of_latitude():
    assert haversine_distance(0, 0, 1, 0) == pytest.approx(111195, rel=1e-3)
    assert haversine_distance(*ORIGIN, *ORIGIN) == 0


def test_bearing_and_compass():
    north = offset(ORIGIN, north=100)
    east = offset(ORIGIN, east=100)
    assert bearing_between(*ORIGIN, *north) == pytest.approx(0, abs=0.5)
    assert bearing_between(*ORIGIN, *east) == pytest.approx(90, abs=0.5)
    assert bearing_to_compass(0) == "north"
    assert bearing_to_compass(359) == "north"
    assert bearing_to_compass(135) == "southeast"


def test_destination_point_travels_requested_distance():
    lat, lon = destination_point(*ORIGIN, 45, 250)
    assert haversine_distance(*ORIGIN, lat, lon) == pytest.approx(250, rel=1e-6)
    assert bearing_between(*ORIGIN, lat, lon) == pytest.approx(45, abs=0.1)


def test_nearest_point_scans_every_coordinate():
    coords = [offset(ORIGIN, north=n) for n in (0, 100, 200, 300)]
    index, distance = nearest_point(offset(ORIGIN, north=210, east=30), coords)
    assert index == 2
    assert distance == pytest.approx(31.6, abs=0.5)


def test_nearest_point_empty_geometry():
    assert nearest_point(ORIGIN, []) == (-1, float("inf"))


def test_interpolate_and_length():
    end = offset(ORIGIN, north=300)
    points = interpolate(ORIGIN, end, 4)
    assert points[0] == ORIGIN and points[-1] == end
    assert len(points) == 4
    assert polyline_length(points) == pytest.approx(300, rel=1e-3)
    assert len(interpolate(ORIGIN, end, 1)) == 2


def test_format_distance():
    assert format_distance(None) == "unknown distance"
    assert format_distance(42.4) == "42 meters"
    assert format_distance(1540) == "1.5 kilometers"


def test_retry_with_backoff_returns_first_success(monkeypatch):
    monkeypatch.setattr("tourguide.geo.time.sleep", lambda s: None)
    attempts = iter([None, None, "fix"])
    assert retry_with_backoff(lambda: next(attempts), max_time=30) == "fix"


def test_retry_with_backoff_gives_up():
    assert retry_with_backoff(lambda: None, max_time=0) is None
