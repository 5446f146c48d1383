import asyncio

import pytest
import requests

from tourguide import routing
from tourguide.models import Waypoint
from tourguide.routing import ORSRouter, direct_route, join_routes, named_leg, parse_ors_route

from fakes import ORIGIN, offset, quiet_logger, straight_route


def ors_response():
    return {
        "type": "FeatureCollection",
        "features": [{
            "geometry": {"coordinates": [[5.33, 47.86], [5.3305, 47.8605], [5.331, 47.861]]},
            "properties": {
                "summary": {"distance": 134.2, "duration": 96.6},
                "way_points": [0, 2],
                "segments": [{
                    "distance": 134.2,
                    "duration": 96.6,
                    "steps": [
                        {"instruction": "Head northeast on Rue Diderot", "name": "Rue Diderot",
                         "distance": 70.0, "duration": 50.4, "type": 11, "way_points": [0, 1]},
                        {"instruction": "Turn left", "name": "-", "distance": 64.2,
                         "duration": 46.2, "type": 0, "way_points": [1, 2]},
                        {"instruction": "Arrive at your destination", "distance": 0,
                         "duration": 0, "type": 10, "way_points": [2, 2]},
                    ],
                }],
            },
        }],
    }


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        return self.payload


def test_parse_ors_route_swaps_to_lat_lon():
    route = parse_ors_route(ors_response())
    assert route.coordinates[0] == (47.86, 5.33)
    assert route.distance == 134.2
    assert len(route.segments) == 1

    steps = route.instructions
    assert [s.kind for s in steps] == ["depart", "left", "arrive"]
    assert steps[0].way_name == "Rue Diderot"
    assert steps[1].location == (47.8605, 5.3305)
    assert route.segments[0].end.position == (47.861, 5.331)


@pytest.mark.parametrize("payload", [
    {},
    {"features": []},
    {"features": [{"geometry": {"coordinates": []}}]},
    {"features": [{"geometry": None}]},
])
def test_parse_ors_route_without_geometry(payload):
    assert parse_ors_route(payload) is None


def test_join_routes_drops_shared_junction():
    a, b, c = ORIGIN, offset(ORIGIN, north=100), offset(ORIGIN, north=200)
    legs = [
        named_leg(straight_route(a, b), Waypoint(*a, name="Start"), Waypoint(*b, name="One")),
        named_leg(straight_route(b, c), Waypoint(*b, name="One"), Waypoint(*c, name="Two")),
    ]
    joined = join_routes(legs)
    assert len(joined.coordinates) == 11
    assert joined.distance == pytest.approx(200, rel=1e-3)
    assert [s.end.name for s in joined.segments] == ["One", "Two"]


def test_direct_route_short_and_long():
    short = direct_route(ORIGIN, offset(ORIGIN, north=150))
    assert [s.kind for s in short.instructions] == ["depart", "arrive"]
    assert short.instructions[0].text == "Head north"
    assert short.coordinates[0] == ORIGIN
    assert len(short.coordinates) == 3

    long = direct_route(ORIGIN, offset(ORIGIN, east=2500))
    assert [s.kind for s in long.instructions] == ["depart", "straight", "arrive"]
    assert len(long.coordinates) == 9
    assert long.duration == round(long.distance / 1.4)


def test_router_without_key_falls_back_to_direct(monkeypatch):
    monkeypatch.delenv("ORS_API_KEY", raising=False)

    def unexpected(*args, **kwargs):
        raise AssertionError("no request expected without an API key")

    monkeypatch.setattr(routing.requests, "post", unexpected)
    router = ORSRouter(logger=quiet_logger())
    route = asyncio.run(router.calculate_route(ORIGIN, offset(ORIGIN, north=150)))
    assert route.has_geometry
    assert route.instructions[-1].kind == "arrive"


def test_router_parses_and_caches(monkeypatch):
    calls = []

    def post(url, json, headers, timeout):
        calls.append(json)
        return FakeResponse(ors_response())

    monkeypatch.setattr(routing.requests, "post", post)
    router = ORSRouter(api_key="key", logger=quiet_logger(), language="fr-FR")

    async def run():
        first = await router.calculate_route((47.86, 5.33), (47.861, 5.331))
        second = await router.calculate_route((47.86, 5.33), (47.861, 5.331))
        return first, second

    first, second = asyncio.run(run())
    assert first is second
    assert len(calls) == 1
    assert calls[0]["coordinates"] == [[5.33, 47.86], [5.331, 47.861]]
    assert calls[0]["language"] == "fr"

    router.clear_cache()
    asyncio.run(router.calculate_route((47.86, 5.33), (47.861, 5.331)))
    assert len(calls) == 2


def test_router_falls_back_on_request_error(monkeypatch):
    def post(*args, **kwargs):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(routing.requests, "post", post)
    router = ORSRouter(api_key="key", logger=quiet_logger())
    route = asyncio.run(router.calculate_route(ORIGIN, offset(ORIGIN, north=150)))
    assert route.has_geometry
    assert route.segments[0].end.name == "Destination"


def test_router_without_fallback_returns_none(monkeypatch):
    monkeypatch.setattr(routing.requests, "post", lambda *a, **k: FakeResponse({}, status=500))
    router = ORSRouter(api_key="key", fallback=False, logger=quiet_logger())
    assert asyncio.run(router.calculate_route(ORIGIN, offset(ORIGIN, north=150))) is None


def test_router_cache_is_bounded(monkeypatch):
    monkeypatch.delenv("ORS_API_KEY", raising=False)
    router = ORSRouter(cache_size=2, logger=quiet_logger())

    async def run():
        for north in (100, 200, 300):
            await router.calculate_route(ORIGIN, offset(ORIGIN, north=north))

    asyncio.run(run())
    assert len(router._cache) == 2
