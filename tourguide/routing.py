"""Pedestrian routing via OpenRouteService, with caching and a direct-line fallback."""

import asyncio
import os
from collections import OrderedDict
from dataclasses import replace
from typing import Optional, Protocol, Sequence

import requests

from .config import CONFIG
from .errors import RouteComputationFailure
from .geo import haversine_distance, bearing_between, bearing_to_compass, interpolate
from .logger import Logger
from .models import Instruction, LatLon, Route, Segment, Waypoint

# OpenRouteService step type codes
ORS_STEP_TYPES = {
    0: "left",
    1: "right",
    2: "sharp left",
    3: "sharp right",
    4: "slight left",
    5: "slight right",
    6: "straight",
    7: "enter roundabout",
    8: "exit roundabout",
    9: "u-turn",
    10: "arrive",
    11: "depart",
    12: "keep left",
    13: "keep right",
}


class RoutingProvider(Protocol):
    """What the guidance core needs from a routing engine"""

    async def calculate_route(self, start: LatLon, end: LatLon) -> Optional[Route]: ...

    def calculate_distance(self, lat1: float, lon1: float, lat2: float, lon2: float) -> float: ...


async def fetch_route(routing: RoutingProvider, start: LatLon, end: LatLon) -> Optional[Route]:
    """calculate_route, with any provider exception raised as RouteComputationFailure"""
    try:
        return await routing.calculate_route(start, end)
    except Exception as e:
        raise RouteComputationFailure(f"Routing provider failed: {e!r}") from e


def parse_ors_route(data: dict) -> Optional[Route]:
    """Convert an ORS GeoJSON directions response to a Route.

    Returns None when the response carries no usable geometry.
    """
    try:
        features = data.get("features") or []
        if not features:
            return None
        feature = features[0]
        raw = (feature.get("geometry") or {}).get("coordinates") or []
        geometry = [(c[1], c[0]) for c in raw]  # GeoJSON is [lon, lat]
        if not geometry:
            return None

        props = feature.get("properties") or {}
        summary = props.get("summary") or {}
        way_points = props.get("way_points") or [0, len(geometry) - 1]

        segments = []
        for i, seg in enumerate(props.get("segments") or []):
            instructions = []
            for step in seg.get("steps") or []:
                idx = (step.get("way_points") or [None])[0]
                location = geometry[idx] if isinstance(idx, int) and 0 <= idx < len(geometry) else None
                step_type = step.get("type")
                instructions.append(Instruction(
                    text=step.get("instruction", ""),
                    distance=float(step.get("distance", 0)),
                    duration=float(step.get("duration", 0)),
                    kind=ORS_STEP_TYPES.get(step_type, str(step_type)),
                    way_name=step.get("name") or None,
                    location=location,
                ))
            start_idx = way_points[i] if i < len(way_points) else 0
            end_idx = way_points[i + 1] if i + 1 < len(way_points) else len(geometry) - 1
            segments.append(Segment(
                start=Waypoint(*geometry[start_idx]),
                end=Waypoint(*geometry[end_idx]),
                distance=float(seg.get("distance", 0)),
                duration=float(seg.get("duration", 0)),
                instructions=instructions,
            ))

        return Route(
            coordinates=geometry,
            distance=float(summary.get("distance", 0)),
            duration=float(summary.get("duration", 0)),
            segments=segments,
        )
    except (AttributeError, IndexError, KeyError, TypeError, ValueError):
        return None


def named_leg(route: Route, start: Waypoint, end: Waypoint) -> Route:
    """Collapse a route's segments into one segment with named endpoints"""
    segment = Segment(
        start=start,
        end=end,
        distance=route.distance,
        duration=route.duration,
        instructions=route.instructions,
    )
    return replace(route, segments=(segment,))


def join_routes(legs: Sequence[Route]) -> Route:
    """Concatenate consecutive legs into one route.

    A leg starting where the previous one ended does not repeat the shared
    coordinate.
    """
    coordinates: list[LatLon] = []
    segments: list[Segment] = []
    distance = 0.0
    duration = 0.0
    for leg in legs:
        coords = list(leg.coordinates)
        if coordinates and coords and coords[0] == coordinates[-1]:
            coords = coords[1:]
        coordinates.extend(coords)
        segments.extend(leg.segments)
        distance += leg.distance
        duration += leg.duration
    return Route(coordinates=coordinates, distance=distance, duration=duration, segments=segments)


def direct_route(start: LatLon, end: LatLon,
                 walking_speed: float = CONFIG["walking_speed"],
                 spacing: float = CONFIG["fallback_waypoint_spacing"]) -> Route:
    """Straight-line walking route used when the routing service is unavailable"""
    distance = haversine_distance(start[0], start[1], end[0], end[1])
    duration = round(distance / walking_speed)
    intermediate = max(2, min(8, int(distance // spacing)))
    geometry = interpolate(start, end, intermediate + 1)
    compass = bearing_to_compass(bearing_between(start[0], start[1], end[0], end[1]))

    steps = [Instruction(
        text=f"Head {compass}",
        distance=round(distance * 0.1),
        duration=round(distance * 0.1 / walking_speed),
        kind="depart",
        location=start,
    )]
    if distance > 300:
        mid = geometry[len(geometry) // 2]
        steps.append(Instruction(
            text=f"Continue {compass}",
            distance=round(distance * 0.7),
            duration=round(distance * 0.7 / walking_speed),
            kind="straight",
            location=mid,
        ))
    steps.append(Instruction(text="You have arrived at your destination", kind="arrive", location=end))

    segment = Segment(
        start=Waypoint(*start, name="Start"),
        end=Waypoint(*end, name="Destination"),
        distance=distance,
        duration=duration,
        instructions=steps,
    )
    return Route(coordinates=geometry, distance=distance, duration=duration, segments=(segment,))


class ORSRouter:
    """Routing provider backed by the OpenRouteService foot-walking profile"""

    def __init__(self, api_key: Optional[str] = None, url: str = CONFIG["ors_url"],
                 timeout: float = CONFIG["routing_timeout"],
                 cache_size: int = CONFIG["route_cache_size"],
                 language: str = CONFIG["language"], fallback: bool = True,
                 logger: Optional[Logger] = None):
        self.api_key = api_key or os.environ.get("ORS_API_KEY")
        self.url = url
        self.timeout = timeout
        self.cache_size = cache_size
        self.language = language.split("-")[0]
        self.fallback = fallback
        self.logger = (logger or Logger()).child("routing")
        self._cache: "OrderedDict[str, Route]" = OrderedDict()

    def calculate_distance(self, lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        return haversine_distance(lat1, lon1, lat2, lon2)

    @staticmethod
    def _cache_key(start: LatLon, end: LatLon) -> str:
        return f"{start[0]:.6f},{start[1]:.6f}-{end[0]:.6f},{end[1]:.6f}"

    def _add_to_cache(self, key: str, route: Route):
        self._cache[key] = route
        self._cache.move_to_end(key)
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)

    def clear_cache(self):
        self._cache.clear()

    def _request(self, start: LatLon, end: LatLon) -> dict:
        body = {
            "coordinates": [[start[1], start[0]], [end[1], end[0]]],  # ORS expects [lon, lat]
            "instructions": True,
            "instructions_format": "text",
            "language": self.language,
            "geometry_simplify": False,
            "units": "m",
        }
        response = requests.post(
            self.url,
            json=body,
            headers={"Authorization": self.api_key},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()

    async def calculate_route(self, start: LatLon, end: LatLon) -> Optional[Route]:
        """Pedestrian route from start to end, or None when nothing usable came back"""
        key = self._cache_key(start, end)
        if key in self._cache:
            self._cache.move_to_end(key)
            return self._cache[key]

        route = None
        if self.api_key:
            try:
                data = await asyncio.to_thread(self._request, start, end)
                route = parse_ors_route(data)
                if route is None:
                    self.logger.log("Routing returned no geometry", {"start": start, "end": end})
            except (requests.RequestException, ValueError) as e:
                self.logger.log("Routing request failed", {"error": str(e)})
        else:
            self.logger.log("No ORS_API_KEY set, using direct route")

        if route is None and self.fallback:
            route = direct_route(start, end)
            self.logger.log("Using direct fallback route", {
                "distance": round(route.distance),
                "duration": route.duration,
            })

        if route is not None:
            self._add_to_cache(key, route)
        return route
