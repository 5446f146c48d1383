#!/usr/bin/env python3
"""
Build a GPS playback trace that walks through a tour file's POIs.

Usage:
    python make_trace.py tour.json [-o trace.json] [--lat LAT --lon LON]
                         [--detour LEG METERS] [--step M] [--ors]

The trace has the same format as a --record file, so it can be replayed with
`python -m tourguide tour.json --playback trace.json`. A detour walks away from
the middle of leg LEG (0 = start -> first POI) by METERS and back again, which
exercises deviation detection and back-on-track guidance without a phone.
"""

import argparse
import asyncio
import json
import time
from datetime import datetime

from tourguide import CONFIG, ORSRouter, Logger, load_tour, haversine_distance, bearing_between, polyline_length
from tourguide.geo import destination_point, interpolate


def walk(points: list[tuple[float, float]], step: float) -> list[tuple[float, float]]:
    """Resample a polyline to roughly one point every step meters"""
    result = [points[0]]
    for start, end in zip(points, points[1:]):
        count = max(2, int(haversine_distance(start[0], start[1], end[0], end[1]) // step) + 1)
        result.extend(interpolate(start, end, count)[1:])
    return result


def with_detour(geometry: list[tuple[float, float]], meters: float) -> list[tuple[float, float]]:
    """Leg geometry with an out-and-back excursion from its middle, at right angles to it"""
    if len(geometry) == 2:
        start, end = geometry
        geometry = [start, ((start[0] + end[0]) / 2, (start[1] + end[1]) / 2), end]
    half = len(geometry) // 2
    here, ahead = geometry[half], geometry[half + 1]
    bearing = bearing_between(here[0], here[1], ahead[0], ahead[1])
    away = destination_point(here[0], here[1], (bearing + 90) % 360, meters)
    return geometry[:half + 1] + [away, here] + geometry[half + 1:]


async def leg_geometry(router, start, end) -> list[tuple[float, float]]:
    if router is None:
        return [start, end]
    route = await router.calculate_route(start, end)
    return list(route.coordinates) if route else [start, end]


async def build_trace(stops, step: float, detour_leg=None, detour_meters: float = 0,
                      router=None) -> list[dict]:
    points = []
    for i, (start, end) in enumerate(zip(stops, stops[1:])):
        geometry = await leg_geometry(router, start, end)
        if i == detour_leg:
            geometry = with_detour(geometry, detour_meters)
        leg = walk(geometry, step)
        points.extend(leg if not points else leg[1:])

    interval = step / CONFIG["walking_speed"]
    now = time.time()
    trace = []
    for i, (lat, lon) in enumerate(points):
        trace.append({
            "elapsed": i * interval,
            "timestamp": now + i * interval,
            "location": {"lat": lat, "lon": lon, "accuracy": 5.0, "timestamp": now + i * interval},
            "status": "Simulated",
        })
    return trace


def main():
    parser = argparse.ArgumentParser(description="Build a playback trace along a tour")
    parser.add_argument("tour", help="Tour JSON file")
    parser.add_argument("-o", "--output", default="trace.json", help="Output trace file")
    parser.add_argument("--lat", type=float, help="Start latitude (default: first POI)")
    parser.add_argument("--lon", type=float, help="Start longitude (default: first POI)")
    parser.add_argument("--detour", nargs=2, metavar=("LEG", "METERS"),
                        help="Walk off the route in the middle of leg LEG")
    parser.add_argument("--step", type=float, default=10.0, help="Meters between fixes (default: 10)")
    parser.add_argument("--ors", action="store_true", help="Follow OpenRouteService routes (needs ORS_API_KEY)")
    args = parser.parse_args()

    if (args.lat is None) != (args.lon is None):
        parser.error("--lat and --lon must be used together")

    pois = sorted(load_tour(args.tour), key=lambda p: p.order)
    stops = [(args.lat, args.lon)] if args.lat is not None else []
    stops += [poi.position for poi in pois]
    if len(stops) < 2:
        parser.error("Need at least two stops to walk between")

    detour_leg, detour_meters = (int(args.detour[0]), float(args.detour[1])) if args.detour else (None, 0)
    router = ORSRouter(logger=Logger()) if args.ors else None
    trace = asyncio.run(build_trace(stops, args.step, detour_leg, detour_meters, router))

    with open(args.output, "w") as f:
        json.dump({"recorded_at": datetime.now().isoformat(), "trace": trace}, f, indent=2)
    length = polyline_length([(e["location"]["lat"], e["location"]["lon"]) for e in trace])
    print(f"Wrote {len(trace)} fixes ({length:.0f} m) to {args.output}")


if __name__ == "__main__":
    main()
