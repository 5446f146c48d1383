"""Geographic utility functions."""

import math
import time
from typing import Callable, Optional, Sequence

from .models import LatLon

DistanceFn = Callable[[float, float, float, float], float]


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance between two points in meters using Haversine formula"""
    R = 6371000  # Earth's radius in meters

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (math.sin(delta_phi / 2) ** 2 +
         math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return R * c


def bearing_between(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate bearing from point 1 to point 2 in degrees (0-360, 0=North)"""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_lambda = math.radians(lon2 - lon1)

    x = math.sin(delta_lambda) * math.cos(phi2)
    y = (math.cos(phi1) * math.sin(phi2) -
         math.sin(phi1) * math.cos(phi2) * math.cos(delta_lambda))

    bearing = math.degrees(math.atan2(x, y))
    return (bearing + 360) % 360


def bearing_to_compass(bearing: float) -> str:
    """Convert bearing to compass direction"""
    directions = ["north", "northeast", "east", "southeast",
                  "south", "southwest", "west", "northwest"]
    index = round(bearing / 45) % 8
    return directions[index]


def destination_point(lat: float, lon: float, bearing: float, distance: float) -> LatLon:
    """Point reached by travelling distance meters from (lat, lon) on bearing"""
    R = 6371000
    delta = distance / R
    theta = math.radians(bearing)
    phi1 = math.radians(lat)
    lambda1 = math.radians(lon)

    phi2 = math.asin(math.sin(phi1) * math.cos(delta) +
                     math.cos(phi1) * math.sin(delta) * math.cos(theta))
    lambda2 = lambda1 + math.atan2(math.sin(theta) * math.sin(delta) * math.cos(phi1),
                                   math.cos(delta) - math.sin(phi1) * math.sin(phi2))
    return (math.degrees(phi2), (math.degrees(lambda2) + 540) % 360 - 180)


def nearest_point(position: LatLon, coordinates: Sequence[LatLon],
                  distance_fn: DistanceFn = haversine_distance) -> tuple[int, float]:
    """Index of and distance to the route coordinate nearest to position.

    Linear scan over every coordinate. Returns (-1, inf) for empty geometry.
    """
    best_index = -1
    best_distance = float("inf")
    lat, lon = position
    for i, (clat, clon) in enumerate(coordinates):
        d = distance_fn(lat, lon, clat, clon)
        if d < best_distance:
            best_distance = d
            best_index = i
    return best_index, best_distance


def polyline_length(coordinates: Sequence[LatLon]) -> float:
    """Total length in meters of a (lat, lon) polyline"""
    total = 0.0
    for (lat1, lon1), (lat2, lon2) in zip(coordinates, coordinates[1:]):
        total += haversine_distance(lat1, lon1, lat2, lon2)
    return total


def interpolate(start: LatLon, end: LatLon, count: int) -> list[LatLon]:
    """Evenly spaced points from start to end inclusive (count >= 2)"""
    count = max(2, count)
    points = []
    for i in range(count - 1):
        ratio = i / (count - 1)
        points.append((start[0] + (end[0] - start[0]) * ratio,
                       start[1] + (end[1] - start[1]) * ratio))
    points.append((end[0], end[1]))
    return points


def retry_with_backoff(func, max_time: float = 30.0, initial_delay: float = 1.0,
                       max_delay: float = 8.0, description: str = "operation"):
    """Retry a function with exponential backoff.

    Args:
        func: Function that returns a truthy value on success, falsy on failure
        max_time: Maximum total time to retry (seconds)
        initial_delay: Initial delay between retries (seconds)
        max_delay: Maximum delay between retries (seconds)
        description: Description for logging

    Returns:
        The result of func() on success, or None if all retries failed
    """
    start_time = time.time()
    delay = initial_delay
    attempt = 1

    while True:
        result = func()
        if result:
            return result

        elapsed = time.time() - start_time
        if elapsed >= max_time:
            print(f"Failed to complete {description} after {elapsed:.1f}s ({attempt} attempts)")
            return None

        remaining = max_time - elapsed
        sleep_time = min(delay, remaining, max_delay)
        if sleep_time > 0:
            print(f"Retrying {description} in {sleep_time:.1f}s (attempt {attempt})...")
            time.sleep(sleep_time)

        delay = min(delay * 2, max_delay)
        attempt += 1


def format_distance(meters: Optional[float]) -> str:
    """Spoken distance: meters below 1 km, otherwise kilometers"""
    if meters is None:
        return "unknown distance"
    if meters < 1000:
        return f"{int(round(meters))} meters"
    return f"{meters / 1000:.1f} kilometers"
