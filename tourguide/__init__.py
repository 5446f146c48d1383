"""Tourguide - Location-aware walking tour guide."""

from .config import CONFIG
from .errors import (
    GuidanceError,
    InvalidConfiguration,
    RouteComputationFailure,
    NoReconnectionPoint,
    NavigationStartFailure,
)
from .models import (
    Location,
    Waypoint,
    Instruction,
    Segment,
    Route,
    RoutePlan,
    POI,
    ReconnectionPoint,
    DeviationRecord,
    DeviationCheck,
    GuidanceSettings,
    GuidanceConfig,
    GuidanceType,
)
from .events import GuidanceEvent, NavigationEvent, EventEmitter
from .logger import Logger
from .geo import (
    haversine_distance,
    bearing_between,
    bearing_to_compass,
    nearest_point,
    polyline_length,
    retry_with_backoff,
)
from .audio import Narrator
from .gps import PositionSource, GPS, GPSRecorder, GPSPlayback, FixedPosition
from .ws_position import WebSocketPositionSource
from .routing import RoutingProvider, ORSRouter, parse_ors_route, join_routes, direct_route
from .navigation import NavigationPlayer
from .tour import GuidedTourNavigator
from .correction import DeviationCorrector
from .coordinator import GuidanceCoordinator
from .app import TourGuide, load_tour
from .__main__ import main

__all__ = [
    "CONFIG",
    "GuidanceError",
    "InvalidConfiguration",
    "RouteComputationFailure",
    "NoReconnectionPoint",
    "NavigationStartFailure",
    "Location",
    "Waypoint",
    "Instruction",
    "Segment",
    "Route",
    "RoutePlan",
    "POI",
    "ReconnectionPoint",
    "DeviationRecord",
    "DeviationCheck",
    "GuidanceSettings",
    "GuidanceConfig",
    "GuidanceType",
    "GuidanceEvent",
    "NavigationEvent",
    "EventEmitter",
    "Logger",
    "haversine_distance",
    "bearing_between",
    "bearing_to_compass",
    "nearest_point",
    "polyline_length",
    "retry_with_backoff",
    "Narrator",
    "PositionSource",
    "GPS",
    "GPSRecorder",
    "GPSPlayback",
    "FixedPosition",
    "WebSocketPositionSource",
    "RoutingProvider",
    "ORSRouter",
    "parse_ors_route",
    "join_routes",
    "direct_route",
    "NavigationPlayer",
    "GuidedTourNavigator",
    "DeviationCorrector",
    "GuidanceCoordinator",
    "TourGuide",
    "load_tour",
    "main",
]
